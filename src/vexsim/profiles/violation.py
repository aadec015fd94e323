"""
profiles.violation: Memory-safety violations, the states of the simulator.

A ``Violation`` is one unsafe memory access (read / write / execute) with a
control state per access parameter.  Violations derived from one another
form an append-only tree through ``transitive_violations``, which the
simulation registry later walks to reconstruct technique chains.
"""

from __future__ import annotations

import itertools
import uuid
from dataclasses import dataclass
from typing import Any, Iterator, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ..core.errors import UnsupportedOperation
from ..core.fingerprint import compute_sha1
from .enums import (
    AccessRequirement,
    ControlTransferMethod,
    ExecutionDomain,
    Locality,
    MemoryAccessDirection,
    MemoryAccessMethod,
    MemoryAccessOffset,
    MemoryAccessParameter,
    MemoryAccessParameterState,
    MemoryAddress,
    MemoryAddressingMode,
    MemoryContentDataType,
    MemoryRegionType,
    StackProtectionVersion,
)

_State = MemoryAccessParameterState


@dataclass
class TransitiveViolation:
    """A violation derived from another one, and the transition that derived it."""

    violation: "Violation"
    transition_descriptor: Any = None


class Violation(BaseModel):
    """
    One memory-safety violation.

    Construction forces the parameters that do not exist for a method:
    executes have no displacement or extent and are always absolute,
    reads have no destination content.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    # ── Memory access ────────────────────────────────────────────────
    method: MemoryAccessMethod = MemoryAccessMethod.READ
    name: Optional[str] = None
    base_state: MemoryAccessParameterState = _State.UNKNOWN
    content_src_state: MemoryAccessParameterState = _State.UNKNOWN
    content_dst_state: MemoryAccessParameterState = _State.UNKNOWN
    displacement_state: MemoryAccessParameterState = _State.UNKNOWN
    extent_state: MemoryAccessParameterState = _State.UNKNOWN

    base_region_type: Optional[MemoryRegionType] = None
    content_data_type: Optional[MemoryContentDataType] = None
    content_data_type_name: Optional[str] = None
    content_container_data_type: Optional[MemoryContentDataType] = None
    content_container_type_name: Optional[str] = None
    displacement_initial_offset: Optional[MemoryAccessOffset] = None
    addressing_mode: Optional[MemoryAddressingMode] = None
    direction: Optional[MemoryAccessDirection] = None
    control_transfer_method: Optional[ControlTransferMethod] = None

    # ── Vector ───────────────────────────────────────────────────────
    locality: Optional[Locality] = Locality.UNSPECIFIED
    access_requirement: Optional[AccessRequirement] = AccessRequirement.UNSPECIFIED
    execution_domain: Optional[ExecutionDomain] = None

    # ── Function context ─────────────────────────────────────────────
    function_stack_protection_enabled: Optional[bool] = None
    function_stack_protection_version: Optional[StackProtectionVersion] = None
    function_stack_protection_entropy_bits: Optional[int] = None

    # ── Assumptions ──────────────────────────────────────────────────
    transitive_read_list_is_complete: Optional[bool] = None
    transitive_write_list_is_complete: Optional[bool] = None
    transitive_execute_list_is_complete: Optional[bool] = None
    assumptions: List[Any] = Field(
        default_factory=list,
        description="Assumptions carried into any context that adopts this violation.",
    )

    # ── Runtime ──────────────────────────────────────────────────────
    transitive_violations: List[Any] = Field(default_factory=list, exclude=True)
    previous_violation: Optional[Any] = Field(default=None, exclude=True)
    guid: str = Field(default_factory=lambda: uuid.uuid4().hex)

    @model_validator(mode="after")
    def _apply_method_rules(self) -> "Violation":
        if self.method == MemoryAccessMethod.EXECUTE:
            self.displacement_state = _State.NONEXISTENT
            self.extent_state = _State.NONEXISTENT
            self.addressing_mode = MemoryAddressingMode.ABSOLUTE
        elif self.method == MemoryAccessMethod.READ:
            self.content_dst_state = _State.NONEXISTENT
        return self

    # ── Identity ─────────────────────────────────────────────────────

    @property
    def symbol(self) -> str:
        """Compact form such as ``w-bf-cc-df-ec``."""
        parts = [self.method.abbreviation]
        for prefix, state in (
            ("b", self.base_state),
            ("c", self.content_src_state),
            ("d", self.displacement_state),
            ("e", self.extent_state),
        ):
            if state != _State.NONEXISTENT:
                parts.append(f"{prefix}{state.abbreviation}")
        return "-".join(parts)

    def __str__(self) -> str:
        return self.symbol

    @property
    def equivalence_class(self) -> str:
        return compute_sha1(
            self.address,
            self.addressing_mode,
            self.base_region_type,
            self.base_state,
            self.content_container_data_type,
            self.content_container_type_name,
            self.content_data_type,
            self.content_data_type_name,
            self.content_src_state,
            self.content_dst_state,
            self.control_transfer_method,
            self.displacement_state,
            self.displacement_initial_offset,
            self.execution_domain,
            self.extent_state,
            self.locality,
            self.method,
            self.function_stack_protection_enabled,
        )

    def is_same_as(self, other: "Violation") -> bool:
        return self.equivalence_class == other.equivalence_class

    def has_previous_violation(self, other: "Violation") -> bool:
        """True if ``other`` is equivalent to this violation or any ancestor."""
        current: Optional[Violation] = self
        while current is not None:
            if current.is_same_as(other):
                return True
            current = current.previous_violation
        return False

    # ── Address ──────────────────────────────────────────────────────

    @property
    def address(self) -> Optional[MemoryAddress]:
        if self.content_data_type is None:
            return None
        return MemoryAddress(
            data_type=self.content_data_type,
            region=self.base_region_type or MemoryRegionType.ANY,
        )

    @address.setter
    def address(self, value: Optional[MemoryAddress]) -> None:
        if value is None:
            self.content_data_type = None
            self.base_region_type = None
        else:
            self.content_data_type = value.data_type
            self.base_region_type = value.region

    # pydantic routes attribute assignment through __setattr__, which does
    # not know about plain properties.
    def __setattr__(self, name: str, value: Any) -> None:
        if name == "address":
            Violation.address.fset(self, value)  # type: ignore[attr-defined]
            return
        super().__setattr__(name, value)

    # ── Parameters ───────────────────────────────────────────────────

    def set_parameter_state(
        self,
        parameter: MemoryAccessParameter,
        state: MemoryAccessParameterState,
    ) -> None:
        if parameter == MemoryAccessParameter.BASE:
            self.base_state = state
        elif parameter == MemoryAccessParameter.CONTENT:
            self.content_src_state = state
        elif parameter == MemoryAccessParameter.DISPLACEMENT:
            self.displacement_state = state
        elif parameter == MemoryAccessParameter.EXTENT:
            self.extent_state = state

    def parameter_state(self, parameter: MemoryAccessParameter) -> MemoryAccessParameterState:
        return {
            MemoryAccessParameter.BASE: self.base_state,
            MemoryAccessParameter.CONTENT: self.content_src_state,
            MemoryAccessParameter.DISPLACEMENT: self.displacement_state,
            MemoryAccessParameter.EXTENT: self.extent_state,
        }[parameter]

    def inherit_parameter_state_from_content(
        self,
        source: "Violation",
        *parameters: MemoryAccessParameter,
    ) -> None:
        """
        Each named parameter takes the source content state.

        A derived access whose base came from the source content, or any
        execute, is absolute; everything else is relative.
        """
        for parameter in parameters:
            if not isinstance(parameter, MemoryAccessParameter):
                raise UnsupportedOperation(f"Unknown access parameter: {parameter!r}")
            self.set_parameter_state(parameter, source.content_src_state)

        if MemoryAccessParameter.BASE in parameters or self.method == MemoryAccessMethod.EXECUTE:
            self.addressing_mode = MemoryAddressingMode.ABSOLUTE
        else:
            self.addressing_mode = MemoryAddressingMode.RELATIVE

    @property
    def is_base_controlled(self) -> bool:
        return self.base_state == _State.CONTROLLED

    @property
    def is_base_fixed(self) -> bool:
        return self.base_state == _State.FIXED

    @property
    def is_content_controlled(self) -> bool:
        return self.content_src_state == _State.CONTROLLED

    @property
    def is_content_fixed(self) -> bool:
        return self.content_src_state == _State.FIXED

    @property
    def is_content_uninitialized(self) -> bool:
        return self.content_src_state == _State.UNINITIALIZED

    @property
    def is_displacement_controlled(self) -> bool:
        return self.displacement_state == _State.CONTROLLED

    @property
    def is_extent_controlled(self) -> bool:
        return self.extent_state == _State.CONTROLLED

    # ── Derivation ───────────────────────────────────────────────────

    def clone_violation(self) -> "Violation":
        """Independent copy for a new hypothesis: fresh guid, no children."""
        return self.model_copy(
            update={
                "guid": uuid.uuid4().hex,
                "assumptions": list(self.assumptions),
                "transitive_violations": [],
            }
        )

    def new_transitive_violation(
        self,
        method: MemoryAccessMethod,
        name: Optional[str] = None,
        base_state: MemoryAccessParameterState = _State.UNKNOWN,
        content_src_state: MemoryAccessParameterState = _State.UNKNOWN,
        content_dst_state: MemoryAccessParameterState = _State.UNKNOWN,
        displacement_state: MemoryAccessParameterState = _State.UNKNOWN,
        extent_state: MemoryAccessParameterState = _State.UNKNOWN,
    ) -> "Violation":
        """Build a violation derived from this one."""
        v = Violation(
            method=method,
            name=name,
            base_state=base_state,
            content_src_state=content_src_state,
            content_dst_state=content_dst_state,
            displacement_state=displacement_state,
            extent_state=extent_state,
        )
        v.previous_violation = self
        v.access_requirement = self.access_requirement
        v.execution_domain = self.execution_domain
        v.locality = self.locality
        v.function_stack_protection_enabled = self.function_stack_protection_enabled
        v.function_stack_protection_entropy_bits = self.function_stack_protection_entropy_bits
        v.function_stack_protection_version = self.function_stack_protection_version
        return v

    def add_transitive_violation(self, violation: "Violation", transition: Any = None) -> None:
        # Imported lazily: simulation depends on profiles, not the reverse.
        from ..simulation.transition import TransitionDescriptor

        self.transitive_violations.append(
            TransitiveViolation(
                violation=violation,
                transition_descriptor=TransitionDescriptor.from_transition(transition),
            )
        )

    @property
    def all_transitive_violations(self) -> List[TransitiveViolation]:
        """Every descendant, depth first."""
        result: List[TransitiveViolation] = []
        for tv in self.transitive_violations:
            result.append(tv)
            result.extend(tv.violation.all_transitive_violations)
        return result

    def _transitive_by_method(self, method: MemoryAccessMethod) -> List[TransitiveViolation]:
        return [tv for tv in self.transitive_violations if tv.violation.method == method]

    @property
    def transitive_reads(self) -> List[TransitiveViolation]:
        return self._transitive_by_method(MemoryAccessMethod.READ)

    @property
    def transitive_writes(self) -> List[TransitiveViolation]:
        return self._transitive_by_method(MemoryAccessMethod.WRITE)

    @property
    def transitive_executes(self) -> List[TransitiveViolation]:
        return self._transitive_by_method(MemoryAccessMethod.EXECUTE)

    def set_transitive_violation_complete(self, method: MemoryAccessMethod, complete: bool = True) -> None:
        if method == MemoryAccessMethod.READ:
            self.transitive_read_list_is_complete = complete
        elif method == MemoryAccessMethod.WRITE:
            self.transitive_write_list_is_complete = complete
        else:
            self.transitive_execute_list_is_complete = complete

    def is_transitive_violation_complete(self, method: MemoryAccessMethod) -> bool:
        if method == MemoryAccessMethod.READ:
            return bool(self.transitive_read_list_is_complete)
        if method == MemoryAccessMethod.WRITE:
            return bool(self.transitive_write_list_is_complete)
        return bool(self.transitive_execute_list_is_complete)

    # ── Recalibration ────────────────────────────────────────────────

    def recalibrate(self, target: Any) -> None:
        """Fill in defaults inherited from the target application."""
        app = target.application
        if self.execution_domain is None:
            self.execution_domain = (
                ExecutionDomain.KERNEL if app.kernel_application else ExecutionDomain.USER
            )

        if self.function_stack_protection_enabled is None:
            self.function_stack_protection_enabled = app.default_stack_protection_enabled
            self.function_stack_protection_version = app.default_stack_protection_version
            self.function_stack_protection_entropy_bits = app.default_stack_protection_entropy_bits

        if self.function_stack_protection_enabled and app.default_stack_protection_entropy_bits is not None:
            self.function_stack_protection_entropy_bits = app.default_stack_protection_entropy_bits
            self.function_stack_protection_version = app.default_stack_protection_version


# ── Base violation generation ─────────────────────────────────────────


_BASE_STATES = (_State.CONTROLLED, _State.FIXED, _State.UNINITIALIZED, _State.UNKNOWN)

_ALL_PARAMETERS = (
    MemoryAccessParameter.BASE,
    MemoryAccessParameter.CONTENT,
    MemoryAccessParameter.DISPLACEMENT,
    MemoryAccessParameter.EXTENT,
)


def _generate(method: MemoryAccessMethod, parameters: tuple) -> Iterator[Violation]:
    # The first parameter varies fastest.
    for combo in itertools.product(_BASE_STATES, repeat=len(parameters)):
        v = Violation(
            method=method,
            base_state=_State.NONEXISTENT,
            content_src_state=_State.NONEXISTENT,
            content_dst_state=_State.NONEXISTENT,
            displacement_state=_State.NONEXISTENT,
            extent_state=_State.NONEXISTENT,
        )
        for parameter, state in zip(parameters, reversed(combo)):
            v.set_parameter_state(parameter, state)
        yield v


def generate_base_violations() -> List[Violation]:
    """
    Every read / write over the four access parameters and every execute
    over base and content, each existing parameter ranging over the
    controlled, fixed, uninitialized and unknown states.
    """
    violations: List[Violation] = []
    violations.extend(_generate(MemoryAccessMethod.READ, _ALL_PARAMETERS))
    violations.extend(_generate(MemoryAccessMethod.WRITE, _ALL_PARAMETERS))
    violations.extend(
        _generate(MemoryAccessMethod.EXECUTE, (MemoryAccessParameter.BASE, MemoryAccessParameter.CONTENT))
    )
    return violations
