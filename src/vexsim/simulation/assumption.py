"""
simulation.assumption: Memoized probabilistic facts about the attacker.

An ``Assumption`` is identified by its ``name_string``: the fact kind,
plus the memory address or favored-outcome constraint that parameterizes
it.  Within one simulation context there is at most one assumption per
identity, so re-asking a question returns the cached answer.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr

from ..profiles.enums import MemoryAddress


class AssumptionName(str, Enum):
    """Every kind of fact the simulator may assume."""

    UNKNOWN = "unknown"

    # ── Triggering ───────────────────────────────────────────────────
    CAN_TRIGGER_MEMORY_WRITE = "can_trigger_memory_write"
    CAN_TRIGGER_MEMORY_READ = "can_trigger_memory_read"
    CAN_TRIGGER_MEMORY_EXECUTE = "can_trigger_memory_execute"
    CAN_TRIGGER_FUNCTION_RETURN = "can_trigger_function_return"
    CAN_TRIGGER_FUNCTION_POINTER_CALL = "can_trigger_function_pointer_call"
    CAN_TRIGGER_VIRTUAL_METHOD_CALL = "can_trigger_virtual_method_call"
    CAN_TRIGGER_EXCEPTION = "can_trigger_exception"

    # ── Addresses ────────────────────────────────────────────────────
    CAN_FIND_ADDRESS = "can_find_address"
    CAN_POSITION_AT_DESIRED_ABSOLUTE_ADDRESS = "can_position_at_desired_absolute_address"
    CAN_POSITION_AT_DESIRED_RELATIVE_ADDRESS = "can_position_at_desired_relative_address"
    CAN_DETERMINE_DISPLACEMENT_TO_ADDRESS = "can_determine_displacement_to_address"
    CAN_CORRUPT_MEMORY_AT_ADDRESS = "can_corrupt_memory_at_address"
    # No corruption is possible other than those already assumed.
    CAN_CORRUPT_MEMORY_AT_ADDRESS_LIST_COMPLETE = "can_corrupt_memory_at_address_list_complete"
    CAN_READ_MEMORY_AT_ADDRESS = "can_read_memory_at_address"

    # ── Execution ────────────────────────────────────────────────────
    CAN_EXECUTE_CODE = "can_execute_code"
    CAN_EXECUTE_DATA = "can_execute_data"
    CAN_EXECUTE_CONTROLLED_CODE = "can_execute_controlled_code"
    # The attacker runs their payload, whether in controlled code or not.
    CAN_EXECUTE_DESIRED_CODE = "can_execute_desired_code"
    CAN_BYPASS_NX = "can_bypass_nx"

    # ── Content initialization ───────────────────────────────────────
    CAN_INITIALIZE_CONTENT_VIA_HEAP_SPRAY = "can_initialize_content_via_heap_spray"
    CAN_INITIALIZE_CONTENT_VIA_STACK_OVERLAPPING_LOCAL = "can_initialize_content_via_stack_overlapping_local"
    CAN_INITIALIZE_CODE_VIA_JIT = "can_initialize_code_via_jit"

    # ── Mitigations ──────────────────────────────────────────────────
    CAN_DETERMINE_STACK_PROTECTION_COOKIE = "can_determine_stack_protection_cookie"
    CAN_LOAD_NON_ASLR_IMAGE = "can_load_non_aslr_image"
    CAN_LOAD_NON_ASLR_NON_SAFE_SEH_IMAGE = "can_load_non_aslr_non_safe_seh_image"
    APPLICATION_LOADS_NON_ASLR_DLL = "application_loads_non_aslr_dll"
    APPLICATION_LOADS_NON_ASLR_EXE = "application_loads_non_aslr_exe"
    APPLICATION_LOADS_NON_SAFE_SEH_DLL = "application_loads_non_safe_seh_dll"
    APPLICATION_LOADS_NON_SAFE_SEH_EXE = "application_loads_non_safe_seh_exe"
    APPLICATION_LOADS_NON_ASLR_NON_SAFE_SEH_DLL = "application_loads_non_aslr_non_safe_seh_dll"
    APPLICATION_LOADS_NON_ASLR_NON_SAFE_SEH_EXE = "application_loads_non_aslr_non_safe_seh_exe"
    APPLICATION_LOADS_DLL_BELOW_4GB = "application_loads_dll_below_4gb"
    APPLICATION_LOADS_EXE_BELOW_4GB = "application_loads_exe_below_4gb"
    CAN_BYPASS_SAFE_SEH = "can_bypass_safe_seh"
    CAN_BYPASS_SEHOP = "can_bypass_sehop"

    # ── Return oriented programming ──────────────────────────────────
    CAN_FIND_STACK_PIVOT_GADGET = "can_find_stack_pivot_gadget"
    CAN_FIND_REQUIRED_ROP_GADGETS = "can_find_required_rop_gadgets"
    CAN_FIND_REQUIRED_ROP_GADGETS_IN_IMAGE_CODE = "can_find_required_rop_gadgets_in_image_code"
    CAN_FIND_REQUIRED_ROP_GADGETS_IN_JIT_CODE = "can_find_required_rop_gadgets_in_jit_code"
    IS_ROP_GADGET_IMAGE_VERSION_KNOWN = "is_rop_gadget_image_version_known"
    IS_JIT_ENGINE_VERSION_KNOWN = "is_jit_engine_version_known"
    CAN_PIVOT_STACK_POINTER = "can_pivot_stack_pointer"
    CAN_PROTECT_DATA_AS_CODE = "can_protect_data_as_code"

    @classmethod
    def from_str(cls, s: str) -> "AssumptionName":
        """Case-insensitive lookup; dashes and spaces count as underscores."""
        normalized = s.strip().lower().replace("-", "_").replace(" ", "_")
        for member in cls:
            if member.value == normalized:
                return member
        return cls.UNKNOWN


class Assumption(BaseModel):
    """
    One fact and the probability that it holds.

    ``transition`` is the transition that first assumed the fact (``None``
    for target invariants) and is never serialized.  The identity fields
    are frozen; ``name_string`` is computed once per instance.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: AssumptionName = Field(default=AssumptionName.UNKNOWN, frozen=True)
    probability: float = Field(default=1.0, ge=0.0, le=1.0)
    address: Optional[MemoryAddress] = Field(default=None, frozen=True)
    constraint: Optional[str] = Field(
        default=None,
        frozen=True,
        description="Description of the favored outcome this assumption stands for.",
    )
    favored_true: Optional[bool] = Field(default=None, frozen=True)

    used: bool = False
    id: Optional[int] = None
    explicit: bool = False
    transition: Any = Field(default=None, exclude=True)

    _name_string: Optional[str] = PrivateAttr(default=None)

    # ── Identity ─────────────────────────────────────────────────────

    @property
    def name_string(self) -> str:
        if self._name_string is None:
            if self.address is not None:
                self._name_string = f"{self.name.value}({self.address})"
            elif self.constraint is not None:
                self._name_string = f"{self.name.value}({self.favored_true} == '{self.constraint}')"
            else:
                self._name_string = self.name.value
        return self._name_string

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Assumption) and other.name_string == self.name_string

    def __hash__(self) -> int:
        return hash(self.name_string)

    def __str__(self) -> str:
        return self.name_string

    def model_copy(self, *, update: Optional[dict] = None, deep: bool = False) -> "Assumption":
        copied = super().model_copy(update=update, deep=deep)
        if update:
            copied._name_string = None
        return copied

    # ── Truth ────────────────────────────────────────────────────────

    @property
    def is_true(self) -> bool:
        return self.probability > 0

    @is_true.setter
    def is_true(self, value: bool) -> None:
        self.probability = Assumption.boolean_probability(value)

    @staticmethod
    def boolean_probability(flag: bool) -> float:
        return 1.0 if flag else 0.0

    # ── Construction helpers ─────────────────────────────────────────

    @classmethod
    def coerce(
        cls,
        value: Union["Assumption", AssumptionName, str],
        probability: Optional[float] = None,
    ) -> "Assumption":
        """Accept an assumption, an ``AssumptionName`` or its string value."""
        if isinstance(value, Assumption):
            if probability is None:
                return value
            return value.model_copy(update={"probability": probability})
        name = value if isinstance(value, AssumptionName) else AssumptionName(value)
        return cls(name=name, probability=1.0 if probability is None else probability)

    @classmethod
    def can_find_address(cls, address: MemoryAddress, probability: float = 1.0) -> "Assumption":
        return cls(name=AssumptionName.CAN_FIND_ADDRESS, address=address, probability=probability)

    @classmethod
    def can_corrupt_memory_at_address(cls, address: MemoryAddress, probability: float = 1.0) -> "Assumption":
        return cls(name=AssumptionName.CAN_CORRUPT_MEMORY_AT_ADDRESS, address=address, probability=probability)

    @classmethod
    def can_read_memory_at_address(cls, address: MemoryAddress, probability: float = 1.0) -> "Assumption":
        return cls(name=AssumptionName.CAN_READ_MEMORY_AT_ADDRESS, address=address, probability=probability)

    @classmethod
    def can_position_at_desired_absolute_address(cls, address: MemoryAddress, probability: float = 1.0) -> "Assumption":
        return cls(
            name=AssumptionName.CAN_POSITION_AT_DESIRED_ABSOLUTE_ADDRESS,
            address=address,
            probability=probability,
        )

    @classmethod
    def can_position_at_desired_relative_address(cls, address: MemoryAddress, probability: float = 1.0) -> "Assumption":
        return cls(
            name=AssumptionName.CAN_POSITION_AT_DESIRED_RELATIVE_ADDRESS,
            address=address,
            probability=probability,
        )

    @classmethod
    def can_determine_displacement_to_address(cls, address: MemoryAddress, probability: float = 1.0) -> "Assumption":
        return cls(
            name=AssumptionName.CAN_DETERMINE_DISPLACEMENT_TO_ADDRESS,
            address=address,
            probability=probability,
        )


class FavoredOutcome(Assumption):
    """
    Records that an undefined fact was resolved the way the current
    simulation mode favors, e.g. ``unknown(True == 'content initialized')``.
    """

    constraint: str = Field(frozen=True)
    favored_true: bool = Field(frozen=True)
