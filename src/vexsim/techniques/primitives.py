"""
techniques.primitives: The state transforms techniques are built from.

A primitive carries an ordered list of ``(description, predicate)``
constraints that must all hold for the current context, a next-violation
function that derives the successor violation, and an ordered list of
success callbacks ``cb(context, violation)``.  A callback may mutate the
violation in place or return a replacement.

Constructors build their own guard first and then append the caller's
extra constraint, next-violation function and success callback through
``update``.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Callable, List, Optional, Tuple

from ..core.errors import UnsupportedOperation
from ..profiles.enums import (
    ADDRESS_OF_WRITABLE_CODE,
    ControlTransferMethod,
    MemoryAccessMethod,
    MemoryAccessParameter,
    MemoryAccessParameterState,
    MemoryAddress,
)
from ..profiles.violation import Violation
from ..simulation import constraints as c
from ..simulation.assumption import AssumptionName

_S = MemoryAccessParameterState

Predicate = Callable[[Any], bool]
Constraint = Tuple[str, Predicate]
NextViolation = Callable[[Any], Violation]
OnSuccess = Callable[[Any, Violation], Optional[Violation]]


class ExploitationPrimitiveType(str, Enum):
    IDENTITY = "identity"
    WRITE_TO_READ = "write_to_read"
    WRITE_TO_EXECUTE = "write_to_execute"
    READ_TO_WRITE = "read_to_write"
    READ_TO_READ = "read_to_read"
    READ_TO_EXECUTE = "read_to_execute"
    EXECUTE_TO_EXECUTE = "execute_to_execute"


_FROM_METHOD = {
    ExploitationPrimitiveType.READ_TO_EXECUTE: MemoryAccessMethod.READ,
    ExploitationPrimitiveType.READ_TO_READ: MemoryAccessMethod.READ,
    ExploitationPrimitiveType.READ_TO_WRITE: MemoryAccessMethod.READ,
    ExploitationPrimitiveType.WRITE_TO_EXECUTE: MemoryAccessMethod.WRITE,
    ExploitationPrimitiveType.WRITE_TO_READ: MemoryAccessMethod.WRITE,
    ExploitationPrimitiveType.EXECUTE_TO_EXECUTE: MemoryAccessMethod.EXECUTE,
}

_TO_METHOD = {
    ExploitationPrimitiveType.READ_TO_READ: MemoryAccessMethod.READ,
    ExploitationPrimitiveType.WRITE_TO_READ: MemoryAccessMethod.READ,
    ExploitationPrimitiveType.READ_TO_WRITE: MemoryAccessMethod.WRITE,
    ExploitationPrimitiveType.READ_TO_EXECUTE: MemoryAccessMethod.EXECUTE,
    ExploitationPrimitiveType.WRITE_TO_EXECUTE: MemoryAccessMethod.EXECUTE,
    ExploitationPrimitiveType.EXECUTE_TO_EXECUTE: MemoryAccessMethod.EXECUTE,
}


def constraint(description: str, predicate: Predicate) -> Constraint:
    return (description, predicate)


class ExploitationPrimitive:
    """Base class of every primitive."""

    def __init__(self, primitive_type: ExploitationPrimitiveType, symbol: str, name: str) -> None:
        self.primitive_type = primitive_type
        self.symbol = symbol
        self.name = name
        self.constraints: List[Constraint] = []
        self.next_violation: Optional[NextViolation] = None
        self.on_success: List[OnSuccess] = []

    @property
    def is_identity(self) -> bool:
        return self.primitive_type == ExploitationPrimitiveType.IDENTITY

    @property
    def from_method(self) -> Optional[MemoryAccessMethod]:
        """Access method the primitive starts from; ``None`` for identities."""
        return _FROM_METHOD.get(self.primitive_type)

    @property
    def to_method(self) -> Optional[MemoryAccessMethod]:
        return _TO_METHOD.get(self.primitive_type)

    @property
    def descriptor(self) -> str:
        return self.primitive_type.value

    def update(
        self,
        constraint: Optional[Constraint] = None,
        next_violation: Optional[NextViolation] = None,
        on_success: Optional[OnSuccess] = None,
    ) -> "ExploitationPrimitive":
        if constraint is not None:
            self.constraints.append(constraint)
        if next_violation is not None:
            self.next_violation = next_violation
        if on_success is not None:
            self.on_success.append(on_success)
        return self

    def inherit_parameter_state(self, source: Violation, dest: Violation) -> None:
        pass

    def get_next_violation(self, context: Any) -> Violation:
        if self.next_violation is None:
            raise UnsupportedOperation(f"Primitive '{self.name}' has no next-violation function")
        return self.next_violation(context)

    def notify_on_success(self, context: Any, violation: Violation) -> Violation:
        """Run the success callbacks in registration order."""
        for callback in self.on_success:
            replacement = callback(context, violation)
            if replacement is not None:
                violation = replacement
        return violation

    def __str__(self) -> str:
        return self.name

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r})"


# ── Fundamental primitives ────────────────────────────────────────────


def _content_initialized(ctx: Any, address: MemoryAddress, state: MemoryAccessParameterState) -> bool:
    return (
        ctx.global_ctx.assume_content_initialization_possible
        or address.is_implicitly_initialized
        or state in (_S.CONTROLLED, _S.FIXED)
    )


class WritePrimitive(ExploitationPrimitive):
    """Corrupts initialized memory at ``write_address``."""

    def __init__(
        self,
        primitive_type: ExploitationPrimitiveType,
        name: str,
        write_address: MemoryAddress,
        constraint: Optional[Constraint] = None,
        next_violation: Optional[NextViolation] = None,
        on_success: Optional[OnSuccess] = None,
    ) -> None:
        super().__init__(primitive_type, "write", name)
        self.write_address = write_address
        self.constraints.append((
            f"write to initialized content at {write_address} that can be corrupted",
            self._guard,
        ))
        self.update(constraint, next_violation, on_success)

    def _guard(self, ctx: Any) -> bool:
        v = ctx.current_violation
        return (
            v.method == MemoryAccessMethod.WRITE
            and _content_initialized(ctx, self.write_address, v.content_dst_state)
            and ctx.attacker_favors_equal(v.address, self.write_address)
            and c.can_corrupt_memory_at_address(ctx, self.write_address)
        )


class ReadPrimitive(ExploitationPrimitive):
    """Reads initialized memory at ``read_address``."""

    def __init__(
        self,
        primitive_type: ExploitationPrimitiveType,
        name: str,
        read_address: MemoryAddress,
        constraint: Optional[Constraint] = None,
        next_violation: Optional[NextViolation] = None,
        on_success: Optional[OnSuccess] = None,
    ) -> None:
        super().__init__(primitive_type, "read", name)
        self.read_address = read_address
        self.constraints.append((
            f"read initialized content at {read_address} that can be read",
            self._guard,
        ))
        self.update(constraint, next_violation, on_success)

    def _guard(self, ctx: Any) -> bool:
        v = ctx.current_violation
        return (
            v.method == MemoryAccessMethod.READ
            and _content_initialized(ctx, self.read_address, v.content_src_state)
            and ctx.attacker_favors_equal(v.address, self.read_address)
            and c.can_read_memory_at_address(ctx, self.read_address)
        )


class _InitializeContentPrimitive(ExploitationPrimitive):
    """
    Identity primitive that initializes the content an access uses.

    Only applies when content initialization is not already assumed to be
    possible; the successor is a copy of the current violation whose
    content state becomes ``new_content_state``.
    """

    method: MemoryAccessMethod
    symbol_name: str

    def __init__(
        self,
        name: str,
        content_address: MemoryAddress,
        new_content_state: MemoryAccessParameterState = _S.CONTROLLED,
        constraint: Optional[Constraint] = None,
        on_success: Optional[OnSuccess] = None,
    ) -> None:
        super().__init__(ExploitationPrimitiveType.IDENTITY, self.symbol_name, name)
        self.content_address = content_address
        self.new_content_state = new_content_state
        self.constraints.append((
            f"{self.method.value} of uninitialized content at {content_address}",
            self._guard,
        ))
        self.next_violation = self._next
        self.update(constraint=constraint, on_success=on_success)

    def _content_state(self, v: Violation) -> MemoryAccessParameterState:
        return v.content_src_state

    def _set_content_state(self, v: Violation) -> None:
        v.content_src_state = self.new_content_state

    def _accessible(self, ctx: Any) -> bool:
        raise NotImplementedError

    def _guard(self, ctx: Any) -> bool:
        v = ctx.current_violation
        state = self._content_state(v)
        return (
            not ctx.global_ctx.assume_content_initialization_possible
            and ctx.attacker_favors_equal(v.method, self.method)
            and (
                ctx.attacker_favors_equal(state, _S.UNINITIALIZED)
                or ctx.attacker_favors_equal(state, _S.UNKNOWN)
            )
            and ctx.attacker_favors_equal(v.address, self.content_address)
            and self._accessible(ctx)
        )

    def _next(self, ctx: Any) -> Violation:
        v = ctx.current_violation.clone_violation()
        self._set_content_state(v)
        v.address = self.content_address
        return v


class InitializeSourceContentPrimitive(_InitializeContentPrimitive):
    method = MemoryAccessMethod.READ
    symbol_name = "initialize_source_content"

    def __init__(
        self,
        name: str = "initialize content at address of read",
        source_address: Optional[MemoryAddress] = None,
        new_content_state: MemoryAccessParameterState = _S.CONTROLLED,
        constraint: Optional[Constraint] = None,
        on_success: Optional[OnSuccess] = None,
    ) -> None:
        super().__init__(name, source_address, new_content_state, constraint, on_success)

    def _accessible(self, ctx: Any) -> bool:
        return c.can_read_memory_at_address(ctx, self.content_address)


class InitializeExecutableContentPrimitive(_InitializeContentPrimitive):
    method = MemoryAccessMethod.EXECUTE
    symbol_name = "initialize_executable_content"

    def __init__(
        self,
        name: str = "initialize content at address of executed code",
        code_address: Optional[MemoryAddress] = None,
        new_content_state: MemoryAccessParameterState = _S.CONTROLLED,
        constraint: Optional[Constraint] = None,
        on_success: Optional[OnSuccess] = None,
    ) -> None:
        super().__init__(name, code_address, new_content_state, constraint, on_success)

    def _accessible(self, ctx: Any) -> bool:
        return c.can_execute_memory_at_address(ctx, self.content_address)


class InitializeDestinationContentPrimitive(_InitializeContentPrimitive):
    method = MemoryAccessMethod.WRITE
    symbol_name = "initialize_destination_content"

    def __init__(
        self,
        name: str = "initialize content at destination address of write",
        destination_address: Optional[MemoryAddress] = None,
        new_content_state: MemoryAccessParameterState = _S.CONTROLLED,
        constraint: Optional[Constraint] = None,
        on_success: Optional[OnSuccess] = None,
    ) -> None:
        super().__init__(name, destination_address, new_content_state, constraint, on_success)

    def _content_state(self, v: Violation) -> MemoryAccessParameterState:
        return v.content_dst_state

    def _set_content_state(self, v: Violation) -> None:
        v.content_dst_state = self.new_content_state

    def _accessible(self, ctx: Any) -> bool:
        return c.can_corrupt_memory_at_address(ctx, self.content_address)


class CodeExecutionPrimitive(ExploitationPrimitive):
    """Execute to execute: run code found at ``code_address``."""

    def __init__(
        self,
        name: str = "execute code",
        code_address: Optional[MemoryAddress] = None,
        constraint: Optional[Constraint] = None,
        next_violation: Optional[NextViolation] = None,
        on_success: Optional[OnSuccess] = None,
    ) -> None:
        super().__init__(ExploitationPrimitiveType.EXECUTE_TO_EXECUTE, "code_execution", name)
        self.code_address = code_address
        self.constraints.append((f"execute findable code at {code_address}", self._guard))
        self.update(constraint, next_violation, on_success)

    def _guard(self, ctx: Any) -> bool:
        v = ctx.current_violation
        return (
            ctx.attacker_favors_equal(v.method, MemoryAccessMethod.EXECUTE)
            and ctx.attacker_favors_equal(v.address, self.code_address)
            and c.can_find_address(ctx, self.code_address)
            and c.can_execute_memory_at_address(ctx, self.code_address)
        )

    @property
    def descriptor(self) -> str:
        return f"Execute code via {self.name}"


# ── Transitions between access methods ────────────────────────────────


class ReadToReadPrimitive(ReadPrimitive):
    """Content read from ``address`` supplies ``parameter`` of another read."""

    def __init__(
        self,
        parameter: MemoryAccessParameter,
        address: MemoryAddress,
        name: Optional[str] = None,
        constraint: Optional[Constraint] = None,
        next_violation: Optional[NextViolation] = None,
        on_success: Optional[OnSuccess] = None,
    ) -> None:
        super().__init__(
            ExploitationPrimitiveType.READ_TO_READ,
            name or f"read content from '{address}' that is used as '{parameter.value}' of read",
            address,
        )
        self.parameter = parameter
        self.next_violation = self._next
        self.update(constraint, next_violation, on_success)

    def _next(self, ctx: Any) -> Violation:
        v = ctx.current_violation.new_transitive_violation(
            MemoryAccessMethod.READ,
            f"read via content derived from '{self.read_address}'",
        )
        self.inherit_parameter_state(ctx.current_violation, v)
        ctx.attacker_favors_assume_true(AssumptionName.CAN_TRIGGER_MEMORY_READ)
        return v

    def inherit_parameter_state(self, source: Violation, dest: Violation) -> None:
        dest.inherit_parameter_state_from_content(source, self.parameter)

    @property
    def descriptor(self) -> str:
        return f"{self.primitive_type.value} with controlled parameter {self.parameter.value}"


class ReadToWritePrimitive(ReadPrimitive):
    """Content read from ``address`` supplies ``parameter`` of a write."""

    def __init__(
        self,
        parameter: MemoryAccessParameter,
        address: Optional[MemoryAddress] = None,
        constraint: Optional[Constraint] = None,
        next_violation: Optional[NextViolation] = None,
        on_success: Optional[OnSuccess] = None,
    ) -> None:
        if address is None:
            address = parameter.memory_address(MemoryAccessMethod.WRITE)
        super().__init__(
            ExploitationPrimitiveType.READ_TO_WRITE,
            f"read content from '{address}' that is used as '{parameter.value}' of write",
            address,
        )
        self.parameter = parameter
        self.next_violation = self._next
        self.update(constraint, next_violation, on_success)

    def _next(self, ctx: Any) -> Violation:
        v = ctx.current_violation.new_transitive_violation(
            MemoryAccessMethod.WRITE,
            f"write via content derived from '{self.read_address}'",
        )
        self.inherit_parameter_state(ctx.current_violation, v)
        ctx.attacker_favors_assume_true(AssumptionName.CAN_TRIGGER_MEMORY_WRITE)
        return v

    def inherit_parameter_state(self, source: Violation, dest: Violation) -> None:
        dest.inherit_parameter_state_from_content(source, self.parameter)

    @property
    def descriptor(self) -> str:
        return f"{self.primitive_type.value} with controlled parameter {self.parameter.value}"


class ReadToExecutePrimitive(ReadPrimitive):
    """Content read from ``address`` becomes the base of an execute."""

    def __init__(
        self,
        address: Optional[MemoryAddress] = None,
        control_transfer_method: Optional[ControlTransferMethod] = None,
        name: Optional[str] = None,
        constraint: Optional[Constraint] = None,
        next_violation: Optional[NextViolation] = None,
        on_success: Optional[OnSuccess] = None,
    ) -> None:
        super().__init__(
            ExploitationPrimitiveType.READ_TO_EXECUTE,
            name or "read content that is used as base of execute",
            address,
        )
        self.control_transfer_method = control_transfer_method
        self.next_violation = self._next
        self.constraints.append((
            f"read leads to control transfer via {control_transfer_method.value if control_transfer_method else None}",
            lambda ctx: ctx.attacker_favors_equal(
                ctx.current_violation.control_transfer_method, self.control_transfer_method
            ),
        ))
        self.update(constraint, next_violation, on_success)

    def _next(self, ctx: Any) -> Violation:
        current = ctx.current_violation
        v = current.new_transitive_violation(
            MemoryAccessMethod.EXECUTE,
            "execute with controlled base",
            base_state=current.content_src_state,
            content_src_state=_S.UNKNOWN,
            content_dst_state=_S.NONEXISTENT,
            displacement_state=_S.NONEXISTENT,
            extent_state=_S.NONEXISTENT,
        )
        v.inherit_parameter_state_from_content(current)
        ctx.attacker_favors_assume_true(AssumptionName.CAN_TRIGGER_MEMORY_EXECUTE)
        return v

    def inherit_parameter_state(self, source: Violation, dest: Violation) -> None:
        dest.inherit_parameter_state_from_content(source, MemoryAccessParameter.BASE)

    @property
    def descriptor(self) -> str:
        method = self.control_transfer_method.value if self.control_transfer_method else None
        return f"{self.primitive_type.value} via control transfer method {method}"


class WriteToReadPrimitive(WritePrimitive):
    """Content written to ``write_address`` supplies ``parameter`` of a read."""

    def __init__(
        self,
        parameter: MemoryAccessParameter,
        write_address: Optional[MemoryAddress] = None,
        name: Optional[str] = None,
        constraint: Optional[Constraint] = None,
        next_violation: Optional[NextViolation] = None,
        on_success: Optional[OnSuccess] = None,
    ) -> None:
        if write_address is None:
            write_address = parameter.memory_address(MemoryAccessMethod.READ)
        super().__init__(
            ExploitationPrimitiveType.WRITE_TO_READ,
            name or f"write content to '{write_address}' that is used as '{parameter.value}' of read",
            write_address,
        )
        self.parameter = parameter
        self.next_violation = self._next
        self.on_success.append(self._assume_read_triggered)
        self.update(constraint, next_violation, on_success)

    def _next(self, ctx: Any) -> Violation:
        v = ctx.current_violation.new_transitive_violation(
            MemoryAccessMethod.READ,
            f"read using content derived from '{self.write_address}'",
        )
        self.inherit_parameter_state(ctx.current_violation, v)
        v.address = self.write_address
        return v

    @staticmethod
    def _assume_read_triggered(ctx: Any, v: Violation) -> None:
        ctx.attacker_favors_assume_true(AssumptionName.CAN_TRIGGER_MEMORY_READ)

    def inherit_parameter_state(self, source: Violation, dest: Violation) -> None:
        dest.inherit_parameter_state_from_content(source, self.parameter)

    @property
    def descriptor(self) -> str:
        return f"{self.primitive_type.value} with corrupted parameter {self.parameter.value}"


class WriteToExecutePrimitive(WritePrimitive):
    """Corrupt writable code that is later executed."""

    def __init__(self) -> None:
        super().__init__(
            ExploitationPrimitiveType.WRITE_TO_EXECUTE,
            "write to content of execute",
            ADDRESS_OF_WRITABLE_CODE,
        )
        self.update(
            constraint=(
                "attacker can trigger execution of the corrupted code",
                lambda ctx: ctx.attacker_favors_assume_true(AssumptionName.CAN_TRIGGER_MEMORY_EXECUTE),
            ),
            next_violation=self._next,
        )

    def _next(self, ctx: Any) -> Violation:
        current = ctx.current_violation
        v = current.new_transitive_violation(
            MemoryAccessMethod.EXECUTE,
            "execute with corrupted content",
            base_state=_S.UNKNOWN,
            content_src_state=current.content_src_state,
            content_dst_state=_S.NONEXISTENT,
            displacement_state=_S.NONEXISTENT,
            extent_state=_S.NONEXISTENT,
        )
        self.inherit_parameter_state(current, v)
        return v

    def inherit_parameter_state(self, source: Violation, dest: Violation) -> None:
        dest.inherit_parameter_state_from_content(source, MemoryAccessParameter.CONTENT)

    @property
    def descriptor(self) -> str:
        return f"{self.primitive_type.value} @ {self.write_address}"
