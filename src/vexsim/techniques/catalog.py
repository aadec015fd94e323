"""
techniques.catalog: Exploitation techniques.

A technique contributes one or more transitions to a ``Simulation``.  The
first step of a multi-step technique is registered as a root transition,
so the simulation can derive the technique's chain on its own.

``all_techniques()`` returns the full catalog in registration order.
"""

from __future__ import annotations

from typing import Any, List

from ..core.errors import UnsupportedOperation
from ..profiles.enums import (
    ADDRESS_OF_ATTACKER_CONTROLLED_CODE,
    ADDRESS_OF_ATTACKER_CONTROLLED_DATA,
    ADDRESS_OF_NTDLL_IMAGE_BASE,
    ADDRESS_OF_STACK_FRAME_POINTER,
    ADDRESS_OF_STACK_PROTECTION_COOKIE,
    ADDRESS_OF_STACK_RETURN_ADDRESS,
    ADDRESS_OF_STACK_SEH_HANDLER,
    ROP_GADGET_CODE_ADDRESSES,
    WRITABLE_REGION_TYPES,
    ControlTransferMethod,
    MemoryAccessMethod,
    MemoryAccessParameter,
    MemoryAccessParameterState,
    MemoryAddress,
    MemoryAddressingMode,
    MemoryContentDataType,
    MemoryRegion,
    MemoryRegionType,
    MitigationPolicy,
    address,
)
from ..profiles.violation import Violation
from ..simulation import constraints as c
from ..simulation.assumption import Assumption, AssumptionName
from .primitives import (
    CodeExecutionPrimitive,
    ExploitationPrimitive,
    InitializeDestinationContentPrimitive,
    InitializeExecutableContentPrimitive,
    InitializeSourceContentPrimitive,
    ReadToExecutePrimitive,
    ReadToReadPrimitive,
    ReadToWritePrimitive,
    WriteToExecutePrimitive,
    WriteToReadPrimitive,
)

_A = AssumptionName
_D = MemoryContentDataType
_S = MemoryAccessParameterState

ADDRESS_OF_IMAGE_CODE = address(_D.CODE, MemoryRegionType.IMAGE_CODE_SEGMENT)


class ExploitationTechnique:
    """A named way of getting from one violation to another."""

    name: str = "unknown"
    symbol: str = "unknown"

    def add_transitions_to_simulation(self, simulation: Any) -> None:
        raise NotImplementedError

    def __str__(self) -> str:
        return self.symbol

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.symbol!r})"


class SimpleTechnique(ExploitationTechnique):
    """A technique made of exactly one primitive."""

    def __init__(self, primitive: ExploitationPrimitive) -> None:
        self.primitive = primitive
        self.name = primitive.name
        self.symbol = primitive.symbol

    def add_transitions_to_simulation(self, simulation: Any) -> None:
        simulation.add_transition(self, self.primitive)


def _stack_cookie_intact(ctx: Any) -> bool:
    """
    The access leaves the stack protection cookie untouched.  An access
    that cannot reach the cookie at all fails the transition.
    """
    return not c.can_corrupt_memory_at_address(ctx, ADDRESS_OF_STACK_PROTECTION_COOKIE)


def _execute_arbitrary_code(content_state: MemoryAccessParameterState, name: str = "execute arbitrary code"):
    def next_violation(ctx: Any) -> Violation:
        return ctx.current_violation.new_transitive_violation(
            MemoryAccessMethod.EXECUTE,
            name=name,
            base_state=_S.CONTROLLED,
            content_src_state=content_state,
        )

    return next_violation


# ── Stack ─────────────────────────────────────────────────────────────


class CorruptStackReturnAddress(ExploitationTechnique):
    name = "stack return address overwrite"
    symbol = "stack_return_address_overwrite"

    def add_transitions_to_simulation(self, simulation: Any) -> None:
        def read_return_address(ctx: Any, v: Violation) -> None:
            v.name = "read return address from stack"
            v.address = ADDRESS_OF_STACK_RETURN_ADDRESS
            v.control_transfer_method = ControlTransferMethod.FUNCTION_RETURN
            v.addressing_mode = MemoryAddressingMode.ABSOLUTE

        simulation.add_root_transition(
            self,
            WriteToReadPrimitive(
                MemoryAccessParameter.CONTENT,
                name="corrupt return address on stack",
                write_address=ADDRESS_OF_STACK_RETURN_ADDRESS,
                on_success=read_return_address,
            ),
        )

        def can_return(ctx: Any) -> bool:
            # The function must return, and the stack protection check must
            # either be absent, untouched or defeated.
            return ctx.attacker_favors_assume_true(_A.CAN_TRIGGER_FUNCTION_RETURN) and (
                ctx.attacker_favors_equal(ctx.current_violation.function_stack_protection_enabled, False)
                or _stack_cookie_intact(ctx)
                or c.can_determine_stack_protection_cookie(ctx)
            )

        def execute_return_address(ctx: Any, v: Violation) -> None:
            v.name = "execute from return address"

        simulation.add_transition(
            self,
            ReadToExecutePrimitive(
                ADDRESS_OF_STACK_RETURN_ADDRESS,
                control_transfer_method=ControlTransferMethod.FUNCTION_RETURN,
                name="return from function with corrupted return address",
                constraint=("function returns past the stack protection check", can_return),
                on_success=execute_return_address,
            ),
        )


class CorruptStackFramePointer(ExploitationTechnique):
    name = "stack frame pointer overwrite"
    symbol = "stack_frame_pointer_overwrite"

    def add_transitions_to_simulation(self, simulation: Any) -> None:
        def read_frame_pointer(ctx: Any, v: Violation) -> None:
            v.address = ADDRESS_OF_STACK_FRAME_POINTER
            v.name = "read frame pointer from stack"

        simulation.add_root_transition(
            self,
            WriteToReadPrimitive(
                MemoryAccessParameter.CONTENT,
                ADDRESS_OF_STACK_FRAME_POINTER,
                name="corrupt stack frame pointer leading to function return",
                constraint=("x86 application", lambda ctx: ctx.target.is_x86_application()),
                on_success=read_frame_pointer,
            ),
        )

        def can_return(ctx: Any) -> bool:
            return ctx.attacker_favors_assume_true(_A.CAN_TRIGGER_FUNCTION_RETURN) and (
                _stack_cookie_intact(ctx) or c.can_determine_stack_protection_cookie(ctx)
            )

        def restore_stack_pointer(ctx: Any, v: Violation) -> None:
            v.name = "restore stack pointer"
            v.address = ADDRESS_OF_STACK_RETURN_ADDRESS
            v.control_transfer_method = ControlTransferMethod.FUNCTION_RETURN
            v.addressing_mode = MemoryAddressingMode.ABSOLUTE

        simulation.add_transition(
            self,
            ReadToReadPrimitive(
                MemoryAccessParameter.BASE,
                ADDRESS_OF_STACK_FRAME_POINTER,
                name="restore corrupted frame pointer and return from child function",
                constraint=("child function returns past the stack protection check", can_return),
                on_success=restore_stack_pointer,
            ),
        )


class CorruptStackStructuredExceptionHandler(ExploitationTechnique):
    name = "stack seh overwrite"
    symbol = "stack_seh_overwrite"

    def add_transitions_to_simulation(self, simulation: Any) -> None:
        def read_handler(ctx: Any, v: Violation) -> None:
            v.name = "read exception handler"
            v.addressing_mode = MemoryAddressingMode.ABSOLUTE
            v.address = ADDRESS_OF_STACK_SEH_HANDLER

        simulation.add_root_transition(
            self,
            WriteToReadPrimitive(
                MemoryAccessParameter.CONTENT,
                ADDRESS_OF_STACK_SEH_HANDLER,
                name="corrupt SEH handler",
                constraint=(
                    "x86 Windows application that can raise an exception",
                    lambda ctx: (
                        ctx.target.operating_system.is_windows()
                        and ctx.target.is_x86_application()
                        and c.can_trigger_exception(ctx)
                    ),
                ),
                on_success=read_handler,
            ),
        )

        def call_handler(ctx: Any, v: Violation) -> None:
            v.name = "transfer control to exception handler"
            # Finding ntdll implies finding image code.
            if ctx.has_assumption(Assumption.can_find_address(ADDRESS_OF_NTDLL_IMAGE_BASE)):
                ctx.assume(Assumption.can_find_address(ADDRESS_OF_IMAGE_CODE))

        simulation.add_transition(
            self,
            ReadToExecutePrimitive(
                ADDRESS_OF_STACK_SEH_HANDLER,
                ControlTransferMethod.INDIRECT_FUNCTION_CALL,
                name="call corrupted handler via exception",
                constraint=(
                    "SafeSEH and SEHOP can be bypassed",
                    lambda ctx: c.can_bypass_safeseh(ctx) and c.can_bypass_sehop(ctx),
                ),
                on_success=call_handler,
            ),
        )


# ── Region independent ────────────────────────────────────────────────


class CorruptFunctionPointer(ExploitationTechnique):
    name = "function pointer overwrite"
    symbol = "function_pointer_overwrite"

    def add_transitions_to_simulation(self, simulation: Any) -> None:
        def call_through_pointer(ctx: Any, v: Violation) -> None:
            v.name = "call through function pointer"
            v.control_transfer_method = ControlTransferMethod.INDIRECT_FUNCTION_CALL
            v.content_data_type = _D.FUNCTION_POINTER
            v.addressing_mode = MemoryAddressingMode.ABSOLUTE

        for region in WRITABLE_REGION_TYPES:
            simulation.add_root_transition(
                self,
                WriteToReadPrimitive(
                    MemoryAccessParameter.CONTENT,
                    address(_D.FUNCTION_POINTER, region),
                    name=f"corrupt function pointer stored in {region.value}",
                    on_success=call_through_pointer,
                ),
            )

        simulation.add_root_transition(
            self,
            ReadToExecutePrimitive(
                address(_D.FUNCTION_POINTER),
                ControlTransferMethod.INDIRECT_FUNCTION_CALL,
                name="call through function pointer",
                constraint=(
                    "attacker can trigger the call",
                    lambda ctx: ctx.attacker_favors_assume_true(_A.CAN_TRIGGER_FUNCTION_POINTER_CALL),
                ),
            ),
        )


class CorruptCppObjectVirtualTablePointer(ExploitationTechnique):
    name = "corrupt C++ object virtual table pointer"
    symbol = "corrupt_cpp_object_vtable_ptr"

    def add_transitions_to_simulation(self, simulation: Any) -> None:
        def in_cpp_object(ctx: Any) -> bool:
            return ctx.attacker_favors_equal(ctx.current_violation.content_container_data_type, _D.CPP_OBJECT)

        def read_vtable_pointer(ctx: Any, v: Violation) -> None:
            v.name = "read corrupted virtual table pointer"
            v.content_data_type = _D.CPP_VIRTUAL_TABLE_POINTER
            v.addressing_mode = MemoryAddressingMode.ABSOLUTE

        def read_virtual_method(ctx: Any, v: Violation) -> None:
            v.name = "read virtual method address from virtual table"
            v.content_data_type = _D.CPP_VIRTUAL_TABLE
            v.control_transfer_method = ControlTransferMethod.VIRTUAL_METHOD_CALL
            v.addressing_mode = MemoryAddressingMode.ABSOLUTE

        for region in WRITABLE_REGION_TYPES:
            vtable_pointer = address(_D.CPP_VIRTUAL_TABLE_POINTER, region)

            simulation.add_root_transition(
                self,
                WriteToReadPrimitive(
                    MemoryAccessParameter.CONTENT,
                    vtable_pointer,
                    name=f"corrupt C++ object virtual table pointer stored in {region.value}",
                    constraint=("content is a C++ object", in_cpp_object),
                    on_success=read_vtable_pointer,
                ),
            )

            simulation.add_root_transition(
                self,
                ReadToReadPrimitive(
                    MemoryAccessParameter.BASE,
                    vtable_pointer,
                    name=f"read virtual table pointer from C++ object stored in {region.value}",
                    constraint=(
                        "content is a C++ object whose virtual method is called",
                        lambda ctx: in_cpp_object(ctx)
                        and ctx.attacker_favors_assume_true(_A.CAN_TRIGGER_VIRTUAL_METHOD_CALL),
                    ),
                    on_success=read_virtual_method,
                ),
            )

        def execute_virtual_method(ctx: Any, v: Violation) -> None:
            v.name = "execute virtual method"

        simulation.add_transition(
            self,
            ReadToExecutePrimitive(
                address(_D.CPP_VIRTUAL_TABLE),
                ControlTransferMethod.VIRTUAL_METHOD_CALL,
                name="call virtual method via virtual table",
                constraint=(
                    "attacker can trigger the virtual method call",
                    lambda ctx: ctx.attacker_favors_assume_true(_A.CAN_TRIGGER_VIRTUAL_METHOD_CALL),
                ),
                on_success=execute_virtual_method,
            ),
        )


# ── Code execution ────────────────────────────────────────────────────


class ExecuteControlledDataAsCode(ExploitationTechnique):
    name = "execute attacker controlled data as code"
    symbol = "execute_data_as_code"

    def add_transitions_to_simulation(self, simulation: Any) -> None:
        def executes_payload(ctx: Any, v: Violation) -> None:
            ctx.assume(_A.CAN_EXECUTE_CODE)
            ctx.assume(_A.CAN_EXECUTE_CONTROLLED_CODE)
            ctx.assume(_A.CAN_EXECUTE_DESIRED_CODE)

        simulation.add_root_transition(
            self,
            CodeExecutionPrimitive(
                name="execute attacker controlled data as code",
                code_address=ADDRESS_OF_ATTACKER_CONTROLLED_DATA,
                constraint=(
                    "data is executable and the payload can be found",
                    lambda ctx: (
                        not ctx.is_assumed_true(_A.CAN_EXECUTE_CONTROLLED_CODE)
                        and c.can_execute_data(ctx)
                        and c.can_find_address(ctx, ADDRESS_OF_ATTACKER_CONTROLLED_CODE)
                    ),
                ),
                next_violation=_execute_arbitrary_code(_S.CONTROLLED),
                on_success=executes_payload,
            ),
        )


class ExecuteJITCode(ExploitationTechnique):
    name = "execute payload in JIT code region"
    symbol = "execute_jit_payload"

    def add_transitions_to_simulation(self, simulation: Any) -> None:
        def executes_payload(ctx: Any, v: Violation) -> None:
            ctx.assume(_A.CAN_INITIALIZE_CODE_VIA_JIT)
            ctx.assume(Assumption.can_find_address(ADDRESS_OF_ATTACKER_CONTROLLED_CODE))
            ctx.assume(_A.CAN_EXECUTE_CODE)
            ctx.assume(_A.CAN_EXECUTE_CONTROLLED_CODE)
            ctx.assume(_A.CAN_BYPASS_NX)
            ctx.assume(_A.CAN_EXECUTE_DESIRED_CODE)

        simulation.add_root_transition(
            self,
            CodeExecutionPrimitive(
                name="execute payload in JIT code region",
                code_address=address(_D.CODE, MemoryRegionType.JIT_CODE),
                constraint=(
                    "JIT engine can emit the payload",
                    lambda ctx: (
                        not ctx.is_assumed_true(_A.CAN_EXECUTE_CONTROLLED_CODE)
                        and not ctx.is_assumed_true(_A.CAN_BYPASS_NX)
                        and ctx.attacker_favors_assume_true(_A.IS_JIT_ENGINE_VERSION_KNOWN)
                        and c.can_initialize_code_via_jit(ctx)
                    ),
                ),
                next_violation=_execute_arbitrary_code(_S.CONTROLLED),
                on_success=executes_payload,
            ),
        )


class ExecuteROPPayload(ExploitationTechnique):
    """
    Return oriented programming from gadgets in image code or JIT code.

    Subclasses register one transition per gadget code address.
    """

    def add_transitions_to_simulation(self, simulation: Any) -> None:
        for code_address in ROP_GADGET_CODE_ADDRESSES:
            self.add_transitions_for_address(simulation, code_address)

    def add_transitions_for_address(self, simulation: Any, code_address: MemoryAddress) -> None:
        pass

    @staticmethod
    def base_rop_constraint(code_address: MemoryAddress):
        if code_address.region == MemoryRegionType.IMAGE_CODE_SEGMENT:
            def image_gadgets(ctx: Any) -> bool:
                return (
                    c.can_find_address(ctx, code_address)
                    and ctx.attacker_favors_assume_true(_A.IS_ROP_GADGET_IMAGE_VERSION_KNOWN)
                    and ctx.attacker_favors_assume_true(_A.CAN_FIND_REQUIRED_ROP_GADGETS_IN_IMAGE_CODE)
                    and ctx.attacker_favors_assume_true(_A.CAN_PIVOT_STACK_POINTER)
                    # The pivoted stack lives in attacker controlled data.
                    and c.can_find_address(ctx, ADDRESS_OF_ATTACKER_CONTROLLED_DATA)
                )

            return image_gadgets

        if code_address.region == MemoryRegionType.JIT_CODE:
            def jit_gadgets(ctx: Any) -> bool:
                return (
                    c.can_initialize_code_via_jit(ctx)
                    and c.can_find_address(ctx, code_address)
                    and ctx.attacker_favors_assume_true(_A.IS_JIT_ENGINE_VERSION_KNOWN)
                    and ctx.attacker_favors_assume_true(_A.CAN_FIND_REQUIRED_ROP_GADGETS_IN_JIT_CODE)
                    and ctx.attacker_favors_assume_true(_A.CAN_PIVOT_STACK_POINTER)
                )

            return jit_gadgets

        raise UnsupportedOperation(f"No ROP gadgets at {code_address}")


class StageViaVirtualAllocOrProtect(ExecuteROPPayload):
    name = "execute ROP (stage to VirtualProtect/VirtualAlloc)"
    symbol = "execute_rop_stage_to_virtual_alloc"

    def add_transitions_for_address(self, simulation: Any, code_address: MemoryAddress) -> None:
        gadgets = self.base_rop_constraint(code_address)

        def executes_payload(ctx: Any, v: Violation) -> None:
            ctx.assume(_A.CAN_EXECUTE_CODE)
            ctx.assume(_A.CAN_EXECUTE_CONTROLLED_CODE)
            ctx.assume(Assumption.can_find_address(ADDRESS_OF_ATTACKER_CONTROLLED_DATA))
            ctx.assume(Assumption.can_find_address(ADDRESS_OF_ATTACKER_CONTROLLED_CODE))
            ctx.assume(_A.CAN_BYPASS_NX)
            ctx.assume(_A.CAN_EXECUTE_DESIRED_CODE)

        simulation.add_root_transition(
            self,
            CodeExecutionPrimitive(
                name="execute ROP (stage to VirtualProtect/VirtualAlloc)",
                code_address=code_address,
                constraint=(
                    f"ROP gadgets at {code_address} can make data executable",
                    lambda ctx: (
                        not ctx.is_assumed_true(_A.CAN_EXECUTE_CONTROLLED_CODE)
                        and not c.can_execute_data(ctx)
                        and not ctx.is_assumed_true(_A.CAN_BYPASS_NX)
                        and gadgets(ctx)
                        and ctx.attacker_favors_assume_true(_A.CAN_PROTECT_DATA_AS_CODE)
                    ),
                ),
                next_violation=_execute_arbitrary_code(_S.CONTROLLED),
                on_success=executes_payload,
            ),
        )


class StageViaExecutableHeap(StageViaVirtualAllocOrProtect):
    """Staging through an executable heap is not modelled; registers nothing."""

    symbol = "execute_rop_stage_to_executable_heap"

    def add_transitions_for_address(self, simulation: Any, code_address: MemoryAddress) -> None:
        pass


class StageViaDisableNX(ExecuteROPPayload):
    name = "execute ROP (stage to disable NX for process)"
    symbol = "execute_rop_disable_nx"

    def add_transitions_for_address(self, simulation: Any, code_address: MemoryAddress) -> None:
        gadgets = self.base_rop_constraint(code_address)

        def nx_can_be_disabled(ctx: Any) -> bool:
            app = ctx.target.application
            return (
                not ctx.is_assumed_true(_A.CAN_EXECUTE_CONTROLLED_CODE)
                and not c.can_execute_data(ctx)
                and not ctx.is_assumed_true(_A.CAN_BYPASS_NX)
                and gadgets(ctx)
                and ctx.target.operating_system.is_windows()
                and ctx.target.is_x86_application()
                and ctx.attacker_favors_equal(
                    app.memory_region_nx_policy.get(MemoryRegion.USER_PROCESS_HEAP), MitigationPolicy.ON
                )
                and ctx.attacker_favors_equal(app.nx_permanent, False)
            )

        def disables_nx(ctx: Any, v: Violation) -> None:
            ctx.assume(_A.CAN_EXECUTE_CODE)
            # NX is off for the process from here on.
            ctx.forget_assumption(_A.CAN_EXECUTE_DATA)
            ctx.assume_is_true(_A.CAN_EXECUTE_DATA)
            ctx.assume(Assumption.can_find_address(ADDRESS_OF_ATTACKER_CONTROLLED_DATA))
            ctx.assume(Assumption.can_find_address(ADDRESS_OF_ATTACKER_CONTROLLED_CODE))
            ctx.assume(_A.CAN_BYPASS_NX)

        simulation.add_root_transition(
            self,
            CodeExecutionPrimitive(
                name="execute ROP (stage to disable NX for process)",
                code_address=code_address,
                constraint=(f"ROP gadgets at {code_address} can disable NX", nx_can_be_disabled),
                next_violation=_execute_arbitrary_code(_S.UNKNOWN),
                on_success=disables_nx,
            ),
        )


class PureROP(ExecuteROPPayload):
    name = "execute ROP (pure)"
    symbol = "execute_rop_pure"

    def add_transitions_for_address(self, simulation: Any, code_address: MemoryAddress) -> None:
        gadgets = self.base_rop_constraint(code_address)

        def executes_payload(ctx: Any, v: Violation) -> None:
            ctx.assume(_A.CAN_EXECUTE_CODE)
            ctx.assume(_A.CAN_BYPASS_NX)
            ctx.assume(_A.CAN_EXECUTE_DESIRED_CODE)

        simulation.add_root_transition(
            self,
            CodeExecutionPrimitive(
                name="execute ROP (pure)",
                code_address=code_address,
                constraint=(
                    f"payload written entirely with ROP gadgets at {code_address}",
                    lambda ctx: (
                        not ctx.is_assumed_true(_A.CAN_EXECUTE_CODE)
                        and not ctx.is_assumed_true(_A.CAN_BYPASS_NX)
                        and gadgets(ctx)
                    ),
                ),
                next_violation=_execute_arbitrary_code(_S.FIXED, name="execute existing code"),
                on_success=executes_payload,
            ),
        )


# ── Content initialization ────────────────────────────────────────────


_HEAP_SPRAY_DATA_TYPES = (
    _D.ATTACKER_CONTROLLED_DATA,
    _D.WRITE_BASE_POINTER,
    _D.WRITE_DISPLACEMENT,
    _D.WRITE_CONTENT,
    _D.WRITE_EXTENT,
    _D.READ_BASE_POINTER,
    _D.READ_CONTENT,
    _D.READ_DISPLACEMENT,
    _D.READ_EXTENT,
    _D.FUNCTION_POINTER,
    _D.CPP_VIRTUAL_TABLE_POINTER,
    _D.CPP_VIRTUAL_TABLE,
)

_STACK_LOCAL_DATA_TYPES = (
    _D.WRITE_BASE_POINTER,
    _D.WRITE_DISPLACEMENT,
    _D.WRITE_CONTENT,
    _D.WRITE_EXTENT,
    _D.READ_BASE_POINTER,
    _D.READ_CONTENT,
    _D.READ_DISPLACEMENT,
    _D.READ_EXTENT,
    _D.FUNCTION_POINTER,
    _D.CPP_VIRTUAL_TABLE_POINTER,
)


class HeapSpray(ExploitationTechnique):
    name = "heap spray"
    symbol = "heap_spray"

    def add_transitions_to_simulation(self, simulation: Any) -> None:
        can_spray = ("content can be sprayed onto the heap", c.can_initialize_content_via_heap_spray)

        def sprayed(ctx: Any, v: Violation) -> None:
            ctx.assume(_A.CAN_INITIALIZE_CONTENT_VIA_HEAP_SPRAY)
            ctx.assume(Assumption.can_find_address(ADDRESS_OF_ATTACKER_CONTROLLED_DATA))

        for region in (MemoryRegionType.HEAP, MemoryRegionType.ANY):
            for data_type in _HEAP_SPRAY_DATA_TYPES:
                target = address(data_type, region)
                simulation.add_root_transition(
                    self,
                    InitializeDestinationContentPrimitive(
                        f"heap spray content to init dest {target}",
                        destination_address=target,
                        constraint=can_spray,
                        on_success=sprayed,
                    ),
                )
                simulation.add_root_transition(
                    self,
                    InitializeSourceContentPrimitive(
                        f"heap spray content to init src {target}",
                        source_address=target,
                        constraint=can_spray,
                        on_success=sprayed,
                    ),
                )

        def sprayed_code(ctx: Any, v: Violation) -> None:
            sprayed(ctx, v)
            ctx.assume(Assumption.can_find_address(ADDRESS_OF_ATTACKER_CONTROLLED_CODE))

        # Spraying code only helps where sprayed data is not already executable.
        simulation.add_root_transition(
            self,
            InitializeExecutableContentPrimitive(
                "initialize content with code via heap spray",
                ADDRESS_OF_ATTACKER_CONTROLLED_DATA,
                constraint=(
                    "code can be sprayed onto the heap",
                    lambda ctx: (
                        not c.can_execute_memory_at_address(ctx, ADDRESS_OF_ATTACKER_CONTROLLED_DATA)
                        and c.can_initialize_content_via_heap_spray(ctx)
                    ),
                ),
                on_success=sprayed_code,
            ),
        )


class StackLocalVariableInitialization(ExploitationTechnique):
    """Initializes an uninitialized stack local through an overlapping frame."""

    name = "initialize local variable via overlapping frame"
    symbol = "stack_overlapping_variable_initialization"

    def add_transitions_to_simulation(self, simulation: Any) -> None:
        can_overlap = (
            "a previous frame can initialize the local",
            lambda ctx: ctx.attacker_favors_assume_true(_A.CAN_INITIALIZE_CONTENT_VIA_STACK_OVERLAPPING_LOCAL),
        )

        for data_type in _STACK_LOCAL_DATA_TYPES:
            target = address(data_type, MemoryRegionType.STACK)
            simulation.add_root_transition(
                self,
                InitializeDestinationContentPrimitive(
                    f"Initialize content at destination address ({target}) of write via stack local var initialization",
                    destination_address=target,
                    constraint=can_overlap,
                ),
            )
            simulation.add_root_transition(
                self,
                InitializeSourceContentPrimitive(
                    f"Initialize content at source address ({target}) of read via stack local var initialization",
                    source_address=target,
                    constraint=can_overlap,
                ),
            )


class LoadNonASLRImage(ExploitationTechnique):
    name = "load non-ASLR image"
    symbol = "load_non_aslr_image"

    def add_transitions_to_simulation(self, simulation: Any) -> None:
        def loaded(ctx: Any, v: Violation) -> None:
            ctx.assume(_A.CAN_LOAD_NON_ASLR_IMAGE)

        simulation.add_root_transition(
            self,
            InitializeExecutableContentPrimitive(
                "load non-ASLR image",
                ADDRESS_OF_IMAGE_CODE,
                new_content_state=_S.FIXED,
                constraint=("a non-ASLR image can be loaded", c.can_load_non_aslr_image),
                on_success=loaded,
            ),
        )


class LoadNonASLRNonSafeSEHImage(ExploitationTechnique):
    name = "load non-safeseh image"
    symbol = "load_non_safeseh_image"

    def add_transitions_to_simulation(self, simulation: Any) -> None:
        def loaded(ctx: Any, v: Violation) -> None:
            ctx.assume(_A.CAN_LOAD_NON_ASLR_IMAGE)
            ctx.assume(_A.CAN_LOAD_NON_ASLR_NON_SAFE_SEH_IMAGE)

        simulation.add_root_transition(
            self,
            InitializeExecutableContentPrimitive(
                "load non-ASLR and non-safeSEH image",
                ADDRESS_OF_IMAGE_CODE,
                new_content_state=_S.FIXED,
                constraint=(
                    "a non-ASLR, non-SafeSEH image can be loaded",
                    lambda ctx: c.can_load_non_aslr_image(ctx) and c.can_load_non_safeseh_image(ctx),
                ),
                on_success=loaded,
            ),
        )


# ── Catalog ───────────────────────────────────────────────────────────


_PARAMETERS = (
    MemoryAccessParameter.BASE,
    MemoryAccessParameter.CONTENT,
    MemoryAccessParameter.DISPLACEMENT,
    MemoryAccessParameter.EXTENT,
)


def all_techniques() -> List[ExploitationTechnique]:
    """Every technique, in registration order."""
    techniques: List[ExploitationTechnique] = []

    for region in WRITABLE_REGION_TYPES:
        for parameter in _PARAMETERS:
            if parameter != MemoryAccessParameter.CONTENT:
                techniques.append(SimpleTechnique(
                    ReadToReadPrimitive(parameter, parameter.memory_address(MemoryAccessMethod.READ, region))
                ))
            techniques.append(SimpleTechnique(
                ReadToWritePrimitive(parameter, parameter.memory_address(MemoryAccessMethod.WRITE, region))
            ))
            techniques.append(SimpleTechnique(
                WriteToReadPrimitive(parameter, parameter.memory_address(MemoryAccessMethod.READ, region))
            ))

    techniques += [
        CorruptFunctionPointer(),
        CorruptCppObjectVirtualTablePointer(),
        CorruptStackReturnAddress(),
        CorruptStackFramePointer(),
        CorruptStackStructuredExceptionHandler(),
        HeapSpray(),
        StackLocalVariableInitialization(),
        LoadNonASLRImage(),
        LoadNonASLRNonSafeSEHImage(),
        ExecuteControlledDataAsCode(),
        ExecuteJITCode(),
        StageViaVirtualAllocOrProtect(),
        StageViaExecutableHeap(),
        StageViaDisableNX(),
        PureROP(),
        SimpleTechnique(WriteToExecutePrimitive()),
    ]
    return techniques


def get_technique(symbol: str) -> ExploitationTechnique:
    """Look up one catalog technique by symbol."""
    for technique in all_techniques():
        if technique.symbol == symbol:
            return technique
    valid = sorted({t.symbol for t in all_techniques()})
    raise KeyError(f"Unknown technique '{symbol}'. Valid: {', '.join(valid)}")
