"""
simulation.constraints: Attacker-capability predicates over a context.

Each predicate answers one question about the current path ("can the
attacker corrupt memory at this address?") from the target profiles, the
current violation and the simulation mode, and memoizes the answer as an
assumption of the context.  A predicate whose required fact turns out
impossible raises ``ConstraintNotSatisfied``.
"""

from __future__ import annotations

from typing import Any, List

from ..core.errors import ConstraintNotSatisfied, UnsupportedOperation
from ..profiles.enums import (
    ADDRESS_OF_NTDLL_IMAGE_BASE,
    ADDRESS_OF_STACK_PROTECTION_COOKIE,
    USER_IMAGE_BASE_REGIONS,
    ArchitectureFamily,
    ExecutionDomain,
    MemoryAccessDirection,
    MemoryAccessMethod,
    MemoryAccessParameterState,
    MemoryAddress,
    MemoryAddressingMode,
    MemoryContentDataType,
    MemoryRegion,
    MemoryRegionType,
    policy_is_on,
)
from .assumption import Assumption, AssumptionName

_D = MemoryContentDataType

# Data types an attacker can place at a findable heap address by spraying.
_SPRAYABLE_DATA_TYPES = (
    _D.CPP_VIRTUAL_TABLE_POINTER,
    _D.FUNCTION_POINTER,
    _D.DATA,
    _D.WRITE_BASE_POINTER,
    _D.WRITE_DISPLACEMENT,
    _D.WRITE_EXTENT,
    _D.WRITE_CONTENT,
    _D.READ_BASE_POINTER,
    _D.READ_CONTENT,
    _D.READ_DISPLACEMENT,
    _D.READ_EXTENT,
    _D.ATTACKER_CONTROLLED_DATA,
)


def _outside_execution_domain(ctx: Any, address: MemoryAddress) -> bool:
    """The address lives in a domain the current violation cannot reach."""
    domain = ctx.current_violation.execution_domain
    return (
        (domain is not None and domain == ExecutionDomain.KERNEL and not address.is_kernel_address)
        or (domain != ExecutionDomain.KERNEL and address.is_kernel_address)
    )


# ── Memory access ─────────────────────────────────────────────────────


def can_corrupt_memory_at_address(ctx: Any, address: MemoryAddress) -> bool:
    if address is None:
        return True

    assumption = Assumption.can_corrupt_memory_at_address(address)
    if ctx.is_assumed_true(assumption):
        return True

    if ctx.is_assumed_true(AssumptionName.CAN_CORRUPT_MEMORY_AT_ADDRESS_LIST_COMPLETE):
        can_corrupt = False
    elif _outside_execution_domain(ctx, address):
        can_corrupt = False
    elif is_absolute(ctx):
        can_corrupt = (
            can_position_content_at_absolute_address(ctx, address)
            or can_find_address(ctx, address)
        )
    else:
        can_corrupt = (
            can_position_content_at_relative_address(ctx, address)
            or can_determine_displacement_to_address(ctx, address)
        ) and can_corrupt_memory_at_relative_address(ctx, address)

    assumption.probability = Assumption.boolean_probability(can_corrupt)
    if assumption.probability == 0:
        raise ConstraintNotSatisfied(f"Attacker cannot corrupt memory at {address}.")
    ctx.assume(assumption)
    return True


def can_read_memory_at_address(ctx: Any, address: MemoryAddress) -> bool:
    assumption = Assumption.can_read_memory_at_address(address)
    if ctx.is_assumed_true(assumption):
        return True

    if _outside_execution_domain(ctx, address):
        can_read = False
    elif is_absolute(ctx):
        can_read = (
            not ctx.current_violation.is_base_controlled
            or can_position_content_at_absolute_address(ctx, address)
            or can_find_address(ctx, address)
        )
    else:
        can_read = (
            can_position_content_at_relative_address(ctx, address)
            or can_determine_displacement_to_address(ctx, address)
        )

    assumption.probability = Assumption.boolean_probability(can_read)
    if assumption.probability == 0:
        raise ConstraintNotSatisfied(f"Attacker cannot read memory at {address}.")
    ctx.assume(assumption)
    return True


def can_execute_memory_at_address(ctx: Any, address: MemoryAddress) -> bool:
    if address.data_type == _D.ATTACKER_CONTROLLED_DATA:
        return can_execute_data(ctx)
    return True


def can_position_content_at_absolute_address(ctx: Any, address: MemoryAddress) -> bool:
    assumption = Assumption.can_position_at_desired_absolute_address(address)
    if not ctx.is_assumed_true(assumption):
        ctx.assume(assumption)
    return True


def can_position_content_at_relative_address(ctx: Any, address: MemoryAddress) -> bool:
    assumption = Assumption.can_position_at_desired_relative_address(address)
    if not ctx.is_assumed_true(assumption):
        ctx.assume(assumption)
    return True


def can_corrupt_memory_at_relative_address(ctx: Any, address: MemoryAddress) -> bool:
    return True


def can_determine_displacement_to_address(ctx: Any, address: MemoryAddress) -> bool:
    assumption = Assumption.can_determine_displacement_to_address(address)
    if not ctx.is_assumed_true(assumption):
        ctx.assume(assumption)
    return True


def is_memory_write(ctx: Any) -> bool:
    return ctx.attacker_favors_equal(ctx.current_violation.method, MemoryAccessMethod.WRITE)


def is_absolute(ctx: Any) -> bool:
    v = ctx.current_violation
    if v.is_base_controlled:
        return True
    return ctx.attacker_favors_equal(v.addressing_mode, MemoryAddressingMode.ABSOLUTE)


def is_relative(ctx: Any) -> bool:
    return not is_absolute(ctx)


# ── Stack protection ──────────────────────────────────────────────────


def _cookie_corruption_probability(ctx: Any, assumption: Assumption) -> float:
    v = ctx.current_violation
    if not is_memory_write(ctx):
        return Assumption.boolean_probability(False)
    if ctx.attacker_favors_equal(v.function_stack_protection_enabled, False):
        return Assumption.boolean_probability(False)
    # An absolute write can step over the cookie.
    if is_absolute(ctx):
        return Assumption.boolean_probability(ctx.attacker_favors_false())
    if (
        ctx.attacker_favors_equal(v.direction, MemoryAccessDirection.FORWARD)
        and ctx.attacker_favors_equal(v.addressing_mode, MemoryAddressingMode.RELATIVE)
        and ctx.attacker_favors_equal(v.displacement_state, MemoryAccessParameterState.CONTROLLED)
    ):
        return Assumption.boolean_probability(ctx.attacker_favors_false())
    if (
        ctx.attacker_favors_equal(v.direction, MemoryAccessDirection.REVERSE)
        and ctx.attacker_favors_equal(v.extent_state, MemoryAccessParameterState.CONTROLLED)
    ):
        return Assumption.boolean_probability(ctx.attacker_favors_false())
    return Assumption.boolean_probability(ctx.attacker_favors_false())


def assume_is_stack_protection_cookie_corrupted(ctx: Any) -> bool:
    return ctx.assume_is_true(
        Assumption.can_corrupt_memory_at_address(ADDRESS_OF_STACK_PROTECTION_COOKIE),
        _cookie_corruption_probability,
    )


def can_determine_stack_protection_cookie(ctx: Any) -> bool:
    """Guessing the cookie succeeds with probability ``1 / 2**entropy``."""
    assumption = Assumption(name=AssumptionName.CAN_DETERMINE_STACK_PROTECTION_COOKIE)
    if ctx.has_assumption(assumption):
        return True
    entropy_bits = ctx.current_violation.function_stack_protection_entropy_bits or 0
    assumption.probability = 1 / 2 ** entropy_bits
    ctx.assume(assumption)
    return True


def can_trigger_exception(ctx: Any) -> bool:
    return ctx.attacker_favors_assume_true(AssumptionName.CAN_TRIGGER_EXCEPTION)


# ── Address discovery ─────────────────────────────────────────────────


def map_address_to_memory_regions(ctx: Any, address: MemoryAddress) -> List[MemoryRegion]:
    """Concrete user-mode regions that may hold ``address``."""
    if ctx.target.application.kernel_application:
        raise UnsupportedOperation("Region mapping is not defined for kernel applications")

    region = address.region
    if region in (
        MemoryRegionType.IMAGE_CODE_SEGMENT_NTDLL,
        MemoryRegionType.IMAGE_CODE_SEGMENT,
        MemoryRegionType.IMAGE_DATA_SEGMENT,
    ):
        return list(USER_IMAGE_BASE_REGIONS)
    if region == MemoryRegionType.STACK:
        return [MemoryRegion.USER_THREAD_STACK]
    if region == MemoryRegionType.HEAP:
        return [MemoryRegion.USER_PROCESS_HEAP]
    if region == MemoryRegionType.JIT_CODE:
        return [MemoryRegion.USER_JIT_CODE]
    if region == MemoryRegionType.ANY:
        return [MemoryRegion.USER_THREAD_STACK, MemoryRegion.USER_PROCESS_HEAP]
    raise UnsupportedOperation(f"No memory regions for {address}")


def _pseudo_address_findable(ctx: Any, address: MemoryAddress) -> bool:
    """Addresses the attacker can find without defeating ASLR."""
    app = ctx.target.application
    if address.region == MemoryRegionType.IMAGE_CODE_SEGMENT:
        return ctx.is_assumed_true(AssumptionName.CAN_LOAD_NON_ASLR_IMAGE)
    if address.region in (MemoryRegionType.HEAP, MemoryRegionType.ANY):
        if address.data_type in _SPRAYABLE_DATA_TYPES:
            return ctx.attacker_favors_equal(app.can_initialize_content_via_heap_spray, True)
        if address.data_type == _D.ATTACKER_CONTROLLED_CODE:
            return ctx.attacker_favors_equal(app.can_initialize_code_via_jit, True) or (
                can_execute_data(ctx)
                and ctx.attacker_favors_equal(app.can_initialize_content_via_heap_spray, True)
            )
        if address.data_type == _D.CODE:
            return False
        raise UnsupportedOperation(f"Find address on {address} is not supported")
    return False


def can_find_address(ctx: Any, address: MemoryAddress) -> bool:
    """
    Probability ``1 / 2**bits`` where ``bits`` is the lowest ASLR entropy
    among the regions that may hold the address.
    """
    assumption = Assumption.can_find_address(address)
    if ctx.has_assumption(assumption):
        return True

    if _pseudo_address_findable(ctx, address):
        assumption.probability = 1.0
    else:
        try:
            regions = map_address_to_memory_regions(ctx, address)
        except UnsupportedOperation:
            regions = []
        if regions:
            entropy = ctx.target.operating_system.memory_region_aslr_entropy_bits
            min_bits = min(entropy.get(region, 0) for region in regions)
            assumption.probability = 1 / 2 ** min_bits
        else:
            assumption.probability = 0.0

    ctx.assume(assumption)
    if assumption.probability == 0:
        raise ConstraintNotSatisfied(f"Attacker is not able to find the address of {address}.")
    return True


# ── Structured exception handling ─────────────────────────────────────


def is_stack_seh_used(ctx: Any) -> bool:
    target = ctx.target
    return (
        target.operating_system.is_windows()
        and target.hardware.architecture_family in (ArchitectureFamily.I386, ArchitectureFamily.AMD64)
        and target.application.address_bits == 32
    )


def can_bypass_safeseh(ctx: Any) -> bool:
    target = ctx.target
    if not target.operating_system.is_windows() or not target.is_x86_application():
        return False
    existing = ctx.get_assumption(AssumptionName.CAN_BYPASS_SAFE_SEH)
    if existing is not None:
        return ctx.mark_used(existing).is_true

    value = (
        ctx.attacker_favors_equal(policy_is_on(target.operating_system.user_safeseh_policy), False)
        or can_load_non_safeseh_image(ctx)
    )
    ctx.assume(AssumptionName.CAN_BYPASS_SAFE_SEH, Assumption.boolean_probability(value))
    return value


def can_bypass_sehop(ctx: Any) -> bool:
    target = ctx.target
    if not target.operating_system.is_windows() or not target.is_x86_application():
        return False
    existing = ctx.get_assumption(AssumptionName.CAN_BYPASS_SEHOP)
    if existing is not None:
        return ctx.mark_used(existing).is_true

    value = (
        ctx.attacker_favors_equal(policy_is_on(target.application.user_sehop_policy), False)
        or can_find_address(ctx, ADDRESS_OF_NTDLL_IMAGE_BASE)
    )
    ctx.assume(AssumptionName.CAN_BYPASS_SEHOP, Assumption.boolean_probability(value))
    return value


# ── Code execution ────────────────────────────────────────────────────


def can_execute_data(ctx: Any) -> bool:
    app = ctx.target.application
    if app.kernel_application:
        raise UnsupportedOperation("Executing data is not modelled for kernel applications")
    heap_nx = app.memory_region_nx_policy.get(MemoryRegion.USER_PROCESS_HEAP)
    return ctx.is_assumed_true(AssumptionName.CAN_EXECUTE_DATA) or (heap_nx is not None and heap_nx.is_off)


def _cached_truth(ctx: Any, name: AssumptionName) -> Any:
    existing = ctx.get_assumption(name)
    if existing is None:
        return None
    return ctx.mark_used(existing).is_true


def can_load_non_aslr_image(ctx: Any) -> bool:
    cached = _cached_truth(ctx, AssumptionName.CAN_LOAD_NON_ASLR_IMAGE)
    if cached is not None:
        return cached
    app = ctx.target.application
    if app.kernel_application:
        return False
    force_relocation = app.memory_region_aslr_policy.get(MemoryRegion.USER_FORCE_RELOCATED_IMAGE_CODE)
    return ctx.attacker_favors_equal(policy_is_on(force_relocation), False)


def can_load_non_safeseh_image(ctx: Any) -> bool:
    cached = _cached_truth(ctx, AssumptionName.CAN_LOAD_NON_ASLR_NON_SAFE_SEH_IMAGE)
    if cached is not None:
        return cached
    target = ctx.target
    if not target.operating_system.is_windows() or not target.is_x86_application():
        return False
    return ctx.attacker_favors_true()


def can_initialize_content_via_heap_spray(ctx: Any) -> bool:
    cached = _cached_truth(ctx, AssumptionName.CAN_INITIALIZE_CONTENT_VIA_HEAP_SPRAY)
    if cached is not None:
        return cached
    return ctx.attacker_favors_equal(ctx.target.application.can_initialize_content_via_heap_spray, True)


def can_initialize_code_via_jit(ctx: Any) -> bool:
    cached = _cached_truth(ctx, AssumptionName.CAN_INITIALIZE_CODE_VIA_JIT)
    if cached is not None:
        return cached
    return ctx.attacker_favors_equal(ctx.target.application.can_initialize_code_via_jit, True)
