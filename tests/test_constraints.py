import pytest

from vexsim.core.errors import ConstraintNotSatisfied, UnsupportedOperation
from vexsim.profiles import builtin
from vexsim.profiles.enums import (
    ADDRESS_OF_STACK_RETURN_ADDRESS,
    USER_IMAGE_BASE_REGIONS,
    MemoryAccessMethod,
    MemoryAccessParameterState,
    MemoryAddressingMode,
    MemoryContentDataType,
    MemoryRegion,
    MemoryRegionType,
    address,
)
from vexsim.profiles.target import Application, OperatingSystem, Target, create_targets
from vexsim.profiles.violation import Violation
from vexsim.simulation import constraints as c
from vexsim.simulation.assumption import Assumption, AssumptionName
from vexsim.simulation.context import SimulationMode

_S = MemoryAccessParameterState


def _windows7_ie9():
    return create_targets(
        [builtin.get_hardware("x86_pae")],
        [builtin.get_operating_system("windows7")],
        [builtin.get_application("ie9")],
        [builtin.get_violation("stack_buffer_overrun")],
    )[0]


# ── Address discovery ─────────────────────────────────────────────────


def test_find_address_uses_region_entropy(make_context):
    os = OperatingSystem()
    os.memory_region_aslr_entropy_bits[MemoryRegion.USER_PROCESS_HEAP] = 5
    ctx = make_context(Target(operating_system=os))

    assert c.can_find_address(ctx, address(MemoryContentDataType.CODE, MemoryRegionType.HEAP))
    assert ctx.exploitability == pytest.approx(1 / 32)

    # The answer is cached.
    c.can_find_address(ctx, address(MemoryContentDataType.CODE, MemoryRegionType.HEAP))
    assert ctx.exploitability == pytest.approx(1 / 32)


def test_find_address_takes_weakest_region(make_context):
    os = OperatingSystem()
    os.memory_region_aslr_entropy_bits[MemoryRegion.USER_EXE_IMAGE_BASE] = 8
    os.memory_region_aslr_entropy_bits[MemoryRegion.USER_DLL_IMAGE_BASE] = 3
    ctx = make_context(Target(operating_system=os))

    c.can_find_address(ctx, address(MemoryContentDataType.CODE, MemoryRegionType.IMAGE_DATA_SEGMENT))
    assert ctx.exploitability == pytest.approx(1 / 8)


def test_sprayable_heap_address_is_always_found(make_context):
    os = OperatingSystem()
    os.memory_region_aslr_entropy_bits[MemoryRegion.USER_PROCESS_HEAP] = 5
    ctx = make_context(Target(operating_system=os, application=Application(can_initialize_content_via_heap_spray=True)))

    c.can_find_address(ctx, address(MemoryContentDataType.FUNCTION_POINTER, MemoryRegionType.HEAP))
    assert ctx.exploitability == 1.0


def test_unmappable_address_cannot_be_found(make_context):
    ctx = make_context()
    null_data = address(MemoryContentDataType.DATA, MemoryRegionType.NULL)
    with pytest.raises(ConstraintNotSatisfied):
        c.can_find_address(ctx, null_data)
    assert ctx.failed
    assert ctx.has_assumption(Assumption.can_find_address(null_data))


def test_map_address_to_memory_regions(make_context):
    ctx = make_context()
    any_data = address(MemoryContentDataType.DATA)
    assert c.map_address_to_memory_regions(ctx, any_data) == [
        MemoryRegion.USER_THREAD_STACK,
        MemoryRegion.USER_PROCESS_HEAP,
    ]
    image = address(MemoryContentDataType.CODE, MemoryRegionType.IMAGE_CODE_SEGMENT)
    assert c.map_address_to_memory_regions(ctx, image) == list(USER_IMAGE_BASE_REGIONS)
    with pytest.raises(UnsupportedOperation):
        c.map_address_to_memory_regions(ctx, address(MemoryContentDataType.DATA, MemoryRegionType.NULL))


def test_map_address_rejects_kernel_applications(make_context):
    ctx = make_context(Target(application=Application(kernel_application=True)))
    with pytest.raises(UnsupportedOperation):
        c.map_address_to_memory_regions(ctx, ADDRESS_OF_STACK_RETURN_ADDRESS)


# ── Memory access ─────────────────────────────────────────────────────


def test_addressing_mode(make_context):
    relative = make_context(Target(violation=Violation(
        method=MemoryAccessMethod.WRITE,
        base_state=_S.FIXED,
        addressing_mode=MemoryAddressingMode.RELATIVE,
    )))
    assert c.is_relative(relative)

    controlled = make_context(Target(violation=Violation(
        method=MemoryAccessMethod.WRITE,
        base_state=_S.CONTROLLED,
        addressing_mode=MemoryAddressingMode.RELATIVE,
    )))
    assert c.is_absolute(controlled)


def test_user_violation_cannot_corrupt_kernel_memory(make_context):
    ctx = make_context(Target(violation=Violation(method=MemoryAccessMethod.WRITE)))
    with pytest.raises(ConstraintNotSatisfied):
        c.can_corrupt_memory_at_address(ctx, address(MemoryContentDataType.DATA, MemoryRegionType.NULL))


def test_corrupt_memory_is_memoized(make_context):
    ctx = make_context(Target(violation=Violation(method=MemoryAccessMethod.WRITE)))
    assert c.can_corrupt_memory_at_address(ctx, ADDRESS_OF_STACK_RETURN_ADDRESS)
    assert ctx.is_assumed_true(Assumption.can_corrupt_memory_at_address(ADDRESS_OF_STACK_RETURN_ADDRESS))
    assert ctx.is_assumed_true(Assumption.can_position_at_desired_absolute_address(ADDRESS_OF_STACK_RETURN_ADDRESS))


def test_stack_cookie_guess_probability(make_context):
    ctx = make_context(Target(violation=Violation(
        method=MemoryAccessMethod.WRITE,
        function_stack_protection_enabled=True,
        function_stack_protection_entropy_bits=4,
    )))
    assert c.can_determine_stack_protection_cookie(ctx)
    assert ctx.exploitability == pytest.approx(1 / 16)


# ── Mitigations ───────────────────────────────────────────────────────


def test_safeseh_bypass_requires_windows(make_context):
    ctx = make_context()
    assert not c.can_bypass_safeseh(ctx)
    assert not c.is_stack_seh_used(ctx)


def test_safeseh_bypass_per_mode(make_context):
    attack = make_context(_windows7_ie9())
    assert c.is_stack_seh_used(attack)
    assert c.can_bypass_safeseh(attack)
    assert attack.is_assumed_true(AssumptionName.CAN_BYPASS_SAFE_SEH)

    defense = make_context(_windows7_ie9(), modes=[SimulationMode.FAVOR_DEFENSE])
    assert not c.can_bypass_safeseh(defense)
    assert defense.failed


def test_execute_data_not_modelled_for_kernel(make_context):
    ctx = make_context(Target(application=Application(kernel_application=True)))
    with pytest.raises(UnsupportedOperation):
        c.can_execute_data(ctx)


def test_execute_data_when_nx_unsupported(make_context):
    assert c.can_execute_data(make_context())


def test_heap_spray_follows_application(make_context):
    assert c.can_initialize_content_via_heap_spray(make_context())
    no_spray = make_context(Target(application=Application(can_initialize_content_via_heap_spray=False)))
    assert not c.can_initialize_content_via_heap_spray(no_spray)
