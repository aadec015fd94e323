import json

import pytest

from vexsim.core.errors import UnsupportedOperation
from vexsim.profiles import builtin
from vexsim.profiles.enums import (
    ADDRESS_OF_STACK_RETURN_ADDRESS,
    ExecutionDomain,
    MemoryAccessMethod,
    MemoryAccessParameter,
    MemoryAccessParameterState,
    MemoryAddressingMode,
    MemoryContentDataType,
    MemoryRegionType,
    MitigationPolicy,
    address,
    effective_policy,
    policy_is_on,
)
from vexsim.profiles.target import Application, OperatingSystem, Target, create_targets, load_target
from vexsim.profiles.violation import Violation, generate_base_violations
from vexsim.simulation.assumption import Assumption, AssumptionName

_S = MemoryAccessParameterState
_P = MitigationPolicy


# ── Enums ─────────────────────────────────────────────────────────────


def test_access_method_from_str():
    assert MemoryAccessMethod.from_str("w") == MemoryAccessMethod.WRITE
    assert MemoryAccessMethod.from_str(" Execute ") == MemoryAccessMethod.EXECUTE
    with pytest.raises(ValueError):
        MemoryAccessMethod.from_str("nope")


def test_effective_policy():
    assert effective_policy(_P.ON, _P.OPT_IN) == _P.ON
    assert effective_policy(None, _P.OPT_IN) == _P.OPT_IN
    assert effective_policy(_P.OFF, _P.OPT_OUT) == _P.OFF
    assert effective_policy(_P.ON, _P.OPT_OUT) == _P.ON
    assert effective_policy(_P.OFF, _P.ON) == _P.ON
    assert effective_policy(_P.ON, None) == _P.ON


def test_policy_is_on():
    assert policy_is_on(None) is None
    assert policy_is_on(_P.OPT_IN) is False
    assert policy_is_on(_P.OPT_OUT) is True


def test_parameter_memory_address():
    addr = MemoryAccessParameter.BASE.memory_address(MemoryAccessMethod.WRITE, MemoryRegionType.HEAP)
    assert addr == address(MemoryContentDataType.WRITE_BASE_POINTER, MemoryRegionType.HEAP)
    assert str(addr) == "&heap.write_base_pointer"
    with pytest.raises(UnsupportedOperation):
        MemoryAccessParameter.BASE.memory_address(MemoryAccessMethod.EXECUTE)


def test_implicitly_initialized_addresses():
    assert ADDRESS_OF_STACK_RETURN_ADDRESS.is_implicitly_initialized
    assert not address(MemoryContentDataType.FUNCTION_POINTER, MemoryRegionType.HEAP).is_implicitly_initialized
    assert address(MemoryContentDataType.DATA, MemoryRegionType.NULL).is_kernel_address


# ── Violation ─────────────────────────────────────────────────────────


def test_execute_has_no_displacement_or_extent():
    v = Violation(method=MemoryAccessMethod.EXECUTE, displacement_state=_S.CONTROLLED)
    assert v.displacement_state == _S.NONEXISTENT
    assert v.extent_state == _S.NONEXISTENT
    assert v.addressing_mode == MemoryAddressingMode.ABSOLUTE


def test_read_has_no_destination_content():
    assert Violation(method=MemoryAccessMethod.READ).content_dst_state == _S.NONEXISTENT


def test_symbol():
    assert builtin.get_violation("stack_buffer_overrun").symbol == "w-bf-cc-df-ec"
    v = Violation(method=MemoryAccessMethod.EXECUTE, base_state=_S.CONTROLLED, content_src_state=_S.FIXED)
    assert v.symbol == "x-bc-cf"


def test_address_follows_content_data_type():
    v = Violation(method=MemoryAccessMethod.WRITE)
    assert v.address is None

    v.address = ADDRESS_OF_STACK_RETURN_ADDRESS
    assert v.content_data_type == MemoryContentDataType.STACK_RETURN_ADDRESS
    assert v.base_region_type == MemoryRegionType.STACK
    assert v.address == ADDRESS_OF_STACK_RETURN_ADDRESS

    v.address = None
    assert v.content_data_type is None


def test_clone_is_independent():
    v = builtin.get_violation("use_after_free_cpp_vtable")
    v.add_transitive_violation(Violation(method=MemoryAccessMethod.EXECUTE))

    clone = v.clone_violation()
    assert clone.guid != v.guid
    assert clone.transitive_violations == []
    assert clone.equivalence_class == v.equivalence_class
    assert len(v.transitive_violations) == 1


def test_new_transitive_violation_inherits_context():
    parent = Violation(
        method=MemoryAccessMethod.WRITE,
        content_data_type=MemoryContentDataType.FUNCTION_POINTER,
        execution_domain=ExecutionDomain.USER,
        function_stack_protection_enabled=True,
        function_stack_protection_entropy_bits=8,
    )
    child = parent.new_transitive_violation(MemoryAccessMethod.READ, content_src_state=_S.CONTROLLED)
    assert child.previous_violation is parent
    assert child.execution_domain == ExecutionDomain.USER
    assert child.function_stack_protection_entropy_bits == 8
    assert child.address is None
    assert child.has_previous_violation(parent)


def test_inherit_parameter_state_from_content():
    source = Violation(method=MemoryAccessMethod.WRITE, content_src_state=_S.CONTROLLED)
    read = Violation(method=MemoryAccessMethod.READ)
    read.inherit_parameter_state_from_content(source, MemoryAccessParameter.BASE)
    assert read.base_state == _S.CONTROLLED
    assert read.addressing_mode == MemoryAddressingMode.ABSOLUTE

    other = Violation(method=MemoryAccessMethod.READ)
    other.inherit_parameter_state_from_content(source, MemoryAccessParameter.EXTENT)
    assert other.extent_state == _S.CONTROLLED
    assert other.addressing_mode == MemoryAddressingMode.RELATIVE


def test_generate_base_violations():
    base = generate_base_violations()
    assert len(base) == 256 + 256 + 16
    assert len({v.symbol for v in base}) == len(base)
    assert base[0].symbol == "r-bc-cc-dc-ec"
    assert base[-1].symbol == "x-b?-c?"
    assert sum(1 for v in base if v.method == MemoryAccessMethod.EXECUTE) == 16


# ── Recalibration ─────────────────────────────────────────────────────


def test_execution_domain_follows_application():
    user = Target()
    user.recalibrate()
    assert user.violation.execution_domain == ExecutionDomain.USER

    kernel = Target(application=Application(kernel_application=True))
    kernel.recalibrate()
    assert kernel.violation.execution_domain == ExecutionDomain.KERNEL


@pytest.mark.parametrize("os_symbol, bits", [("windows_xp_sp3", 16), ("windows7", 32)])
def test_stack_protection_inherited_from_os(os_symbol, bits):
    target = create_targets(
        [builtin.get_hardware("x86_pae")],
        [builtin.get_operating_system(os_symbol)],
        [builtin.get_application("ie9")],
        [builtin.get_violation("stack_buffer_overrun")],
    )[0]
    target.recalibrate()
    assert target.violation.function_stack_protection_enabled is True
    assert target.violation.function_stack_protection_entropy_bits == bits


def test_explicit_violation_stack_protection_kept():
    target = Target(violation=Violation(function_stack_protection_enabled=True, function_stack_protection_entropy_bits=4))
    target.recalibrate()
    assert target.violation.function_stack_protection_entropy_bits == 4


def test_ie9_enables_sehop_on_windows7():
    target = create_targets(
        [builtin.get_hardware("x86_pae")],
        [builtin.get_operating_system("windows7")],
        [builtin.get_application("ie9")],
        [builtin.get_violation("stack_buffer_overrun")],
    )[0]
    target.recalibrate()
    assert target.application.user_sehop_policy == _P.ON
    assert target.is_x86_application()


# ── Builtins and target construction ─────────────────────────────────


def test_unknown_builtin_lists_valid_names():
    with pytest.raises(KeyError, match="Valid: stack_buffer_overrun, use_after_free_cpp_vtable"):
        builtin.get_violation("nope")


def test_builtins_are_fresh_instances():
    assert builtin.get_operating_system("windows8") is not builtin.get_operating_system("windows8")


def test_create_targets_cross_product():
    explicit = Assumption(name=AssumptionName.CAN_LOAD_NON_ASLR_IMAGE, probability=0.5)
    targets = create_targets(
        [builtin.get_hardware("x86_pae"), builtin.get_hardware("x64")],
        [builtin.get_operating_system("windows7")],
        [builtin.get_application("ie9"), Application()],
        [builtin.get_violation("stack_buffer_overrun")],
        [explicit],
    )
    assert len(targets) == 4
    assert targets[0].operating_system is not targets[1].operating_system
    assert all(t.initial_assumptions[0].explicit for t in targets)


def test_create_targets_skips_incompatible_applications():
    targets = create_targets(
        [builtin.get_hardware("x86_pae")],
        [OperatingSystem()],
        [builtin.get_application("ie9")],
        [builtin.get_violation("stack_buffer_overrun")],
    )
    assert targets == []


def test_explicit_assumptions_are_not_replaced():
    target = Target()
    target.assume(Assumption(name=AssumptionName.CAN_TRIGGER_EXCEPTION, probability=0.5, explicit=True))
    target.assume_false(AssumptionName.CAN_TRIGGER_EXCEPTION)
    assert target.is_assumed_true(AssumptionName.CAN_TRIGGER_EXCEPTION)

    target.assume_true(AssumptionName.CAN_EXECUTE_DATA)
    target.assume_false(AssumptionName.CAN_EXECUTE_DATA)
    assert not target.is_assumed_true(AssumptionName.CAN_EXECUTE_DATA)
    assert len(target.initial_assumptions) == 2


def test_load_target(tmp_path):
    path = tmp_path / "target.json"
    path.write_text(json.dumps({
        "hardware": "x86_pae",
        "operating_system": "windows7",
        "application": {"symbol": "custom", "can_initialize_code_via_jit": True},
        "violation": {"method": "write", "base_state": "controlled"},
        "assumptions": [{"name": "can_load_non_aslr_image", "probability": 0.5}],
    }))

    target = load_target(path)
    assert target.hardware.symbol == "x86_pae"
    assert target.application.can_initialize_code_via_jit is True
    assert target.violation.symbol == "w-bc-c?-d?-e?"
    assert target.initial_assumptions[0].explicit
    assert target.initial_assumptions[0].probability == 0.5
