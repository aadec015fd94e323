import pytest

from vexsim.core.errors import ConstraintNotSatisfied, InvalidOperation, UnsupportedOperation
from vexsim.profiles.enums import (
    ADDRESS_OF_STACK_RETURN_ADDRESS,
    ControlTransferMethod,
    MemoryAccessMethod,
    MemoryAccessParameter,
    MemoryAccessParameterState,
    MemoryContentDataType,
    MemoryRegionType,
    address,
)
from vexsim.profiles.target import Target
from vexsim.profiles.violation import Violation
from vexsim.simulation.transition import Transition, TransitionChain
from vexsim.techniques.catalog import SimpleTechnique, get_technique
from vexsim.techniques.primitives import (
    ExploitationPrimitive,
    ExploitationPrimitiveType,
    InitializeSourceContentPrimitive,
    ReadToExecutePrimitive,
    ReadToReadPrimitive,
    ReadToWritePrimitive,
    WriteToExecutePrimitive,
    WriteToReadPrimitive,
)

_S = MemoryAccessParameterState


def test_default_addresses_follow_parameter():
    w2r = WriteToReadPrimitive(MemoryAccessParameter.CONTENT)
    assert w2r.write_address == address(MemoryContentDataType.READ_CONTENT)
    assert w2r.from_method == MemoryAccessMethod.WRITE
    assert w2r.to_method == MemoryAccessMethod.READ
    assert w2r.symbol == "write"

    r2w = ReadToWritePrimitive(MemoryAccessParameter.BASE)
    assert r2w.read_address == address(MemoryContentDataType.WRITE_BASE_POINTER)
    assert r2w.symbol == "read"


def test_identity_primitive_has_no_methods():
    init = InitializeSourceContentPrimitive(source_address=address(MemoryContentDataType.DATA, MemoryRegionType.HEAP))
    assert init.is_identity
    assert init.from_method is None
    assert init.to_method is None


def test_caller_constraint_follows_builtin_guard():
    extra = ("always", lambda ctx: True)
    r2x = ReadToExecutePrimitive(
        ADDRESS_OF_STACK_RETURN_ADDRESS,
        control_transfer_method=ControlTransferMethod.FUNCTION_RETURN,
        constraint=extra,
    )
    assert len(r2x.constraints) == 3
    assert r2x.constraints[-1] is extra
    assert r2x.primitive_type == ExploitationPrimitiveType.READ_TO_EXECUTE


def test_on_success_may_replace_violation():
    replacement = Violation(method=MemoryAccessMethod.EXECUTE)
    primitive = WriteToExecutePrimitive()
    primitive.update(on_success=lambda ctx, v: replacement)
    assert primitive.notify_on_success(None, Violation(method=MemoryAccessMethod.EXECUTE)) is replacement


def test_missing_next_violation():
    primitive = ExploitationPrimitive(ExploitationPrimitiveType.IDENTITY, "noop", "noop")
    with pytest.raises(UnsupportedOperation):
        primitive.get_next_violation(None)


def test_read_to_read_derives_read(make_context):
    heap_base = address(MemoryContentDataType.READ_BASE_POINTER, MemoryRegionType.HEAP)
    ctx = make_context(Target(violation=Violation(
        method=MemoryAccessMethod.READ,
        base_state=_S.FIXED,
        content_src_state=_S.CONTROLLED,
    )))
    primitive = ReadToReadPrimitive(MemoryAccessParameter.BASE, heap_base)
    transition = Transition(primitive, SimpleTechnique(primitive), ordinal=1)

    transition.evaluate(ctx)
    derived = transition.on_success(ctx)
    assert derived.method == MemoryAccessMethod.READ
    assert derived.base_state == _S.CONTROLLED
    assert derived.previous_violation is ctx.current_violation
    assert ctx.is_assumed_true("can_trigger_memory_read")


def test_transition_guard_failure_raises(make_context):
    ctx = make_context(Target(violation=Violation(method=MemoryAccessMethod.EXECUTE)))
    primitive = WriteToReadPrimitive(MemoryAccessParameter.CONTENT)
    transition = Transition(primitive, SimpleTechnique(primitive), ordinal=1)
    with pytest.raises(ConstraintNotSatisfied, match="write to initialized content"):
        transition.evaluate(ctx)


def test_transition_snapshots_constraints():
    primitive = WriteToExecutePrimitive()
    transition = Transition(primitive, SimpleTechnique(primitive), ordinal=7)
    primitive.update(constraint=("late", lambda ctx: False))
    assert len(transition.constraints) == len(primitive.constraints) - 1
    assert repr(transition) == "Transition(7, 'write to content of execute', root=False)"


def test_empty_transition_chain():
    chain = TransitionChain()
    assert chain.chain_descriptor == "unknown"
    assert chain.technique is None
    assert chain.violations == []
    with pytest.raises(InvalidOperation):
        chain.from_method


def test_get_technique():
    assert get_technique("heap_spray").name == "heap spray"
    with pytest.raises(KeyError, match="Unknown technique"):
        get_technique("nope")
