import math

import pytest
from pydantic import ValidationError

from vexsim.core.errors import InvalidOperation
from vexsim.profiles.enums import ADDRESS_OF_STACK_RETURN_ADDRESS, MemoryAccessMethod
from vexsim.profiles.target import Target
from vexsim.profiles.violation import Violation
from vexsim.simulation.assumption import Assumption, AssumptionName, FavoredOutcome
from vexsim.simulation.context import GlobalSimulationContext, SimulationContext, SimulationMode
from vexsim.simulation.simulation import Simulation
from vexsim.simulation.simulator import Simulator

_A = AssumptionName


# ── Assumption ────────────────────────────────────────────────────────


def test_assumption_identity_ignores_probability():
    a = Assumption(name=_A.CAN_EXECUTE_CODE, probability=1.0)
    b = Assumption(name=_A.CAN_EXECUTE_CODE, probability=0.25)
    assert a == b
    assert hash(a) == hash(b)
    assert a != Assumption(name=_A.CAN_EXECUTE_DATA)


def test_assumption_name_string():
    a = Assumption.can_find_address(ADDRESS_OF_STACK_RETURN_ADDRESS)
    assert a.name_string == "can_find_address(&stack.stack_return_address)"
    outcome = FavoredOutcome(constraint="content initialized", favored_true=True)
    assert outcome.name_string == "unknown(True == 'content initialized')"


def test_assumption_coerce():
    a = Assumption.coerce("can_execute_code")
    assert a.name == _A.CAN_EXECUTE_CODE
    assert Assumption.coerce(a) is a

    half = Assumption.coerce(a, probability=0.5)
    assert half is not a
    assert half.probability == 0.5
    assert a.probability == 1.0


def test_assumption_is_true_setter():
    a = Assumption(name=_A.CAN_TRIGGER_EXCEPTION)
    a.is_true = False
    assert a.probability == 0.0
    assert not a.is_true


def test_assumption_identity_is_frozen():
    a = Assumption.can_find_address(ADDRESS_OF_STACK_RETURN_ADDRESS, probability=0.5)
    assert a.name_string == "can_find_address(&stack.stack_return_address)"
    with pytest.raises(ValidationError):
        a.address = None

    a.probability = 0.25
    assert a.name_string == "can_find_address(&stack.stack_return_address)"
    assert a.model_copy(update={"address": None}).name_string == "can_find_address"


def test_assumption_name_from_str():
    assert AssumptionName.from_str("Can-Execute-Code") == _A.CAN_EXECUTE_CODE
    assert AssumptionName.from_str("bogus") == _A.UNKNOWN


def test_simulation_mode_from_str():
    assert SimulationMode.from_str("favor-defense") == SimulationMode.FAVOR_DEFENSE
    with pytest.raises(ValueError):
        SimulationMode.from_str("bogus")


# ── Assumption bookkeeping ────────────────────────────────────────────


def test_exploitability_is_product_of_assumptions(make_context):
    ctx = make_context()
    ctx.assume(_A.CAN_EXECUTE_CODE, 0.5)
    ctx.assume(_A.CAN_TRIGGER_EXCEPTION, 0.5)
    assert ctx.exploitability == pytest.approx(0.25)

    # Re-assuming a known fact changes nothing.
    ctx.assume(_A.CAN_EXECUTE_CODE, 0.1)
    assert ctx.exploitability == pytest.approx(0.25)
    assert ctx.get_assumption(_A.CAN_EXECUTE_CODE).probability == 0.5


def test_assume_copies_the_assumption(make_context):
    ctx = make_context()
    given = Assumption(name=_A.CAN_EXECUTE_DATA)
    ctx.assume(given)
    stored = ctx.get_assumption(_A.CAN_EXECUTE_DATA)
    assert stored is not given
    assert stored.id is not None
    assert given.id is None


def test_assume_evaluated_is_memoized(make_context):
    ctx = make_context()
    calls = []

    def evaluate(context, assumption):
        calls.append(assumption.name)
        return 0.5

    first = ctx.assume_evaluated(_A.CAN_FIND_STACK_PIVOT_GADGET, evaluate)
    second = ctx.assume_evaluated(_A.CAN_FIND_STACK_PIVOT_GADGET, evaluate)
    assert first is second
    assert second.used
    assert calls == [_A.CAN_FIND_STACK_PIVOT_GADGET]
    assert ctx.exploitability == 0.5


def test_assume_is_false_fails_context(make_context):
    ctx = make_context()
    assert ctx.assume_is_false(_A.CAN_BYPASS_NX)
    assert ctx.failed
    assert not ctx.is_assumed_true(_A.CAN_BYPASS_NX)


def test_is_assumed_true_or_undefined(make_context):
    ctx = make_context()
    assert ctx.is_assumed_true_or_undefined(_A.CAN_BYPASS_NX)
    assert not ctx.is_assumed_true(_A.CAN_BYPASS_NX)
    ctx.assume(_A.CAN_BYPASS_NX, 0.0)
    assert not ctx.is_assumed_true_or_undefined(_A.CAN_BYPASS_NX)


def test_forget_assumption(make_context):
    ctx = make_context()
    ctx.assume(_A.CAN_EXECUTE_CODE)
    before = ctx.assumptions_equivalence_class
    ctx.forget_assumption(_A.CAN_EXECUTE_CODE)
    assert not ctx.has_assumption(_A.CAN_EXECUTE_CODE)
    assert ctx.assumptions_equivalence_class != before


def test_forgotten_assumption_stays_factored_in(make_context):
    ctx = make_context()
    ctx.assume(_A.CAN_EXECUTE_DATA, 0.5)
    ctx.forget_assumption(_A.CAN_EXECUTE_DATA)
    clone = ctx.clone()
    clone.assume(_A.CAN_EXECUTE_DATA)

    assert clone.exploitability == 0.5
    assert [a.name for a in clone.iter_path_assumptions()] == [_A.CAN_EXECUTE_DATA, _A.CAN_EXECUTE_DATA]
    assert clone.exploitability == math.prod(a.probability for a in clone.iter_path_assumptions())


def test_initial_assumptions_are_seeded_not_multiplied():
    target = Target()
    target.assume(Assumption(name=_A.CAN_TRIGGER_EXCEPTION, probability=0.5))
    ctx = SimulationContext(GlobalSimulationContext(target))

    assert ctx.exploitability == 1.0
    assert ctx.is_assumed_true(_A.CAN_TRIGGER_EXCEPTION)
    assert list(ctx.iter_path_assumptions()) == []
    # The target's copy is never mutated by the context.
    assert target.initial_assumptions[0].id is None


# ── Clone isolation ───────────────────────────────────────────────────


def test_clone_does_not_share_assumptions(make_context):
    ctx = make_context()
    ctx.assume(_A.CAN_EXECUTE_CODE)
    clone = ctx.clone()

    clone.assume(_A.CAN_BYPASS_NX, 0.5)
    assert not ctx.has_assumption(_A.CAN_BYPASS_NX)
    assert ctx.exploitability == 1.0
    assert clone.exploitability == 0.5
    assert clone.visited_transitions is not ctx.visited_transitions


def test_clone_copies_assumption_on_first_write(make_context):
    ctx = make_context()
    ctx.assume(_A.CAN_EXECUTE_CODE)
    clone = ctx.clone()
    assert clone.get_assumption(_A.CAN_EXECUTE_CODE) is ctx.get_assumption(_A.CAN_EXECUTE_CODE)

    assert clone.is_assumed_true(_A.CAN_EXECUTE_CODE)
    assert clone.get_assumption(_A.CAN_EXECUTE_CODE).used
    assert not ctx.get_assumption(_A.CAN_EXECUTE_CODE).used
    assert clone.get_assumption(_A.CAN_EXECUTE_CODE).id == ctx.get_assumption(_A.CAN_EXECUTE_CODE).id

    # The parent gave up ownership when it was cloned.
    assert ctx.is_assumed_true(_A.CAN_EXECUTE_CODE)
    grandchild = ctx.clone()
    assert ctx.get_assumption(_A.CAN_EXECUTE_CODE).used
    assert grandchild.get_assumption(_A.CAN_EXECUTE_CODE) is ctx.get_assumption(_A.CAN_EXECUTE_CODE)


def test_out_of_range_probability_is_rejected(make_context):
    ctx = make_context()
    with pytest.raises(InvalidOperation, match="outside"):
        ctx.assume_evaluated(_A.CAN_BYPASS_NX, lambda context, assumption: 1.5)
    assert not ctx.has_assumption(_A.CAN_BYPASS_NX)
    assert ctx.exploitability == 1.0


def test_violation_assumptions_are_factored_in():
    violation = Violation(
        method=MemoryAccessMethod.WRITE,
        assumptions=[Assumption(name=_A.CAN_TRIGGER_EXCEPTION, probability=0.5)],
    )
    global_ctx = GlobalSimulationContext(Target(violation=violation))
    initial = SimulationContext(global_ctx)
    Simulator(Simulation(), initial).run()

    assert initial.exploitability == 0.5
    assert [a.name for a in initial.iter_path_assumptions()] == [_A.CAN_TRIGGER_EXCEPTION]
    assert initial.exploitability == math.prod(a.probability for a in initial.iter_path_assumptions())


# ── Modes ─────────────────────────────────────────────────────────────


def test_attacker_favors_equal_per_mode(make_context):
    attack = make_context()
    assert attack.attacker_favors_equal(None, MemoryAccessMethod.READ)
    assert attack.attacker_favors_equal(MemoryAccessMethod.READ, MemoryAccessMethod.READ)
    assert not attack.attacker_favors_equal(MemoryAccessMethod.READ, MemoryAccessMethod.WRITE)

    defense = make_context(modes=[SimulationMode.FAVOR_DEFENSE])
    assert not defense.attacker_favors_equal(None, MemoryAccessMethod.READ)
    assert defense.attacker_favors_equal(False, False)

    normal = make_context(modes=[SimulationMode.NORMAL])
    with pytest.raises(InvalidOperation):
        normal.attacker_favors_equal(None, True)


def test_attacker_favors_assume_true(make_context):
    attack = make_context()
    assert attack.attacker_favors_assume_true(_A.CAN_TRIGGER_FUNCTION_RETURN)
    assert attack.exploitability == 1.0
    assert attack.get_assumption(_A.CAN_TRIGGER_FUNCTION_RETURN).used

    defense = make_context(modes=[SimulationMode.FAVOR_DEFENSE])
    defense.attacker_favors_assume_true(_A.CAN_TRIGGER_FUNCTION_RETURN)
    assert defense.failed


# ── Fingerprints ──────────────────────────────────────────────────────


def test_equivalent_contexts_share_fingerprints(make_context):
    a = make_context()
    b = make_context()
    for ctx in (a, b):
        ctx.assume(_A.CAN_EXECUTE_CODE)
    assert a.invariant_equivalence_class == b.invariant_equivalence_class
    assert a.equivalence_id == f"{a.invariant_equivalence_class}-1.0"


def test_changing_violation_resets_fingerprint(make_context):
    ctx = make_context()
    before = ctx.invariant_equivalence_class
    ctx.current_violation = Violation(method=MemoryAccessMethod.EXECUTE)
    assert ctx.invariant_equivalence_class != before


# ── Global context ────────────────────────────────────────────────────


def test_completed_contexts_grouped_by_equivalence(make_context):
    ctx = make_context()
    global_ctx = ctx.global_ctx
    global_ctx.add_completed_simulation_context(ctx.clone())
    global_ctx.add_completed_simulation_context(ctx.clone())
    assert global_ctx.simulation_count == 2
    assert len(global_ctx.completed_simulation_contexts) == 2
    assert len(global_ctx.simulation_groups) == 1


def test_track_equivalent_only_stores_one_per_group(make_context):
    ctx = make_context(track_equivalent_only=True)
    global_ctx = ctx.global_ctx
    for _ in range(3):
        global_ctx.add_completed_simulation_context(ctx.clone())
    assert global_ctx.simulation_count == 3
    assert len(global_ctx.completed_simulation_contexts) == 1


def test_assumption_ids_increase(make_context):
    ctx = make_context()
    ctx.assume(_A.CAN_EXECUTE_CODE)
    ctx.assume(_A.CAN_EXECUTE_DATA)
    ids = [a.id for a in ctx.assumptions.values()]
    assert ids == sorted(ids)
    assert len(set(ids)) == 2


def test_global_description_lists_simulations(make_context):
    ctx = make_context()
    ctx.global_ctx.add_completed_simulation_context(ctx)
    text = ctx.global_ctx.description
    assert "1 simulations recorded" in text
    assert "Simulation exploitability: 1.0" in text
