import math
from collections import Counter

import pytest

from vexsim.core.errors import ConstraintNotSatisfied
from vexsim.profiles import builtin
from vexsim.profiles.enums import (
    MemoryAccessMethod,
    MemoryAccessParameter,
    MemoryAccessParameterState,
    MemoryContentDataType,
    MemoryRegionType,
    address,
)
from vexsim.profiles.target import Application, Target, create_targets
from vexsim.profiles.violation import Violation
from vexsim.simulation import GlobalSimulationContext, Simulation, SimulationContext, Simulator
from vexsim.techniques.catalog import (
    CorruptStackFramePointer,
    CorruptStackReturnAddress,
    CorruptStackStructuredExceptionHandler,
    HeapSpray,
    LoadNonASLRImage,
    SimpleTechnique,
)
from vexsim.techniques.primitives import ReadToReadPrimitive

_S = MemoryAccessParameterState


def _run_to_fixed_points(simulation, target, **switches):
    global_ctx = GlobalSimulationContext(target)
    for key, value in switches.items():
        setattr(global_ctx, key, value)
    simulator = Simulator(simulation, SimulationContext(global_ctx))
    reached = []
    simulator.on_fixed_point_reached.append(reached.append)
    simulator.run()
    return global_ctx, reached


def _heap_read_base_technique():
    return SimpleTechnique(ReadToReadPrimitive(
        MemoryAccessParameter.BASE,
        address(MemoryContentDataType.READ_BASE_POINTER, MemoryRegionType.HEAP),
    ))


# ── Return address overwrite ──────────────────────────────────────────


def test_return_address_overwrite_reaches_execute(stack_write):
    simulation = Simulation([CorruptStackReturnAddress()])
    _, reached = _run_to_fixed_points(simulation, Target(violation=stack_write()))

    assert len(reached) == 1
    ctx = reached[0]
    assert ctx.current_violation.method == MemoryAccessMethod.EXECUTE
    assert ctx.current_violation.base_state == _S.CONTROLLED
    assert ctx.exploitability == 1.0
    assert [info.transition.label for info in ctx.visited_transitions] == [
        "corrupt return address on stack",
        "return from function with corrupted return address",
    ]


def test_stack_cookie_entropy_limits_exploitability(stack_write):
    simulation = Simulation([CorruptStackReturnAddress()])
    violation = stack_write(function_stack_protection_enabled=True, function_stack_protection_entropy_bits=8)
    _, reached = _run_to_fixed_points(simulation, Target(violation=violation))

    assert len(reached) == 1
    ctx = reached[0]
    assert ctx.exploitability == pytest.approx(1 / 2 ** 8)
    assert ctx.exploitability == pytest.approx(math.prod(a.probability for a in ctx.iter_path_assumptions()))


def test_violation_tree_records_derivations(stack_write):
    simulation = Simulation([CorruptStackReturnAddress()])
    target = Target(violation=stack_write())
    _run_to_fixed_points(simulation, target)

    children = target.violation.transitive_violations
    assert len(children) == 1
    assert children[0].violation.method == MemoryAccessMethod.READ
    assert children[0].transition_descriptor.name == "stack_return_address_overwrite"
    assert [tv.violation.method for tv in target.violation.all_transitive_violations] == [
        MemoryAccessMethod.READ,
        MemoryAccessMethod.EXECUTE,
    ]


def test_fingerprints_are_deterministic(stack_write):
    runs = []
    for _ in range(2):
        simulation = Simulation([CorruptStackReturnAddress()])
        _, reached = _run_to_fixed_points(simulation, Target(violation=stack_write()))
        runs.append([ctx.invariant_equivalence_class for ctx in reached])
    assert runs[0] == runs[1]


# ── Uninitialized content ─────────────────────────────────────────────


def _uninitialized_read():
    return Violation(
        method=MemoryAccessMethod.READ,
        base_state=_S.CONTROLLED,
        content_src_state=_S.UNINITIALIZED,
    )


def test_uninitialized_content_blocks_read():
    simulation = Simulation([_heap_read_base_technique()])
    global_ctx, reached = _run_to_fixed_points(
        simulation, Target(violation=_uninitialized_read()), track_impossible=True
    )

    assert reached == []
    completed = global_ctx.completed_simulation_contexts
    assert len(completed) == 1
    assert completed[0].failed
    assert "Constraint not satisfied" in completed[0].failure_reason


def test_impossible_paths_dropped_by_default():
    simulation = Simulation([_heap_read_base_technique()])
    global_ctx, _ = _run_to_fixed_points(simulation, Target(violation=_uninitialized_read()))
    assert global_ctx.completed_simulation_contexts == []


def test_heap_spray_initializes_content():
    read_base = _heap_read_base_technique()
    simulation = Simulation([HeapSpray(), read_base])

    global_ctx = GlobalSimulationContext(Target(violation=_uninitialized_read()))
    simulator = Simulator(simulation, SimulationContext(global_ctx))
    taken = []
    simulator.on_transition.append(lambda ctx, info: taken.append((ctx, info)))
    simulator.run()

    reads = [(ctx, info) for ctx, info in taken if info.transition.technique is read_base]
    assert reads
    for ctx, info in reads:
        assert ctx.exploitability == 1.0
        assert ctx.visited_transitions[0].transition.technique.symbol == "heap_spray"
        assert info.pre_violation.content_src_state == _S.CONTROLLED

    for ctx, _ in taken:
        ordinals = [info.transition.ordinal for info in ctx.visited_transitions]
        assert len(ordinals) == len(set(ordinals))


# ── Simulator controls ────────────────────────────────────────────────


def test_run_once_tries_each_transition_once(stack_write):
    simulation = Simulation([CorruptStackReturnAddress()])
    global_ctx = GlobalSimulationContext(Target(violation=stack_write()))
    simulator = Simulator(simulation, SimulationContext(global_ctx))
    taken = []
    simulator.run_once(lambda ctx, info: taken.append(info))

    assert len(taken) == 1
    assert taken[0].post_violation.method == MemoryAccessMethod.READ
    assert global_ctx.simulation_count == 1


def test_root_restriction(stack_write):
    simulation = Simulation([CorruptStackReturnAddress()])

    for roots, expected in (([], 0), (simulation.root_transitions, 1)):
        global_ctx = GlobalSimulationContext(Target(violation=stack_write()))
        simulator = Simulator(simulation, SimulationContext(global_ctx))
        simulator.restrict_to_root_transitions(roots)
        reached = []
        simulator.on_fixed_point_reached.append(reached.append)
        simulator.run()
        assert len(reached) == expected


def test_code_execution_goal_not_reached_without_payload(stack_write):
    simulation = Simulation([CorruptStackReturnAddress()])
    global_ctx = GlobalSimulationContext(Target(violation=stack_write()))
    Simulator.create_desired_code_execution_simulator(simulation, global_ctx).run()
    assert global_ctx.simulation_count == 0


def test_completion_predicate_stores_context(stack_write):
    simulation = Simulation([CorruptStackReturnAddress()])
    global_ctx = GlobalSimulationContext(Target(violation=stack_write()))
    simulator = Simulator.create_with_desired_end_state(
        simulation,
        global_ctx,
        lambda ctx: ctx.current_violation.method == MemoryAccessMethod.EXECUTE,
    )
    simulator.run()
    # The predicate is checked before the successor is adopted.
    assert global_ctx.simulation_count == 0

    global_ctx = GlobalSimulationContext(Target(violation=stack_write()))
    simulator = Simulator.create_with_desired_end_state(
        simulation,
        global_ctx,
        lambda ctx: ctx.is_assumed_true("can_trigger_memory_execute"),
    )
    simulator.run()
    assert global_ctx.simulation_count == 1
    assert global_ctx.completed_simulation_contexts[0].exploitability == 1.0


def test_unreachable_cookie_fails_return(stack_write):
    # A kernel-mode access cannot reach the user stack cookie, so the
    # return past the protection check is not taken.
    simulation = Simulation([CorruptStackReturnAddress()])
    _, can_return = simulation.transitions[1].constraints[-1]

    target = Target(
        application=Application(kernel_application=True),
        violation=stack_write(function_stack_protection_enabled=True, function_stack_protection_entropy_bits=8),
    )
    global_ctx = GlobalSimulationContext(target)
    ctx = SimulationContext(global_ctx)
    ctx.current_violation = target.violation

    with pytest.raises(ConstraintNotSatisfied, match="cannot corrupt memory"):
        can_return(ctx)
    assert not ctx.has_assumption("can_determine_stack_protection_cookie")


# ── Processing order ──────────────────────────────────────────────────


class _LifoSimulator(Simulator):
    def _next_work_unit(self):
        return self._work.pop()


class _BoundedSimulator(Simulator):
    limit = 300

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.processed = 0
        self.remaining = 0

    def _process_work_unit(self, context):
        self.processed += 1
        super()._process_work_unit(context)
        if self.processed >= self.limit:
            self.remaining = len(self._work)
            self._work.clear()


def _windows7_ie8():
    return create_targets(
        [builtin.get_hardware("x86_pae")],
        [builtin.get_operating_system("windows7")],
        [builtin.get_application("ie8")],
        [builtin.get_violation("stack_buffer_overrun")],
    )[0]


def _fixed_point_ids(simulator_class):
    simulation = Simulation([
        CorruptStackReturnAddress(),
        CorruptStackFramePointer(),
        CorruptStackStructuredExceptionHandler(),
        HeapSpray(),
        LoadNonASLRImage(),
    ])
    global_ctx = GlobalSimulationContext(_windows7_ie8())
    simulator = simulator_class(simulation, SimulationContext(global_ctx))
    reached = []
    simulator.on_fixed_point_reached.append(reached.append)
    simulator.run()
    return Counter(ctx.equivalence_id for ctx in reached)


def test_fixed_points_do_not_depend_on_processing_order():
    fifo = _fixed_point_ids(Simulator)
    lifo = _fixed_point_ids(_LifoSimulator)
    assert fifo
    assert fifo == lifo


def test_full_catalog_explores_builtin_target():
    global_ctx = GlobalSimulationContext(_windows7_ie8())
    simulator = _BoundedSimulator.create_desired_code_execution_simulator(Simulation.all_techniques(), global_ctx)
    taken = []
    simulator.on_transition.append(lambda ctx, info: taken.append(ctx))
    simulator.run()

    assert simulator.processed == _BoundedSimulator.limit
    assert taken
    for ctx in taken:
        assert 0 < ctx.exploitability <= 1
        assert ctx.exploitability == pytest.approx(math.prod(a.probability for a in ctx.iter_path_assumptions()))
        ordinals = [info.transition.ordinal for info in ctx.visited_transitions]
        assert len(ordinals) == len(set(ordinals))
