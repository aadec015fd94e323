"""
simulation.simulator: Worklist exploration of technique chains.

The simulator starts from one context holding the target's violation and
repeatedly applies every applicable, not yet visited transition.  Each
transition runs on a clone of its context, so sibling branches never see
each other's assumptions.  A branch ends when its exploitability drops to
0, when the completion predicate holds, or when no transition applies
any more (a fixed point).
"""

from __future__ import annotations

from collections import deque
from typing import TYPE_CHECKING, Callable, Deque, Iterable, List, Optional

from ..core.errors import ConstraintNotSatisfied
from ..core.log import debug_print
from ..profiles.target import Target
from ..profiles.violation import Violation
from .assumption import AssumptionName
from .context import GlobalSimulationContext, SimulationContext
from .transition import Transition, TransitionInformation

if TYPE_CHECKING:
    from .simulation import Simulation

CompletionPredicate = Callable[[SimulationContext], bool]
TransitionCallback = Callable[[SimulationContext, TransitionInformation], None]
FixedPointCallback = Callable[[SimulationContext], None]


class Simulator:
    """
    Explores the transitions of a ``Simulation`` from one initial context.

    ``on_transition`` callbacks run after every successful transition;
    ``on_fixed_point_reached`` callbacks run for every context from which
    no further transition applied.
    """

    def __init__(
        self,
        simulation: "Simulation",
        initial_context: SimulationContext,
        completion_predicate: Optional[CompletionPredicate] = None,
    ) -> None:
        self.simulation = simulation
        self.initial_context = initial_context
        # Without a goal, branches only end at fixed points.
        self.is_simulation_complete: CompletionPredicate = completion_predicate or (lambda ctx: False)
        self.restricted_transitions: Optional[List[Transition]] = None
        self.restricted_root_transitions: Optional[List[Transition]] = None
        self.on_transition: List[TransitionCallback] = []
        self.on_fixed_point_reached: List[FixedPointCallback] = []
        self._work: Deque[SimulationContext] = deque()

    @property
    def global_ctx(self) -> GlobalSimulationContext:
        return self.initial_context.global_ctx

    @property
    def target(self) -> Target:
        return self.global_ctx.target

    # ── Factories ────────────────────────────────────────────────────

    @classmethod
    def create_with_desired_end_state(
        cls,
        simulation: "Simulation",
        global_ctx: GlobalSimulationContext,
        completion_predicate: CompletionPredicate,
    ) -> "Simulator":
        return cls(simulation, SimulationContext(global_ctx), completion_predicate)

    @classmethod
    def create_code_execution_simulator(
        cls,
        simulation: "Simulation",
        global_ctx: GlobalSimulationContext,
    ) -> "Simulator":
        """Stop a branch once arbitrary code execution is assumed."""
        return cls.create_with_desired_end_state(
            simulation,
            global_ctx,
            lambda ctx: ctx.is_assumed_true(AssumptionName.CAN_EXECUTE_CODE),
        )

    @classmethod
    def create_desired_code_execution_simulator(
        cls,
        simulation: "Simulation",
        global_ctx: GlobalSimulationContext,
    ) -> "Simulator":
        """Stop a branch once the attacker's own payload runs."""
        return cls.create_with_desired_end_state(
            simulation,
            global_ctx,
            lambda ctx: ctx.is_assumed_true(AssumptionName.CAN_EXECUTE_DESIRED_CODE),
        )

    # ── Restrictions ─────────────────────────────────────────────────

    def restrict_to_transitions(self, transitions: Iterable[Transition]) -> None:
        self.restricted_transitions = list(transitions)

    def restrict_to_root_transitions(self, transitions: Iterable[Transition]) -> None:
        """Only explore paths whose first non-identity step is one of ``transitions``."""
        self.restricted_root_transitions = list(transitions)

    # ── Exploration ──────────────────────────────────────────────────

    def run(self) -> None:
        """Explore until the worklist is empty."""
        self.initial_context.current_violation = self.target.violation
        self._work = deque()
        self._add_work_units(self.initial_context)

        while self._work:
            self._process_work_unit(self._next_work_unit())

    def run_once(self, on_transition: Optional[TransitionCallback] = None) -> None:
        """Try every transition once against a copy of the initial context."""
        self.initial_context.current_violation = self.target.violation
        self.is_simulation_complete = lambda ctx: True
        if on_transition is not None:
            self.on_transition.append(on_transition)

        self._work = deque()
        self._process_work_unit(self.initial_context.clone())

    def _next_work_unit(self) -> SimulationContext:
        """FIFO; the set of completed contexts does not depend on this order."""
        return self._work.popleft()

    def _add_work_units(self, parent: SimulationContext, new_violation: Optional[Violation] = None) -> None:
        if new_violation is not None:
            unit = parent.clone()
            unit.current_violation = new_violation
            unit.parent_context = parent
        else:
            unit = parent
            unit.parent_context = None

        for assumption in unit.current_violation.assumptions:
            unit.assume(assumption)

        self._work.append(unit)

    def _candidate_transitions(self) -> List[Transition]:
        if self.restricted_transitions is not None:
            return self.restricted_transitions
        return self.simulation.transitions

    def _root_allowed(self, context: SimulationContext) -> bool:
        if self.restricted_root_transitions is None or context.root_checked:
            return True
        root = next(
            (info for info in context.visited_transitions if not info.transition.primitive.is_identity),
            None,
        )
        if root is None:
            return True
        if not any(root.transition is t for t in self.restricted_root_transitions):
            return False
        context.root_checked = True
        return True

    def _process_work_unit(self, context: SimulationContext) -> None:
        if not self._root_allowed(context):
            return

        visited = {info.transition.ordinal for info in context.visited_transitions}
        added = False
        for transition in self._candidate_transitions():
            if transition.ordinal in visited:
                continue
            if self._process_transition(context, transition) is not None:
                added = True

        if not added and context.visited_transitions:
            for callback in self.on_fixed_point_reached:
                callback(context)

    def _process_transition(
        self,
        context: SimulationContext,
        transition: Transition,
    ) -> Optional[TransitionInformation]:
        active = context.clone()
        info = TransitionInformation(transition=transition, pre_violation=context.current_violation)

        try:
            active.add_visited_transition(info)
            active.current_transition = transition
            transition.evaluate(active)
            new_violation = transition.on_success(active)
            if new_violation is not None:
                active.current_violation.add_transitive_violation(new_violation, transition)
                info.post_violation = new_violation
            else:
                info.post_violation = info.pre_violation
        except ConstraintNotSatisfied as ex:
            active.failure_reason = f"Constraint not satisfied on transition '{transition}': {ex}"
            active.exploitability = 0.0
            new_violation = None

        if active.exploitability == 0:
            if self.global_ctx.track_impossible:
                self.global_ctx.add_completed_simulation_context(active)
            return None

        for callback in self.on_transition:
            callback(active, info)

        debug_print(
            "simulator",
            f"{info.pre_violation} -> {transition.technique.symbol}:{transition} -> "
            f"{info.post_violation} (p={active.exploitability})",
            enabled=self.global_ctx.debug,
        )

        if self.is_simulation_complete(active):
            self.global_ctx.add_completed_simulation_context(active)
            return info

        self._add_work_units(active, new_violation)
        return info
