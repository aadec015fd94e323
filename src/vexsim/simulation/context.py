"""
simulation.context: Per-path and per-run simulation state.

``SimulationContext`` is one exploration path: the current violation, the
assumptions made so far, the running exploitability and the transitions
taken.  The simulator clones a context before every divergent step, so
two contexts that share a parent never share mutable state.

``GlobalSimulationContext`` is shared by every context of one run.  It
owns the target, the mode switches and the completed contexts, grouped by
equivalence id.
"""

from __future__ import annotations

import copy
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, Iterator, List, Optional, Set, Union

from ..core.errors import InvalidOperation
from ..core.fingerprint import compute_sha1
from ..profiles.target import Target
from ..profiles.violation import Violation
from .assumption import Assumption, AssumptionName
from .transition import Transition, TransitionInformation

AssumptionLike = Union[Assumption, AssumptionName, str]
Evaluator = Callable[["SimulationContext", Assumption], float]


class SimulationMode(str, Enum):
    FAVOR_ATTACK = "favor_attack"
    FAVOR_DEFENSE = "favor_defense"
    PUBLIC_ONLY = "public_only"
    NORMAL = "normal"

    @classmethod
    def from_str(cls, s: str) -> "SimulationMode":
        normalized = s.strip().lower().replace("-", "_")
        for member in cls:
            if member.value == normalized:
                return member
        raise ValueError(f"Unknown simulation mode '{s}'. Valid: {', '.join(m.value for m in cls)}")


# ── Global context ────────────────────────────────────────────────────


class SimulationContextCollection:
    """Contexts that share one equivalence id."""

    def __init__(self) -> None:
        self.simulation_contexts: List["SimulationContext"] = []
        self.equivalent_member_count = 0

    def add_simulation(self, context: "SimulationContext") -> None:
        self.simulation_contexts.append(context)

    def __len__(self) -> int:
        return len(self.simulation_contexts)


class GlobalSimulationContext:
    """State shared by every context of one simulation run."""

    def __init__(self, target: Target) -> None:
        self.target = target
        self.track_equivalent_only = False
        self.track_minimal_only = False
        self.track_impossible = False
        self.debug = False
        self.modes: List[SimulationMode] = [SimulationMode.FAVOR_ATTACK]
        self.assumption_id_pool = 0
        self.assume_content_initialization_possible = False
        self._simulation_groups: Dict[str, SimulationContextCollection] = {}
        target.recalibrate()

    @classmethod
    def from_config(cls, target: Target, config: Any) -> "GlobalSimulationContext":
        """Create a global context with the switches of a ``Config`` applied."""
        global_ctx = cls(target)
        config.apply(global_ctx)
        return global_ctx

    def next_assumption_id(self) -> int:
        self.assumption_id_pool += 1
        return self.assumption_id_pool

    def add_completed_simulation_context(self, context: "SimulationContext") -> None:
        """
        Record a terminal context.

        Every context increments its equivalence group's member count;
        with ``track_equivalent_only`` only the first member of a group is
        stored.
        """
        if self.track_minimal_only and not context.is_minimal:
            return

        eqid = context.equivalence_id
        group = self._simulation_groups.get(eqid)
        is_new = group is None
        if group is None:
            group = SimulationContextCollection()
            self._simulation_groups[eqid] = group

        group.equivalent_member_count += 1
        if not self.track_equivalent_only or is_new:
            group.add_simulation(context)

    @property
    def completed_simulation_contexts(self) -> List["SimulationContext"]:
        return [c for group in self._simulation_groups.values() for c in group.simulation_contexts]

    @property
    def simulation_count(self) -> int:
        """Number of terminal contexts seen, stored or not."""
        return sum(group.equivalent_member_count for group in self._simulation_groups.values())

    @property
    def simulation_groups(self) -> Dict[str, SimulationContextCollection]:
        return self._simulation_groups

    @property
    def description(self) -> str:
        contexts = self.completed_simulation_contexts
        lines = [f"{self.simulation_count} simulations recorded", "", "CHARACTERISTICS", "---------------", ""]
        if contexts:
            values = [c.exploitability for c in contexts]
            lines.append(f"Exploitability(avg) = {sum(values) / len(values)}")
            lines.append(f"Exploitability(max) = {max(values)}")
            lines.append(f"Exploitability(min) = {min(values)}")
            lines.append("")
        lines += ["", "CONFIGURATION", "-------------", "", self.target.description]

        if self.target.initial_assumptions:
            lines += ["", "INITIAL ASSUMPTIONS", "-------------------", ""]
            for assumption in self.target.initial_assumptions:
                lines.append(f"{str(assumption):<40} = {assumption.probability}")

        lines += ["", "SIMULATIONS", "-----------", ""]
        for context in sorted(contexts, key=lambda c: c.exploitability, reverse=True):
            lines.append(context.description)
        return "\n".join(lines) + "\n"


# ── Per-path context ──────────────────────────────────────────────────


class SimulationContext:
    """
    One exploration path.

    ``exploitability`` is the product of the probabilities of every
    assumption made along the path.  Target invariants seed the
    assumption map but do not contribute to the product.

    Clones share assumption objects with their parent; a context copies an
    assumption before its first write to it (see ``mark_used``).
    """

    def __init__(self, global_ctx: GlobalSimulationContext) -> None:
        self.global_ctx = global_ctx
        self.exploitability = 1.0
        self.failure_reason: Optional[str] = None
        self.root_checked = False
        self.parent_context: Optional[SimulationContext] = None
        self.current_transition: Optional[Transition] = None
        self.visited_transitions: List[TransitionInformation] = []
        self.assumptions: Dict[Assumption, Assumption] = {}
        self._current_violation: Optional[Violation] = None
        self._assumptions_class: Optional[str] = None
        self._transitions_class: Optional[str] = None
        self._violations_class: Optional[str] = None
        self._invariant_class: Optional[str] = None
        self._owned: Set[int] = set()
        # Forgotten assumptions keep their factor in exploitability.
        self._forgotten: List[Assumption] = []

        seeded_ids = set()
        for assumption in global_ctx.target.initial_assumptions:
            seeded = assumption.model_copy()
            seeded.id = global_ctx.next_assumption_id()
            self.assumptions[seeded] = seeded
            seeded_ids.add(seeded.id)
        self._seeded_ids: FrozenSet[int] = frozenset(seeded_ids)

    def clone(self) -> "SimulationContext":
        """Copy for a divergent branch: own visited list and assumption map."""
        clone = copy.copy(self)
        clone.visited_transitions = list(self.visited_transitions)
        clone.assumptions = dict(self.assumptions)
        clone._forgotten = list(self._forgotten)
        # Both sides now share every assumption object.
        self._owned = set()
        clone._owned = set()
        clone._reset_fingerprints()
        return clone

    # ── Basic state ──────────────────────────────────────────────────

    @property
    def target(self) -> Target:
        return self.global_ctx.target

    @property
    def failed(self) -> bool:
        return self.exploitability == 0

    @property
    def is_minimal(self) -> bool:
        return True

    @property
    def current_violation(self) -> Optional[Violation]:
        return self._current_violation

    @current_violation.setter
    def current_violation(self, value: Optional[Violation]) -> None:
        self._current_violation = value
        self._violations_class = None
        self._invariant_class = None

    def add_visited_transition(self, info: TransitionInformation) -> None:
        self.visited_transitions.append(info)
        self._transitions_class = None

    def has_visited(self, transition: Transition) -> bool:
        return any(info.transition.ordinal == transition.ordinal for info in self.visited_transitions)

    def has_previous_context(self) -> bool:
        """True if an ancestor context is invariant-equivalent to this one."""
        current = self.parent_context
        while current is not None:
            if current.invariant_equivalence_class == self.invariant_equivalence_class:
                return True
            current = current.parent_context
        return False

    # ── Fingerprints ─────────────────────────────────────────────────

    def _reset_fingerprints(self) -> None:
        self._assumptions_class = None
        self._transitions_class = None
        self._violations_class = None
        self._invariant_class = None

    def _reset_assumptions_class(self) -> None:
        self._assumptions_class = None
        self._invariant_class = None

    @property
    def assumptions_equivalence_class(self) -> str:
        if self._assumptions_class is None:
            names = sorted({a.name_string for a in self.assumptions.values()})
            self._assumptions_class = compute_sha1(*names)
        return self._assumptions_class

    @property
    def transitions_equivalence_class(self) -> str:
        if self._transitions_class is None:
            ordinals = list(dict.fromkeys(str(info.transition.ordinal) for info in self.visited_transitions))
            self._transitions_class = compute_sha1(*ordinals)
        return self._transitions_class

    @property
    def violations_equivalence_class(self) -> str:
        """Derivation chain from the initial violation to the current one."""
        if self._violations_class is None:
            classes: List[str] = []
            current = self._current_violation
            while current is not None:
                classes.insert(0, current.equivalence_class)
                current = current.previous_violation
            self._violations_class = compute_sha1(*dict.fromkeys(classes))
        return self._violations_class

    @property
    def invariant_equivalence_class(self) -> str:
        if self._invariant_class is None:
            self._invariant_class = compute_sha1(
                self.assumptions_equivalence_class,
                self.violations_equivalence_class,
            )
        return self._invariant_class

    @property
    def equivalence_id(self) -> str:
        return f"{self.invariant_equivalence_class}-{self.exploitability}"

    # ── Modes ────────────────────────────────────────────────────────

    @property
    def mode_is_favor_attack(self) -> bool:
        return SimulationMode.FAVOR_ATTACK in self.global_ctx.modes

    @property
    def mode_is_favor_defense(self) -> bool:
        return SimulationMode.FAVOR_DEFENSE in self.global_ctx.modes

    @property
    def mode_is_public_only(self) -> bool:
        return SimulationMode.PUBLIC_ONLY in self.global_ctx.modes

    @property
    def mode_is_normal(self) -> bool:
        return SimulationMode.NORMAL in self.global_ctx.modes

    def attacker_favors_equal(self, x: Any, y: Any) -> bool:
        """
        ``x == y`` when both are known.  An unknown side resolves the way
        the simulation mode favors.
        """
        if x is None or y is None:
            if self.mode_is_favor_attack:
                return True
            if self.mode_is_favor_defense:
                return False
            raise InvalidOperation("An invalid simulation mode was detected. Attack or defense favor must be selected.")
        return x == y

    def attacker_favors_true(self) -> bool:
        return self.mode_is_favor_attack

    def attacker_favors_false(self) -> bool:
        return not self.mode_is_favor_attack

    def attacker_favors_assume_true(self, assumption: AssumptionLike) -> bool:
        """
        The cached answer if the fact is known; otherwise assume it with the
        probability the simulation mode favors.
        """
        key = Assumption.coerce(assumption)
        existing = self.assumptions.get(key)
        if existing is not None:
            return self.mark_used(existing).probability > 0
        probability = 0.0 if self.mode_is_favor_defense else 1.0
        fresh = key.model_copy(update={"probability": probability, "used": True})
        self.assume(fresh)
        return True

    # ── Assumptions ──────────────────────────────────────────────────

    def _insert(self, assumption: Assumption) -> Assumption:
        if not 0.0 <= assumption.probability <= 1.0:
            raise InvalidOperation(f"Probability {assumption.probability} of {assumption} is outside [0, 1]")
        assumption.transition = self.current_transition
        assumption.id = self.global_ctx.next_assumption_id()
        self.assumptions[assumption] = assumption
        self._owned.add(id(assumption))
        self._reset_assumptions_class()
        self.exploitability *= assumption.probability
        return assumption

    def mark_used(self, existing: Assumption) -> Assumption:
        """Flag a recorded assumption as used, copying it first if it is shared."""
        if existing.used:
            return existing
        if id(existing) not in self._owned:
            existing = existing.model_copy()
            self.assumptions[existing] = existing
            self._owned.add(id(existing))
        existing.used = True
        return existing

    def assume_evaluated(self, assumption: AssumptionLike, evaluate: Evaluator) -> Assumption:
        """
        Return the cached assumption, or evaluate, record and factor in a
        new one.
        """
        key = Assumption.coerce(assumption)
        existing = self.assumptions.get(key)
        if existing is not None:
            return self.mark_used(existing)
        fresh = key.model_copy()
        fresh.probability = evaluate(self, fresh)
        return self._insert(fresh)

    def assume(self, assumption: AssumptionLike, probability: float = 1.0) -> None:
        """
        Record a fact unless it is already known.  An ``Assumption`` keeps
        its own probability; a name is assumed with ``probability``.
        """
        if isinstance(assumption, Assumption):
            fresh = assumption.model_copy()
        else:
            fresh = Assumption.coerce(assumption, probability=probability)
        if self.has_assumption(fresh):
            return
        self._insert(fresh)

    def assume_is_true(self, assumption: AssumptionLike, evaluate: Optional[Evaluator] = None) -> bool:
        if evaluate is None:
            evaluate = lambda ctx, a: 1.0  # noqa: E731
        return self.assume_evaluated(assumption, evaluate).probability > 0

    def assume_is_false(self, assumption: AssumptionLike, evaluate: Optional[Evaluator] = None) -> bool:
        if evaluate is None:
            evaluate = lambda ctx, a: 0.0  # noqa: E731
        return self.assume_evaluated(assumption, evaluate).probability == 0

    def has_assumption(self, assumption: AssumptionLike) -> bool:
        existing = self.assumptions.get(Assumption.coerce(assumption))
        if existing is None:
            return False
        self.mark_used(existing)
        return True

    def get_assumption(self, assumption: AssumptionLike) -> Optional[Assumption]:
        return self.assumptions.get(Assumption.coerce(assumption))

    def forget_assumption(self, assumption: AssumptionLike) -> None:
        removed = self.assumptions.pop(Assumption.coerce(assumption), None)
        if removed is not None:
            self._owned.discard(id(removed))
            if removed.id not in self._seeded_ids:
                self._forgotten.append(removed)
            self._reset_assumptions_class()

    def is_assumed_true(self, assumption: AssumptionLike) -> bool:
        existing = self.assumptions.get(Assumption.coerce(assumption))
        if existing is None:
            return False
        return self.mark_used(existing).probability > 0

    def is_assumed_true_or_undefined(self, assumption: AssumptionLike) -> bool:
        existing = self.assumptions.get(Assumption.coerce(assumption))
        if existing is None:
            return True
        return self.mark_used(existing).probability > 0

    def iter_path_assumptions(self) -> Iterator[Assumption]:
        """Assumptions factored into ``exploitability``, in insertion order."""
        recorded = list(self.assumptions.values()) + self._forgotten
        for assumption in sorted(recorded, key=lambda a: a.id or 0):
            if assumption.id not in self._seeded_ids:
                yield assumption

    # ── Reporting ────────────────────────────────────────────────────

    @property
    def description(self) -> str:
        lines = ["===============", "", f"Simulation exploitability: {self.exploitability}"]
        if self.failed:
            lines.append(f"Simulation failed        : {self.failure_reason}")
        lines += ["", "Transitions", ""]
        for info in self.visited_transitions:
            lines.append(f" {str(info.pre_violation):<50} -> {str(info.transition):<35} -> {info.post_violation}")
        lines += ["", "Assumptions", ""]
        recorded = list(self.assumptions.values()) + self._forgotten
        for assumption in sorted(recorded, key=lambda a: a.id or 0):
            owner = str(assumption.transition) if assumption.transition is not None else "invariant"
            lines.append(f" [{owner:<50}] {assumption.probability} = {assumption}")
        return "\n".join(lines) + "\n"
