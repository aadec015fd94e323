"""
simulation.transition: Registered (primitive, technique) pairs.

A ``Transition`` is the unit the simulator tries against a context: its
primitive's constraints are the guard, its next-violation function and
success callbacks are the update.  ``TransitionChain`` is the ordered
record of the transitions one context took, used to describe canonical
technique chains.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, List, Optional

from ..core.errors import ConstraintNotSatisfied, InvalidOperation
from ..profiles.enums import MemoryAccessMethod
from ..profiles.violation import TransitiveViolation, Violation

if TYPE_CHECKING:
    from ..techniques.catalog import ExploitationTechnique
    from ..techniques.primitives import ExploitationPrimitive


class Transition:
    """
    One primitive of one technique, registered with a simulation.

    Transitions are immutable after registration; ``ordinal`` is unique
    within the owning simulation.
    """

    def __init__(
        self,
        primitive: "ExploitationPrimitive",
        technique: "ExploitationTechnique",
        is_root: bool = False,
        ordinal: int = 0,
    ) -> None:
        self.primitive = primitive
        self.technique = technique
        self.is_root = is_root
        self.ordinal = ordinal
        # Snapshot, so later updates to the primitive do not leak in.
        self.constraints = list(primitive.constraints)

    def evaluate(self, context: Any) -> None:
        """Run every constraint in order; the first failure raises."""
        for description, predicate in self.constraints:
            if not predicate(context):
                raise ConstraintNotSatisfied(description)

    def on_success(self, context: Any) -> Optional[Violation]:
        violation = self.primitive.get_next_violation(context)
        return self.primitive.notify_on_success(context, violation)

    @property
    def label(self) -> str:
        return self.primitive.name

    def __str__(self) -> str:
        return self.label

    def __repr__(self) -> str:
        return f"Transition({self.ordinal}, {self.label!r}, root={self.is_root})"


@dataclass
class TransitionDescriptor:
    """Serializable reference to the transition that derived a violation."""

    name: Optional[str] = None
    transition: Optional[Transition] = field(default=None, repr=False, compare=False)

    @classmethod
    def from_transition(cls, transition: Optional[Transition]) -> "TransitionDescriptor":
        if transition is None:
            return cls()
        return cls(name=transition.technique.symbol, transition=transition)


@dataclass
class TransitionInformation:
    """One step of a context: the transition and the violations around it."""

    transition: Transition
    pre_violation: Violation
    post_violation: Optional[Violation] = None


@dataclass
class TransitionChain:
    transitions: List[TransitionInformation] = field(default_factory=list)

    @property
    def from_method(self) -> MemoryAccessMethod:
        if not self.transitions:
            raise InvalidOperation("Transition chain is empty")
        return self.transitions[0].pre_violation.method

    @property
    def technique(self) -> Optional["ExploitationTechnique"]:
        if not self.transitions:
            return None
        return self.transitions[0].transition.technique

    @property
    def primitive(self) -> Optional["ExploitationPrimitive"]:
        if not self.transitions:
            return None
        return self.transitions[0].transition.primitive

    @property
    def chain_descriptor(self) -> str:
        """Access methods along the chain, e.g. ``w->r->x``."""
        if not self.transitions:
            return "unknown"
        parts = [self.transitions[0].pre_violation.method.abbreviation]
        for info in self.transitions:
            post = info.post_violation or info.pre_violation
            parts.append(post.method.abbreviation)
        return "->".join(parts)

    @property
    def violations(self) -> List[Violation]:
        """
        Fresh copies of the violations along the chain, each linked to the
        next through its transitive violation list.
        """
        if not self.transitions:
            return []
        previous = self.transitions[0].pre_violation.clone_violation()
        violations = [previous]
        for info in self.transitions:
            post = (info.post_violation or info.pre_violation).clone_violation()
            previous.transitive_violations.append(
                TransitiveViolation(
                    violation=post,
                    transition_descriptor=TransitionDescriptor.from_transition(info.transition),
                )
            )
            violations.append(post)
            previous = post
        return violations

    def __str__(self) -> str:
        primitive = self.primitive
        return f"{primitive.name if primitive else '-'} [{self.chain_descriptor}]"
