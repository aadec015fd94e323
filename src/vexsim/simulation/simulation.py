"""
simulation.simulation: Transition registry and abstract technique graph.

A ``Simulation`` owns the transitions contributed by a set of exploitation
techniques.  Every non-identity root transition is explored on its own,
from an open violation of the access method it starts from, restricted
to the transitions of its technique; the paths that reach a fixed point
are folded into ``complete_graph`` and recorded as transition chains.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional

import networkx as nx

from ..core.log import console
from ..profiles.enums import MemoryAccessMethod
from ..profiles.target import Target
from ..profiles.violation import Violation
from .context import GlobalSimulationContext, SimulationContext
from .simulator import Simulator
from .transition import Transition, TransitionChain, TransitionInformation

if TYPE_CHECKING:
    from ..techniques.catalog import ExploitationTechnique
    from ..techniques.primitives import ExploitationPrimitive


class Simulation:
    """Registry of transitions and the graph derived from them."""

    def __init__(self, techniques: Optional[Iterable["ExploitationTechnique"]] = None) -> None:
        self.transitions: List[Transition] = []
        self.root_transitions: List[Transition] = []
        self.complete_graph = nx.MultiDiGraph()
        self.transition_chains: Dict[MemoryAccessMethod, List[TransitionChain]] = {}
        self._ordinal_pool = 0
        self._skip_graph_updates = False
        self._graphed_roots: set = set()

        if techniques is not None:
            self.add_techniques(techniques)

    @classmethod
    def all_techniques(cls) -> "Simulation":
        """A simulation with the complete technique catalog registered."""
        # Imported lazily: techniques depend on the simulation package.
        from ..techniques.catalog import all_techniques

        return cls(all_techniques())

    # ── Registration ─────────────────────────────────────────────────

    def add_techniques(self, techniques: Iterable["ExploitationTechnique"]) -> None:
        """Register several techniques and derive the graph once at the end."""
        self.begin_add_transition()
        try:
            for technique in techniques:
                technique.add_transitions_to_simulation(self)
        finally:
            self.end_add_transition()

    def begin_add_transition(self) -> None:
        self._skip_graph_updates = True

    def end_add_transition(self) -> None:
        self._skip_graph_updates = False
        self._update_graphs()

    def add_transition(
        self,
        technique: "ExploitationTechnique",
        primitive: "ExploitationPrimitive",
        is_root: bool = False,
    ) -> Transition:
        self._ordinal_pool += 1
        transition = Transition(primitive, technique, is_root=is_root, ordinal=self._ordinal_pool)
        self.transitions.append(transition)
        if is_root:
            self.root_transitions.append(transition)
        if not self._skip_graph_updates:
            self._update_graphs()
        return transition

    def add_root_transition(
        self,
        technique: "ExploitationTechnique",
        primitive: "ExploitationPrimitive",
    ) -> Transition:
        return self.add_transition(technique, primitive, is_root=True)

    def transitions_of(self, technique: "ExploitationTechnique") -> List[Transition]:
        return [t for t in self.transitions if t.technique is technique]

    def get_transition_chains(self, method: MemoryAccessMethod) -> List[TransitionChain]:
        return self.transition_chains.get(method, [])

    # ── Graph derivation ─────────────────────────────────────────────

    def _update_graphs(self) -> None:
        for root in self.root_transitions:
            if root.primitive.is_identity or root.ordinal in self._graphed_roots:
                continue
            self._graphed_roots.add(root.ordinal)
            self._explore_root(root)

    def _explore_root(self, root: Transition) -> None:
        initial = Violation(method=root.primitive.from_method)
        global_ctx = GlobalSimulationContext(Target(violation=initial))
        global_ctx.assume_content_initialization_possible = True

        simulator = Simulator(self, SimulationContext(global_ctx))
        simulator.restrict_to_transitions(self.transitions_of(root.technique))

        def on_fixed_point(ctx: SimulationContext) -> None:
            first = next(
                (info for info in ctx.visited_transitions if not info.transition.primitive.is_identity),
                None,
            )
            if first is None or first.transition is not root:
                return
            for info in ctx.visited_transitions:
                self._add_edge(info)
            chain = TransitionChain(list(ctx.visited_transitions))
            self.transition_chains.setdefault(initial.method, []).append(chain)

        simulator.on_fixed_point_reached.append(on_fixed_point)
        simulator.run()

    def _add_node(self, violation: Violation) -> str:
        key = violation.equivalence_class
        if key not in self.complete_graph:
            self.complete_graph.add_node(key, symbol=violation.symbol, name=violation.name or "")
        return key

    def _add_edge(self, info: TransitionInformation) -> None:
        pre = self._add_node(info.pre_violation)
        post = self._add_node(info.post_violation or info.pre_violation)
        label = info.transition.primitive.name
        technique = info.transition.technique.symbol
        existing = self.complete_graph.get_edge_data(pre, post) or {}
        if any(d.get("label") == label and d.get("technique") == technique for d in existing.values()):
            return
        self.complete_graph.add_edge(pre, post, label=label, technique=technique)

    def save_graphml(self, path: Path) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        nx.write_graphml(self.complete_graph, str(path))
        console.print(f"  [dim]Graph saved: {path}[/]")
        return path
