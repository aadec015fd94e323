"""
simulation: The exploration engine.

Assumptions, transitions, per-path contexts, the attacker-capability
constraints, the worklist simulator and the transition registry.
"""

from .assumption import Assumption, AssumptionName, FavoredOutcome
from .context import (
    GlobalSimulationContext,
    SimulationContext,
    SimulationContextCollection,
    SimulationMode,
)
from .simulation import Simulation
from .simulator import Simulator
from .transition import (
    Transition,
    TransitionChain,
    TransitionDescriptor,
    TransitionInformation,
)

__all__ = [
    "Assumption",
    "AssumptionName",
    "FavoredOutcome",
    "GlobalSimulationContext",
    "SimulationContext",
    "SimulationContextCollection",
    "SimulationMode",
    "Simulation",
    "Simulator",
    "Transition",
    "TransitionChain",
    "TransitionDescriptor",
    "TransitionInformation",
]
