import pytest

from vexsim.profiles.enums import (
    MemoryAccessDirection,
    MemoryAccessMethod,
    MemoryAccessParameterState,
    MemoryAddressingMode,
    MemoryRegionType,
)
from vexsim.profiles.target import Target
from vexsim.profiles.violation import Violation
from vexsim.simulation.context import GlobalSimulationContext, SimulationContext


@pytest.fixture
def make_context():
    """Build a context over ``target`` with the given global switches set."""

    def _make(target=None, **switches):
        global_ctx = GlobalSimulationContext(target or Target())
        for key, value in switches.items():
            setattr(global_ctx, key, value)
        ctx = SimulationContext(global_ctx)
        ctx.current_violation = global_ctx.target.violation
        return ctx

    return _make


@pytest.fixture
def stack_write():
    """A forward stack overrun with fixed base and displacement."""

    def _make(**overrides):
        fields = dict(
            method=MemoryAccessMethod.WRITE,
            base_state=MemoryAccessParameterState.FIXED,
            content_src_state=MemoryAccessParameterState.CONTROLLED,
            displacement_state=MemoryAccessParameterState.FIXED,
            extent_state=MemoryAccessParameterState.CONTROLLED,
            base_region_type=MemoryRegionType.STACK,
            addressing_mode=MemoryAddressingMode.RELATIVE,
            direction=MemoryAccessDirection.FORWARD,
            function_stack_protection_enabled=False,
        )
        fields.update(overrides)
        return Violation(**fields)

    return _make
