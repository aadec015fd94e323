"""
profiles: The data model consumed by the simulation engine.

Enumerations, memory addresses, violations and the hardware / operating
system / application profiles that make up a ``Target``.
"""

from .enums import (
    MemoryAccessMethod,
    MemoryAccessParameter,
    MemoryAccessParameterState,
    MemoryAddress,
    MemoryContentDataType,
    MemoryRegionType,
    MitigationPolicy,
)
from .target import (
    Application,
    ApplicationProduct,
    Hardware,
    OperatingSystem,
    Target,
    create_targets,
    load_target,
)
from .violation import TransitiveViolation, Violation, generate_base_violations

__all__ = [
    "MemoryAccessMethod",
    "MemoryAccessParameter",
    "MemoryAccessParameterState",
    "MemoryAddress",
    "MemoryContentDataType",
    "MemoryRegionType",
    "MitigationPolicy",
    "Application",
    "ApplicationProduct",
    "Hardware",
    "OperatingSystem",
    "Target",
    "create_targets",
    "load_target",
    "TransitiveViolation",
    "Violation",
    "generate_base_violations",
]
