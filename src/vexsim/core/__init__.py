"""
core: Shared configuration, logging, errors and report helpers.

This package is the foundation layer with zero intra-project dependencies
(i.e., nothing in ``core`` imports from ``profiles``, ``simulation``, etc.).
"""

from .config import Config, load_config
from .errors import (
    ConstraintNotSatisfied,
    InvalidOperation,
    UnsupportedOperation,
    VexsimError,
)
from .fingerprint import compute_sha1
from .log import console, debug_print
from .reporting import (
    save_report,
    summarize_context,
    summarize_global_context,
    summarize_simulation,
)

__all__ = [
    "Config",
    "load_config",
    "ConstraintNotSatisfied",
    "InvalidOperation",
    "UnsupportedOperation",
    "VexsimError",
    "compute_sha1",
    "console",
    "debug_print",
    "save_report",
    "summarize_context",
    "summarize_global_context",
    "summarize_simulation",
]
