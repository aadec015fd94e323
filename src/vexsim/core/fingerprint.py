"""
core.fingerprint: Stateless SHA-1 fingerprints over ordered values.

Equivalence classes of violations, assumption sets and transition paths
are all computed through ``compute_sha1`` so that two runs over the same
inputs always produce the same identifiers.
"""

from __future__ import annotations

import hashlib
from enum import Enum
from typing import Any


def _render(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, Enum):
        return str(value.value)
    return str(value)


def compute_sha1(*values: Any) -> str:
    """Hash ``values`` in order, each rendered as ``"{value},"``."""
    joined = "".join(f"{_render(v)}," for v in values)
    return hashlib.sha1(joined.encode("utf-8")).hexdigest()
