"""
core.errors: Exception hierarchy.

``ConstraintNotSatisfied`` is the only expected failure during a
simulation run; the simulator catches it per transition and discards the
branch.  The remaining exceptions signal a defect in the technique
catalog or a misuse of the API and always propagate.
"""

from __future__ import annotations


class VexsimError(Exception):
    """Base class for all vexsim errors."""


class ConstraintNotSatisfied(VexsimError):
    """A transition guard failed, or a required fact has probability 0."""


class UnsupportedOperation(VexsimError):
    """A primitive / parameter / region combination that has no definition."""


class InvalidOperation(VexsimError):
    """An operation that is not valid for the object's current state."""
