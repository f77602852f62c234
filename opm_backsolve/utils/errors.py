"""
Exception taxonomy for OPM pricing and backsolve.

All exceptions derive from ValueError so that callers treating bad input
as a ValueError keep working. Convergence failures and post-hoc result
validation failures are not exceptions: they are reported on the result
objects (``converged=False`` / ``valid=False``).
"""

from typing import Any, Optional


class OPMError(ValueError):
    """Base class for validation-time failures."""


class ParameterRangeError(OPMError):
    """
    A numeric input is outside its valid domain.

    Attributes:
        field: Name of the offending field (e.g. "volatility")
        value: The rejected value
    """

    def __init__(self, field: str, value: Any, message: Optional[str] = None) -> None:
        self.field = field
        self.value = value
        super().__init__(message or f"{field} out of range, got {value}")


class StructuralError(OPMError):
    """Missing or contradictory collections, or an unusable solver configuration."""


class DomainInfeasibilityError(OPMError):
    """A well-formed request has no mathematically sensible solution."""
