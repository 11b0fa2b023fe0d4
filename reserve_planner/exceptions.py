"""
Exceptions raised by reserve_planner.

Readers raise DataError, the problem builder raises ValidationError and
ProblemError, and the solver raises SolverError / InfeasibleError.
"""

from typing import Any, Dict, Optional


class ReservePlannerError(Exception):
    """Base exception for all reserve_planner errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(ReservePlannerError, ValueError):
    """Invalid argument or inconsistent input data."""
    pass


class DataError(ReservePlannerError):
    """Input files or rasters could not be read or do not line up."""
    pass


class ProblemError(ReservePlannerError):
    """Problem is incomplete (no objective, missing targets, ...)."""
    pass


class SolverError(ReservePlannerError, RuntimeError):
    """Backend unavailable or returned no usable solution."""
    pass


class InfeasibleError(SolverError):
    """No solution satisfies the constraints."""

    def __init__(self, message: str, status: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.status = status
