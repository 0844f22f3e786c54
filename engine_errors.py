"""Exceptions raised by the experimentation engine.

Every exception derives from ``ExperimentEngineError``. Bad input is reported
with ``ValueError`` subclasses so callers that already guard numeric input with
``except ValueError`` keep working.
"""

from typing import Any, Dict, Optional


class ExperimentEngineError(Exception):
    """Base exception for all experimentation engine errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.details: Dict[str, Any] = details or {}


class InvalidArgumentError(ExperimentEngineError, ValueError):
    """Raised when a numeric argument is NaN, infinite or outside its valid range."""


class ExperimentValidationError(InvalidArgumentError):
    """Raised when an experiment configuration breaks a structural invariant."""


class ExperimentNotFoundError(ExperimentEngineError, ValueError):
    """Raised when an experiment id is not registered."""


class InvalidTransitionError(ExperimentEngineError, ValueError):
    """Raised when a lifecycle transition is not allowed from the current status."""
