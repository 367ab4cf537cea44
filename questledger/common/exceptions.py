"""
Common Exception Classes

This module defines the exceptions raised by the ledger and its collaborators.

Idempotency outcomes (a duplicate delivery, an already credited unit of work)
are not exceptions; they are returned as typed results by the ledger.
"""

from typing import Optional, Any, Dict


class BaseError(Exception):
    """Base class for all custom exceptions."""

    def __init__(self, message: str, original_exception: Optional[Exception] = None):
        """
        Initialize the exception.

        Args:
            message: Error message
            original_exception: Original exception that caused this error
        """
        super().__init__(message)
        self.message = message
        self.original_exception = original_exception


class LedgerError(BaseError):
    """Base class for errors raised by the progress and reward ledger."""


class ValidationError(LedgerError):
    """Raised for a malformed completion event, before anything is written."""

    def __init__(self, message: str, errors: Optional[Dict[str, str]] = None):
        """
        Initialize the validation error.

        Args:
            message: Error message
            errors: Mapping of field name to problem description
        """
        super().__init__(f"Validation error: {message}")
        self.errors = errors or {}


class StorageUnavailable(LedgerError):
    """
    Raised when the backing store cannot complete a unit of work.

    The unit of work was rolled back or its outcome is unknown (timeout while
    committing). Either way the caller must retry with the same event id and
    source unit id; the dedup constraint makes the retry safe.
    """

    def __init__(
        self,
        message: str,
        original_exception: Optional[Exception] = None,
        outcome_unknown: bool = False
    ):
        super().__init__(f"Storage unavailable: {message}", original_exception)
        self.outcome_unknown = outcome_unknown


class InconsistentState(LedgerError):
    """Raised when a cached learner summary differs from a replay of its events."""

    def __init__(self, learner_id: str, differences: Dict[str, Any]):
        """
        Initialize the error.

        Args:
            learner_id: Learner whose summary diverged
            differences: Field name -> (cached, replayed) pairs
        """
        fields = ", ".join(sorted(differences))
        super().__init__(f"Summary for learner {learner_id} diverges from event history ({fields})")
        self.learner_id = learner_id
        self.differences = differences


class ConfigurationError(BaseError):
    """Exception raised for configuration-related errors."""

    def __init__(self, message: str, config_key: Optional[str] = None):
        super().__init__(f"Configuration error: {message}")
        self.config_key = config_key


class ClassroomAPIError(BaseError):
    """Raised when the classroom integration API returns an error response."""

    def __init__(self, message: str, status: Optional[int] = None,
                 original_exception: Optional[Exception] = None):
        super().__init__(f"Classroom API error: {message}", original_exception)
        self.status = status
