"""
Error types for the PIM Engine.

Every error carries a short human-readable message plus optional
multi-line detail (provider error code, message and sub-errors).
"""

from typing import List, Optional


class PIMError(Exception):
    """Base class for all PIM Engine errors."""

    def __init__(self, message: str, details: Optional[List[str]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or []

    def __str__(self):
        if not self.details:
            return self.message
        return self.message + "\n" + "\n".join(f"  {line}" for line in self.details)


class ConnectionAuthorizationError(PIMError):
    """No valid session, or the session lacks required permission scopes."""


class DirectoryApiError(PIMError):
    """Transport or HTTP failure reported by the directory."""

    def __init__(self, message: str, details: Optional[List[str]] = None,
                 status_code: Optional[int] = None):
        super().__init__(message, details)
        self.status_code = status_code


class ValidationFailedError(PIMError):
    """Validation kept failing until the attempt ceiling was reached."""

    def __init__(self, message: str, details: Optional[List[str]] = None, attempts: int = 0):
        super().__init__(message, details)
        self.attempts = attempts


class AssignmentLockedError(PIMError):
    """The assignment is still inside its minimum holding period."""

    def __init__(self, message: str, minutes_remaining: int = 0):
        super().__init__(message)
        self.minutes_remaining = minutes_remaining


class DeactivationTimeoutError(PIMError):
    """The directory still reported the assignment active when the wait ran out."""


class InvalidTransitionError(PIMError, ValueError):
    """The requested action is not legal in the assignment's current state."""
