"""
Service error taxonomy.

Services raise these instead of HTTPException so the same rules hold whether
an operation is invoked from a route, a test or a script. The API layer turns
them into ``{"reason": ..., "message": ...}`` responses.
"""
from typing import Optional


class ServiceError(Exception):
    """Base class for failures that carry a machine-readable reason."""

    status_code = 500
    default_reason = "SERVER_ERROR"

    def __init__(self, message: str, reason: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.reason = reason or self.default_reason

    def to_dict(self) -> dict:
        return {"reason": self.reason, "message": self.message}


class ValidationFailed(ServiceError):
    """Input rejected before any write (missing ids, bad numbers, invariants)."""

    status_code = 400
    default_reason = "VALIDATION_ERROR"


class ResolutionFailed(ServiceError):
    """A reference could not be resolved without guessing."""

    status_code = 400
    default_reason = "RESOLUTION_FAILED"


class NotFound(ServiceError):
    status_code = 404
    default_reason = "NOT_FOUND"


class Conflict(ServiceError):
    """State conflict; the transaction is rolled back."""

    status_code = 409
    default_reason = "CONFLICT"
