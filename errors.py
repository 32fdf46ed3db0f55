"""
Error taxonomy for the financial reporting service.

Every failure the core can report is a ReportingError subclass carrying a
machine-readable code, a details dict and the HTTP status the API layer
renders it with. None of these are fatal: each is a rejected action with
an explanation.
"""
from typing import Any, Dict, Optional


class ReportingError(Exception):
    code = "REPORTING_ERROR"
    status_code = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": {
                "message": self.message,
                "code": self.code,
                "details": self.details,
                "type": self.__class__.__name__,
            }
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(message={self.message!r}, code={self.code!r})"


class ValidationError(ReportingError):
    """Malformed or out-of-range input (negative amount, missing category, bad period)."""

    code = "VALIDATION_ERROR"
    status_code = 422


class DuplicatePeriod(ReportingError):
    """A non-archived report already exists for the same period key."""

    code = "DUPLICATE_PERIOD"
    status_code = 409


class InvalidTransition(ReportingError):
    """The lifecycle action is not allowed from the record's current status."""

    code = "INVALID_TRANSITION"
    status_code = 409


class PermissionDenied(ReportingError):
    code = "PERMISSION_DENIED"
    status_code = 403


class NotFound(ReportingError):
    code = "NOT_FOUND"
    status_code = 404


class AuthenticationFailed(ReportingError):
    code = "AUTHENTICATION_FAILED"
    status_code = 401
