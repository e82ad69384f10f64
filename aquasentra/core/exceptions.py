"""
Domain error taxonomy.

Services raise these; the exception handlers registered in ``aquasentra.main``
translate them into the ``{success, message, errors}`` response envelope.
"""
from typing import Any, List, Optional


class AquasentraError(Exception):
    """Base class for errors that map onto an HTTP status."""

    status_code = 500
    default_message = "Server error"

    def __init__(self, message: Optional[str] = None, errors: Optional[List[Any]] = None):
        self.message = message or self.default_message
        self.errors = errors
        super().__init__(self.message)


class ValidationFailed(AquasentraError):
    status_code = 400
    default_message = "Validation failed"


class AuthenticationFailed(AquasentraError):
    status_code = 401
    default_message = "Not authenticated"


class PermissionDenied(AquasentraError):
    status_code = 403
    default_message = "Access denied"


class ResourceNotFound(AquasentraError):
    status_code = 404
    default_message = "Resource not found"


class ResourceConflict(AquasentraError):
    status_code = 409
    default_message = "Resource already exists"


class InvalidTransition(AquasentraError):
    """A lifecycle transition was requested from a state that does not allow it."""

    status_code = 400
    default_message = "Invalid status transition"


class StorageError(AquasentraError):
    """Raised when a media storage operation fails."""

    status_code = 500
    default_message = "Media storage failure"
