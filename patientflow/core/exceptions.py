"""Custom application exceptions."""

from typing import Any


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, status_code: int = 500):
        """Initialize exception with message and status code."""
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)

    @property
    def details(self) -> dict[str, Any] | None:
        """Extra machine-readable context rendered next to the message."""
        return None


class NotFoundException(AppException):
    """Resource not found exception."""

    def __init__(self, message: str = "Resource not found"):
        """Initialize with 404 status code."""
        super().__init__(message, status_code=404)


class UnauthorizedException(AppException):
    """Unauthorized access exception."""

    def __init__(self, message: str = "Unauthorized"):
        """Initialize with 401 status code."""
        super().__init__(message, status_code=401)


class ForbiddenException(AppException):
    """Forbidden access exception."""

    def __init__(self, message: str = "Forbidden"):
        """Initialize with 403 status code."""
        super().__init__(message, status_code=403)


class BadRequestException(AppException):
    """Bad request exception."""

    def __init__(self, message: str = "Bad request"):
        """Initialize with 400 status code."""
        super().__init__(message, status_code=400)


class ConflictException(AppException):
    """Conflict exception."""

    def __init__(self, message: str = "Conflict"):
        """Initialize with 409 status code."""
        super().__init__(message, status_code=409)


class ValidationException(AppException):
    """Validation error exception."""

    def __init__(self, message: str = "Validation error"):
        """Initialize with 422 status code."""
        super().__init__(message, status_code=422)


class TransitionDenied(ConflictException):
    """A status change that the transition table does not allow.

    Recoverable: the caller can re-read the current status or pick another
    target.
    """

    def __init__(self, current_status: str, target_status: str):
        self.current_status = current_status
        self.target_status = target_status
        super().__init__(f"Transition not allowed: {current_status} -> {target_status}")

    @property
    def details(self) -> dict[str, Any]:
        return {
            "current_status": self.current_status,
            "target_status": self.target_status,
        }


class ConcurrentTransitionError(ConflictException):
    """The row changed between the read and the conditional write."""

    def __init__(self, resource_id: str, expected_status: str):
        self.resource_id = resource_id
        self.expected_status = expected_status
        super().__init__(
            f"Status of {resource_id} changed while updating (expected {expected_status}); reload and retry"
        )

    @property
    def details(self) -> dict[str, Any]:
        return {"resource_id": self.resource_id, "expected_status": self.expected_status}


class EncounterCreationFailed(AppException):
    """Opening an encounter failed (missing identifiers or store error)."""

    def __init__(self, message: str = "Unable to open encounter", status_code: int = 500):
        super().__init__(message, status_code=status_code)
