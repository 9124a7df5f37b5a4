"""Error handling module for spxhub.

This module defines error codes, exception classes, and response models.
Boundary adapters (Docker driver, SQL store) translate vendor errors into
these types so lifecycle logic never inspects httpx or SQLAlchemy errors.

Error Response Format:
{
    "error": {
        "code": "INSTANCE_NOT_FOUND",
        "message": "Instance not found"
    }
}

Usage:
    from spxhub.core.errors import InstanceNotFoundError

    raise InstanceNotFoundError()
    raise InvalidStateTransitionError("Instance is already running")
"""

from enum import Enum

from pydantic import BaseModel


class ErrorCode(str, Enum):
    """Error codes."""

    INSTANCE_NOT_FOUND = "INSTANCE_NOT_FOUND"
    WORKLOAD_NOT_FOUND = "WORKLOAD_NOT_FOUND"
    INVALID_STATE_TRANSITION = "INVALID_STATE_TRANSITION"
    LIMIT_EXCEEDED = "LIMIT_EXCEEDED"
    DRIVER_FAILURE = "DRIVER_FAILURE"
    WORKLOAD_ALREADY_EXISTS = "WORKLOAD_ALREADY_EXISTS"
    ALLOCATION_EXHAUSTED = "ALLOCATION_EXHAUSTED"
    PORT_CONFLICT = "PORT_CONFLICT"
    BACKUP_FAILED = "BACKUP_FAILED"


class ErrorDetail(BaseModel):
    """Error detail containing code and message."""

    code: str
    message: str


class ErrorResponse(BaseModel):
    """Error response format."""

    error: ErrorDetail


class SpxHubError(Exception):
    """Base exception for spxhub.

    All control plane exceptions inherit from this class so the caller
    (route layer, ops app) can map them in one place.

    Attributes:
        code: The error code from ErrorCode enum
        message: Human-readable error message
        status_code: HTTP status code a route layer should return
    """

    def __init__(self, code: ErrorCode, message: str, status_code: int) -> None:
        self.code = code
        self.message = message
        self.status_code = status_code
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert exception to ErrorResponse model."""
        return ErrorResponse(
            error=ErrorDetail(code=self.code.value, message=self.message)
        )


class InstanceNotFoundError(SpxHubError):
    """404 Not Found - Instance record does not exist."""

    def __init__(self, message: str = "Instance not found") -> None:
        super().__init__(ErrorCode.INSTANCE_NOT_FOUND, message, 404)


class WorkloadNotFoundError(SpxHubError):
    """404 Not Found - Workload does not exist in the runtime."""

    def __init__(self, message: str = "Workload not found") -> None:
        super().__init__(ErrorCode.WORKLOAD_NOT_FOUND, message, 404)


class InvalidStateTransitionError(SpxHubError):
    """409 Conflict - Operation not allowed from the current status."""

    def __init__(self, message: str = "Invalid state transition") -> None:
        super().__init__(ErrorCode.INVALID_STATE_TRANSITION, message, 409)


class LimitExceededError(SpxHubError):
    """403 Forbidden - Caller-supplied instance quota reached."""

    def __init__(self, message: str = "Instance limit exceeded") -> None:
        super().__init__(ErrorCode.LIMIT_EXCEEDED, message, 403)


class DriverFailureError(SpxHubError):
    """502 Bad Gateway - Container runtime operation failed."""

    def __init__(self, message: str = "Workload driver operation failed") -> None:
        super().__init__(ErrorCode.DRIVER_FAILURE, message, 502)


class BackupFailedError(DriverFailureError):
    """502 Bad Gateway - Backup job exited with a non-zero code."""

    def __init__(self, message: str = "Backup job failed", exit_code: int | None = None) -> None:
        super().__init__(message)
        self.code = ErrorCode.BACKUP_FAILED
        self.exit_code = exit_code


class WorkloadAlreadyExistsError(SpxHubError):
    """409 Conflict - A workload with this name already exists."""

    def __init__(self, message: str = "Workload already exists") -> None:
        super().__init__(ErrorCode.WORKLOAD_ALREADY_EXISTS, message, 409)


class AllocationExhaustedError(SpxHubError):
    """503 Service Unavailable - No free port in the configured range."""

    def __init__(self, message: str = "No free port available") -> None:
        super().__init__(ErrorCode.ALLOCATION_EXHAUSTED, message, 503)


class PortConflictError(SpxHubError):
    """409 Conflict - Port already recorded on another instance."""

    def __init__(self, port: int, message: str | None = None) -> None:
        self.port = port
        super().__init__(
            ErrorCode.PORT_CONFLICT,
            message or f"Port {port} is already assigned",
            409,
        )
