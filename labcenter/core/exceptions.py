"""Custom application exceptions."""


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, status_code: int = 500):
        """Initialize exception with message and status code."""
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


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


class InvalidTransitionException(ConflictException):
    """Raised when an action is not allowed from the appointment's current status."""

    def __init__(self, status: str, action: str, actor: str):
        """Initialize with the rejected (status, action, actor) triple."""
        self.status = status
        self.action = action
        self.actor = actor
        super().__init__(f"Action '{action}' is not allowed for {actor} on a '{status}' appointment")


class StaleVersionException(ConflictException):
    """Raised when an appointment changed since it was read."""

    def __init__(self, appointment_id: str, expected: int, actual: int | None = None):
        """Initialize with the version the caller expected."""
        self.expected = expected
        self.actual = actual
        message = f"Appointment {appointment_id} was modified by someone else (expected version {expected}"
        if actual is not None:
            message += f", found {actual}"
        super().__init__(message + "). Reload and retry.")
