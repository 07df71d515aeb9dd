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


class InvalidInputException(ValidationException):
    """Malformed or missing caller input (bad date, empty reason, off-schedule slot)."""

    def __init__(self, message: str = "Invalid input"):
        """Initialize with 422 status code."""
        super().__init__(message)


class InvalidTransitionException(ConflictException):
    """The requested event is not legal from the appointment's current status."""

    def __init__(self, message: str = "Invalid appointment transition"):
        """Initialize with 409 status code."""
        super().__init__(message)


class SlotConflictException(ConflictException):
    """The target slot is already held by another active appointment."""

    def __init__(self, message: str = "The requested slot is already booked"):
        """Initialize with 409 status code."""
        super().__init__(message)


class RepositoryException(AppException):
    """The storage layer failed."""

    def __init__(self, message: str = "Storage unavailable"):
        """Initialize with 503 status code."""
        super().__init__(message, status_code=503)
