"""Custom application exceptions."""

from typing import Any


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, status_code: int = 500, errors: list[Any] | None = None):
        """Initialize exception with message, status code and optional error details."""
        self.message = message
        self.status_code = status_code
        self.errors = errors
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


class BadRequestException(AppException):
    """Bad request exception."""

    def __init__(self, message: str = "Bad request", errors: list[Any] | None = None):
        """Initialize with 400 status code."""
        super().__init__(message, status_code=400, errors=errors)


class PayloadTooLargeException(AppException):
    """Uploaded payload exceeds the configured size limit."""

    def __init__(self, message: str = "Payload too large"):
        """Initialize with 413 status code."""
        super().__init__(message, status_code=413)


class ConflictException(AppException):
    """Conflict exception."""

    def __init__(self, message: str = "Conflict"):
        """Initialize with 409 status code."""
        super().__init__(message, status_code=409)


class StoreConstraintException(AppException):
    """A store uniqueness or shape constraint rejected a write."""

    def __init__(self, fields: list[str], message: str = "Duplicate field value entered"):
        """Initialize with 409 status code and one error entry per offending field."""
        self.fields = fields
        super().__init__(
            message,
            status_code=409,
            errors=[{"field": field, "message": f"{field} already exists"} for field in fields],
        )


class ValidationException(AppException):
    """Validation error exception."""

    def __init__(self, message: str = "Validation error", errors: list[Any] | None = None):
        """Initialize with 422 status code."""
        super().__init__(message, status_code=422, errors=errors)


class TabularParseError(AppException):
    """An uploaded spreadsheet could not be read at all."""

    def __init__(self, message: str):
        """Initialize with 400 status code."""
        super().__init__(message, status_code=400)
