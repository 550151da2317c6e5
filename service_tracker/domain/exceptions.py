"""Domain-specific exceptions."""

from typing import Final


class DomainError(Exception):
    """Base exception for domain errors."""

    pass


class ValidationError(DomainError):
    """Raised when domain validation fails.

    ``field`` names the offending input as the API spells it and ``code`` says
    how it failed, so callers never have to read the message.
    """

    REQUIRED: Final = "field_required"
    INVALID_FORMAT: Final = "field_invalid_format"
    INVALID_VALUE: Final = "field_invalid_value"

    def __init__(self, message: str, field: str = "", code: str = INVALID_VALUE):
        self.field = field
        self.code = code
        super().__init__(message)


class UnauthenticatedError(DomainError):
    """Raised when an operation requires an authenticated identity."""

    pass


class AccessDeniedError(DomainError):
    """Raised when the caller has no active allowlist entry."""

    pass


class NotFoundError(DomainError):
    """Raised when a referenced record does not exist."""

    pass


class ConfigurationError(DomainError):
    """Raised when required backend configuration is missing."""

    pass


class NotificationError(DomainError):
    """Raised when a notification side channel fails."""

    pass


class TelegramError(NotificationError):
    """Raised when a Telegram Bot API call fails."""

    def __init__(self, method: str, status_code: int, description: str = ""):
        self.method = method
        self.status_code = status_code
        self.description = description
        suffix = f" {description}" if description else ""
        super().__init__(f"Telegram {method} failed ({status_code}).{suffix}")


class ServiceDayApiError(DomainError):
    """Raised when the upstream service-day API rejects a call."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)
