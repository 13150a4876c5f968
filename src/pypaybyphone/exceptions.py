"""Library exceptions."""

from __future__ import annotations

from enum import StrEnum


class PyPayByPhoneError(Exception):
    """Base exception for the library.

    ``error_type`` tells the request layer which side is at fault:
    ``client`` (bad account, vehicle or input), ``upstream`` (the service
    rejected the call or changed its format) or ``transient`` (network trouble,
    worth retrying).
    """

    error_type = "unknown"
    default_error_code: str | None = None

    def __init__(
        self,
        message: str | None = None,
        *,
        error_code: str | None = None,
        detail: str | None = None,
        user_message: str | None = None,
    ) -> None:
        text = message or detail or ""
        super().__init__(text)
        self.error_code = error_code or self.default_error_code
        self.detail = detail or text
        self.user_message = user_message

    @property
    def retryable(self) -> bool:
        return self.error_type == "transient"


class ValidationError(PyPayByPhoneError):
    """Raised when inputs fail validation."""

    error_type = "client"
    default_error_code = "validation_error"


class ConfigError(PyPayByPhoneError):
    """Raised when the account configuration is missing or malformed."""

    error_type = "client"
    default_error_code = "config_error"


class NotFoundError(PyPayByPhoneError):
    """Raised when an account or vehicle reference is unknown."""

    error_type = "client"
    default_error_code = "not_found"


class NoActiveSession(NotFoundError):
    """Raised when no current parking session matches the vehicle."""

    default_error_code = "no_active_session"


class TransportError(PyPayByPhoneError):
    """Raised when network communication fails."""

    error_type = "transient"
    default_error_code = "transport_error"


class AuthError(PyPayByPhoneError):
    """Raised when the service rejects the access token."""

    error_type = "upstream"
    default_error_code = "auth_error"


class ParseError(PyPayByPhoneError):
    """Raised when a response does not have the expected shape."""

    error_type = "upstream"
    default_error_code = "parse_error"


class ServiceError(PyPayByPhoneError):
    """Raised when the service answers with an unexpected status."""

    error_type = "upstream"
    default_error_code = "service_error"


class BookingError(ServiceError):
    """Raised when the service refuses to create a parking session."""

    default_error_code = "rejected_by_service"

    def __init__(self, message: str | None = None, *, status: int, body: str, **kwargs) -> None:
        super().__init__(message or f"Booking rejected with status {status}.", **kwargs)
        self.status = status
        self.body = body


class BootstrapFailure(StrEnum):
    API_KEY_NOT_FOUND = "api_key_not_found"
    AUTH_REJECTED = "auth_rejected"
    NO_ACCOUNT = "no_account"


_BOOTSTRAP_ERROR_TYPES = {
    BootstrapFailure.API_KEY_NOT_FOUND: "upstream",
    BootstrapFailure.AUTH_REJECTED: "client",
    BootstrapFailure.NO_ACCOUNT: "client",
}


class BootstrapError(PyPayByPhoneError):
    """Raised when credentials cannot be turned into an authenticated context."""

    def __init__(self, reason: BootstrapFailure, message: str | None = None, **kwargs) -> None:
        kwargs.setdefault("error_code", reason.value)
        super().__init__(message or f"Bootstrap failed: {reason.value}.", **kwargs)
        self.reason = reason

    @property
    def error_type(self) -> str:  # type: ignore[override]
        return _BOOTSTRAP_ERROR_TYPES[self.reason]
