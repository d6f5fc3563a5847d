"""
Custom exception classes for the application.
"""

from typing import Any


class AppException(Exception):
    """Base exception for application errors."""

    status_code: int = 500

    def __init__(
        self,
        message: str,
        code: str = "APP_ERROR",
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize application exception.

        Args:
            message: Human-readable error message.
            code: Machine-readable error code.
            details: Additional error details.
        """
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}


class AuthenticationError(AppException):
    """Raised when authentication fails."""

    status_code = 401

    def __init__(
        self,
        message: str = "Authentication failed",
        code: str = "AUTH_ERROR",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, code, details)


class TokenExpiredError(AuthenticationError):
    """Raised when a token has expired."""

    def __init__(
        self,
        message: str = "Token has expired",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, "TOKEN_EXPIRED", details)


class InvalidTokenError(AuthenticationError):
    """Raised when a token is invalid."""

    def __init__(
        self,
        message: str = "Invalid token",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, "INVALID_TOKEN", details)


class CallbackAuthError(AuthenticationError):
    """Raised when a platform callback carries a missing or wrong shared secret."""

    def __init__(self, message: str = "Invalid callback secret") -> None:
        super().__init__(message, "INVALID_CALLBACK_SECRET")


class ValidationError(AppException):
    """Raised when business validation fails (distinct from pydantic ValidationError)."""

    status_code = 400

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        code: str = "VALIDATION_ERROR",
    ) -> None:
        super().__init__(message, code, details)


class NotFoundError(AppException):
    """Raised when a requested entity does not exist."""

    status_code = 404

    def __init__(
        self,
        message: str = "Not found",
        code: str = "NOT_FOUND",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, code, details)


class CallNotFoundError(NotFoundError):
    """Raised when a call record cannot be resolved from its correlation ids."""

    def __init__(self, call_id: str | None = None, run_id: str | None = None) -> None:
        self.call_id = call_id
        self.run_id = run_id
        key = f"call_id={call_id}" if call_id else f"run_id={run_id}"
        super().__init__(
            f"Call not found: {key}",
            "CALL_NOT_FOUND",
            {"call_id": call_id, "run_id": run_id},
        )


class ConcurrentUpdateError(AppException):
    """Raised when a conditional update keeps losing its compare-and-swap."""

    def __init__(self, record_id: Any, attempts: int) -> None:
        super().__init__(
            f"Call {record_id} changed concurrently {attempts} times; giving up",
            "CONCURRENT_UPDATE",
            {"call_id": str(record_id), "attempts": attempts},
        )


class CallPlatformError(AppException):
    """Raised when the calling platform could not start a requested call."""

    status_code = 502

    def __init__(
        self,
        message: str = "Calling platform error",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, "PLATFORM_ERROR", details)
