"""
Application errors.

Every error the API reports is an AppException. The exception handlers in
mailroom.core.middleware turn one into

    {"error": {"code": "ERR_xxxx", "message": "...", "details": {...}}}

with the status code the exception class declares.
"""
from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    # General (1xxx)
    INTERNAL_ERROR = "ERR_1000"
    VALIDATION_ERROR = "ERR_1001"
    UNAUTHORIZED = "ERR_1004"
    STORE_UNAVAILABLE = "ERR_1007"

    # Newsletters (2xxx)
    NEWSLETTER_ISSUE_NOT_FOUND = "ERR_2001"

    # Idempotency (3xxx)
    IDEMPOTENCY_CONFLICT = "ERR_3001"
    NEWSLETTER_ALREADY_PUBLISHED = "ERR_3002"

    # External services (5xxx)
    EMAIL_TRANSPORT_ERROR = "ERR_5001"
    EXTERNAL_SERVICE_UNAVAILABLE = "ERR_5003"
    EXTERNAL_SERVICE_TIMEOUT = "ERR_5004"


class AppException(Exception):
    """
    Base class for reported errors.

    Subclasses set error_code and status_code as class attributes; details
    carries whatever context a client (or the logs) can use.
    """

    error_code: ErrorCode = ErrorCode.INTERNAL_ERROR
    status_code: int = 500

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = dict(details or {})

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": {
                "code": self.error_code.value,
                "message": self.message,
                "details": self.details,
            }
        }


class ValidationException(AppException):
    error_code = ErrorCode.VALIDATION_ERROR
    status_code = 400

    def __init__(
        self,
        message: str,
        field: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details)
        if field:
            self.details["field"] = field


class NewsletterIssueNotFoundError(AppException):
    """The issue row is gone, usually deleted by hand"""

    error_code = ErrorCode.NEWSLETTER_ISSUE_NOT_FOUND
    status_code = 404

    def __init__(self, issue_id: str):
        super().__init__(
            f"Newsletter issue not found: {issue_id}",
            {"newsletter_issue_id": str(issue_id)},
        )


class UnauthorizedException(AppException):
    error_code = ErrorCode.UNAUTHORIZED
    status_code = 401

    def __init__(self, message: str = "Authentication failed"):
        super().__init__(message)


class IdempotencyConflictError(AppException):
    """Another request holds the same (user, key) pair and has not finished"""

    error_code = ErrorCode.IDEMPOTENCY_CONFLICT
    status_code = 400

    def __init__(self, user_id: int, idempotency_key: str):
        super().__init__(
            "A request with this idempotency key is already being processed",
            {"user_id": user_id, "idempotency_key": idempotency_key},
        )


class NewsletterAlreadyPublishedError(AppException):
    """What a publish request sees when its key was used before"""

    MESSAGE = "The newsletter has already been posted."

    error_code = ErrorCode.NEWSLETTER_ALREADY_PUBLISHED
    status_code = 400

    def __init__(self, idempotency_key: str | None = None):
        details = {} if idempotency_key is None else {"idempotency_key": idempotency_key}
        super().__init__(self.MESSAGE, details)


class TransientStoreError(AppException):
    """The database is unreachable or a lock wait ran out; retrying may succeed"""

    error_code = ErrorCode.STORE_UNAVAILABLE
    status_code = 503

    def __init__(self, operation: str, details: dict[str, Any] | None = None):
        super().__init__(f"Database unavailable during {operation}", details)
        self.details["operation"] = operation


class ExternalServiceException(AppException):
    error_code = ErrorCode.EXTERNAL_SERVICE_UNAVAILABLE
    status_code = 503

    def __init__(self, service_name: str, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, details)
        self.details["service"] = service_name


class EmailTransportError(ExternalServiceException):
    """The email API refused the send or could not be reached"""

    error_code = ErrorCode.EMAIL_TRANSPORT_ERROR

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__("email", f"Email API error: {message}", details)

    @classmethod
    def from_response(
        cls,
        operation: str,
        response: Any,
        *,
        message: str | None = None,
        max_response_chars: int = 500,
    ) -> "EmailTransportError":
        """
        Build the error from a non-2xx httpx.Response.

        The response body is kept up to max_response_chars.
        """
        status_code = getattr(response, "status_code", None)
        body = getattr(response, "text", "") or ""
        return cls(
            message or f"{operation} returned status {status_code}",
            {
                "operation": operation,
                "status_code": status_code,
                "response_text": body[:max_response_chars],
            },
        )


class ServiceTimeoutError(ExternalServiceException):
    error_code = ErrorCode.EXTERNAL_SERVICE_TIMEOUT

    def __init__(self, service_name: str, timeout_seconds: float):
        super().__init__(
            service_name,
            f"{service_name} request timed out after {timeout_seconds}s",
            {"timeout_seconds": timeout_seconds},
        )
