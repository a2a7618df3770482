from __future__ import annotations

from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse


class ApiError(Exception):
    status_code = 500
    default_code = "INTERNAL_ERROR"
    retryable = False

    def __init__(
        self,
        status_code: int | None = None,
        code: str | None = None,
        message: str = "Request failed.",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        if status_code is not None:
            self.status_code = status_code
        self.code = code or self.default_code
        self.message = message
        self.details = details or {}


class ValidationError(ApiError):
    """Malformed input. Nothing is persisted."""

    status_code = 400
    default_code = "VALIDATION_ERROR"

    def __init__(self, message: str, *, code: str | None = None, details: dict[str, Any] | None = None):
        super().__init__(code=code, message=message, details=details)


class AuthError(ApiError):
    status_code = 401
    default_code = "INVALID_CREDENTIALS"

    def __init__(
        self,
        message: str = "Invalid national ID or PIN.",
        *,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(code=code, message=message, details=details)


class AuthorizationError(ApiError):
    """Inactive or blacklisted guard, missing PIN, out-of-geofence submission."""

    status_code = 403
    default_code = "FORBIDDEN"

    def __init__(self, message: str, *, code: str | None = None, details: dict[str, Any] | None = None):
        super().__init__(code=code, message=message, details=details)


class NotFoundError(ApiError):
    status_code = 404
    default_code = "NOT_FOUND"

    def __init__(self, message: str, *, code: str | None = None, details: dict[str, Any] | None = None):
        super().__init__(code=code, message=message, details=details)


class ConflictError(ApiError):
    status_code = 409
    default_code = "CONFLICT"

    def __init__(self, message: str, *, code: str | None = None, details: dict[str, Any] | None = None):
        super().__init__(code=code, message=message, details=details)


class IntegrityError(ApiError):
    """A stored integrity hash no longer matches the hash recomputed from its row."""

    status_code = 409
    default_code = "INTEGRITY_MISMATCH"

    def __init__(self, message: str, *, details: dict[str, Any] | None = None):
        super().__init__(message=message, details=details)


class TransientError(ApiError):
    status_code = 503
    default_code = "TRANSIENT_FAILURE"
    retryable = True

    def __init__(
        self,
        message: str = "Temporary failure, retry later.",
        *,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(code=code, message=message, details=details)


ERROR_CLASSES_BY_STATUS: dict[int, type[ApiError]] = {
    400: ValidationError,
    401: AuthError,
    403: AuthorizationError,
    404: NotFoundError,
    409: ConflictError,
}


def get_request_id(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return str(request_id)
    return "unknown"


def error_response(
    request: Request,
    *,
    status_code: int,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
) -> JSONResponse:
    payload: dict[str, Any] = {
        "error": {
            "code": code,
            "message": message,
            "request_id": get_request_id(request),
        }
    }
    if details:
        payload["error"]["details"] = details
    return JSONResponse(status_code=status_code, content=payload)
