"""Maps HTTP responses from the patrol server back onto the shared error taxonomy."""

from __future__ import annotations

from typing import Any

import requests

from fieldops.errors import ERROR_CLASSES_BY_STATUS, ApiError, TransientError


class LocationUnavailableError(TransientError):
    def __init__(self, message: str = "No fresh location fix available.") -> None:
        super().__init__(message, code="LOCATION_UNAVAILABLE")


def _error_body(response: requests.Response) -> dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {}
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        return body["error"]
    return {}


def error_from_response(response: requests.Response) -> ApiError:
    body = _error_body(response)
    message = str(body.get("message") or f"HTTP {response.status_code}")
    code = body.get("code")
    details = body.get("details") if isinstance(body.get("details"), dict) else None

    if response.status_code >= 500 or response.status_code in (408, 429):
        return TransientError(message, code=code, details=details)

    error_cls = ERROR_CLASSES_BY_STATUS.get(response.status_code)
    if error_cls is None:
        return ApiError(status_code=response.status_code, code=code, message=message, details=details)
    return error_cls(message, code=code, details=details)


def raise_for_response(response: requests.Response) -> None:
    if response.status_code < 400:
        return
    raise error_from_response(response)


def decode_json(response: requests.Response) -> dict[str, Any]:
    """A successful status with an unreadable body (captive portal, proxy page) is inconclusive."""
    try:
        body = response.json()
    except ValueError as exc:
        raise TransientError(
            f"Unreadable response body (HTTP {response.status_code}).",
            code="INVALID_RESPONSE",
        ) from exc
    if not isinstance(body, dict):
        raise TransientError(
            f"Unexpected response body (HTTP {response.status_code}).",
            code="INVALID_RESPONSE",
        )
    return body
