"""
JSON envelope helpers for the heating API.

Every response has the shape ``{"ok", "data", "error", "message"}``. Domain
errors carry their own ``http_status``; anything else becomes a generic 500
whose details stay in the server log.
"""
from __future__ import annotations

import functools
import logging
from typing import Any, Callable

from flask import Response, jsonify

from app.domain.exceptions import HeatingError
from app.utils.time import iso_now

_log = logging.getLogger(__name__)

# Client-facing text for server-side failures; the real cause is only logged
_GENERIC_MESSAGES: dict[int, str] = {
    400: "Invalid request",
    404: "Resource not found",
    409: "Conflict",
    500: "An internal error occurred",
    503: "Device hub unavailable",
}


def success_response(
    data: dict | list | None = None,
    status: int = 200,
    *,
    message: str | None = None,
) -> Response:
    payload: dict[str, Any] = {"ok": True, "data": data, "error": None}
    if message is not None:
        payload["message"] = message
    response = jsonify(payload)
    response.status_code = status
    return response


def error_response(
    message: str,
    status: int = 500,
    *,
    details: dict | None = None,
) -> Response:
    body: dict[str, Any] = {
        "ok": False,
        "data": None,
        "error": {"message": message, "status": status, "timestamp": iso_now()},
        "message": message,
    }
    if details:
        body["details"] = details
    response = jsonify(body)
    response.status_code = status
    return response


def safe_error(exc: BaseException, status: int = 500, *, context: str = "") -> Response:
    """Log ``exc`` with its traceback and answer with the generic message for ``status``."""
    _log.error("API error [%s] %s: %s", status, context, exc, exc_info=exc)
    return error_response(_GENERIC_MESSAGES.get(status, _GENERIC_MESSAGES[500]), status)


def heating_error_response(exc: HeatingError, *, context: str = "") -> Response:
    """Client errors keep their message; 5xx domain errors are masked like any other failure."""
    status = exc.http_status
    if status >= 500:
        return safe_error(exc, status, context=context or type(exc).__name__)
    return error_response(str(exc) or _GENERIC_MESSAGES.get(status, "Request failed"), status)


def safe_route(error_message: str = "An internal error occurred") -> Callable:
    """Wrap a route so that exceptions become JSON error envelopes.

    Usage::

        @heating_api.post("/rooms/<room>/run")
        @safe_route("Failed to run room heating")
        def run_room(room):
            ...
    """

    def decorator(fn: Callable) -> Callable:
        @functools.wraps(fn)
        def wrapper(*args: Any, **kwargs: Any) -> Response:
            try:
                return fn(*args, **kwargs)
            except HeatingError as exc:
                return heating_error_response(exc, context=error_message)
            except Exception as exc:
                return safe_error(exc, 500, context=error_message)

        return wrapper

    return decorator
