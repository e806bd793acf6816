"""Centralized exception hierarchy for the heating controller.

All domain and service exceptions inherit from :class:`HeatingError` so that
callers can catch a single base class when they need a broad safety net, yet
still match on specific subclasses where narrower handling is appropriate.

The coordination errors (lock, verification, write, stale state) are not
raised out of the dispatcher: they are recorded on the resource state and
named in :class:`~app.domain.heating.CommandResult.error_kind`. The HTTP layer
(see ``app/utils/http.safe_route``) maps the remaining ones to status codes.

Hierarchy
---------
::

    HeatingError (base: maps to 500)
    ├── ValidationError          (400: bad input from caller)
    ├── NotFoundError            (404: unknown room / actuator)
    ├── CoordinationError        (409: command coordination failure)
    │   ├── LockTimeoutError     (resource busy beyond the queue wait)
    │   ├── VerificationTimeoutError (write accepted, state never matched)
    │   └── StaleStateError      (abandoned state recovered by the sweep)
    ├── DeviceError              (503: hardware communication)
    │   └── WriteFailureError    (the actuator write API raised)
    └── ConfigurationError       (500: missing / invalid config)
"""

from __future__ import annotations


class HeatingError(Exception):
    """Base exception for all heating controller errors.

    Parameters
    ----------
    message:
        Human-readable description (logged server-side).
    detail:
        Optional machine-readable context dict attached to the error for
        structured logging.
    """

    http_status: int = 500

    def __init__(self, message: str = "", *, detail: dict | None = None) -> None:
        super().__init__(message)
        self.detail = detail or {}


# ── Client errors (4xx) ──────────────────────────────────────────────


class ValidationError(HeatingError):
    """Caller supplied invalid or incomplete input (HTTP 400)."""

    http_status: int = 400


class NotFoundError(HeatingError):
    """Requested room or actuator does not exist (HTTP 404)."""

    http_status: int = 404


# ── Coordination errors ──────────────────────────────────────────────


class CoordinationError(HeatingError):
    """Command coordination failure for a single actuator (HTTP 409)."""

    http_status: int = 409
    kind: str = "coordination"


class LockTimeoutError(CoordinationError):
    """The actuator stayed busy for longer than the queue wait."""

    kind: str = "lock_timeout"


class VerificationTimeoutError(CoordinationError):
    """The write was accepted but the reported state never matched."""

    kind: str = "verification_timeout"


class StaleStateError(CoordinationError):
    """An abandoned in-flight state was reset by the periodic sweep."""

    kind: str = "stale_state"


# ── Server errors (5xx) ──────────────────────────────────────────────


class DeviceError(HeatingError):
    """Hardware communication or device-protocol failure (HTTP 503)."""

    http_status: int = 503
    kind: str = "device"


class WriteFailureError(DeviceError):
    """The actuator write API raised."""

    kind: str = "write_failure"


class ConfigurationError(HeatingError):
    """Missing or invalid application configuration (HTTP 500)."""

    http_status: int = 500
