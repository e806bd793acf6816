"""Utility functions for time handling.

Coordination state is persisted with epoch-second timestamps (what the
injected clocks return); anything user facing is rendered as a timezone-aware
ISO-8601 string via :func:`epoch_to_iso`.
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Callable
from zoneinfo import ZoneInfo

Clock = Callable[[], float]
Sleeper = Callable[[float], None]


def utc_now() -> datetime:
    """Return current UTC time as an aware datetime."""
    return datetime.now(timezone.utc)


def iso_now(*, timespec: str | None = None) -> str:
    """Return current UTC time as an ISO8601 string (timezone-aware)."""
    now = utc_now()
    if timespec:
        return now.isoformat(timespec=timespec)
    return now.isoformat()


def epoch_now() -> float:
    return time.time()


def epoch_to_iso(value: float | None) -> str | None:
    """Render an epoch-seconds timestamp as UTC ISO8601 (None passes through)."""
    if value is None:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc).isoformat(timespec="seconds")


def epoch_to_local(value: float, tz_name: str | None = None) -> datetime:
    """Convert an epoch timestamp to an aware datetime in ``tz_name`` (or the host zone)."""
    utc_dt = datetime.fromtimestamp(value, tz=timezone.utc)
    if tz_name:
        return utc_dt.astimezone(ZoneInfo(tz_name))
    return utc_dt.astimezone()

