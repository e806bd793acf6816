"""
Override Mode Records

Per-room records of the Boost, Pause and ManualOverride modes. Normal has no
record: it is what a room runs when no other record is active and unexpired.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any

from app.enums.heating import InterventionType, OverrideMode


@dataclass
class ModeRecord:
    mode: OverrideMode
    active: bool = False
    start_time: float | None = None
    duration_minutes: float | None = None

    # ManualOverride only
    override_type: InterventionType | None = None
    original_value: Any = None
    current_value: Any = None
    actuator_id: str | None = None

    reason: str | None = None

    def elapsed_minutes(self, now: float) -> float:
        if self.start_time is None:
            return 0.0
        return (now - self.start_time) / 60.0

    def remaining_minutes(self, now: float) -> float:
        if self.duration_minutes is None:
            return 0.0
        return max(0.0, self.duration_minutes - self.elapsed_minutes(now))

    def is_running(self, now: float) -> bool:
        """Active and not yet elapsed, without touching storage."""
        return self.active and self.start_time is not None and self.remaining_minutes(now) > 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "mode": self.mode.value,
            "active": self.active,
            "start_time": self.start_time,
            "duration_minutes": self.duration_minutes,
            "override_type": self.override_type.value if self.override_type else None,
            "original_value": self.original_value,
            "current_value": self.current_value,
            "actuator_id": self.actuator_id,
            "reason": self.reason,
        }

    @classmethod
    def from_dict(cls, mode: OverrideMode, data: dict[str, Any] | None) -> "ModeRecord":
        if not data:
            return cls(mode=mode)
        override_type = data.get("override_type")
        return cls(
            mode=mode,
            active=bool(data.get("active")),
            start_time=data.get("start_time"),
            duration_minutes=data.get("duration_minutes"),
            override_type=InterventionType(override_type) if override_type else None,
            original_value=data.get("original_value"),
            current_value=data.get("current_value"),
            actuator_id=data.get("actuator_id"),
            reason=data.get("reason"),
        )


@dataclass(frozen=True)
class ModeStatus:
    """Result of checking a mode: ``expired`` is reported exactly once."""

    active: bool = False
    expired: bool = False
    remaining_minutes: int = 0

    @classmethod
    def running(cls, remaining: float) -> "ModeStatus":
        return cls(active=True, expired=False, remaining_minutes=math.ceil(remaining))

    def to_dict(self) -> dict[str, Any]:
        return {"active": self.active, "expired": self.expired, "remaining_minutes": self.remaining_minutes}
