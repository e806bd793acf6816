"""
Room Flags

Small per-room memory carried between invocations: presence transitions,
the automatic-adjustment window and the window open/settle timers.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from typing import Any


@dataclass
class RoomFlags:
    away_active: bool = False
    # Live values are not compared against baselines before this instant.
    adjustment_window_until: float | None = None

    window_open_since: float | None = None
    window_timeout_handled: bool = False
    window_closed_at: float | None = None

    inactivity_mode: bool = False
    last_target: float | None = None

    def in_adjustment_window(self, now: float) -> bool:
        return self.adjustment_window_until is not None and now < self.adjustment_window_until

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "RoomFlags":
        if not data:
            return cls()
        known = {f.name for f in fields(cls)}
        return cls(**{key: value for key, value in data.items() if key in known})
