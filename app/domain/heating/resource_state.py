"""
Resource State

Durable coordination record of one actuator: who holds its in-flight slot,
which command is in flight, who is queued behind it, and the last values the
dispatcher verified (the baseline used for manual intervention detection).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from app.enums.heating import Capability, ResourceStatus

from .commands import Command, QueuedCommand
from .values import CapabilityValue


@dataclass
class ResourceState:
    resource_id: str
    status: ResourceStatus = ResourceStatus.IDLE
    command: Command | None = None
    queue: list[QueuedCommand] = field(default_factory=list)

    # Slot ownership. A session owns the slot from acquisition until release,
    # including the gap before its command is stored.
    owner_session: str | None = None
    locked_at: float | None = None

    # Baseline, one entry per capability ("onoff" / "target_temperature").
    last_verified_values: dict[str, Any] = field(default_factory=dict)
    last_verified_at: float | None = None
    baseline_cleared_at: float | None = None
    baseline_cleared_reason: str | None = None

    last_error: str | None = None
    last_reset_reason: str | None = None
    detection_suppressed_until: float | None = None

    # ------------------------------------------------------------------ slot
    @property
    def is_free(self) -> bool:
        return self.owner_session is None and self.command is None

    def held_by(self, session_id: str) -> bool:
        if self.owner_session is not None:
            return self.owner_session == session_id
        return self.command is not None and self.command.session_id == session_id

    @property
    def holder(self) -> str | None:
        if self.owner_session is not None:
            return self.owner_session
        return self.command.session_id if self.command else None

    def lock_age(self, now: float) -> float:
        """Seconds since the holder last touched the slot (0 when free)."""
        marks = [t for t in (self.locked_at, self.command.timestamp if self.command else None) if t is not None]
        if not marks:
            return 0.0
        return max(0.0, now - max(marks))

    def claim(self, session_id: str, now: float) -> None:
        self.owner_session = session_id
        self.locked_at = now

    def reset(self, reason: str) -> None:
        """Return to idle, dropping the in-flight command and the owner."""
        self.status = ResourceStatus.IDLE
        self.command = None
        self.owner_session = None
        self.locked_at = None
        self.last_reset_reason = reason

    # ----------------------------------------------------------------- queue
    def queued_sessions(self) -> list[str]:
        return [entry.session_id for entry in self.queue]

    def sort_queue(self) -> None:
        self.queue.sort(key=lambda entry: entry.sort_key)

    def withdraw(self, session_id: str) -> bool:
        before = len(self.queue)
        self.queue = [entry for entry in self.queue if entry.session_id != session_id]
        return len(self.queue) != before

    # -------------------------------------------------------------- baseline
    def baseline(self, capability: Capability) -> Any | None:
        return self.last_verified_values.get(capability.value)

    def publish_baseline(self, value: CapabilityValue, now: float) -> None:
        self.last_verified_values[value.capability.value] = value.raw
        self.last_verified_at = now

    def clear_baseline(self, reason: str, now: float, capability: Capability | None = None) -> bool:
        """Drop one (or every) baseline entry, recording why. Returns True if anything was cleared."""
        if capability is None:
            cleared = bool(self.last_verified_values)
            self.last_verified_values = {}
        else:
            cleared = self.last_verified_values.pop(capability.value, None) is not None
        if cleared:
            self.baseline_cleared_at = now
            self.baseline_cleared_reason = reason
        return cleared

    def detection_suppressed(self, now: float) -> bool:
        return self.detection_suppressed_until is not None and now < self.detection_suppressed_until

    # ------------------------------------------------------------- serialize
    def to_dict(self) -> dict[str, Any]:
        return {
            "resource_id": self.resource_id,
            "status": self.status.value,
            "command": self.command.to_dict() if self.command else None,
            "queue": [entry.to_dict() for entry in self.queue],
            "owner_session": self.owner_session,
            "locked_at": self.locked_at,
            "last_verified_values": dict(self.last_verified_values),
            "last_verified_at": self.last_verified_at,
            "baseline_cleared_at": self.baseline_cleared_at,
            "baseline_cleared_reason": self.baseline_cleared_reason,
            "last_error": self.last_error,
            "last_reset_reason": self.last_reset_reason,
            "detection_suppressed_until": self.detection_suppressed_until,
        }

    @classmethod
    def from_dict(cls, resource_id: str, data: dict[str, Any] | None) -> "ResourceState":
        if not data:
            return cls(resource_id=resource_id)
        command = data.get("command")
        return cls(
            resource_id=resource_id,
            status=ResourceStatus(data.get("status") or ResourceStatus.IDLE.value),
            command=Command.from_dict(command) if command else None,
            queue=[QueuedCommand.from_dict(entry) for entry in data.get("queue") or []],
            owner_session=data.get("owner_session"),
            locked_at=data.get("locked_at"),
            last_verified_values=dict(data.get("last_verified_values") or {}),
            last_verified_at=data.get("last_verified_at"),
            baseline_cleared_at=data.get("baseline_cleared_at"),
            baseline_cleared_reason=data.get("baseline_cleared_reason"),
            last_error=data.get("last_error"),
            last_reset_reason=data.get("last_reset_reason"),
            detection_suppressed_until=data.get("detection_suppressed_until"),
        )
