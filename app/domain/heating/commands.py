"""
Command Domain Entities

Commands in flight on an actuator, queued contenders and the per-invocation
session identity.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any
from uuid import uuid4

from app.enums.heating import Capability, CommandPriority

from .values import CapabilityValue, value_from_raw


@dataclass(frozen=True)
class Session:
    """Ephemeral identity of one top-level invocation."""

    session_id: str
    created_at: float

    @classmethod
    def new(cls, now: float) -> "Session":
        return cls(session_id=uuid4().hex[:12], created_at=now)


@dataclass(frozen=True)
class Command:
    """A write issued to one actuator capability.

    The expected value is the written value; only ``timestamp`` is refreshed
    between the sending and verifying phases (see :meth:`refreshed`).
    """

    value: CapabilityValue
    session_id: str
    timestamp: float
    retry_count: int = 0

    @property
    def capability(self) -> Capability:
        return self.value.capability

    @property
    def expected_value(self) -> CapabilityValue:
        return self.value

    def refreshed(self, now: float) -> "Command":
        return replace(self, timestamp=now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "capability": self.capability.value,
            "value": self.value.raw,
            "expected_value": self.expected_value.raw,
            "session_id": self.session_id,
            "timestamp": self.timestamp,
            "retry_count": self.retry_count,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Command":
        return cls(
            value=value_from_raw(data["capability"], data["value"]),
            session_id=str(data["session_id"]),
            timestamp=float(data["timestamp"]),
            retry_count=int(data.get("retry_count") or 0),
        )


@dataclass(frozen=True)
class QueuedCommand:
    """A command waiting for the actuator's in-flight slot."""

    command: Command
    priority: CommandPriority = CommandPriority.NORMAL
    enqueued_at: float = 0.0

    @property
    def session_id(self) -> str:
        return self.command.session_id

    @property
    def sort_key(self) -> tuple[int, float]:
        return (self.priority.rank, self.enqueued_at)

    def to_dict(self) -> dict[str, Any]:
        return {
            "command": self.command.to_dict(),
            "priority": self.priority.value,
            "enqueued_at": self.enqueued_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "QueuedCommand":
        return cls(
            command=Command.from_dict(data["command"]),
            priority=CommandPriority(data.get("priority") or CommandPriority.NORMAL.value),
            enqueued_at=float(data.get("enqueued_at") or 0.0),
        )
