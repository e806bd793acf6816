"""
Result Objects

Every public coordination operation returns one of these instead of raising;
callers decide whether to notify, flag the actuator or leave the baseline
untouched.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

from app.enums.heating import InterventionType, OverrideMode


@dataclass(frozen=True)
class QueueWaitResult:
    success: bool
    waited_seconds: float = 0.0
    reason: str | None = None


@dataclass(frozen=True)
class VerificationResult:
    verified: bool
    reported_value: Any = None
    polls: int = 0
    elapsed_seconds: float = 0.0
    lock_lost: bool = False


@dataclass(frozen=True)
class CommandResult:
    """Outcome of :meth:`CommandDispatcher.send_command_with_verification`.

    ``success`` means the command was accepted and attempted, not that the
    actuator confirmed it. Callers must check ``verified`` explicitly.
    ``skipped`` means the slot could not be obtained; not a hard failure.
    """

    resource_id: str
    capability: str
    value: Any
    success: bool
    verified: bool
    attempts: int = 0
    skipped: bool = False
    error: str | None = None
    error_kind: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ResumeResult:
    """Outcome of resuming the schedule: successful if any command verified."""

    success: bool
    target: float | None = None
    commands: list[CommandResult] = field(default_factory=list)

    @property
    def unverified(self) -> list[CommandResult]:
        return [result for result in self.commands if result.success and not result.verified]

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "target": self.target,
            "commands": [result.to_dict() for result in self.commands],
        }


@dataclass(frozen=True)
class InterventionResult:
    detected: bool
    type: InterventionType | None = None
    original_value: Any = None
    current_value: Any = None
    actuator_id: str | None = None
    skipped_reason: str | None = None

    @classmethod
    def skipped(cls, reason: str) -> "InterventionResult":
        return cls(detected=False, skipped_reason=reason)

    def to_dict(self) -> dict[str, Any]:
        return {
            "detected": self.detected,
            "type": self.type.value if self.type else None,
            "original_value": self.original_value,
            "current_value": self.current_value,
            "actuator_id": self.actuator_id,
            "skipped_reason": self.skipped_reason,
        }


@dataclass
class RunResult:
    """What one invocation of the room controller did."""

    room: str
    session_id: str
    action: str | None
    mode: OverrideMode = OverrideMode.NORMAL
    outcome: str = "no_change"
    target: float | None = None
    changes: list[str] = field(default_factory=list)
    commands: list[CommandResult] = field(default_factory=list)
    intervention: InterventionResult | None = None
    notified: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "room": self.room,
            "session_id": self.session_id,
            "action": self.action,
            "mode": self.mode.value,
            "outcome": self.outcome,
            "target": self.target,
            "changes": list(self.changes),
            "commands": [result.to_dict() for result in self.commands],
            "intervention": self.intervention.to_dict() if self.intervention else None,
            "notified": self.notified,
        }


@dataclass(frozen=True)
class CancelResult:
    """Modes cleared by a cancel request, and the resume it triggered (if any)."""

    cancelled: list[OverrideMode] = field(default_factory=list)
    resume: ResumeResult | None = None

    @property
    def any_cancelled(self) -> bool:
        return bool(self.cancelled)

    def to_dict(self) -> dict[str, Any]:
        return {
            "cancelled": [mode.value for mode in self.cancelled],
            "resume": self.resume.to_dict() if self.resume else None,
        }
