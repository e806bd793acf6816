"""Pydantic payloads published on the event bus by the heating services."""

from typing import Any, Literal

from pydantic import BaseModel, Field

from app.enums.events import NotificationSeverity

CapabilityName = Literal["onoff", "target_temperature"]


class CommandOutcomePayload(BaseModel):
    """Payload for verified / failed / skipped actuator commands."""

    schema_version: int = Field(default=1)

    resource_id: str
    capability: CapabilityName
    value: bool | float
    session_id: str
    verified: bool
    attempts: int = 0
    error: str | None = None
    error_kind: str | None = None
    timestamp: str


class BaselineClearedPayload(BaseModel):
    resource_id: str
    capability: CapabilityName | None = None  # None: every capability
    reason: str
    timestamp: str


class StaleStateResetPayload(BaseModel):
    resource_id: str
    reason: str | None = None
    error_kind: str | None = None
    dropped_queue_entries: int = 0
    timestamp: str


class ModeChangedPayload(BaseModel):
    """Payload for override mode activation, cancellation and expiry."""

    room: str
    mode: Literal["boost", "pause", "manual_override"]
    reason: str | None = None
    duration_minutes: float | None = None
    timestamp: str


class ManualInterventionPayload(BaseModel):
    room: str
    actuator_id: str
    intervention_type: Literal["temperature", "switch"]
    original_value: Any = None
    current_value: Any = None
    timestamp: str


class RoomNotificationPayload(BaseModel):
    room: str
    title: str
    lines: list[str] = Field(default_factory=list)
    severity: NotificationSeverity = NotificationSeverity.INFO
    timestamp: str
