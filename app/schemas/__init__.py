"""
Schemas Module
==============

This module provides Pydantic models for configuration, request validation
and event payloads. Schemas ensure data integrity and provide automatic
validation.
"""

from app.schemas.events import (
    BaselineClearedPayload,
    CommandOutcomePayload,
    ManualInterventionPayload,
    ModeChangedPayload,
    RoomNotificationPayload,
    StaleStateResetPayload,
)
from app.schemas.heating import (
    HeatingDevices,
    RoomConfig,
    RoomSchedules,
    RoomSettings,
    RoomsConfig,
    RunRoomRequest,
    ScheduleSlot,
)

__all__ = [
    # Heating configuration
    "ScheduleSlot",
    "HeatingDevices",
    "RoomSettings",
    "RoomSchedules",
    "RoomConfig",
    "RoomsConfig",
    "RunRoomRequest",
    # Event payloads
    "CommandOutcomePayload",
    "BaselineClearedPayload",
    "StaleStateResetPayload",
    "ModeChangedPayload",
    "ManualInterventionPayload",
    "RoomNotificationPayload",
]
