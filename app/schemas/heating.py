"""
Heating Schemas
===============

Room configuration (loaded from JSON) and request schemas for the heating
endpoints. Keys are accepted in snake_case or in the camelCase used by
older configuration files.
"""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from app.enums.heating import HeatingAction, HeatingType

_HHMM = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$|^24:00$")


def time_to_minutes(value: str) -> int:
    hours, minutes = value.split(":")
    return int(hours) * 60 + int(minutes)


class ScheduleSlot(BaseModel):
    """One interval of a day schedule. Optional fields override the room defaults."""

    model_config = ConfigDict(populate_by_name=True)

    start: str
    end: str
    target: float = Field(..., ge=5, le=30)
    name: Optional[str] = None
    inactivity_offset: Optional[float] = Field(
        default=None, ge=0, validation_alias=AliasChoices("inactivity_offset", "inactivityOffset")
    )
    inactivity_timeout: Optional[float] = Field(
        default=None, gt=0, validation_alias=AliasChoices("inactivity_timeout", "inactivityTimeout")
    )
    window_open_timeout: Optional[float] = Field(
        default=None, ge=0, validation_alias=AliasChoices("window_open_timeout", "windowOpenTimeout")
    )
    window_closed_delay: Optional[float] = Field(
        default=None, ge=0, validation_alias=AliasChoices("window_closed_delay", "windowClosedDelay")
    )

    @field_validator("start", "end")
    @classmethod
    def validate_clock_time(cls, v: str) -> str:
        if not _HHMM.match(v):
            raise ValueError(f"expected HH:MM, got {v!r}")
        return v

    @property
    def start_minutes(self) -> int:
        return time_to_minutes(self.start)

    @property
    def end_minutes(self) -> int:
        return time_to_minutes(self.end)

    @property
    def period(self) -> str:
        return f"{self.start}-{self.end}"


class HeatingDevices(BaseModel):
    type: HeatingType
    devices: list[str] = Field(..., min_length=1)
    # Full width of the on/off band around the target for relays
    hysteresis: float = Field(default=0.5, gt=0)


class RoomSettings(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    manual_override_duration: int = Field(
        default=90, gt=0, validation_alias=AliasChoices("manual_override_duration", "manualOverrideDuration")
    )
    away_min_temp: Optional[float] = Field(
        default=None, validation_alias=AliasChoices("away_min_temp", "tadoAwayMinTemp", "awayMinTemp")
    )
    inactivity_offset: float = Field(
        default=0.0, ge=0, validation_alias=AliasChoices("inactivity_offset", "inactivityOffset")
    )
    inactivity_timeout: float = Field(
        default=30.0, gt=0, validation_alias=AliasChoices("inactivity_timeout", "inactivityTimeout")
    )
    window_open_timeout: float = Field(
        default=60.0, ge=0, validation_alias=AliasChoices("window_open_timeout", "windowOpenTimeout")
    )
    window_closed_delay: float = Field(
        default=600.0, ge=0, validation_alias=AliasChoices("window_closed_delay", "windowClosedDelay")
    )
    # Valve capability that reads true while the device follows its own schedule
    auto_mode_capability: str = Field(
        default="smart_schedule", validation_alias=AliasChoices("auto_mode_capability", "autoModeCapability")
    )


class RoomSchedules(BaseModel):
    weekday: list[ScheduleSlot] = Field(..., min_length=1)
    weekend: Optional[list[ScheduleSlot]] = None

    @model_validator(mode="after")
    def default_weekend(self) -> "RoomSchedules":
        if not self.weekend:
            self.weekend = list(self.weekday)
        return self


class RoomConfig(BaseModel):
    """Everything the controller needs to know about one room."""

    model_config = ConfigDict(populate_by_name=True)

    key: str = ""
    zone_name: str = Field(..., validation_alias=AliasChoices("zone_name", "zoneName"))
    heating: HeatingDevices
    temperature_sensor: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("temperature_sensor", "temperatureSensor")
    )
    window_sensors: list[str] = Field(
        default_factory=list, validation_alias=AliasChoices("window_sensors", "windowSensors")
    )
    settings: RoomSettings = Field(default_factory=RoomSettings)
    schedules: RoomSchedules
    timezone: Optional[str] = None

    @property
    def actuator_ids(self) -> list[str]:
        return list(self.heating.devices)

    @property
    def is_valve(self) -> bool:
        return self.heating.type is HeatingType.TADO_VALVE


class RoomsConfig(BaseModel):
    rooms: dict[str, RoomConfig] = Field(default_factory=dict)

    @model_validator(mode="after")
    def assign_keys(self) -> "RoomsConfig":
        for key, room in self.rooms.items():
            room.key = key
        return self

    def resolve(self, selector: str) -> RoomConfig | None:
        """Find a room by key or zone name (case-insensitive)."""
        if selector in self.rooms:
            return self.rooms[selector]
        wanted = selector.strip().lower()
        for room in self.rooms.values():
            if room.key.lower() == wanted or room.zone_name.lower() == wanted:
                return room
        return None

    @classmethod
    def from_file(cls, path: str | Path) -> "RoomsConfig":
        with open(path, encoding="utf-8") as fh:
            return cls.model_validate(json.load(fh))


class RunRoomRequest(BaseModel):
    """Request schema for ``POST /api/heating/rooms/<room>/run``."""

    action: Optional[HeatingAction] = None

    @field_validator("action", mode="before")
    @classmethod
    def normalize_action(cls, v):
        if isinstance(v, str):
            return HeatingAction.parse(v)
        return v
