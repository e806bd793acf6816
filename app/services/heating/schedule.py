"""Schedule slot lookup and target calculation for a room."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from app.schemas.heating import RoomConfig, ScheduleSlot

# Target used for valves while away when the room has no away minimum
AWAY_FALLBACK_VALVE_TARGET = 15.0


def is_weekend(when: datetime) -> bool:
    return when.weekday() >= 5


def schedule_for(room: RoomConfig, when: datetime) -> list[ScheduleSlot]:
    if is_weekend(when) and room.schedules.weekend:
        return room.schedules.weekend
    return room.schedules.weekday


def current_slot(schedule: list[ScheduleSlot], when: datetime) -> ScheduleSlot:
    """Ordered interval scan: first slot with ``start <= now < end``.

    A time exactly on the last slot's end still belongs to that slot; any
    other uncovered time falls back to the first slot.
    """
    minutes = when.hour * 60 + when.minute
    for slot in schedule:
        if slot.start_minutes <= minutes < slot.end_minutes:
            return slot
    if minutes == schedule[-1].end_minutes:
        return schedule[-1]
    return schedule[0]


def effective_setting(slot: ScheduleSlot | None, name: str, room_default: Any) -> Any:
    """Slot value when the slot sets it, otherwise the room default."""
    if slot is not None:
        value = getattr(slot, name, None)
        if value is not None:
            return value
    return room_default


def is_inactive(room: RoomConfig, slot: ScheduleSlot, minutes_inactive: float) -> bool:
    offset = effective_setting(slot, "inactivity_offset", room.settings.inactivity_offset)
    timeout = effective_setting(slot, "inactivity_timeout", room.settings.inactivity_timeout)
    return offset > 0 and minutes_inactive >= timeout


def effective_target(room: RoomConfig, slot: ScheduleSlot, *, away: bool = False, inactive: bool = False) -> float:
    """Slot target adjusted for presence: away minimum first, then the inactivity offset."""
    if away and room.settings.away_min_temp is not None:
        return room.settings.away_min_temp
    if not away and inactive:
        return slot.target - effective_setting(slot, "inactivity_offset", room.settings.inactivity_offset)
    return slot.target


def relay_decision(room_temperature: float, target: float, hysteresis: float) -> bool | None:
    """Hysteresis band for on/off heaters.

    Returns True below the band, False above it and None inside it.
    """
    low = target - hysteresis / 2
    high = target + hysteresis / 2
    if room_temperature < low:
        return True
    if room_temperature > high:
        return False
    return None
