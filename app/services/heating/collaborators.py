"""
Heating Collaborators
=====================

Protocols for everything the heating services consume but do not own, with
hub-backed implementations for production and static ones for tests and
dry runs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from app.domain.exceptions import HeatingError
from app.enums.events import HeatingEvent, NotificationSeverity
from app.schemas.events import RoomNotificationPayload
from app.schemas.heating import RoomConfig
from app.utils.event_bus import EventBus
from app.utils.time import Clock, epoch_now, epoch_to_iso

logger = logging.getLogger(__name__)


@runtime_checkable
class ActuatorClient(Protocol):
    def set_capability(self, actuator_id: str, capability: str, value: Any) -> None: ...

    def get_actuator(self, actuator_id: str) -> dict[str, Any]: ...


class RoomSensors(Protocol):
    def temperature(self, room: RoomConfig) -> float | None: ...

    def window_open(self, room: RoomConfig) -> bool: ...

    def minutes_inactive(self, room: RoomConfig) -> float: ...


class PresenceProvider(Protocol):
    def is_away(self) -> bool: ...


class NotificationSink(Protocol):
    def notify(self, title: str, lines: list[str]) -> None: ...


# --------------------------------------------------------------------------- hub


class HubRoomSensors:
    """Sensor readings taken from devices and zones known to the hub.

    Temperature comes from the configured sensor, falling back to the first
    actuator (valves report ``measure_temperature``). A window counts as open
    when any configured contact sensor raises ``alarm_contact``. Read
    failures degrade to "unknown temperature" / "window closed" / "active".
    """

    def __init__(self, client: Any, clock: Clock = epoch_now) -> None:
        self.client = client
        self.clock = clock

    def temperature(self, room: RoomConfig) -> float | None:
        candidates = [room.temperature_sensor] if room.temperature_sensor else []
        candidates += room.actuator_ids[:1]
        for device_id in candidates:
            try:
                value = self.client.get_actuator(device_id)["capabilities"].get("measure_temperature")
            except HeatingError as e:
                logger.warning("Could not read temperature from %s: %s", device_id, e)
                continue
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                return float(value)
        logger.error("No temperature reading available for room %s", room.key)
        return None

    def window_open(self, room: RoomConfig) -> bool:
        for device_id in room.window_sensors:
            try:
                if self.client.get_actuator(device_id)["capabilities"].get("alarm_contact") is True:
                    return True
            except HeatingError as e:
                logger.warning("Could not read window sensor %s: %s", device_id, e)
        return False

    def minutes_inactive(self, room: RoomConfig) -> float:
        try:
            zone = self.client.get_zone(room.zone_name)
        except HeatingError as e:
            logger.warning("Could not read zone activity for %s: %s", room.zone_name, e)
            return 0.0
        if zone.get("active") or zone.get("active_last_updated") is None:
            return 0.0
        return max(0.0, (self.clock() - float(zone["active_last_updated"])) / 60.0)


class HubPresenceProvider:
    """Away detection from a presence device (``presence_mode == "away"``)."""

    def __init__(self, client: Any, device_id: str, capability: str = "presence_mode") -> None:
        self.client = client
        self.device_id = device_id
        self.capability = capability

    def is_away(self) -> bool:
        if not self.device_id:
            return False
        try:
            mode = self.client.get_actuator(self.device_id)["capabilities"].get(self.capability)
        except HeatingError as e:
            logger.warning("Could not read presence mode: %s", e)
            return False
        return mode == "away"


# ------------------------------------------------------------------------ static


@dataclass
class StaticRoomSensors:
    temperatures: dict[str, float] = field(default_factory=dict)
    open_windows: set[str] = field(default_factory=set)
    inactive_minutes: dict[str, float] = field(default_factory=dict)

    def temperature(self, room: RoomConfig) -> float | None:
        return self.temperatures.get(room.key)

    def window_open(self, room: RoomConfig) -> bool:
        return room.key in self.open_windows

    def minutes_inactive(self, room: RoomConfig) -> float:
        return self.inactive_minutes.get(room.key, 0.0)


@dataclass
class StaticPresenceProvider:
    away: bool = False

    def is_away(self) -> bool:
        return self.away


# ------------------------------------------------------------------ notifications


class EventBusNotificationSink:
    """Publishes room notifications for whatever delivery channel subscribes."""

    def __init__(self, event_bus: EventBus | None = None, clock: Clock = epoch_now) -> None:
        self.event_bus = event_bus or EventBus()
        self.clock = clock

    def notify(self, title: str, lines: list[str], severity: NotificationSeverity = NotificationSeverity.INFO) -> None:
        self.event_bus.publish(
            HeatingEvent.ROOM_NOTIFICATION,
            RoomNotificationPayload(
                room=title,
                title=title,
                lines=list(lines),
                severity=severity,
                timestamp=epoch_to_iso(self.clock()),
            ),
        )
