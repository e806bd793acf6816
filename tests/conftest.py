"""
Shared test fixtures for the heating controller test suite.

Provides:
- A virtual clock whose ``sleep`` advances time (poll loops finish instantly)
- An in-memory device hub with controllable lag, failures and drift
- In-memory key/value store and state repository
- Room configurations for a valve room and a relay room
- Fully wired services built through ServiceContainer

Usage:
    def test_example(services, hub):
        result = services.controller.run("living", "boost")
        assert result.mode is OverrideMode.BOOST
"""

from __future__ import annotations

import logging
import os
import sys
import threading
from typing import Any
from unittest.mock import MagicMock

# Ensure repository root is on sys.path so tests can import application modules
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

import pytest

from app.config import AppConfig, HeatingTimings
from app.domain.exceptions import DeviceError
from app.schemas.heating import RoomsConfig
from app.services.heating.collaborators import StaticPresenceProvider, StaticRoomSensors
from infrastructure.database.kv_store import InMemoryKeyValueStore
from infrastructure.database.repositories.heating import HeatingStateRepository

# ---------------------------------------------------------------------------
# Logging: keep test output clean
# ---------------------------------------------------------------------------
logging.getLogger("infrastructure").setLevel(logging.WARNING)
logging.getLogger("app").setLevel(logging.WARNING)

START = 1_760_000_000.0


# ========================== Time ===========================================


class FakeClock:
    """Callable clock; ``sleep`` advances it instead of blocking."""

    def __init__(self, start: float = START) -> None:
        self.now = start
        self.sleeps: list[float] = []
        self._lock = threading.Lock()

    def __call__(self) -> float:
        with self._lock:
            return self.now

    def sleep(self, seconds: float) -> None:
        with self._lock:
            self.sleeps.append(seconds)
            self.now += max(seconds, 0.0)

    def advance(self, seconds: float = 0.0, *, minutes: float = 0.0) -> None:
        with self._lock:
            self.now += seconds + minutes * 60


# ========================== Device hub =====================================


class FakeHub:
    """In-memory stand-in for the hub's actuator read/write API.

    Knobs:
      ignore_writes: actuators that accept writes but never change
      fail_writes:   actuator -> number of writes that raise before succeeding
      lag_reads:     actuator -> number of reads before a write becomes visible
      drift:         actuator -> capability -> value reported instead of the written one
      read_errors:   actuators whose reads raise
    """

    def __init__(self) -> None:
        self.devices: dict[str, dict[str, Any]] = {}
        self.zones: dict[str, dict[str, Any]] = {}
        self.writes: list[tuple[str, str, Any]] = []
        self.ignore_writes: set[str] = set()
        self.fail_writes: dict[str, int] = {}
        self.lag_reads: dict[str, int] = {}
        self.drift: dict[str, dict[str, Any]] = {}
        self.read_errors: set[str] = set()
        self.on_write = None
        self._pending: dict[str, list[tuple[int, str, Any]]] = {}
        self._lock = threading.Lock()

    def add(self, device_id: str, **capabilities: Any) -> None:
        self.devices[device_id] = dict(capabilities)

    def set_live(self, device_id: str, capability: str, value: Any) -> None:
        """Simulate a change made on the device itself."""
        self.devices[device_id][capability] = value

    def live(self, device_id: str, capability: str) -> Any:
        return self.devices[device_id].get(capability)

    def writes_to(self, device_id: str) -> list[tuple[str, Any]]:
        return [(cap, value) for dev, cap, value in self.writes if dev == device_id]

    # Actuator write API
    def set_capability(self, actuator_id: str, capability: str, value: Any) -> None:
        if self.on_write is not None:
            self.on_write(actuator_id, capability, value)
        with self._lock:
            self.writes.append((actuator_id, capability, value))
            remaining = self.fail_writes.get(actuator_id, 0)
            if remaining:
                self.fail_writes[actuator_id] = remaining - 1
                raise DeviceError(f"hub rejected write to {actuator_id}")
            if actuator_id in self.ignore_writes:
                return
            reported = self.drift.get(actuator_id, {}).get(capability, value)
            lag = self.lag_reads.get(actuator_id, 0)
            if lag:
                self._pending.setdefault(actuator_id, []).append((lag, capability, reported))
            else:
                self.devices.setdefault(actuator_id, {})[capability] = reported

    # Actuator read API
    def get_actuator(self, actuator_id: str) -> dict[str, Any]:
        with self._lock:
            if actuator_id in self.read_errors or actuator_id not in self.devices:
                raise DeviceError(f"cannot read {actuator_id}")
            pending = []
            for reads_left, capability, value in self._pending.pop(actuator_id, []):
                if reads_left <= 1:
                    self.devices[actuator_id][capability] = value
                else:
                    pending.append((reads_left - 1, capability, value))
            if pending:
                self._pending[actuator_id] = pending
            return {"id": actuator_id, "name": actuator_id, "capabilities": dict(self.devices[actuator_id])}

    def get_zone(self, zone_name: str) -> dict[str, Any]:
        if zone_name not in self.zones:
            raise DeviceError(f"unknown zone {zone_name}")
        return dict(self.zones[zone_name])


# ========================== Rooms ==========================================

ROOMS = {
    "rooms": {
        "living": {
            "zoneName": "Living Room",
            "heating": {"type": "tado_valve", "devices": ["valve-1", "valve-2"]},
            "windowSensors": ["contact-living"],
            "settings": {"tadoAwayMinTemp": 16, "inactivityOffset": 2, "inactivityTimeout": 30},
            "schedules": {"weekday": [{"start": "00:00", "end": "24:00", "target": 21, "name": "All day"}]},
        },
        "office": {
            "zoneName": "Office",
            "heating": {"type": "smart_plug", "devices": ["plug-1"], "hysteresis": 0.5},
            "settings": {"windowOpenTimeout": 60, "windowClosedDelay": 300},
            "schedules": {"weekday": [{"start": "00:00", "end": "24:00", "target": 20, "name": "All day"}]},
        },
    }
}


@pytest.fixture()
def rooms() -> RoomsConfig:
    return RoomsConfig.model_validate(ROOMS)


@pytest.fixture()
def living(rooms):
    return rooms.resolve("living")


@pytest.fixture()
def office(rooms):
    return rooms.resolve("office")


# ========================== Core fixtures ==================================


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def hub() -> FakeHub:
    hub = FakeHub()
    hub.add("valve-1", onoff=True, target_temperature=19.0, measure_temperature=19.5, smart_schedule=False)
    hub.add("valve-2", onoff=True, target_temperature=19.0, measure_temperature=19.5, smart_schedule=False)
    hub.add("plug-1", onoff=False)
    return hub


@pytest.fixture()
def store() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture()
def repository(store) -> HeatingStateRepository:
    return HeatingStateRepository(store)


@pytest.fixture()
def timings() -> HeatingTimings:
    return HeatingTimings()


@pytest.fixture()
def mock_event_bus():
    """Mock EventBus that records publish calls."""
    bus = MagicMock()
    bus.publish = MagicMock()
    bus.subscribe = MagicMock()
    return bus


@pytest.fixture()
def mock_notifier():
    notifier = MagicMock()
    notifier.notify = MagicMock()
    return notifier


# ========================== Service fixtures ===============================


@pytest.fixture()
def lock_manager(repository, timings, clock, mock_event_bus):
    from app.services.heating.lock_manager import LockManager

    return LockManager(repository, timings, clock=clock, sleep=clock.sleep, event_bus=mock_event_bus)


@pytest.fixture()
def dispatcher(lock_manager, hub):
    from app.services.heating.command_dispatcher import CommandDispatcher

    return CommandDispatcher(lock_manager, hub)


@pytest.fixture()
def modes(repository, dispatcher):
    from app.services.heating.override_modes import OverrideModeService

    return OverrideModeService(repository, dispatcher)


@pytest.fixture()
def detector(repository, hub, timings, clock, mock_event_bus):
    from app.services.heating.intervention_detector import InterventionDetector

    return InterventionDetector(repository, hub, timings, clock=clock, event_bus=mock_event_bus)


@pytest.fixture()
def sensors() -> StaticRoomSensors:
    return StaticRoomSensors(temperatures={"living": 19.5, "office": 19.0})


@pytest.fixture()
def presence() -> StaticPresenceProvider:
    return StaticPresenceProvider(away=False)


@pytest.fixture()
def services(rooms, store, hub, sensors, presence, mock_notifier, mock_event_bus, clock, monkeypatch):
    """Every heating service wired through ServiceContainer with in-memory collaborators."""
    from app.services.container import ServiceContainer

    for name in ("HEATING_ENABLED", "HEATING_MAX_RETRIES", "HEATING_SETPOINT_TOLERANCE", "HEATING_TIMEZONE"):
        monkeypatch.delenv(name, raising=False)
    return ServiceContainer.build(
        AppConfig(),
        rooms=rooms,
        store=store,
        actuator_client=hub,
        sensors=sensors,
        presence=presence,
        notifier=mock_notifier,
        event_bus=mock_event_bus,
        clock=clock,
        sleep=clock.sleep,
    )
