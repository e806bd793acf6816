from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError as PydanticValidationError

from app.config import AppConfig
from app.domain.exceptions import ConfigurationError
from app.hardware.actuators.hub_client import HubActuatorClient
from app.schemas.heating import RoomsConfig
from app.services.heating.collaborators import (
    EventBusNotificationSink,
    HubPresenceProvider,
    HubRoomSensors,
    NotificationSink,
    PresenceProvider,
    RoomSensors,
)
from app.services.heating.command_dispatcher import CommandDispatcher
from app.services.heating.intervention_detector import InterventionDetector
from app.services.heating.lock_manager import LockManager
from app.services.heating.override_modes import OverrideModeService
from app.services.heating.room_controller import RoomHeatingController
from app.utils.event_bus import EventBus
from app.utils.time import Clock, Sleeper, epoch_now
from infrastructure.database.kv_store import KeyValueStore, SQLiteKeyValueStore
from infrastructure.database.repositories.heating import HeatingStateRepository

logger = logging.getLogger(__name__)


def load_rooms(path: str) -> RoomsConfig:
    """Read and validate the rooms file; any problem is a configuration error."""
    if not Path(path).exists():
        raise ConfigurationError(f"Rooms configuration not found: {path}")
    try:
        rooms = RoomsConfig.from_file(path)
    except (OSError, ValueError, PydanticValidationError) as e:
        raise ConfigurationError(f"Invalid rooms configuration {path}: {e}") from e
    logger.info("Loaded %d room(s) from %s", len(rooms.rooms), path)
    return rooms


@dataclass
class ServiceContainer:
    """Aggregate and manage the heating services."""

    config: AppConfig
    store: KeyValueStore
    repository: HeatingStateRepository
    event_bus: Any
    actuator_client: Any
    lock_manager: LockManager
    dispatcher: CommandDispatcher
    modes: OverrideModeService
    detector: InterventionDetector
    controller: RoomHeatingController

    @classmethod
    def build(
        cls,
        config: AppConfig,
        *,
        rooms: Optional[RoomsConfig] = None,
        store: Optional[KeyValueStore] = None,
        actuator_client: Any = None,
        sensors: Optional[RoomSensors] = None,
        presence: Optional[PresenceProvider] = None,
        notifier: Optional[NotificationSink] = None,
        event_bus: Any = None,
        clock: Clock = epoch_now,
        sleep: Sleeper = time.sleep,
    ) -> "ServiceContainer":
        """Construct the service container with all dependencies.

        Every collaborator can be injected; anything left out is built from
        ``config`` (SQLite state store, hub client, hub sensors/presence and
        event bus notifications).
        """
        logger.info("Building ServiceContainer...")
        timings = config.timings()
        rooms = rooms if rooms is not None else load_rooms(config.rooms_config_path)
        store = store if store is not None else SQLiteKeyValueStore(config.state_store_path)
        event_bus = event_bus if event_bus is not None else EventBus()
        if actuator_client is None:
            actuator_client = HubActuatorClient(
                config.hub_base_url, token=config.hub_token, timeout=config.hub_timeout_seconds
            )

        repository = HeatingStateRepository(store)
        lock_manager = LockManager(repository, timings, clock=clock, sleep=sleep, event_bus=event_bus)
        dispatcher = CommandDispatcher(lock_manager, actuator_client, timings)
        modes = OverrideModeService(repository, dispatcher, timings)
        detector = InterventionDetector(repository, actuator_client, timings, clock=clock, event_bus=event_bus)
        controller = RoomHeatingController(
            rooms,
            lock_manager,
            dispatcher,
            modes,
            detector,
            actuator_client,
            sensors or HubRoomSensors(actuator_client, clock=clock),
            presence or HubPresenceProvider(actuator_client, config.presence_device_id),
            notifier or EventBusNotificationSink(event_bus, clock=clock),
            timings,
            heating_enabled=config.heating_enabled,
            timezone=config.timezone or None,
        )

        container = cls(
            config=config,
            store=store,
            repository=repository,
            event_bus=event_bus,
            actuator_client=actuator_client,
            lock_manager=lock_manager,
            dispatcher=dispatcher,
            modes=modes,
            detector=detector,
            controller=controller,
        )
        logger.info("ServiceContainer built successfully.")
        return container

    def shutdown(self) -> None:
        """Release external resources before process exit."""
        close = getattr(self.store, "close", None)
        if close is not None:
            close()
        logger.info("ServiceContainer shutdown complete.")
