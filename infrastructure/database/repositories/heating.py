from __future__ import annotations

import logging

from app.domain.heating import ModeRecord, ResourceState, RoomFlags
from app.enums.heating import OverrideMode
from infrastructure.database.kv_store import KeyValueStore

logger = logging.getLogger(__name__)

RESOURCE_INDEX_KEY = "heating.resources"


def resource_key(resource_id: str) -> str:
    return f"heating.resource.{resource_id}"


def mode_key(room: str, mode: OverrideMode) -> str:
    return f"heating.room.{room}.mode.{mode.value}"


def room_flags_key(room: str) -> str:
    return f"heating.room.{room}.flags"


class HeatingStateRepository:
    """Facade providing typed access to the heating coordination state.

    Every key is a pure function of a room or actuator id, so any
    :class:`KeyValueStore` (including the in-memory one used in tests) works.
    """

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store

    # Resource state -----------------------------------------------------------
    def get_resource_state(self, resource_id: str) -> ResourceState:
        """Load an actuator's state, creating an idle one on first access."""
        return ResourceState.from_dict(resource_id, self._store.get(resource_key(resource_id)))

    def save_resource_state(self, state: ResourceState) -> None:
        self._store.set(resource_key(state.resource_id), state.to_dict())
        self._register_resource(state.resource_id)

    def list_resource_ids(self) -> list[str]:
        return list(self._store.get(RESOURCE_INDEX_KEY) or [])

    def _register_resource(self, resource_id: str) -> None:
        known = self.list_resource_ids()
        if resource_id not in known:
            known.append(resource_id)
            self._store.set(RESOURCE_INDEX_KEY, known)
            logger.debug("Registered actuator %s in the resource index", resource_id)

    # Mode records -------------------------------------------------------------
    def get_mode(self, room: str, mode: OverrideMode) -> ModeRecord:
        return ModeRecord.from_dict(mode, self._store.get(mode_key(room, mode)))

    def save_mode(self, room: str, record: ModeRecord) -> None:
        self._store.set(mode_key(room, record.mode), record.to_dict())

    def clear_mode(self, room: str, mode: OverrideMode) -> None:
        self._store.set(mode_key(room, mode), None)

    # Room flags ---------------------------------------------------------------
    def get_room_flags(self, room: str) -> RoomFlags:
        return RoomFlags.from_dict(self._store.get(room_flags_key(room)))

    def save_room_flags(self, room: str, flags: RoomFlags) -> None:
        self._store.set(room_flags_key(room), flags.to_dict())
