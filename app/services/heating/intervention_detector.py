"""
Manual Intervention Detector
============================

Compares each actuator's live value against the last value the dispatcher
verified. A mismatch means someone changed the device by hand. Detection is
suppressed whenever the comparison could be fooled by the automation itself:
a dispatch in flight, no baseline yet, the adjustment window after an
automatic transition, or the grace period after an unverified command.
"""

from __future__ import annotations

import logging

from app.config import HeatingTimings
from app.domain.heating import InterventionResult, value_from_raw
from app.enums.events import HeatingEvent
from app.enums.heating import Capability, InterventionType
from app.schemas.events import ManualInterventionPayload
from app.schemas.heating import RoomConfig
from app.services.heating.collaborators import ActuatorClient
from app.utils.event_bus import EventBus
from app.utils.time import Clock, epoch_now, epoch_to_iso
from infrastructure.database.repositories.heating import HeatingStateRepository

logger = logging.getLogger(__name__)


class InterventionDetector:
    def __init__(
        self,
        repository: HeatingStateRepository,
        actuator_client: ActuatorClient,
        timings: HeatingTimings | None = None,
        *,
        clock: Clock = epoch_now,
        event_bus: EventBus | None = None,
    ) -> None:
        self.repository = repository
        self.actuator_client = actuator_client
        self.timings = timings or HeatingTimings()
        self.clock = clock
        self.event_bus = event_bus or EventBus()

    def detect(self, room: RoomConfig, *, away: bool = False) -> InterventionResult:
        """Look for a manual change on any of the room's actuators.

        Valves are compared on their setpoint, relays on their power state.
        The first mismatching actuator is reported.
        """
        now = self.clock()
        states = [self.repository.get_resource_state(actuator_id) for actuator_id in room.actuator_ids]

        busy = [state.resource_id for state in states if state.status.in_flight]
        if busy:
            logger.debug("%s: detection skipped, dispatch in flight on %s", room.key, ", ".join(busy))
            return InterventionResult.skipped("dispatch in flight")

        if self.repository.get_room_flags(room.key).in_adjustment_window(now):
            logger.debug("%s: detection skipped inside the automatic adjustment window", room.key)
            return InterventionResult.skipped("adjustment window")

        if away and room.is_valve:
            # Valves may retarget themselves while the home is in away mode
            return InterventionResult.skipped("away")

        capability = Capability.SETPOINT if room.is_valve else Capability.POWER
        compared = 0
        for state in states:
            if state.detection_suppressed(now):
                logger.debug("%s: %s in post-failure grace period", room.key, state.resource_id)
                continue
            baseline = state.baseline(capability)
            if baseline is None:
                continue

            try:
                live = self.actuator_client.get_actuator(state.resource_id)["capabilities"].get(capability.value)
            except Exception as e:  # read API may raise anything; a failed read is "not detected"
                logger.warning("%s: could not read %s for intervention check: %s", room.key, state.resource_id, e)
                continue
            if live is None:
                continue

            compared += 1
            expected = value_from_raw(capability, baseline)
            if expected.matches(live, self.timings.setpoint_tolerance):
                continue

            intervention_type = InterventionType.TEMPERATURE if room.is_valve else InterventionType.SWITCH
            logger.info(
                "%s: manual intervention on %s (expected %r, found %r)", room.key, state.resource_id, baseline, live
            )
            self.event_bus.publish(
                HeatingEvent.MANUAL_INTERVENTION_DETECTED,
                ManualInterventionPayload(
                    room=room.key,
                    actuator_id=state.resource_id,
                    intervention_type=intervention_type.value,
                    original_value=baseline,
                    current_value=live,
                    timestamp=epoch_to_iso(now),
                ),
            )
            return InterventionResult(
                detected=True,
                type=intervention_type,
                original_value=baseline,
                current_value=live,
                actuator_id=state.resource_id,
            )

        if not compared:
            return InterventionResult.skipped("nothing to compare")
        return InterventionResult(detected=False)
