"""
Override Mode State Machine
===========================

Per-room Boost, Pause and ManualOverride records with lazy expiry. Normal is
implicit: a room runs its schedule whenever no other record is active.

Precedence is ManualOverride > {Boost, Pause} > Normal, but an explicit user
request always wins: activating Boost or Pause cancels the other and any
ManualOverride, and activating ManualOverride cancels Boost and Pause.
Activation never touches devices; callers issue the mode's commands.
"""

from __future__ import annotations

import logging
from typing import Any

from app.config import HeatingTimings
from app.domain.exceptions import ValidationError
from app.domain.heating import (
    CancelResult,
    CommandResult,
    ModeRecord,
    ModeStatus,
    PowerValue,
    ResumeResult,
    SetpointValue,
)
from app.enums.events import HeatingEvent
from app.enums.heating import InterventionType, OverrideMode
from app.schemas.events import ModeChangedPayload
from app.schemas.heating import RoomConfig, ScheduleSlot
from app.services.heating.command_dispatcher import CommandDispatcher
from app.services.heating.schedule import effective_target, relay_decision
from app.utils.concurrency import run_parallel
from app.utils.event_bus import EventBus
from app.utils.time import Clock, epoch_to_iso
from infrastructure.database.repositories.heating import HeatingStateRepository

logger = logging.getLogger(__name__)

OVERRIDE_MODES = (OverrideMode.MANUAL_OVERRIDE, OverrideMode.BOOST, OverrideMode.PAUSE)

_CONFLICTS = {
    OverrideMode.BOOST: (OverrideMode.PAUSE, OverrideMode.MANUAL_OVERRIDE),
    OverrideMode.PAUSE: (OverrideMode.BOOST, OverrideMode.MANUAL_OVERRIDE),
    OverrideMode.MANUAL_OVERRIDE: (OverrideMode.BOOST, OverrideMode.PAUSE),
}


class OverrideModeService:
    """Activates, checks, cancels and resumes from room override modes."""

    def __init__(
        self,
        repository: HeatingStateRepository,
        dispatcher: CommandDispatcher,
        timings: HeatingTimings | None = None,
        *,
        clock: Clock | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        self.repository = repository
        self.dispatcher = dispatcher
        self.timings = timings or dispatcher.timings
        self.clock = clock or dispatcher.clock
        self.event_bus = event_bus or dispatcher.event_bus

    # ---------------------------------------------------------------- activate
    def activate(
        self,
        room: RoomConfig,
        mode: OverrideMode,
        *,
        duration_minutes: float | None = None,
        override_type: InterventionType | None = None,
        original_value: Any = None,
        current_value: Any = None,
        actuator_id: str | None = None,
        reason: str | None = None,
    ) -> ModeRecord:
        """Start ``mode`` for the room, cancelling the modes it supersedes."""
        if mode not in _CONFLICTS:
            raise ValidationError(f"Mode {mode.value!r} cannot be activated")

        for other in _CONFLICTS[mode]:
            if self.repository.get_mode(room.key, other).active:
                self._clear(room, other, HeatingEvent.MODE_CANCELLED, f"superseded by {mode.value}")

        record = ModeRecord(
            mode=mode,
            active=True,
            start_time=self.clock(),
            duration_minutes=duration_minutes if duration_minutes is not None else self.default_duration(room, mode),
            override_type=override_type,
            original_value=original_value,
            current_value=current_value,
            actuator_id=actuator_id,
            reason=reason,
        )
        self.repository.save_mode(room.key, record)
        logger.info("%s: %s activated for %g min", room.key, mode.value, record.duration_minutes)
        self._publish(HeatingEvent.MODE_ACTIVATED, room, mode, reason, record.duration_minutes)
        return record

    def default_duration(self, room: RoomConfig, mode: OverrideMode) -> float:
        if mode is OverrideMode.BOOST:
            return self.timings.boost_duration_minutes
        if mode is OverrideMode.PAUSE:
            return self.timings.pause_duration_minutes
        return room.settings.manual_override_duration

    # ------------------------------------------------------------------- check
    def check(self, room: RoomConfig, mode: OverrideMode) -> ModeStatus:
        """Lazy expiry: an expired record is cleared here and reported once."""
        record = self.repository.get_mode(room.key, mode)
        if not record.active:
            return ModeStatus()

        if record.start_time is None or record.duration_minutes is None:
            logger.warning("%s: %s record has no start time; clearing it", room.key, mode.value)
            self.repository.clear_mode(room.key, mode)
            return ModeStatus()

        now = self.clock()
        if record.elapsed_minutes(now) >= record.duration_minutes:
            self._clear(room, mode, HeatingEvent.MODE_EXPIRED, "duration elapsed")
            return ModeStatus(active=False, expired=True)

        return ModeStatus.running(record.remaining_minutes(now))

    def active_mode(self, room: RoomConfig) -> OverrideMode:
        """Highest-precedence running mode; Normal when none is running.

        Read-only: an elapsed record is skipped but left for ``check`` to clear,
        so its one-time expiry report is not lost.
        """
        now = self.clock()
        for mode in sorted(OVERRIDE_MODES, key=lambda m: m.precedence, reverse=True):
            if self.repository.get_mode(room.key, mode).is_running(now):
                return mode
        return OverrideMode.NORMAL

    def record(self, room: RoomConfig, mode: OverrideMode) -> ModeRecord:
        return self.repository.get_mode(room.key, mode)

    # ------------------------------------------------------------------ cancel
    def cancel(
        self,
        room: RoomConfig,
        mode: OverrideMode,
        slot: ScheduleSlot | None = None,
        *,
        session_id: str | None = None,
        away: bool = False,
        inactive: bool = False,
        room_temperature: float | None = None,
    ) -> CancelResult:
        """Clear ``mode`` regardless of expiry; with a slot, resume the schedule."""
        cancelled = []
        if self.repository.get_mode(room.key, mode).active:
            self._clear(room, mode, HeatingEvent.MODE_CANCELLED, "cancelled")
            cancelled.append(mode)
        return CancelResult(
            cancelled=cancelled,
            resume=self._maybe_resume(room, slot, session_id, away, inactive, room_temperature),
        )

    def cancel_all(
        self,
        room: RoomConfig,
        slot: ScheduleSlot | None = None,
        *,
        session_id: str | None = None,
        away: bool = False,
        inactive: bool = False,
        room_temperature: float | None = None,
    ) -> CancelResult:
        cancelled = []
        for mode in OVERRIDE_MODES:
            if self.repository.get_mode(room.key, mode).active:
                self._clear(room, mode, HeatingEvent.MODE_CANCELLED, "cancelled")
                cancelled.append(mode)
        if cancelled:
            logger.info("%s: cancelled %s", room.key, ", ".join(m.value for m in cancelled))
        return CancelResult(
            cancelled=cancelled,
            resume=self._maybe_resume(room, slot, session_id, away, inactive, room_temperature),
        )

    def _maybe_resume(
        self,
        room: RoomConfig,
        slot: ScheduleSlot | None,
        session_id: str | None,
        away: bool,
        inactive: bool,
        room_temperature: float | None,
    ) -> ResumeResult | None:
        if slot is None:
            return None
        if session_id is None:
            raise ValidationError("A session id is required to resume the schedule")
        return self.resume(room, slot, session_id, away=away, inactive=inactive, room_temperature=room_temperature)

    # ------------------------------------------------------------------ resume
    def resume(
        self,
        room: RoomConfig,
        slot: ScheduleSlot,
        session_id: str,
        *,
        away: bool = False,
        inactive: bool = False,
        room_temperature: float | None = None,
    ) -> ResumeResult:
        """Re-assert the schedule on every actuator of the room.

        Commands are sent even when the device already looks right so the
        baseline is freshly verified. Valves get power-on plus the target
        setpoint; relays get the hysteresis decision (on when the room
        temperature is unknown or inside the band below target).
        """
        target = effective_target(room, slot, away=away, inactive=inactive)

        if room.is_valve:

            def _assert(actuator_id: str) -> list[CommandResult]:
                return [
                    self.dispatcher.send_command_with_verification(actuator_id, PowerValue(True), session_id),
                    self.dispatcher.send_command_with_verification(actuator_id, SetpointValue(target), session_id),
                ]

        else:
            turn_on = True
            if room_temperature is not None:
                decision = relay_decision(room_temperature, target, room.heating.hysteresis)
                turn_on = decision if decision is not None else room_temperature < target

            def _assert(actuator_id: str) -> list[CommandResult]:
                return [self.dispatcher.send_command_with_verification(actuator_id, PowerValue(turn_on), session_id)]

        per_actuator = run_parallel(
            _assert, room.actuator_ids, max_workers=self.timings.parallel_dispatch_workers
        )
        commands = [result for results in per_actuator for result in results]
        success = any(result.verified for result in commands)

        if success:
            logger.info("%s: schedule resumed at %g°C (%s)", room.key, target, slot.name or slot.period)
        else:
            logger.warning("%s: resume to %g°C could not be verified on any actuator", room.key, target)
        return ResumeResult(success=success, target=target, commands=commands)

    # --------------------------------------------------------- external signal
    def apply_device_auto_mode(self, room: RoomConfig, actuator_id: str, reported_capabilities: dict[str, Any]) -> bool:
        """End ManualOverride when a valve reports it is back on its own schedule."""
        if not room.is_valve:
            return False
        if reported_capabilities.get(room.settings.auto_mode_capability) is not True:
            return False
        if not self.repository.get_mode(room.key, OverrideMode.MANUAL_OVERRIDE).active:
            return False

        logger.info("%s: %s returned to automatic mode; ending manual override", room.key, actuator_id)
        self._clear(room, OverrideMode.MANUAL_OVERRIDE, HeatingEvent.MODE_CANCELLED, "device returned to auto mode")
        return True

    # --------------------------------------------------------------- internals
    def _clear(self, room: RoomConfig, mode: OverrideMode, event: HeatingEvent, reason: str) -> None:
        self.repository.clear_mode(room.key, mode)
        logger.info("%s: %s cleared (%s)", room.key, mode.value, reason)
        self._publish(event, room, mode, reason)

    def _publish(
        self,
        event: HeatingEvent,
        room: RoomConfig,
        mode: OverrideMode,
        reason: str | None,
        duration_minutes: float | None = None,
    ) -> None:
        self.event_bus.publish(
            event,
            ModeChangedPayload(
                room=room.key,
                mode=mode.value,
                reason=reason,
                duration_minutes=duration_minutes,
                timestamp=epoch_to_iso(self.clock()),
            ),
        )
