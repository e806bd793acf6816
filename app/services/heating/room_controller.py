"""
Room Heating Controller
=======================

The invocation entry point. One call to :meth:`RoomHeatingController.run`
is one session: it resolves the room, handles presence transitions, looks
for manual interventions, applies the requested action and then drives the
room according to the active mode or the schedule.

Order of a run:
  1. global enable flag
  2. away -> home transition (opens the adjustment window, clears baselines)
  3. manual intervention detection (ticks only) or the valve auto-mode signal
  4. explicit action: cancel / pause / boost
  5. mode control: pause forces off, boost forces on, manual override is
     hands-off, an expired mode resumes the schedule
  6. normal schedule control
  7. notification of whatever changed
"""

from __future__ import annotations

import logging
from typing import Any

from app.config import HeatingTimings
from app.domain.exceptions import NotFoundError, ValidationError
from app.domain.heating import (
    CapabilityValue,
    CommandResult,
    PowerValue,
    RoomFlags,
    RunResult,
    Session,
    SetpointValue,
)
from app.enums.events import HeatingEvent
from app.enums.heating import Capability, HeatingAction, OverrideMode
from app.schemas.events import BaselineClearedPayload
from app.schemas.heating import RoomConfig, RoomsConfig, ScheduleSlot
from app.services.heating.collaborators import ActuatorClient, NotificationSink, PresenceProvider, RoomSensors
from app.services.heating.command_dispatcher import CommandDispatcher
from app.services.heating.intervention_detector import InterventionDetector
from app.services.heating.lock_manager import LockManager
from app.services.heating.override_modes import OVERRIDE_MODES, OverrideModeService
from app.services.heating.schedule import (
    AWAY_FALLBACK_VALVE_TARGET,
    current_slot,
    effective_setting,
    effective_target,
    is_inactive,
    relay_decision,
    schedule_for,
)
from app.utils.concurrency import run_parallel
from app.utils.time import epoch_to_iso, epoch_to_local

logger = logging.getLogger(__name__)


class RoomHeatingController:
    """Runs the heating logic for one room per invocation."""

    def __init__(
        self,
        rooms: RoomsConfig,
        lock_manager: LockManager,
        dispatcher: CommandDispatcher,
        modes: OverrideModeService,
        detector: InterventionDetector,
        actuator_client: ActuatorClient,
        sensors: RoomSensors,
        presence: PresenceProvider,
        notifier: NotificationSink,
        timings: HeatingTimings | None = None,
        *,
        heating_enabled: bool = True,
        timezone: str | None = None,
    ) -> None:
        self.rooms = rooms
        self.lock_manager = lock_manager
        self.repository = lock_manager.repository
        self.dispatcher = dispatcher
        self.modes = modes
        self.detector = detector
        self.actuator_client = actuator_client
        self.sensors = sensors
        self.presence = presence
        self.notifier = notifier
        self.timings = timings or dispatcher.timings
        self.clock = dispatcher.clock
        self.event_bus = dispatcher.event_bus
        self.heating_enabled = heating_enabled
        self.timezone = timezone

    # ------------------------------------------------------------------ lookup
    def resolve_room(self, selector: str) -> RoomConfig:
        room = self.rooms.resolve(selector)
        if room is None:
            raise NotFoundError(f"Unknown room: {selector!r}")
        return room

    def slot_for(self, room: RoomConfig, now: float) -> ScheduleSlot:
        local = epoch_to_local(now, room.timezone or self.timezone)
        return current_slot(schedule_for(room, local), local)

    # --------------------------------------------------------------------- run
    def run(self, room_selector: str, action: str | HeatingAction | None = None) -> RunResult:
        room = self.resolve_room(room_selector)
        try:
            requested = HeatingAction.parse(action)
        except ValueError:
            raise ValidationError(f"Unknown action: {action!r}") from None

        session = Session.new(self.clock())
        result = RunResult(
            room=room.key,
            session_id=session.session_id,
            action=requested.value if requested else None,
        )

        if not self.heating_enabled:
            logger.info("%s: heating disabled, nothing to do", room.key)
            result.outcome = "heating_disabled"
            return result

        logger.info("%s: run %s (session %s)", room.key, result.action or "tick", session.session_id)
        flags = self.repository.get_room_flags(room.key)
        loaded = flags.to_dict()
        now = self.clock()
        away = self.presence.is_away()
        self._presence_transition(room, flags, away, now, result)
        # Detection reads the adjustment window from storage
        loaded = self._save_flags(room, flags, loaded)

        if requested is None:
            self._check_for_intervention(room, away, result)

        slot = self.slot_for(room, now)
        temperature = self.sensors.temperature(room)
        inactive = is_inactive(room, slot, self.sensors.minutes_inactive(room))

        try:
            if requested is HeatingAction.CANCEL:
                self._cancel(room, slot, session, away, inactive, temperature, result)
                return result
            if requested is HeatingAction.PAUSE:
                record = self.modes.activate(room, OverrideMode.PAUSE, reason="requested")
                result.changes += ["Pause", f"{record.duration_minutes:g} min"]
            elif requested is HeatingAction.BOOST:
                record = self.modes.activate(room, OverrideMode.BOOST, reason="requested")
                result.changes += ["Boost", f"{record.duration_minutes:g} min"]

            if self._mode_control(room, slot, session, away, inactive, temperature, result):
                return result

            self._normal_control(room, slot, session, flags, away, inactive, temperature, now, result)
            return result
        finally:
            self._save_flags(room, flags, loaded)
            self._notify(room, result)

    def _save_flags(self, room: RoomConfig, flags: RoomFlags, loaded: dict) -> dict:
        """Write back only the fields this run changed since ``loaded``.

        Fields another run stored in the meantime are kept. Returns the new
        baseline.
        """
        changed = {name: value for name, value in flags.to_dict().items() if loaded.get(name) != value}
        if not changed:
            return loaded
        stored = self.repository.get_room_flags(room.key)
        for name, value in changed.items():
            setattr(stored, name, value)
        self.repository.save_room_flags(room.key, stored)
        return flags.to_dict()

    # ---------------------------------------------------------------- presence
    def _presence_transition(self, room: RoomConfig, flags: RoomFlags, away: bool, now: float, result: RunResult) -> None:
        if flags.away_active and not away:
            window = self.timings.adjustment_window_minutes * 60
            flags.adjustment_window_until = now + window
            cleared = self._clear_room_baselines(room, "returned from away", now)
            logger.info(
                "%s: back home; detection paused for %g min, %d baseline(s) cleared",
                room.key,
                self.timings.adjustment_window_minutes,
                cleared,
            )
            result.changes.append("Home")
        elif away and not flags.away_active:
            logger.info("%s: home switched to away", room.key)
            result.changes.append("Away")
        flags.away_active = away

    def _clear_room_baselines(self, room: RoomConfig, reason: str, now: float) -> int:
        cleared = 0
        for actuator_id in room.actuator_ids:
            if not self.lock_manager.clear_baseline(actuator_id, reason, now):
                continue
            cleared += 1
            self.event_bus.publish(
                HeatingEvent.BASELINE_CLEARED,
                BaselineClearedPayload(resource_id=actuator_id, reason=reason, timestamp=epoch_to_iso(now)),
            )
        return cleared

    # ------------------------------------------------------------ intervention
    def _check_for_intervention(self, room: RoomConfig, away: bool, result: RunResult) -> None:
        if self.modes.record(room, OverrideMode.MANUAL_OVERRIDE).active:
            if not room.is_valve:
                return
            for actuator_id in room.actuator_ids:
                capabilities = self._read_capabilities(actuator_id)
                if self.modes.apply_device_auto_mode(room, actuator_id, capabilities):
                    result.changes += ["Manual override ended", "Device back on auto"]
                    return
            return

        intervention = self.detector.detect(room, away=away)
        result.intervention = intervention
        if not intervention.detected:
            return

        self.modes.activate(
            room,
            OverrideMode.MANUAL_OVERRIDE,
            override_type=intervention.type,
            original_value=intervention.original_value,
            current_value=intervention.current_value,
            actuator_id=intervention.actuator_id,
            reason="manual intervention",
        )
        result.changes += ["Manual change", f"{intervention.original_value}→{intervention.current_value}"]

    # ------------------------------------------------------------------- modes
    def _cancel(
        self,
        room: RoomConfig,
        slot: ScheduleSlot,
        session: Session,
        away: bool,
        inactive: bool,
        temperature: float | None,
        result: RunResult,
    ) -> None:
        cancel = self.modes.cancel_all(
            room, slot, session_id=session.session_id, away=away, inactive=inactive, room_temperature=temperature
        )
        resume = cancel.resume
        result.commands += resume.commands
        result.target = resume.target
        result.outcome = "resumed" if resume.success else "resume_unverified"
        if cancel.any_cancelled:
            result.changes += [f"Cancelled {mode.value.replace('_', ' ')}" for mode in cancel.cancelled]
            result.changes.append(f"Schedule {resume.target:g}°C")
        self._flag_unverified(resume.commands, result)

    def _mode_control(
        self,
        room: RoomConfig,
        slot: ScheduleSlot,
        session: Session,
        away: bool,
        inactive: bool,
        temperature: float | None,
        result: RunResult,
    ) -> bool:
        """Drive the room by its active override mode. Returns False to fall through to the schedule."""
        statuses = {mode: self.modes.check(room, mode) for mode in OVERRIDE_MODES}

        if statuses[OverrideMode.MANUAL_OVERRIDE].active:
            result.mode = OverrideMode.MANUAL_OVERRIDE
            result.outcome = "manual_override"
            self._log_hands_off(room, result)
            return True

        if statuses[OverrideMode.PAUSE].active:
            result.mode = OverrideMode.PAUSE
            result.outcome = "pause"
            result.commands += self._force(room, session, [PowerValue(False)])
            self._flag_unverified(result.commands, result)
            return True

        if statuses[OverrideMode.BOOST].active:
            result.mode = OverrideMode.BOOST
            result.outcome = "boost"
            if room.is_valve:
                result.target = self.timings.boost_setpoint
                values: list[CapabilityValue] = [PowerValue(True), SetpointValue(self.timings.boost_setpoint)]
            else:
                values = [PowerValue(True)]
            result.commands += self._force(room, session, values)
            self._flag_unverified(result.commands, result)
            return True

        expired = [mode for mode, status in statuses.items() if status.expired]
        if not expired:
            return False

        resume = self.modes.resume(
            room, slot, session.session_id, away=away, inactive=inactive, room_temperature=temperature
        )
        result.commands += resume.commands
        result.target = resume.target
        result.outcome = "mode_expired_resumed" if resume.success else "resume_unverified"
        result.changes += [f"{mode.value.replace('_', ' ').capitalize()} ended" for mode in expired]
        result.changes.append(f"Schedule {resume.target:g}°C")
        self._flag_unverified(resume.commands, result)
        return True

    def _force(self, room: RoomConfig, session: Session, values: list[CapabilityValue]) -> list[CommandResult]:
        """Bring every actuator of the room to ``values`` in parallel."""
        per_actuator = run_parallel(
            lambda actuator_id: self._ensure(actuator_id, session, values),
            room.actuator_ids,
            max_workers=self.timings.parallel_dispatch_workers,
        )
        return [command for commands in per_actuator for command in commands]

    def _log_hands_off(self, room: RoomConfig, result: RunResult) -> None:
        for actuator_id in room.actuator_ids:
            capabilities = self._read_capabilities(actuator_id)
            logger.info(
                "%s: manual override, leaving %s as is (onoff=%s, target=%s)",
                room.key,
                actuator_id,
                capabilities.get(Capability.POWER.value),
                capabilities.get(Capability.SETPOINT.value),
            )
            setpoint = capabilities.get(Capability.SETPOINT.value)
            if room.is_valve and result.target is None and isinstance(setpoint, (int, float)):
                result.target = float(setpoint)

    # ------------------------------------------------------------------ normal
    def _normal_control(
        self,
        room: RoomConfig,
        slot: ScheduleSlot,
        session: Session,
        flags: RoomFlags,
        away: bool,
        inactive: bool,
        temperature: float | None,
        now: float,
        result: RunResult,
    ) -> None:
        if flags.last_target is not None and flags.last_target != slot.target:
            result.changes += [f"Schedule {slot.period}", f"{flags.last_target:g}→{slot.target:g}°C"]
        flags.last_target = slot.target

        if temperature is None:
            logger.error("%s: no room temperature, skipping control", room.key)
            result.outcome = "no_temperature"
            return

        if away and room.settings.away_min_temp is None:
            if room.is_valve:
                result.target = AWAY_FALLBACK_VALVE_TARGET
                values: list[CapabilityValue] = [PowerValue(True), SetpointValue(AWAY_FALLBACK_VALVE_TARGET)]
            else:
                values = [PowerValue(False)]
            self._apply(room, session, values, result, "away_off")
            return

        if self._window_control(room, slot, session, flags, away, now, result):
            return

        target = effective_target(room, slot, away=away, inactive=inactive)
        offset = effective_setting(slot, "inactivity_offset", room.settings.inactivity_offset)
        if not away and inactive:
            if not flags.inactivity_mode:
                minutes = self.sensors.minutes_inactive(room)
                result.changes += [f"Inactive ({minutes:.0f}min)", f"-{offset:g}°C → {target:g}°C"]
        elif flags.inactivity_mode:
            result.changes.append("Active")
            if offset > 0:
                result.changes.append(f"→ {target:g}°C")
        flags.inactivity_mode = inactive and not away
        result.target = target

        if room.is_valve:
            self._apply(room, session, [PowerValue(True), SetpointValue(target)], result, "valve_target_set")
            return

        decision = relay_decision(temperature, target, room.heating.hysteresis)
        if decision is None:
            logger.info(
                "%s: %.1f°C inside %g±%g°C, no change", room.key, temperature, target, room.heating.hysteresis / 2
            )
            result.outcome = "no_change"
            return
        self._apply(room, session, [PowerValue(decision)], result, "heating_on" if decision else "heating_off")
        if any(command.verified for command in result.commands):
            result.changes.append("Heat on" if decision else "Heat off")

    def _window_control(
        self,
        room: RoomConfig,
        slot: ScheduleSlot,
        session: Session,
        flags: RoomFlags,
        away: bool,
        now: float,
        result: RunResult,
    ) -> bool:
        """Window-open timeout and the settle delay after closing. Returns True when control stops here."""
        open_timeout = effective_setting(slot, "window_open_timeout", room.settings.window_open_timeout)
        closed_delay = effective_setting(slot, "window_closed_delay", room.settings.window_closed_delay)

        if self.sensors.window_open(room):
            flags.window_closed_at = None
            if flags.window_open_since is None:
                flags.window_open_since = now
                flags.window_timeout_handled = False
                logger.info("%s: window opened, %gs timeout started", room.key, open_timeout)
                return False

            seconds_open = now - flags.window_open_since
            if seconds_open < open_timeout:
                return False

            self._apply(room, session, [PowerValue(False)], result, "window_open_skip")
            result.outcome = "window_open_skip"
            if not flags.window_timeout_handled:
                result.outcome = "window_timeout_off"
                result.changes += [f"Window ({seconds_open:.0f}s)", "Heat off"]
                flags.window_timeout_handled = True
            return True

        if flags.window_open_since is not None:
            seconds_open = now - flags.window_open_since
            flags.window_open_since = None
            flags.window_timeout_handled = False
            if seconds_open >= open_timeout:
                # Heating was switched off: let the air settle before resuming
                flags.window_closed_at = now
                result.outcome = "window_closed_waiting"
                result.changes += ["Window closed", f"Waiting {closed_delay // 60:.0f}min"]
                return True

        if flags.window_closed_at is not None:
            if now - flags.window_closed_at < closed_delay:
                result.outcome = "window_closed_waiting"
                return True
            flags.window_closed_at = None
            if not away:
                result.changes += ["Air settled", "Heat resumed"]
        return False

    # ----------------------------------------------------------------- helpers
    def _apply(
        self,
        room: RoomConfig,
        session: Session,
        values: list[CapabilityValue],
        result: RunResult,
        outcome: str,
    ) -> None:
        commands = self._force(room, session, values)
        result.commands += commands
        result.outcome = outcome if commands else "no_change"
        self._flag_unverified(commands, result)

    def _ensure(self, actuator_id: str, session: Session, values: list[CapabilityValue]) -> list[CommandResult]:
        """Dispatch each value unless both the live value and the baseline already match it."""
        live = self._read_capabilities(actuator_id)
        state = self.repository.get_resource_state(actuator_id)
        tolerance = self.timings.setpoint_tolerance

        results = []
        for value in values:
            baseline = state.baseline(value.capability)
            if (
                value.matches(live.get(value.capability.value), tolerance)
                and baseline is not None
                and value.matches(baseline, tolerance)
            ):
                continue
            results.append(self.dispatcher.send_command_with_verification(actuator_id, value, session.session_id))
        return results

    def _read_capabilities(self, actuator_id: str) -> dict[str, Any]:
        try:
            return dict(self.actuator_client.get_actuator(actuator_id).get("capabilities") or {})
        except Exception as e:  # read API may raise anything; treat as unknown state
            logger.warning("Could not read actuator %s: %s", actuator_id, e)
            return {}

    def _flag_unverified(self, commands: list[CommandResult], result: RunResult) -> None:
        for command in commands:
            if command.success and not command.verified:
                result.changes.append(f"Unverified {command.resource_id}")

    def _notify(self, room: RoomConfig, result: RunResult) -> None:
        if not result.changes:
            return
        try:
            self.notifier.notify(room.key, list(result.changes))
            result.notified = True
        except Exception as e:  # delivery is fire-and-forget
            logger.warning("%s: notification failed: %s", room.key, e)

    # ------------------------------------------------------------------ status
    def room_status(self, room_selector: str) -> dict[str, Any]:
        """Mode records and actuator coordination state, without side effects."""
        room = self.resolve_room(room_selector)
        now = self.clock()
        slot = self.slot_for(room, now)

        modes = {}
        for mode in OVERRIDE_MODES:
            record = self.modes.record(room, mode)
            running = record.is_running(now)
            modes[mode.value] = {
                **record.to_dict(),
                "active": running,
                "started_at": epoch_to_iso(record.start_time),
                "remaining_minutes": round(record.remaining_minutes(now), 1) if running else 0,
            }

        actuators = {}
        for actuator_id in room.actuator_ids:
            state = self.repository.get_resource_state(actuator_id).to_dict()
            for field_name in ("locked_at", "last_verified_at", "baseline_cleared_at", "detection_suppressed_until"):
                state[field_name] = epoch_to_iso(state[field_name])
            actuators[actuator_id] = state

        flags = self.repository.get_room_flags(room.key)
        return {
            "room": room.key,
            "zone_name": room.zone_name,
            "heating_type": room.heating.type.value,
            "enabled": self.heating_enabled,
            "schedule": {"period": slot.period, "name": slot.name, "target": slot.target},
            "modes": modes,
            "actuators": actuators,
            "flags": {
                **flags.to_dict(),
                "in_adjustment_window": flags.in_adjustment_window(now),
            },
        }
