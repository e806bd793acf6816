"""
Command Dispatcher & Verifier
=============================

One write to one actuator capability, followed by polling the actuator until
it reports the written value, with a bounded number of retries.

Nothing here raises on device trouble: every outcome is a
:class:`~app.domain.heating.CommandResult`. ``success`` only says the command
was attempted; callers must look at ``verified`` before trusting the device
state. The baseline is published exclusively from a verified write.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any

from app.config import HeatingTimings
from app.domain.exceptions import LockTimeoutError, VerificationTimeoutError, WriteFailureError
from app.domain.heating import (
    CapabilityValue,
    Command,
    CommandResult,
    PowerValue,
    ResourceState,
    VerificationResult,
)
from app.enums.events import HeatingEvent
from app.enums.heating import Capability, CommandPriority, ResourceStatus
from app.schemas.events import BaselineClearedPayload, CommandOutcomePayload
from app.services.heating.collaborators import ActuatorClient
from app.services.heating.lock_manager import LockManager
from app.utils.event_bus import EventBus
from app.utils.time import Clock, Sleeper, epoch_to_iso

logger = logging.getLogger(__name__)


class CommandDispatcher:
    """Sends capability writes through the lock manager and verifies them."""

    def __init__(
        self,
        lock_manager: LockManager,
        actuator_client: ActuatorClient,
        timings: HeatingTimings | None = None,
        *,
        clock: Clock | None = None,
        sleep: Sleeper | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        self.lock_manager = lock_manager
        self.actuator_client = actuator_client
        self.timings = timings or lock_manager.timings
        self.clock = clock or lock_manager.clock
        self.sleep = sleep or lock_manager.sleep
        self.event_bus = event_bus or lock_manager.event_bus

    # ------------------------------------------------------------------- send
    def send_command_with_verification(
        self,
        resource_id: str,
        value: CapabilityValue,
        session_id: str,
        timeout: float | None = None,
        max_retries: int | None = None,
        priority: CommandPriority = CommandPriority.NORMAL,
    ) -> CommandResult:
        """Write ``value`` to the actuator and poll until it reports it back.

        Args:
            resource_id: Actuator id.
            value: Typed value; its variant selects the capability and the
                comparison (exact for power, tolerance for setpoints).
            session_id: Calling session; the slot is re-entrant per session.
            timeout: Verification timeout per attempt (seconds).
            max_retries: Total attempts before giving up.
            priority: Queue priority when the actuator is busy.

        Returns:
            CommandResult. ``skipped=True`` when the slot could not be obtained.
        """
        timeout = self.timings.verify_timeout if timeout is None else timeout
        max_retries = self.timings.max_retries if max_retries is None else max_retries
        command = Command(value=value, session_id=session_id, timestamp=self.clock())

        if not self.lock_manager.try_acquire_lock(resource_id, session_id):
            self.lock_manager.queue_command(resource_id, command, session_id, priority)
            wait = self.lock_manager.wait_for_queue_position(resource_id, session_id)
            if not wait.success:
                return self._skipped(resource_id, value, session_id, f"actuator busy: {wait.reason}")

        last_error: str | None = None
        error_kind: str | None = None

        for attempt in range(1, max_retries + 1):
            command = replace(command, retry_count=attempt - 1, timestamp=self.clock())

            if not self.lock_manager.mutate_owned(
                resource_id, session_id, lambda s, c=command: _enter(s, ResourceStatus.SENDING, c)
            ):
                return self._skipped(resource_id, value, session_id, "slot reclaimed before write")

            try:
                self.actuator_client.set_capability(resource_id, value.capability.value, value.raw)
            except Exception as e:  # the write API signals failure by raising anything
                last_error = f"write failed: {e}"
                error_kind = WriteFailureError.kind
                logger.warning(
                    "Attempt %d/%d: writing %s to %s failed: %s", attempt, max_retries, value.describe(), resource_id, e
                )
            else:
                command = command.refreshed(self.clock())
                if not self.lock_manager.mutate_owned(
                    resource_id, session_id, lambda s, c=command: _enter(s, ResourceStatus.VERIFYING, c)
                ):
                    return self._skipped(resource_id, value, session_id, "slot reclaimed before verification")

                verification = self.verify_device_status(resource_id, value, timeout, session_id=session_id)
                if verification.lock_lost:
                    return self._skipped(resource_id, value, session_id, "slot reclaimed during verification")
                if verification.verified:
                    return self._complete(resource_id, value, session_id, attempt)

                last_error = (
                    f"verification timeout after {timeout:g}s: expected {value.describe()}, "
                    f"actuator reported {verification.reported_value!r}"
                )
                error_kind = VerificationTimeoutError.kind
                logger.warning("Attempt %d/%d on %s: %s", attempt, max_retries, resource_id, last_error)

            recorded = self.lock_manager.mutate_owned(
                resource_id, session_id, lambda s, e=last_error: _record(s, e, self.clock())
            )
            if not recorded:
                return self._skipped(resource_id, value, session_id, "slot reclaimed after failed attempt")
            if attempt < max_retries:
                self.sleep(self.timings.retry_delay)

        return self._exhausted(resource_id, value, session_id, max_retries, last_error, error_kind)

    # ----------------------------------------------------------------- verify
    def verify_device_status(
        self,
        resource_id: str,
        expected: CapabilityValue,
        timeout: float | None = None,
        session_id: str | None = None,
    ) -> VerificationResult:
        """Poll the actuator until it reports ``expected`` or ``timeout`` elapses.

        When ``session_id`` is given, ownership of the slot is re-checked (and
        its liveness refreshed) on every wake-up; a reclaimed slot ends the poll
        with ``lock_lost``.
        Read errors count as a non-matching poll.
        """
        timeout = self.timings.verify_timeout if timeout is None else timeout
        started = self.clock()
        polls = 0
        reported: Any = None

        while True:
            if session_id is not None and not self.lock_manager.heartbeat(resource_id, session_id):
                logger.warning("Session %s no longer holds %s; abandoning verification", session_id, resource_id)
                return VerificationResult(
                    verified=False,
                    reported_value=reported,
                    polls=polls,
                    elapsed_seconds=self.clock() - started,
                    lock_lost=True,
                )

            reported = self.read_capability(resource_id, expected.capability)
            polls += 1
            elapsed = self.clock() - started
            if expected.matches(reported, self.timings.setpoint_tolerance):
                logger.debug("%s confirmed %s after %d poll(s)", resource_id, expected.describe(), polls)
                return VerificationResult(verified=True, reported_value=reported, polls=polls, elapsed_seconds=elapsed)
            if elapsed >= timeout:
                return VerificationResult(verified=False, reported_value=reported, polls=polls, elapsed_seconds=elapsed)
            self.sleep(min(self.timings.verify_poll_interval, timeout - elapsed))

    def read_capability(self, resource_id: str, capability: Capability) -> Any:
        """Live capability value, or None when the actuator cannot be read."""
        try:
            return self.actuator_client.get_actuator(resource_id)["capabilities"].get(capability.value)
        except Exception as e:  # read API is eventually consistent and may raise anything
            logger.debug("Reading %s of %s failed: %s", capability.value, resource_id, e)
            return None

    # ---------------------------------------------------------------- outcomes
    def _complete(self, resource_id: str, value: CapabilityValue, session_id: str, attempts: int) -> CommandResult:
        now = self.clock()
        cleared: list[bool] = []

        def _verified(state: ResourceState) -> None:
            state.status = ResourceStatus.IDLE
            state.last_error = None
            state.detection_suppressed_until = None
            state.publish_baseline(value, now)
            # A valve that is off has no meaningful setpoint to compare against
            if isinstance(value, PowerValue) and not value.on:
                cleared.append(state.clear_baseline("power off", now, Capability.SETPOINT))

        if not self.lock_manager.release_lock(resource_id, session_id, _verified):
            return self._skipped(resource_id, value, session_id, "slot reclaimed before baseline publish")

        logger.info("%s set to %s and verified (attempt %d)", resource_id, value.describe(), attempts)
        self._publish_outcome(HeatingEvent.COMMAND_VERIFIED, resource_id, value, session_id, True, attempts)
        if any(cleared):
            self.event_bus.publish(
                HeatingEvent.BASELINE_CLEARED,
                BaselineClearedPayload(
                    resource_id=resource_id,
                    capability=Capability.SETPOINT.value,
                    reason="power off",
                    timestamp=epoch_to_iso(now),
                ),
            )
        return CommandResult(
            resource_id=resource_id,
            capability=value.capability.value,
            value=value.raw,
            success=True,
            verified=True,
            attempts=attempts,
        )

    def _exhausted(
        self,
        resource_id: str,
        value: CapabilityValue,
        session_id: str,
        attempts: int,
        error: str | None,
        error_kind: str | None,
    ) -> CommandResult:
        grace_until = self.clock() + self.timings.unverified_grace_minutes * 60

        def _failed(state: ResourceState) -> None:
            state.status = ResourceStatus.FAILED
            state.last_error = error
            # True device state is unknown: hold off intervention detection
            state.detection_suppressed_until = grace_until

        self.lock_manager.release_lock(resource_id, session_id, _failed)
        logger.error("%s: giving up on %s after %d attempt(s): %s", resource_id, value.describe(), attempts, error)
        self._publish_outcome(
            HeatingEvent.COMMAND_FAILED, resource_id, value, session_id, False, attempts, error, error_kind
        )
        return CommandResult(
            resource_id=resource_id,
            capability=value.capability.value,
            value=value.raw,
            success=True,
            verified=False,
            attempts=attempts,
            error=error,
            error_kind=error_kind,
        )

    def _skipped(self, resource_id: str, value: CapabilityValue, session_id: str, reason: str) -> CommandResult:
        logger.warning("Skipping %s on %s for session %s: %s", value.describe(), resource_id, session_id, reason)
        self._publish_outcome(
            HeatingEvent.COMMAND_SKIPPED, resource_id, value, session_id, False, 0, reason, LockTimeoutError.kind
        )
        return CommandResult(
            resource_id=resource_id,
            capability=value.capability.value,
            value=value.raw,
            success=False,
            verified=False,
            skipped=True,
            error=reason,
            error_kind=LockTimeoutError.kind,
        )

    def _publish_outcome(
        self,
        event: HeatingEvent,
        resource_id: str,
        value: CapabilityValue,
        session_id: str,
        verified: bool,
        attempts: int,
        error: str | None = None,
        error_kind: str | None = None,
    ) -> None:
        self.event_bus.publish(
            event,
            CommandOutcomePayload(
                resource_id=resource_id,
                capability=value.capability.value,
                value=value.raw,
                session_id=session_id,
                verified=verified,
                attempts=attempts,
                error=error,
                error_kind=error_kind,
                timestamp=epoch_to_iso(self.clock()),
            ),
        )


def _enter(state: ResourceState, status: ResourceStatus, command: Command) -> None:
    state.status = status
    state.command = command


def _record(state: ResourceState, error: str | None, now: float) -> None:
    state.last_error = error
    # Still working: the retry delay must not look like an abandoned slot
    state.locked_at = now
