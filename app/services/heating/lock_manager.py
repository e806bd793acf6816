"""
Lock & Queue Manager
====================

Grants an actuator's in-flight slot to one session at a time, queues the
other contenders and reclaims slots abandoned past the lock timeout.

The slot lives in the shared key/value store, which offers no
compare-and-swap. Every read-check-write below is therefore serialized with
an in-process ``RLock``; sessions running in other processes still race, and
the lock/stale timeouts bound the damage when they do.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from app.config import HeatingTimings
from app.domain.exceptions import StaleStateError
from app.domain.heating import Command, QueuedCommand, QueueWaitResult, ResourceState
from app.enums.events import HeatingEvent
from app.enums.heating import Capability, CommandPriority
from app.schemas.events import StaleStateResetPayload
from app.utils.concurrency import synchronized
from app.utils.event_bus import EventBus
from app.utils.time import Clock, Sleeper, epoch_now, epoch_to_iso
from infrastructure.database.repositories.heating import HeatingStateRepository

logger = logging.getLogger(__name__)

_ACQUIRED = "acquired"
_WAITING = "waiting"
_VANISHED = "vanished"


class LockManager:
    """Advisory per-actuator locking on top of :class:`HeatingStateRepository`."""

    def __init__(
        self,
        repository: HeatingStateRepository,
        timings: HeatingTimings | None = None,
        *,
        clock: Clock = epoch_now,
        sleep: Sleeper = time.sleep,
        event_bus: EventBus | None = None,
    ) -> None:
        self.repository = repository
        self.timings = timings or HeatingTimings()
        self.clock = clock
        self.sleep = sleep
        self.event_bus = event_bus or EventBus()
        self._lock = threading.RLock()

    # ------------------------------------------------------------------ acquire
    @synchronized
    def try_acquire_lock(self, resource_id: str, session_id: str) -> bool:
        """Claim the actuator's slot for ``session_id`` without waiting."""
        state = self.repository.get_resource_state(resource_id)
        now = self.clock()

        if state.held_by(session_id):
            state.claim(session_id, now)
            self.repository.save_resource_state(state)
            return True

        if state.is_free:
            state.claim(session_id, now)
            self.repository.save_resource_state(state)
            logger.debug("Session %s acquired %s", session_id, resource_id)
            return True

        age = state.lock_age(now)
        if age > self.timings.lock_timeout:
            self._reclaim(state, session_id, now, age)
            self.repository.save_resource_state(state)
            return True

        logger.debug("Actuator %s busy (%s held by %s for %.1fs)", resource_id, state.status.value, state.holder, age)
        return False

    def _reclaim(self, state: ResourceState, session_id: str, now: float, age: float) -> None:
        reason = f"lock timeout: {state.status.value} slot of session {state.holder} abandoned after {age:.0f}s"
        logger.warning("Reclaiming %s for session %s (%s)", state.resource_id, session_id, reason)
        state.reset(reason)
        state.claim(session_id, now)

    # -------------------------------------------------------------------- queue
    @synchronized
    def queue_command(
        self,
        resource_id: str,
        command: Command,
        session_id: str,
        priority: CommandPriority = CommandPriority.NORMAL,
    ) -> int:
        """Enqueue once per session; returns the session's position (0 = head)."""
        state = self.repository.get_resource_state(resource_id)
        sessions = state.queued_sessions()
        if session_id in sessions:
            return sessions.index(session_id)

        state.queue.append(QueuedCommand(command=command, priority=priority, enqueued_at=self.clock()))
        state.sort_queue()
        self.repository.save_resource_state(state)

        position = state.queued_sessions().index(session_id)
        logger.info(
            "Queued %s for %s (session %s, priority %s, position %d)",
            command.value.describe(),
            resource_id,
            session_id,
            priority.value,
            position,
        )
        return position

    def wait_for_queue_position(
        self,
        resource_id: str,
        session_id: str,
        timeout: float | None = None,
    ) -> QueueWaitResult:
        """Poll until the slot is free and ``session_id`` heads the queue.

        The head entry is popped and the slot claimed in the same step. On
        timeout the caller's own entry is withdrawn so it cannot be granted
        to a session that stopped waiting.
        """
        timeout = self.timings.queue_wait_timeout if timeout is None else timeout
        started = self.clock()

        while True:
            outcome = self._take_head(resource_id, session_id)
            waited = self.clock() - started
            if outcome == _ACQUIRED:
                logger.info("Session %s reached the head of %s after %.1fs", session_id, resource_id, waited)
                return QueueWaitResult(success=True, waited_seconds=waited)
            if outcome == _VANISHED:
                logger.warning("Queue entry of session %s on %s vanished", session_id, resource_id)
                return QueueWaitResult(success=False, waited_seconds=waited, reason="queue entry vanished")
            if waited >= timeout:
                self.withdraw(resource_id, session_id)
                logger.warning("Session %s gave up waiting for %s after %.1fs", session_id, resource_id, waited)
                return QueueWaitResult(success=False, waited_seconds=waited, reason="queue wait timeout")
            self.sleep(min(self.timings.queue_poll_interval, timeout - waited))

    @synchronized
    def _take_head(self, resource_id: str, session_id: str) -> str:
        state = self.repository.get_resource_state(resource_id)
        sessions = state.queued_sessions()
        if session_id not in sessions:
            return _VANISHED
        if sessions[0] != session_id:
            return _WAITING

        now = self.clock()
        if not (state.is_free or state.held_by(session_id)):
            age = state.lock_age(now)
            if age <= self.timings.lock_timeout:
                return _WAITING
            self._reclaim(state, session_id, now, age)

        state.queue.pop(0)
        state.claim(session_id, now)
        self.repository.save_resource_state(state)
        return _ACQUIRED

    @synchronized
    def withdraw(self, resource_id: str, session_id: str) -> bool:
        state = self.repository.get_resource_state(resource_id)
        if not state.withdraw(session_id):
            return False
        self.repository.save_resource_state(state)
        return True

    @synchronized
    def process_next_queued_command(self, resource_id: str) -> str | None:
        """Re-sort the queue after a release and return the next session, if any.

        Nothing is dispatched here: the next waiter discovers it heads the
        queue on its own poll.
        """
        state = self.repository.get_resource_state(resource_id)
        if not state.queue:
            return None
        state.sort_queue()
        self.repository.save_resource_state(state)
        next_session = state.queue[0].session_id
        logger.debug("Next in line for %s: session %s (%d waiting)", resource_id, next_session, len(state.queue))
        return next_session

    # ------------------------------------------------------------- owned writes
    @synchronized
    def mutate_owned(self, resource_id: str, session_id: str, mutate: Callable[[ResourceState], None]) -> bool:
        """Apply ``mutate`` and persist, but only while ``session_id`` holds the slot."""
        state = self.repository.get_resource_state(resource_id)
        if not state.held_by(session_id):
            logger.warning(
                "Session %s lost %s to %s; discarding its state update", session_id, resource_id, state.holder
            )
            return False
        mutate(state)
        self.repository.save_resource_state(state)
        return True

    @synchronized
    def heartbeat(self, resource_id: str, session_id: str) -> bool:
        """Mark the slot as still in use by ``session_id``; False when it was lost."""
        state = self.repository.get_resource_state(resource_id)
        if not state.held_by(session_id):
            return False
        state.locked_at = self.clock()
        self.repository.save_resource_state(state)
        return True

    def release_lock(
        self,
        resource_id: str,
        session_id: str,
        mutate: Callable[[ResourceState], None] | None = None,
    ) -> bool:
        """Apply a final update, free the slot and hand it to the next queued session."""

        def _release(state: ResourceState) -> None:
            if mutate is not None:
                mutate(state)
            state.command = None
            state.owner_session = None
            state.locked_at = None

        released = self.mutate_owned(resource_id, session_id, _release)
        self.process_next_queued_command(resource_id)
        return released

    @synchronized
    def clear_baseline(self, resource_id: str, reason: str, now: float, capability: Capability | None = None) -> bool:
        """Record a baseline clear outside of any dispatch (e.g. after an away period)."""
        state = self.repository.get_resource_state(resource_id)
        if not state.clear_baseline(reason, now, capability):
            return False
        self.repository.save_resource_state(state)
        return True

    # -------------------------------------------------------------------- sweep
    def cleanup_stale_resource_states(self) -> dict:
        """Reset abandoned in-flight slots and drop stale queue entries on every known actuator."""
        summary: dict = {"checked": 0, "reset": [], "dropped_queue_entries": 0}
        for resource_id in self.repository.list_resource_ids():
            summary["checked"] += 1
            reset_reason, dropped = self._sweep_one(resource_id)
            if reset_reason:
                summary["reset"].append(resource_id)
            summary["dropped_queue_entries"] += dropped
            if reset_reason or dropped:
                self.event_bus.publish(
                    HeatingEvent.STALE_STATE_RESET,
                    StaleStateResetPayload(
                        resource_id=resource_id,
                        reason=reset_reason,
                        error_kind=StaleStateError.kind if reset_reason else None,
                        dropped_queue_entries=dropped,
                        timestamp=epoch_to_iso(self.clock()),
                    ),
                )

        if summary["reset"] or summary["dropped_queue_entries"]:
            logger.info(
                "Stale sweep reset %d actuator(s) and dropped %d queue entries",
                len(summary["reset"]),
                summary["dropped_queue_entries"],
            )
        return summary

    @synchronized
    def _sweep_one(self, resource_id: str) -> tuple[str | None, int]:
        state = self.repository.get_resource_state(resource_id)
        now = self.clock()
        stale_after = self.timings.stale_timeout
        reason: str | None = None

        if state.holder is not None:
            age = state.lock_age(now)
            if age > stale_after:
                reason = f"stale {state.status.value} slot of session {state.holder} reset after {age:.0f}s"
                logger.warning("Resetting %s: %s", resource_id, reason)
                state.reset(reason)

        before = len(state.queue)
        state.queue = [entry for entry in state.queue if now - entry.enqueued_at <= stale_after]
        dropped = before - len(state.queue)

        if reason or dropped:
            self.repository.save_resource_state(state)
        return reason, dropped
