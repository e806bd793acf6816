"""
EventBus singleton carrying heating events to whoever listens.

Publishers are the coordination services (dispatcher, lock manager, mode
service, detector) and the notification sink. Delivery is asynchronous on a
small worker pool so a slow subscriber never holds up an actuator slot.

Key invariants (enforced by call sites + tests):
  - Topics are HeatingEvent members (raw strings are accepted for ad-hoc use).
  - Payloads are Pydantic models from app.schemas.events.
  - Subscribers always receive a JSON-safe dict.
"""
import logging
import threading
import time
from collections import Counter, defaultdict
from enum import Enum
from queue import Full, Queue
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel

from app.config import load_config
from app.enums.events import EventType

logger = logging.getLogger(__name__)

Subscriber = Callable[[Any], None]

# A full queue is logged at most this often
_DROP_LOG_INTERVAL_SECONDS = 60


def _topic(event_name: EventType) -> str:
    return event_name.value if isinstance(event_name, Enum) else event_name


def _to_payload(data: Any) -> Any:
    if isinstance(data, BaseModel):
        return data.model_dump(mode="json")
    return data


class EventBus:
    """
    Process-wide publish/subscribe hub.

    Every ``EventBus()`` call returns the same instance so services built
    independently still share one routing table.
    """

    _instance: Optional["EventBus"] = None
    _instance_lock = threading.Lock()

    def __new__(cls) -> "EventBus":
        if cls._instance is None:
            with cls._instance_lock:
                if cls._instance is None:
                    instance = super().__new__(cls)
                    instance._setup(load_config())
                    cls._instance = instance
        return cls._instance

    def _setup(self, config) -> None:
        self.lock = threading.Lock()
        self.subscribers: Dict[str, List[Subscriber]] = defaultdict(list)
        self._queue_size = config.eventbus_queue_size
        self._queue: Queue = Queue(maxsize=self._queue_size)
        self._drops: Counter = Counter()
        self._last_drop_log = 0.0
        self._workers = [
            threading.Thread(target=self._deliver_forever, name=f"heating-events-{index}", daemon=True)
            for index in range(max(1, config.eventbus_worker_count))
        ]
        for worker in self._workers:
            worker.start()
        logger.info("EventBus started (%d worker(s), queue of %d)", len(self._workers), self._queue_size)

    # ------------------------------------------------------------- subscribing
    def subscribe(self, event_name: EventType, callback: Subscriber) -> Callable[[], None]:
        """
        Register ``callback`` for a topic.

        Returns:
            A callable that removes the subscription again.
        """
        topic = _topic(event_name)
        with self.lock:
            self.subscribers[topic].append(callback)

        def unsubscribe() -> None:
            with self.lock:
                callbacks = self.subscribers.get(topic, [])
                if callback in callbacks:
                    callbacks.remove(callback)

        return unsubscribe

    # -------------------------------------------------------------- publishing
    def publish(self, event_name: EventType, data: Any = None) -> None:
        """Queue ``data`` for every subscriber of the topic; never blocks the caller."""
        topic = _topic(event_name)
        with self.lock:
            callbacks = list(self.subscribers.get(topic, ()))
        if not callbacks:
            return

        payload = _to_payload(data)
        for callback in callbacks:
            try:
                self._queue.put_nowait((topic, callback, payload))
            except Full:
                self._record_drop(topic)
                return

    def _deliver_forever(self) -> None:
        while True:
            topic, callback, payload = self._queue.get()
            try:
                callback(payload)
            except Exception:  # pragma: no cover - a broken subscriber must not kill the worker
                logger.exception("Subscriber of %s failed", topic)
            finally:
                self._queue.task_done()

    def _record_drop(self, topic: str) -> None:
        self._drops[topic] += 1
        now = time.monotonic()
        if now - self._last_drop_log < _DROP_LOG_INTERVAL_SECONDS:
            return
        self._last_drop_log = now
        logger.warning(
            "EventBus queue full (size %d); %d event(s) dropped so far, most for: %s. "
            "Consider raising HEATING_EVENTBUS_QUEUE_SIZE.",
            self._queue_size,
            sum(self._drops.values()),
            ", ".join(f"{name}:{count}" for name, count in self._drops.most_common(3)),
        )

    # ------------------------------------------------------------- inspection
    def wait_until_idle(self) -> None:
        """Block until every queued callback has run."""
        self._queue.join()

    def get_metrics(self) -> Dict[str, Any]:
        with self.lock:
            subscriber_count = sum(len(callbacks) for callbacks in self.subscribers.values())
        return {
            "queue_depth": self._queue.qsize(),
            "queue_size": self._queue_size,
            "dropped_events": sum(self._drops.values()),
            "subscribers": subscriber_count,
        }
