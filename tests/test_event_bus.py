import unittest

from app.enums.events import HeatingEvent
from app.schemas.events import ModeChangedPayload
from app.utils.event_bus import EventBus


class TestEventBus(unittest.TestCase):
    """Unit tests for the EventBus module."""

    def setUp(self):
        self.event_bus = EventBus()
        self.received = []
        self._unsubscribers = []

    def tearDown(self):
        for unsubscribe in self._unsubscribers:
            unsubscribe()

    def _subscribe(self, event, callback):
        self._unsubscribers.append(self.event_bus.subscribe(event, callback))

    def test_singleton(self):
        self.assertIs(EventBus(), self.event_bus)

    def test_subscribe_and_publish(self):
        self._subscribe("test_event", self.received.append)
        self.event_bus.publish("test_event", {"key": "value"})
        self.event_bus.wait_until_idle()

        self.assertEqual(self.received, [{"key": "value"}])

    def test_enum_topic_and_pydantic_payload(self):
        """Subscribers receive the model dumped to a plain dict."""
        self._subscribe(HeatingEvent.MODE_ACTIVATED, self.received.append)
        self.event_bus.publish(
            HeatingEvent.MODE_ACTIVATED,
            ModeChangedPayload(room="living", mode="boost", duration_minutes=60, timestamp="2026-10-19T08:00:00Z"),
        )
        self.event_bus.wait_until_idle()

        self.assertEqual(len(self.received), 1)
        self.assertEqual(self.received[0]["room"], "living")
        self.assertEqual(self.received[0]["mode"], "boost")
        self.assertEqual(self.received[0]["duration_minutes"], 60)

    def test_multiple_subscribers(self):
        listener_1_data = []
        listener_2_data = []
        self._subscribe("multi_event", listener_1_data.append)
        self._subscribe("multi_event", listener_2_data.append)
        self.event_bus.publish("multi_event", {"message": "Hello"})
        self.event_bus.wait_until_idle()

        self.assertEqual(listener_1_data, [{"message": "Hello"}])
        self.assertEqual(listener_2_data, [{"message": "Hello"}])

    def test_unsubscribe(self):
        unsubscribe = self.event_bus.subscribe("gone_event", self.received.append)
        unsubscribe()
        self.event_bus.publish("gone_event", {"data": 1})
        self.event_bus.wait_until_idle()

        self.assertEqual(self.received, [])

    def test_failing_subscriber_does_not_stop_delivery(self):
        def broken(_data):
            raise RuntimeError("boom")

        self._subscribe("fragile_event", broken)
        self._subscribe("fragile_event", self.received.append)
        self.event_bus.publish("fragile_event", {"n": 1})
        self.event_bus.wait_until_idle()

        self.assertEqual(self.received, [{"n": 1}])

    def test_no_subscribers(self):
        """Ensure no error occurs when publishing without subscribers."""
        self.event_bus.publish("unsubscribed_event", {"data": "test"})
        self.assertIn("dropped_events", self.event_bus.get_metrics())


if __name__ == "__main__":
    unittest.main()
