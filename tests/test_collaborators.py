from unittest.mock import MagicMock

import pytest
import requests

from app.domain.exceptions import DeviceError, NotFoundError
from app.enums.events import HeatingEvent
from app.hardware.actuators.hub_client import HubActuatorClient
from app.services.heating.collaborators import (
    ActuatorClient,
    EventBusNotificationSink,
    HubPresenceProvider,
    HubRoomSensors,
)
from app.utils.concurrency import run_parallel


# ----------------------------------------------------------------- hub sensors


def test_temperature_falls_back_to_first_actuator(hub, living, clock):
    sensors = HubRoomSensors(hub, clock=clock)
    assert sensors.temperature(living) == 19.5


def test_temperature_prefers_configured_sensor(hub, rooms, clock):
    room = rooms.resolve("living").model_copy(update={"temperature_sensor": "thermo-1"})
    hub.add("thermo-1", measure_temperature=20.4)

    assert HubRoomSensors(hub, clock=clock).temperature(room) == 20.4


def test_temperature_unknown_when_nothing_reads(hub, office, clock):
    # plug-1 reports no measure_temperature
    assert HubRoomSensors(hub, clock=clock).temperature(office) is None


def test_window_open(hub, living, clock):
    sensors = HubRoomSensors(hub, clock=clock)
    assert sensors.window_open(living) is False  # unreadable sensor counts as closed

    hub.add("contact-living", alarm_contact=True)
    assert sensors.window_open(living) is True


def test_minutes_inactive(hub, living, clock):
    sensors = HubRoomSensors(hub, clock=clock)
    assert sensors.minutes_inactive(living) == 0.0

    hub.zones["Living Room"] = {"active": False, "active_last_updated": clock() - 45 * 60}
    assert sensors.minutes_inactive(living) == pytest.approx(45.0)

    hub.zones["Living Room"] = {"active": True, "active_last_updated": clock() - 45 * 60}
    assert sensors.minutes_inactive(living) == 0.0


def test_presence(hub):
    hub.add("home", presence_mode="away")
    assert HubPresenceProvider(hub, "home").is_away() is True

    hub.set_live("home", "presence_mode", "home")
    assert HubPresenceProvider(hub, "home").is_away() is False
    assert HubPresenceProvider(hub, "").is_away() is False
    assert HubPresenceProvider(hub, "missing").is_away() is False


def test_notification_sink_publishes(mock_event_bus, clock):
    EventBusNotificationSink(mock_event_bus, clock=clock).notify("living", ["Boost", "60 min"])

    mock_event_bus.publish.assert_called_once()
    event, payload = mock_event_bus.publish.call_args.args
    assert event is HeatingEvent.ROOM_NOTIFICATION
    assert payload.room == "living"
    assert payload.lines == ["Boost", "60 min"]


# ------------------------------------------------------------------ hub client


def _response(status=200, body=None):
    response = MagicMock()
    response.status_code = status
    response.content = b"{}" if body is not None else b""
    response.json.return_value = body
    if status >= 400:
        response.raise_for_status.side_effect = requests.exceptions.HTTPError(f"{status} error")
    return response


@pytest.fixture()
def session():
    session = requests.Session()
    session.request = MagicMock(return_value=_response(body={}))
    return session


def test_client_satisfies_protocol(session):
    assert isinstance(HubActuatorClient("http://hub", session=session), ActuatorClient)


def test_set_capability(session):
    client = HubActuatorClient("http://hub/api/", token="secret", timeout=2.5, session=session)
    client.set_capability("valve-1", "target_temperature", 21.0)

    session.request.assert_called_once_with(
        "PUT",
        "http://hub/api/devices/valve-1/capabilities/target_temperature",
        timeout=2.5,
        json={"value": 21.0},
    )
    assert session.headers["Authorization"] == "Bearer secret"


def test_get_actuator_flattens_nested_values(session):
    session.request.return_value = _response(
        body={"id": "valve-1", "name": "Valve", "capabilities": {"onoff": {"value": True}, "target_temperature": 20.5}}
    )

    actuator = HubActuatorClient("http://hub", session=session).get_actuator("valve-1")

    assert actuator == {"id": "valve-1", "name": "Valve", "capabilities": {"onoff": True, "target_temperature": 20.5}}


def test_not_found(session):
    session.request.return_value = _response(status=404)
    with pytest.raises(NotFoundError):
        HubActuatorClient("http://hub", session=session).get_actuator("ghost")


@pytest.mark.parametrize(
    "failure",
    [requests.exceptions.ConnectionError("refused"), requests.exceptions.Timeout("slow")],
)
def test_transport_errors_become_device_errors(session, failure):
    session.request.side_effect = failure
    with pytest.raises(DeviceError, match="failed"):
        HubActuatorClient("http://hub", session=session).set_capability("plug-1", "onoff", True)


def test_server_error_becomes_device_error(session):
    session.request.return_value = _response(status=500)
    with pytest.raises(DeviceError):
        HubActuatorClient("http://hub", session=session).get_zone("Office")


def test_empty_body(session):
    session.request.return_value = _response(body=None)
    assert HubActuatorClient("http://hub", session=session).get_zone("Office") == {}


# ---------------------------------------------------------------- run_parallel


def test_run_parallel_keeps_input_order():
    assert run_parallel(lambda n: n * 2, [3, 1, 2]) == [6, 2, 4]
    assert run_parallel(lambda n: n, []) == []


def test_run_parallel_propagates_errors():
    def fail_on_two(n):
        if n == 2:
            raise ValueError("two")
        return n

    with pytest.raises(ValueError, match="two"):
        run_parallel(fail_on_two, [1, 2, 3])
