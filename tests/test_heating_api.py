import signal

import pytest

from app import create_app


@pytest.fixture()
def client(services, monkeypatch):
    monkeypatch.setattr("app.setup_logging", lambda **_kwargs: None)
    monkeypatch.setattr(signal, "signal", lambda *_args: None)
    app = create_app({"log_path": ""}, container=services)
    app.config["TESTING"] = True
    return app.test_client()


def test_run_room_tick(client, hub):
    response = client.post("/api/heating/rooms/office/run", json={})
    assert response.status_code == 200
    body = response.get_json()
    assert body["ok"] is True
    assert body["data"]["room"] == "office"
    assert body["data"]["outcome"] == "heating_on"
    assert body["data"]["commands"][0]["verified"] is True
    assert hub.live("plug-1", "onoff") is True


def test_run_room_without_body(client):
    response = client.post("/api/heating/rooms/office/run")
    assert response.status_code == 200


def test_run_room_with_action(client):
    response = client.post("/api/heating/rooms/living/run", json={"action": "Boost"})
    assert response.status_code == 200
    data = response.get_json()["data"]
    assert data["action"] == "boost"
    assert data["mode"] == "boost"
    assert data["target"] == 25.0


def test_invalid_action_is_rejected(client, hub):
    response = client.post("/api/heating/rooms/office/run", json={"action": "turbo"})
    assert response.status_code == 400
    body = response.get_json()
    assert body["ok"] is False
    assert body["details"]["errors"]
    assert hub.writes == []


def test_unknown_room_is_404(client):
    response = client.post("/api/heating/rooms/garage/run", json={})
    assert response.status_code == 404
    assert "garage" in response.get_json()["message"]


@pytest.mark.parametrize("action, mode", [("boost", "boost"), ("pause", "pause")])
def test_mode_shortcuts(client, action, mode):
    response = client.post(f"/api/heating/rooms/office/{action}")
    assert response.status_code == 200
    assert response.get_json()["data"]["mode"] == mode


def test_cancel_resumes_schedule(client, hub):
    client.post("/api/heating/rooms/office/pause")
    assert hub.live("plug-1", "onoff") is False

    response = client.post("/api/heating/rooms/office/cancel")
    data = response.get_json()["data"]
    assert data["outcome"] == "resumed"
    assert "Cancelled pause" in data["changes"]
    assert hub.live("plug-1", "onoff") is True


def test_room_status(client):
    client.post("/api/heating/rooms/living/boost")
    response = client.get("/api/heating/rooms/living/status")
    assert response.status_code == 200
    data = response.get_json()["data"]
    assert data["modes"]["boost"]["active"] is True
    assert set(data["actuators"]) == {"valve-1", "valve-2"}


def test_cleanup_endpoint(client, services, clock):
    services.lock_manager.try_acquire_lock("valve-1", "crashed")
    clock.advance(301)
    response = client.post("/api/heating/cleanup")
    assert response.status_code == 200
    assert response.get_json()["data"]["reset"] == ["valve-1"]


def test_unexpected_error_is_not_leaked(client, services, monkeypatch):
    def boom(*_args, **_kwargs):
        raise RuntimeError("/secret/path exploded")

    monkeypatch.setattr(services.controller, "run", boom)
    response = client.post("/api/heating/rooms/office/run", json={})
    assert response.status_code == 500
    body = response.get_json()
    assert body["message"] == "An internal error occurred"
    assert "secret" not in response.get_data(as_text=True)


def test_unknown_endpoint_uses_json_envelope(client):
    response = client.get("/api/heating/nothing-here")
    assert response.status_code == 404
    assert response.get_json()["ok"] is False


def test_wrong_method_uses_json_envelope(client):
    response = client.get("/api/heating/rooms/office/run")
    assert response.status_code == 405
    assert response.get_json()["error"]["status"] == 405
