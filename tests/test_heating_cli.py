import json

import pytest

from app.workers import heating_cli


@pytest.fixture(autouse=True)
def quiet_logging(monkeypatch):
    monkeypatch.setattr(heating_cli, "setup_logging", lambda **_kwargs: None)


def _output(capsys):
    return json.loads(capsys.readouterr().out)


def test_run_prints_result(services, hub, capsys):
    code = heating_cli.main(["run", "office"], container=services)

    assert code == 0
    body = _output(capsys)
    assert body["ok"] is True
    assert body["data"]["outcome"] == "heating_on"
    assert hub.live("plug-1", "onoff") is True


def test_run_with_action(services, capsys):
    code = heating_cli.main(["run", "living", "--action", "pause"], container=services)

    assert code == 0
    assert _output(capsys)["data"]["mode"] == "pause"


def test_invalid_action_is_rejected_by_parser(services):
    with pytest.raises(SystemExit) as exc:
        heating_cli.main(["run", "living", "--action", "turbo"], container=services)
    assert exc.value.code == 2


def test_unknown_room_returns_error(services, capsys):
    code = heating_cli.main(["run", "garage"], container=services)

    assert code == 1
    body = _output(capsys)
    assert body["ok"] is False
    assert "garage" in body["error"]


def test_status(services, capsys):
    heating_cli.main(["run", "office", "--action", "boost"], container=services)
    capsys.readouterr()

    code = heating_cli.main(["status", "Office"], container=services)

    assert code == 0
    data = _output(capsys)["data"]
    assert data["room"] == "office"
    assert data["modes"]["boost"]["active"] is True


def test_cleanup(services, clock, capsys):
    services.lock_manager.try_acquire_lock("plug-1", "crashed")
    clock.advance(301)

    code = heating_cli.main(["cleanup"], container=services)

    assert code == 0
    assert _output(capsys)["data"]["reset"] == ["plug-1"]


def test_no_command_prints_help(capsys):
    assert heating_cli.main([]) == 2
    assert "heating-control" in capsys.readouterr().out


def test_missing_rooms_file_is_reported(tmp_path, capsys, monkeypatch):
    monkeypatch.delenv("HEATING_HUB_URL", raising=False)
    code = heating_cli.main(
        ["--rooms", str(tmp_path / "absent.json"), "--state-db", ":memory:", "status", "living"]
    )

    assert code == 1
    assert "not found" in _output(capsys)["error"]
