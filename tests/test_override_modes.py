import pytest

from app.domain.exceptions import ValidationError
from app.domain.heating import ModeRecord, ModeStatus
from app.enums.events import HeatingEvent
from app.enums.heating import InterventionType, OverrideMode


def _events(bus):
    return [call.args[0] for call in bus.publish.call_args_list]


def _slot(room):
    return room.schedules.weekday[0]


# ---------------------------------------------------------------- activation


def test_activate_writes_record_without_touching_devices(modes, living, hub, clock, mock_event_bus):
    record = modes.activate(living, OverrideMode.BOOST, reason="requested")

    assert record.active is True
    assert record.start_time == clock()
    assert record.duration_minutes == 60
    assert modes.record(living, OverrideMode.BOOST).active is True
    assert hub.writes == []
    assert _events(mock_event_bus) == [HeatingEvent.MODE_ACTIVATED]


def test_default_durations(modes, living):
    assert modes.default_duration(living, OverrideMode.BOOST) == 60
    assert modes.default_duration(living, OverrideMode.PAUSE) == 60
    assert modes.default_duration(living, OverrideMode.MANUAL_OVERRIDE) == 90


def test_normal_cannot_be_activated(modes, living):
    with pytest.raises(ValidationError):
        modes.activate(living, OverrideMode.NORMAL)


def test_boost_request_cancels_manual_override(modes, living):
    modes.activate(living, OverrideMode.MANUAL_OVERRIDE, override_type=InterventionType.TEMPERATURE)
    modes.activate(living, OverrideMode.BOOST)

    assert modes.record(living, OverrideMode.MANUAL_OVERRIDE).active is False
    assert modes.record(living, OverrideMode.BOOST).active is True


def test_boost_and_pause_replace_each_other(modes, living):
    modes.activate(living, OverrideMode.BOOST)
    modes.activate(living, OverrideMode.PAUSE)
    assert modes.record(living, OverrideMode.BOOST).active is False
    assert modes.active_mode(living) is OverrideMode.PAUSE

    modes.activate(living, OverrideMode.BOOST)
    assert modes.record(living, OverrideMode.PAUSE).active is False
    assert modes.active_mode(living) is OverrideMode.BOOST


def test_manual_override_cancels_boost(modes, living, mock_event_bus):
    modes.activate(living, OverrideMode.BOOST)
    modes.activate(
        living,
        OverrideMode.MANUAL_OVERRIDE,
        override_type=InterventionType.TEMPERATURE,
        original_value=25.0,
        current_value=23.0,
        actuator_id="valve-1",
    )

    assert modes.active_mode(living) is OverrideMode.MANUAL_OVERRIDE
    record = modes.record(living, OverrideMode.MANUAL_OVERRIDE)
    assert record.override_type is InterventionType.TEMPERATURE
    assert (record.original_value, record.current_value, record.actuator_id) == (25.0, 23.0, "valve-1")
    assert _events(mock_event_bus) == [
        HeatingEvent.MODE_ACTIVATED,
        HeatingEvent.MODE_CANCELLED,
        HeatingEvent.MODE_ACTIVATED,
    ]


def test_rooms_are_independent(modes, living, office):
    modes.activate(living, OverrideMode.BOOST)
    assert modes.active_mode(office) is OverrideMode.NORMAL


def test_active_mode_prefers_manual_override(modes, repository, living, clock):
    for mode in (OverrideMode.BOOST, OverrideMode.MANUAL_OVERRIDE):
        repository.save_mode(
            living.key, ModeRecord(mode=mode, active=True, start_time=clock(), duration_minutes=30)
        )
    assert modes.active_mode(living) is OverrideMode.MANUAL_OVERRIDE


# -------------------------------------------------------------------- expiry


def test_expiry_is_reported_exactly_once(modes, living, clock, mock_event_bus):
    modes.activate(living, OverrideMode.BOOST)

    clock.advance(60 * 60 - 1)
    status = modes.check(living, OverrideMode.BOOST)
    assert status.active is True
    assert status.expired is False
    assert status.remaining_minutes == 1

    clock.advance(2)
    assert modes.check(living, OverrideMode.BOOST) == ModeStatus(active=False, expired=True)
    assert modes.check(living, OverrideMode.BOOST) == ModeStatus(active=False, expired=False)
    assert modes.record(living, OverrideMode.BOOST).active is False
    assert HeatingEvent.MODE_EXPIRED in _events(mock_event_bus)


def test_active_mode_leaves_the_expiry_report_to_check(modes, living, clock, mock_event_bus):
    modes.activate(living, OverrideMode.BOOST)
    clock.advance(minutes=61)

    assert modes.active_mode(living) is OverrideMode.NORMAL
    assert modes.record(living, OverrideMode.BOOST).active is True
    assert HeatingEvent.MODE_EXPIRED not in _events(mock_event_bus)

    assert modes.check(living, OverrideMode.BOOST) == ModeStatus(active=False, expired=True)
    assert modes.check(living, OverrideMode.BOOST) == ModeStatus(active=False, expired=False)


def test_record_without_start_time_is_discarded(modes, repository, living):
    repository.save_mode(living.key, ModeRecord(mode=OverrideMode.PAUSE, active=True))
    assert modes.check(living, OverrideMode.PAUSE) == ModeStatus()
    assert modes.record(living, OverrideMode.PAUSE).active is False


def test_inactive_mode_reports_normal(modes, living):
    assert modes.check(living, OverrideMode.PAUSE) == ModeStatus()
    assert modes.active_mode(living) is OverrideMode.NORMAL


# -------------------------------------------------------------------- cancel


def test_cancel_without_slot_only_clears(modes, living, hub, mock_event_bus):
    modes.activate(living, OverrideMode.PAUSE)
    result = modes.cancel(living, OverrideMode.PAUSE)

    assert result.cancelled == [OverrideMode.PAUSE]
    assert result.resume is None
    assert modes.record(living, OverrideMode.PAUSE).active is False
    assert hub.writes == []
    assert _events(mock_event_bus)[-1] == HeatingEvent.MODE_CANCELLED


def test_cancel_ignores_expiry(modes, living, clock):
    modes.activate(living, OverrideMode.PAUSE)
    clock.advance(minutes=120)
    assert modes.cancel(living, OverrideMode.PAUSE).cancelled == [OverrideMode.PAUSE]


def test_cancel_of_inactive_mode(modes, living):
    result = modes.cancel(living, OverrideMode.BOOST)
    assert result.any_cancelled is False


def test_cancel_with_slot_requires_session(modes, living):
    with pytest.raises(ValidationError):
        modes.cancel(living, OverrideMode.BOOST, _slot(living))


def test_cancel_with_slot_resumes_schedule(modes, living, repository, hub):
    modes.activate(living, OverrideMode.BOOST)
    result = modes.cancel_all(living, _slot(living), session_id="s1")

    assert result.cancelled == [OverrideMode.BOOST]
    assert result.resume.success is True
    assert result.resume.target == 21
    for valve in ("valve-1", "valve-2"):
        assert hub.live(valve, "target_temperature") == 21
        assert repository.get_resource_state(valve).last_verified_values == {
            "onoff": True,
            "target_temperature": 21.0,
        }


# -------------------------------------------------------------------- resume


def test_resume_reasserts_even_when_already_correct(modes, living, repository, hub, clock):
    first = modes.resume(living, _slot(living), "s1")
    baseline = {v: repository.get_resource_state(v).last_verified_values for v in living.actuator_ids}
    writes = len(hub.writes)

    clock.advance(60)
    second = modes.resume(living, _slot(living), "s2")

    assert first.success and second.success
    assert len(second.commands) == 4
    assert len(hub.writes) == 2 * writes
    assert {v: repository.get_resource_state(v).last_verified_values for v in living.actuator_ids} == baseline
    assert repository.get_resource_state("valve-1").last_verified_at == clock()


def test_resume_applies_away_minimum_and_inactivity(modes, living):
    assert modes.resume(living, _slot(living), "s1", away=True).target == 16
    assert modes.resume(living, _slot(living), "s2", inactive=True).target == 19


@pytest.mark.parametrize(
    "temperature, expected",
    [(19.0, True), (21.0, False), (19.9, True), (20.1, False), (None, True)],
)
def test_relay_resume_follows_hysteresis(modes, office, hub, temperature, expected):
    result = modes.resume(office, _slot(office), "s1", room_temperature=temperature)
    assert result.success is True
    assert hub.writes == [("plug-1", "onoff", expected)]


def test_resume_succeeds_if_any_command_verifies(modes, living, hub):
    hub.ignore_writes.add("valve-2")
    hub.set_live("valve-2", "target_temperature", 18.0)
    result = modes.resume(living, _slot(living), "s1")

    assert result.success is True
    assert [c.resource_id for c in result.unverified] == ["valve-2"]


def test_resume_fails_when_nothing_verifies(modes, living, hub):
    hub.ignore_writes.update({"valve-1", "valve-2"})
    hub.set_live("valve-1", "onoff", False)
    hub.set_live("valve-2", "onoff", False)
    result = modes.resume(living, _slot(living), "s1")

    assert result.success is False
    assert all(not c.verified for c in result.commands)


# ---------------------------------------------------------------- auto mode


def test_device_auto_mode_ends_manual_override(modes, living):
    modes.activate(living, OverrideMode.MANUAL_OVERRIDE)
    assert modes.apply_device_auto_mode(living, "valve-1", {"smart_schedule": False}) is False
    assert modes.apply_device_auto_mode(living, "valve-1", {"smart_schedule": True}) is True
    assert modes.record(living, OverrideMode.MANUAL_OVERRIDE).active is False


def test_device_auto_mode_ignored_without_override_or_for_relays(modes, living, office):
    assert modes.apply_device_auto_mode(living, "valve-1", {"smart_schedule": True}) is False
    modes.activate(office, OverrideMode.MANUAL_OVERRIDE)
    assert modes.apply_device_auto_mode(office, "plug-1", {"smart_schedule": True}) is False
    assert modes.record(office, OverrideMode.MANUAL_OVERRIDE).active is True
