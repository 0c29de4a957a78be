from __future__ import annotations

import threading
from datetime import datetime

from powerguard.config.loader import IntervalConfig
from powerguard.logging.activity import ActivityLogger
from powerguard.policy.scheduler import OutcomeKind, PolicyScheduler

WORKDAY = {"startTime": "08:00", "endTime": "17:00", "frequency": "weekdays", "basis": 1}


def _scheduler(repository, clock) -> PolicyScheduler:
    return PolicyScheduler(repository, clock=clock)


def test_schedule_turns_on_inside_window(store, repository, clock, make_device) -> None:
    store.set("devices/Outlet_1", make_device(control="off", status="ON", limit=100, schedule=WORKDAY))

    outcomes = _scheduler(repository, clock).run_schedule_pass()

    assert [(o.outlet_key, o.kind) for o in outcomes] == [("Outlet_1", OutcomeKind.TURNED_ON)]
    assert store.get("devices/Outlet_1/control/device") == "on"
    assert store.get("devices/Outlet_1/relay_control/main_status") == "OFF"


def test_schedule_turns_off_before_window(store, repository, clock, make_device) -> None:
    clock.set(datetime(2026, 10, 20, 7, 0))
    store.set("devices/Outlet_1", make_device(control="on", limit=100, schedule=WORKDAY))

    outcome = _scheduler(repository, clock).run_schedule_pass()[0]

    assert outcome.kind is OutcomeKind.TURNED_OFF
    assert outcome.writes == ("control",)
    assert store.get("devices/Outlet_1/status") == "ON"


def test_manually_disabled_device_is_left_alone(store, repository, clock, make_device) -> None:
    store.set("devices/Outlet_1", make_device(control="off", status="OFF", limit=100, schedule=WORKDAY))
    store.clear_writes()

    outcome = _scheduler(repository, clock).run_schedule_pass()[0]

    assert outcome.kind is OutcomeKind.SKIPPED
    assert outcome.rule == "manual_off"
    assert store.writes == []


def test_device_without_schedule_is_unchanged(store, repository, clock, make_device) -> None:
    store.set("devices/Outlet_1", make_device(control="on"))

    outcome = _scheduler(repository, clock).run_schedule_pass()[0]

    assert outcome.kind is OutcomeKind.UNCHANGED
    assert outcome.rule == "no_schedule"


def test_turn_on_is_rechecked_against_fresh_state(store, repository, clock, make_device) -> None:
    store.set("devices/Outlet_1", make_device(control="off", status="ON", limit=100, schedule=WORKDAY))
    scheduler = _scheduler(repository, clock)
    snapshot = scheduler.load_snapshot()
    store.update("devices/Outlet_1/schedule", {"disabled_by_unplug": True})

    outcome = scheduler.evaluate_device(snapshot.devices["Outlet_1"], snapshot)

    assert outcome.kind is OutcomeKind.FORCED_OFF
    assert outcome.rule == "turn_on_recheck:unplug_veto"
    assert store.get("devices/Outlet_1/control/device") == "off"
    assert store.get("devices/Outlet_1/status") == "UNPLUG"


def test_power_limit_pass(store, repository, clock, make_device) -> None:
    store.set("devices/Outlet_1", make_device(limit=1, daily={"day_2026_10_01": 3}))
    store.set("devices/Outlet_2", make_device(limit=1, daily={"day_2026_10_01": 3}))
    store.set("combined_limit_settings/COED", {"enabled": True, "selected_outlets": ["Outlet_2"]})

    outcomes = {o.outlet_key: o for o in _scheduler(repository, clock).run_power_limit_pass()}

    assert outcomes["Outlet_1"].kind is OutcomeKind.FORCED_OFF
    assert outcomes["Outlet_2"].kind is OutcomeKind.SKIPPED
    assert outcomes["Outlet_2"].rule == "combined_group"
    assert store.get("devices/Outlet_2/control/device") == "on"


def test_failing_device_does_not_stop_the_pass(store, repository, clock, make_device) -> None:
    store.set("devices/Outlet_1", make_device())
    store.set("devices/Outlet_2", make_device())
    scheduler = _scheduler(repository, clock)
    evaluate = scheduler.evaluate_device

    def _flaky(device, snapshot):
        if device.outlet_key == "Outlet_1":
            raise ValueError("bad record")
        return evaluate(device, snapshot)

    scheduler.evaluate_device = _flaky

    outcomes = scheduler.run_schedule_pass()

    assert [o.kind for o in outcomes] == [OutcomeKind.FAILED, OutcomeKind.UNCHANGED]
    assert outcomes[0].reason == "bad record"


def test_run_once_is_idempotent(store, repository, clock, make_device) -> None:
    store.set("devices/Outlet_1", make_device(limit=1, daily={"day_2026_10_01": 3}, heartbeat="1760000000"))
    scheduler = _scheduler(repository, clock)
    scheduler.run_once()
    store.clear_writes()

    clock.advance(1)
    scheduler.run_once()

    assert store.writes == []


def test_run_forever_stops_promptly(repository, clock) -> None:
    scheduler = PolicyScheduler(repository, clock=clock, intervals=IntervalConfig(startup_delay_ms=60000))
    worker = threading.Thread(target=scheduler.run_forever)
    worker.start()
    scheduler.stop()
    worker.join(timeout=5)

    assert not worker.is_alive()
    assert scheduler.tick_names == ["unplug", "monthly_limit", "schedule", "power_limit", "combined_sweep"]


def test_power_limit_pass_survives_unwritable_activity_log(tmp_path, store, repository, clock, make_device) -> None:
    log_dir = tmp_path / "activity"
    activity = ActivityLogger(log_dir)
    log_dir.rmdir()
    log_dir.write_text("not a directory", encoding="utf-8")
    store.set("devices/Outlet_1", make_device(limit=1, daily={"day_2026_10_01": 3}))
    store.set("devices/Outlet_2", make_device(limit=1, daily={"day_2026_10_01": 3}))

    scheduler = PolicyScheduler(repository, clock=clock, activity_log=activity)
    outcomes = {o.outlet_key: o.kind for o in scheduler.run_power_limit_pass()}

    assert outcomes == {"Outlet_1": OutcomeKind.FORCED_OFF, "Outlet_2": OutcomeKind.FORCED_OFF}
    assert store.get("devices/Outlet_1/control/device") == "off"
    assert store.get("devices/Outlet_2/control/device") == "off"
