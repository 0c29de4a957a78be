from __future__ import annotations

import pytest

from powerguard.control.lifecycle import DeviceLifecycle, DeviceProfile, LifecycleError, ScheduleRequest
from powerguard.policy.tracking import TrackingState


def _lifecycle(repository, clock, tracking=None) -> DeviceLifecycle:
    return DeviceLifecycle(repository, clock=clock, tracking=tracking)


def test_save_profile_writes_office_info_and_limit(store, repository, clock, make_device) -> None:
    store.set("devices/Outlet_1", make_device())

    _lifecycle(repository, clock).save_profile(
        DeviceProfile(outlet_key="Outlet 1", office=" Lab ", appliance="PC", department="CEIT", power_limit_wh=50000)
    )

    assert store.get("devices/Outlet_1/office_info/office") == "Lab"
    assert store.get("devices/Outlet_1/office_info/department") == "CEIT"
    assert store.get("devices/Outlet_1/relay_control/auto_cutoff") == {"enabled": True, "power_limit": 50.0}


def test_save_profile_without_limit_stores_sentinel(store, repository, clock, make_device) -> None:
    store.set("devices/Outlet_1", make_device(limit=100))

    _lifecycle(repository, clock).save_profile(DeviceProfile(outlet_key="Outlet_1", office="Lab", appliance="PC"))

    assert store.get("devices/Outlet_1/relay_control/auto_cutoff") == {"enabled": False, "power_limit": "No Limit"}


def test_save_profile_requires_provisioned_device(repository, clock) -> None:
    with pytest.raises(LifecycleError, match="has not been provisioned"):
        _lifecycle(repository, clock).save_profile(DeviceProfile(outlet_key="Outlet_9", office="Lab", appliance="PC"))


def test_save_profile_requires_office_and_appliance(store, repository, clock, make_device) -> None:
    store.set("devices/Outlet_1", make_device())
    with pytest.raises(LifecycleError, match="Office and appliance"):
        _lifecycle(repository, clock).save_profile(DeviceProfile(outlet_key="Outlet_1", office=" ", appliance="PC"))


def test_save_schedule_records_basis(store, repository, clock, make_device) -> None:
    store.set("devices/Outlet_1", make_device())

    _lifecycle(repository, clock).save_schedule(
        "Outlet_1", ScheduleRequest(frequency="M, W, F", start_time="08:00", end_time="17:00")
    )

    schedule = store.get("devices/Outlet_1/schedule")
    assert schedule == {
        "startTime": "08:00",
        "endTime": "17:00",
        "frequency": "M, W, F",
        "basis": clock.now_ms(),
    }


@pytest.mark.parametrize(
    "request_",
    [
        ScheduleRequest(start_time="25:00", end_time="17:00"),
        ScheduleRequest(time_range="sometime"),
        ScheduleRequest(frequency="someday", start_time="08:00", end_time="17:00"),
    ],
)
def test_save_schedule_rejects_invalid_input(store, repository, clock, make_device, request_) -> None:
    store.set("devices/Outlet_1", make_device())
    with pytest.raises(LifecycleError):
        _lifecycle(repository, clock).save_schedule("Outlet_1", request_)
    assert store.get("devices/Outlet_1/schedule") is None


def test_clear_schedule(store, repository, clock, make_device) -> None:
    store.set(
        "devices/Outlet_1",
        make_device(schedule={"startTime": "08:00", "endTime": "17:00", "frequency": "daily", "basis": 1}),
    )

    _lifecycle(repository, clock).clear_schedule("Outlet_1")

    assert store.get("devices/Outlet_1/schedule") == {"basis": 1}


def test_combined_limit_rejects_outlet_from_other_department(store, repository, clock, make_device) -> None:
    store.set("devices/Outlet_2", make_device())
    store.set("devices/Outlet_3", make_device())
    store.set("combined_limit_settings/COED", {"enabled": True, "selected_outlets": ["Outlet 2"]})
    lifecycle = _lifecycle(repository, clock)

    with pytest.raises(LifecycleError, match=r"Outlet_2 \(COED\)"):
        lifecycle.save_combined_limit("ADMIN", enabled=True, outlets=["Outlet_2", "Outlet_3"], limit_wh=250000)

    selected = lifecycle.save_combined_limit("ADMIN", enabled=True, outlets=["Outlet 3", "Outlet_3"], limit_wh=250000)

    assert selected == ["Outlet_3"]
    stored = store.get("combined_limit_settings/ADMIN")
    assert stored["selected_outlets"] == ["Outlet_3"]
    assert stored["combined_limit_watts"] == 250000
    assert stored["device_control"] == "on"


def test_combined_limit_allows_editing_own_department(store, repository, clock, make_device) -> None:
    store.set("devices/Outlet_2", make_device())
    store.set("combined_limit_settings/COED", {"enabled": True, "selected_outlets": ["Outlet_2"]})

    _lifecycle(repository, clock).save_combined_limit("COED", enabled=True, outlets=["Outlet_2"], limit_wh=None)

    assert store.get("combined_limit_settings/COED/combined_limit_watts") == "No Limit"


def test_combined_limit_rejects_unknown_outlets(store, repository, clock, make_device) -> None:
    store.set("devices/Outlet_2", make_device())
    lifecycle = _lifecycle(repository, clock)

    with pytest.raises(LifecycleError, match="Unknown outlets: Outlet_7"):
        lifecycle.save_combined_limit("COED", enabled=True, outlets=["Outlet_7"], limit_wh=1000)
    with pytest.raises(LifecycleError, match="Department is required"):
        lifecycle.save_combined_limit(" ", enabled=True, outlets=["Outlet_2"], limit_wh=1000)


def test_delete_device_cascades(store, repository, clock, make_device) -> None:
    store.set("devices/Outlet_2", make_device())
    store.set("devices/Outlet_4", make_device())
    store.set("combined_limit_settings/COED", {"enabled": True, "selected_outlets": ["Outlet 2", "Outlet_4"]})
    store.set("combined_limit_settings/OLD", {"enabled": False, "selected_outlets": ["outlet_2"]})
    store.set("combined_schedule_settings", {"selected_outlets": ["Outlet_2", "Outlet_4"]})
    store.set("device_logs", {"a": {"outletSource": "Outlet 2"}, "b": {"outletSource": "Outlet 4"}})
    store.set("user_logs", {"c": {"outletName": "outlet_2"}})
    tracking = TrackingState()

    report = _lifecycle(repository, clock, tracking).delete_device("Outlet 2")

    assert sorted(report.removed_from_groups) == ["COED", "OLD"]
    assert report.removed_from_combined_schedule is True
    assert report.removed_logs == {"device_logs": 1, "user_logs": 1, "logs": 0}
    assert report.errors == []
    assert store.get("devices/Outlet_2") is None
    assert store.get("devices/Outlet_4") is not None
    assert store.get("combined_limit_settings/COED/selected_outlets") == ["Outlet_4"]
    assert store.get("combined_limit_settings/OLD/selected_outlets") == []
    assert store.get("combined_schedule_settings/selected_outlets") == ["Outlet_4"]
    assert list(store.get("device_logs")) == ["b"]
    assert store.get("user_logs") == {}


def test_delete_unknown_device(repository, clock) -> None:
    with pytest.raises(LifecycleError, match="not found"):
        _lifecycle(repository, clock).delete_device("Outlet_9")
