"""
Integration tests for the outlet API.

Runs the FastAPI app over an in-memory store seeded from config/sample_store.json.
"""
from __future__ import annotations

from pathlib import Path

import pytest
import yaml
from fastapi.testclient import TestClient

from powerguard.api.dependencies import get_runtime
from powerguard.api.main import app
from powerguard.config.loader import load_config
from powerguard.runtime import build_runtime
from powerguard.store.memory import MemoryStore

SAMPLE_STORE = Path(__file__).resolve().parents[2] / "config" / "sample_store.json"


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore.from_json(SAMPLE_STORE)


@pytest.fixture
def client(tmp_path: Path, store: MemoryStore, clock):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        yaml.safe_dump(
            {
                "config_version": "api-test",
                "store": {"backend": "memory"},
                "activity_log": {"enabled": False},
            }
        ),
        encoding="utf-8",
    )
    runtime = build_runtime(load_config(config_path), store=store, clock=clock)
    app.dependency_overrides[get_runtime] = lambda: runtime
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_root_and_health(client: TestClient) -> None:
    assert client.get("/health").json() == {"status": "ok"}
    assert client.get("/").json()["message"] == "Powerguard API"


def test_list_devices(client: TestClient) -> None:
    response = client.get("/api/v1/devices/")

    assert response.status_code == 200
    devices = {item["outlet_key"]: item for item in response.json()}
    assert sorted(devices) == ["Outlet_1", "Outlet_2", "Outlet_3", "Outlet_4"]
    assert devices["Outlet_1"]["status"] == "Active"
    assert devices["Outlet_1"]["limit_label"] == "100.000 kWh"
    assert devices["Outlet_3"]["status"] == "Inactive"
    assert devices["Outlet_3"]["limit_label"] == "No Limit"


def test_device_detail(client: TestClient) -> None:
    detail = client.get("/api/v1/devices/Outlet_1").json()
    assert detail["schedule"]["start_time"] == "08:00"
    assert detail["schedule"]["frequency"] == "weekdays"
    assert detail["combined_group"] is None
    assert detail["disabled_by_unplug"] is False

    grouped = client.get("/api/v1/devices/Outlet_4").json()
    assert grouped["combined_group"] == "COED"
    assert grouped["schedule"] is None

    assert client.get("/api/v1/devices/Outlet_9").status_code == 404


def test_save_profile_and_schedule(client: TestClient, store: MemoryStore) -> None:
    response = client.put(
        "/api/v1/devices/Outlet_3",
        json={
            "office": "Library",
            "appliance": "Water Dispenser",
            "department": "ADMIN",
            "power_limit_kwh": 50,
            "schedule": {"frequency": "M, W, F", "start_time": "08:00", "end_time": "17:00"},
        },
    )

    assert response.status_code == 200
    detail = response.json()
    assert detail["power_limit_wh"] == 50000.0
    assert detail["schedule"] == {
        "frequency": "M, W, F",
        "start_time": "08:00",
        "end_time": "17:00",
        "time_range": None,
    }
    assert store.get("devices/Outlet_3/relay_control/auto_cutoff/power_limit") == 50.0


def test_save_profile_rejects_bad_schedule(client: TestClient) -> None:
    response = client.put(
        "/api/v1/devices/Outlet_3",
        json={"office": "Library", "appliance": "Kettle", "schedule": {"start_time": "8am"}},
    )
    assert response.status_code == 400

    missing = client.put("/api/v1/devices/Outlet_9", json={"office": "Library", "appliance": "Kettle"})
    assert missing.status_code == 404


def test_control_rejections_return_conflict(client: TestClient, store: MemoryStore) -> None:
    no_limit = client.post("/api/v1/devices/Outlet_3/control", json={"action": "on"})
    assert no_limit.status_code == 409
    assert no_limit.json()["reason"] == "Set a power limit for Outlet 3 before turning it on."

    group = client.post("/api/v1/devices/Outlet_2/control", json={"action": "on"})
    assert group.status_code == 409
    assert group.json()["reason"].startswith("Combined limit for COED reached.")
    assert store.get("devices/Outlet_2/relay_control/main_status") == "OFF"

    assert client.post("/api/v1/devices/Outlet_9/control", json={"action": "on"}).status_code == 404
    assert client.post("/api/v1/devices/Outlet_1/control", json={"action": "maybe"}).status_code == 422


def test_control_leave_group_then_turn_off(client: TestClient, store: MemoryStore) -> None:
    response = client.post(
        "/api/v1/devices/Outlet_2/control",
        json={"action": "on", "user": "Ana", "leave_group_if_blocked": True},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["accepted"] is True
    assert body["removed_from_group"] == "COED"
    assert store.get("combined_limit_settings/COED/selected_outlets") == ["Outlet 4"]
    assert store.get("devices/Outlet_2/relay_control/main_status") == "ON"

    toggled = client.post("/api/v1/devices/Outlet_2/control", json={})
    assert toggled.json()["control_state"] == "off"
    assert store.get("devices/Outlet_2/status") == "OFF"


def test_combined_limits(client: TestClient) -> None:
    groups = client.get("/api/v1/combined-limits/").json()
    assert [group["department"] for group in groups] == ["COED"]
    assert groups[0]["month_energy_wh"] == 600000.0
    assert groups[0]["percent_of_limit"] == 120.0

    conflict = client.put("/api/v1/combined-limits/ADMIN", json={"selected_outlets": ["Outlet_2"], "limit_kwh": 200})
    assert conflict.status_code == 400
    assert "Outlet_2 (COED)" in conflict.json()["detail"]

    saved = client.put(
        "/api/v1/combined-limits/ADMIN",
        json={"selected_outlets": ["Outlet_1", "Outlet 3"], "limit_kwh": 200},
    )
    assert saved.status_code == 200
    body = saved.json()
    assert body["selected_outlets"] == ["Outlet_1", "Outlet_3"]
    assert body["limit_wh"] == 200000.0
    assert body["month_energy_wh"] == pytest.approx(12300.0)
    assert body["device_control"] == "on"

    assert client.get("/api/v1/combined-limits/NOPE").status_code == 404


def test_delete_device(client: TestClient, store: MemoryStore) -> None:
    response = client.delete("/api/v1/devices/Outlet_2")

    assert response.status_code == 200
    report = response.json()
    assert report["removed_from_groups"] == ["COED"]
    assert report["removed_logs"]["device_logs"] == 1
    assert store.get("device_logs") == {}
    assert client.get("/api/v1/devices/Outlet_2").status_code == 404
    assert client.delete("/api/v1/devices/Outlet_2").status_code == 404


def test_usage_report(client: TestClient) -> None:
    report = client.get("/api/v1/reports/usage", params={"month": "2026-10"}).json()

    assert report["year"] == 2026
    assert report["month"] == 10
    assert report["total_energy_wh"] == pytest.approx(612300.0)
    rows = {row["outlet_key"]: row for row in report["devices"]}
    assert rows["Outlet_2"]["group"] == "COED"
    assert rows["Outlet_2"]["percent_of_limit"] == 75.0

    assert client.get("/api/v1/reports/usage", params={"month": "2026-13"}).status_code == 422
    assert client.get("/api/v1/reports/usage", params={"month": "October"}).status_code == 422
