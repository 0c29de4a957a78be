from __future__ import annotations

import json
from pathlib import Path

import pytest

from powerguard.store.base import StoreError, join_path, split_path
from powerguard.store.memory import MemoryStore


def test_update_merges_and_none_deletes() -> None:
    store = MemoryStore({"devices": {"Outlet_1": {"status": "ON", "control": {"device": "on"}}}})

    store.update("devices/Outlet_1", {"status": "OFF", "control": None, "extra": 1})

    assert store.get("devices/Outlet_1") == {"status": "OFF", "extra": 1}
    assert store.writes[-1].op == "update"


def test_get_returns_copies() -> None:
    store = MemoryStore()
    store.set("devices/Outlet_1", {"status": "ON"})

    value = store.get("devices/Outlet_1")
    value["status"] = "OFF"

    assert store.get("devices/Outlet_1/status") == "ON"
    assert store.get("devices/Outlet_9/status") is None


def test_subscribers_see_nested_changes_only_under_their_path() -> None:
    store = MemoryStore()
    seen = []
    unsubscribe = store.subscribe("devices", seen.append)

    store.update("devices/Outlet_1/control", {"device": "on"})
    store.update("combined_limit_settings/COED", {"enabled": True})
    unsubscribe()
    store.remove("devices/Outlet_1")

    assert seen == [None, {"Outlet_1": {"control": {"device": "on"}}}]


def test_push_and_remove() -> None:
    store = MemoryStore()

    key = store.push("device_logs", {"activity": "Manual turn on"})

    assert key.startswith("-")
    assert store.get(f"device_logs/{key}/activity") == "Manual turn on"
    store.remove(f"device_logs/{key}")
    assert store.get("device_logs") == {}
    with pytest.raises(StoreError):
        store.remove("/")


def test_from_json(tmp_path: Path) -> None:
    seed = tmp_path / "seed.json"
    seed.write_text(json.dumps({"devices": {"Outlet_1": {"status": "ON"}}}), encoding="utf-8")
    assert MemoryStore.from_json(seed).snapshot() == {"devices": {"Outlet_1": {"status": "ON"}}}

    bad = tmp_path / "bad.json"
    bad.write_text("[1, 2]", encoding="utf-8")
    with pytest.raises(StoreError, match="JSON object"):
        MemoryStore.from_json(bad)
    with pytest.raises(StoreError, match="Failed to load"):
        MemoryStore.from_json(tmp_path / "missing.json")


def test_path_helpers() -> None:
    assert split_path("/devices//Outlet_1/") == ["devices", "Outlet_1"]
    assert join_path("devices", None, "/Outlet_1/") == "devices/Outlet_1"
    with pytest.raises(StoreError):
        split_path("devices/../secrets")
