from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Dict, Optional

import pytest

from powerguard.policy.tracking import Clock
from powerguard.store.memory import MemoryStore
from powerguard.store.repository import DeviceRepository

# Tuesday, inside a 08:00-17:00 window.
DEFAULT_NOW = datetime(2026, 10, 20, 10, 0)


class FrozenClock(Clock):
    def __init__(self, now: datetime = DEFAULT_NOW, now_ms: int = 1_760_000_000_000) -> None:
        super().__init__()
        self.current = now
        self.current_ms = now_ms
        self.mono = 0.0

    def now(self) -> datetime:
        return self.current

    def now_ms(self) -> int:
        return self.current_ms

    def monotonic(self) -> float:
        return self.mono

    def advance(self, seconds: float) -> None:
        self.current = self.current + timedelta(seconds=seconds)
        self.current_ms += int(seconds * 1000)
        self.mono += seconds

    def set(self, now: datetime) -> None:
        delta = (now - self.current).total_seconds()
        self.advance(delta)


def raw_device(
    *,
    control: str = "on",
    main: str = "OFF",
    status: Optional[str] = "ON",
    limit: Any = "No Limit",
    daily: Optional[Dict[str, float]] = None,
    schedule: Optional[Dict[str, Any]] = None,
    heartbeat: Optional[str] = None,
    office: str = "Registrar",
    appliance: str = "Aircon",
    department: Optional[str] = None,
) -> Dict[str, Any]:
    """Raw outlet record as the store holds it; ``daily`` values are kWh."""
    record: Dict[str, Any] = {
        "control": {"device": control},
        "relay_control": {
            "main_status": main,
            "auto_cutoff": {"enabled": limit != "No Limit", "power_limit": limit},
        },
        "office_info": {"office": office, "appliance": appliance},
        "daily_logs": {day: {"total_energy": value} for day, value in (daily or {}).items()},
    }
    if department:
        record["office_info"]["department"] = department
    if status is not None:
        record["status"] = status
    if schedule is not None:
        record["schedule"] = dict(schedule)
    if heartbeat is not None:
        record["sensor_data"] = {"timestamp": heartbeat, "power": 100.0}
    return record


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def repository(store: MemoryStore) -> DeviceRepository:
    return DeviceRepository(store)


@pytest.fixture
def make_device():
    return raw_device
