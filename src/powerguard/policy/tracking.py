"""Clock and in-memory tracker maps owned by the policy scheduler."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, tzinfo
from typing import Dict, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from powerguard.config.loader import ConfigError


class Clock:
    """Wall and monotonic time source; tests substitute a frozen subclass."""

    def __init__(self, tz: Optional[tzinfo] = None) -> None:
        self._tz = tz

    def now(self) -> datetime:
        current = datetime.now(self._tz)
        # Schedules are wall-clock local; drop tzinfo once converted.
        return current.replace(tzinfo=None) if self._tz is not None else current

    def now_ms(self) -> int:
        return int(time.time() * 1000)

    def monotonic(self) -> float:
        return time.monotonic()


def load_timezone(name: Optional[str]) -> Optional[tzinfo]:
    if not name:
        return None
    try:
        return ZoneInfo(name)
    except ZoneInfoNotFoundError as exc:
        raise ConfigError(f"Unknown timezone {name!r}") from exc


@dataclass
class TimestampTrack:
    last_timestamp: str
    last_timestamp_time_ms: int
    basis: int
    last_checked_ms: int


@dataclass
class ActivityTrack:
    last_energy_update_ms: int
    last_control_update_ms: int
    last_total_energy: float
    last_control_state: str


@dataclass
class TrackingState:
    """Per-device tracker maps, passed by reference to the detector and read model."""

    timestamps: Dict[str, TimestampTrack] = field(default_factory=dict)
    activity: Dict[str, ActivityTrack] = field(default_factory=dict)

    def forget(self, outlet_key: str) -> None:
        self.timestamps.pop(outlet_key, None)
        self.activity.pop(outlet_key, None)


__all__ = ["ActivityTrack", "Clock", "TimestampTrack", "TrackingState", "load_timezone"]
