"""Heartbeat-based unplug detection for outlets."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from powerguard.devices.types import ControlState, DeviceRecord, MainStatus, RootStatus
from powerguard.logging.activity import ActivityLogger
from powerguard.policy.tracking import TimestampTrack
from powerguard.store.base import StoreError
from powerguard.store.repository import DeviceRepository

LOGGER = logging.getLogger(__name__)

_SECONDS_CUTOFF = 100_000_000_000


class ConnectionState(str, Enum):
    CONNECTED = "connected"
    UNPLUGGED = "unplugged"


@dataclass(frozen=True)
class UnplugTransition:
    outlet_key: str
    state: ConnectionState
    heartbeat: str
    timestamp_ms: int


def normalize_heartbeat(value: Any) -> Optional[str]:
    """Epoch seconds and epoch millis compare equal once both are in millis."""
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    try:
        number = float(text)
    except ValueError:
        return text
    if not math.isfinite(number):
        return text
    if number < _SECONDS_CUTOFF:
        number *= 1000.0
    return str(int(number))


class UnplugDetector:
    """Connected/Unplugged state machine driven by unchanged sensor heartbeats."""

    def __init__(
        self,
        repository: DeviceRepository,
        tracks: Dict[str, TimestampTrack],
        *,
        timeout_ms: int = 30000,
        activity_log: Optional[ActivityLogger] = None,
    ) -> None:
        self._repository = repository
        self._tracks = tracks
        self._timeout_ms = timeout_ms
        self._activity = activity_log or ActivityLogger.disabled()

    def check_all(self, devices: Mapping[str, DeviceRecord], now_ms: int) -> List[UnplugTransition]:
        transitions: List[UnplugTransition] = []
        for key in sorted(devices):
            try:
                transition = self.check_device(devices[key], now_ms)
            except (StoreError, KeyError, TypeError, ValueError) as exc:
                LOGGER.warning("Unplug check failed for %s: %s", key, exc)
                continue
            if transition is not None:
                transitions.append(transition)
        for key in [key for key in self._tracks if key not in devices]:
            del self._tracks[key]
        return transitions

    def check_device(self, device: DeviceRecord, now_ms: int) -> Optional[UnplugTransition]:
        key = device.outlet_key
        heartbeat = normalize_heartbeat(device.sensor_timestamp)
        if heartbeat is None:
            return None

        basis = device.schedule.basis if device.schedule and device.schedule.basis else None
        if basis is None:
            basis = now_ms
            self._repository.set_schedule_basis(key, basis)

        track = self._tracks.get(key)
        if track is None:
            self._tracks[key] = TimestampTrack(
                last_timestamp=heartbeat,
                last_timestamp_time_ms=now_ms,
                basis=basis,
                last_checked_ms=now_ms,
            )
            return None

        if device.disabled_by_unplug:
            if heartbeat == track.last_timestamp:
                track.last_checked_ms = now_ms
                return None
            self._observe(track, heartbeat, now_ms)
            return self._mark_reconnected(device, heartbeat, now_ms)

        if heartbeat != track.last_timestamp:
            self._observe(track, heartbeat, now_ms)
            return None

        track.last_checked_ms = now_ms
        unchanged_ms = now_ms - track.last_timestamp_time_ms
        if unchanged_ms < self._timeout_ms:
            return None
        return self._mark_unplugged(device, heartbeat, unchanged_ms, now_ms)

    def _observe(self, track: TimestampTrack, heartbeat: str, now_ms: int) -> None:
        track.last_timestamp = heartbeat
        track.last_timestamp_time_ms = now_ms
        track.last_checked_ms = now_ms

    def _mark_unplugged(
        self,
        device: DeviceRecord,
        heartbeat: str,
        unchanged_ms: int,
        now_ms: int,
    ) -> UnplugTransition:
        key = device.outlet_key
        # The veto flag lands first so any concurrent turn-on sees it.
        self._repository.set_schedule_unplug_flag(key, True)
        self._repository.set_control_state(key, ControlState.OFF)
        self._repository.set_main_status(key, MainStatus.OFF)
        self._repository.set_root_status(key, RootStatus.UNPLUG)
        LOGGER.info("Outlet %s unplugged (heartbeat %s unchanged for %dms)", key, heartbeat, unchanged_ms)
        self._activity.record_device(
            device,
            "Unplug detected",
            timestamp_ms=now_ms,
            reason=f"heartbeat unchanged for {unchanged_ms // 1000}s",
        )
        return UnplugTransition(key, ConnectionState.UNPLUGGED, heartbeat, now_ms)

    def _mark_reconnected(self, device: DeviceRecord, heartbeat: str, now_ms: int) -> UnplugTransition:
        key = device.outlet_key
        self._repository.set_schedule_unplug_flag(key, False)
        control = self._repository.get_control_state(key)
        status = RootStatus.ON if control is ControlState.ON else RootStatus.OFF
        self._repository.set_root_status(key, status)
        LOGGER.info("Outlet %s reconnected (heartbeat %s); status=%s", key, heartbeat, status.value)
        self._activity.record_device(device, "Device reconnected", timestamp_ms=now_ms)
        return UnplugTransition(key, ConnectionState.CONNECTED, heartbeat, now_ms)


__all__ = ["ConnectionState", "UnplugDetector", "UnplugTransition", "normalize_heartbeat"]
