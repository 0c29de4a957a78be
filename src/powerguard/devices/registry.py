"""Subscription-driven read model projecting outlet records into display entities."""

from __future__ import annotations

import logging
import threading
from dataclasses import asdict, dataclass
from datetime import date
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from powerguard.devices.types import (
    KILO,
    NO_LIMIT,
    ControlState,
    DeviceRecord,
    RootStatus,
    Schedule,
    parse_devices,
)
from powerguard.policy.energy import device_monthly_energy, today_energy
from powerguard.policy.tracking import ActivityTrack, Clock, TrackingState
from powerguard.store.base import Unsubscribe
from powerguard.store.repository import DEVICES_ROOT, DeviceRepository

LOGGER = logging.getLogger(__name__)


class DisplayStatus(str, Enum):
    ACTIVE = "Active"
    INACTIVE = "Inactive"
    IDLE = "Idle"
    UNPLUG = "UNPLUG"


@dataclass(frozen=True)
class DeviceView:
    outlet_key: str
    name: str
    office: Optional[str]
    appliance: Optional[str]
    department: Optional[str]
    status: DisplayStatus
    control_state: str
    main_status: str
    bypassed: bool
    power_w: float
    today_energy_wh: float
    month_energy_wh: float
    lifetime_energy_wh: float
    power_limit_wh: Optional[float]
    limit_label: str
    schedule_label: Optional[str]

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["status"] = self.status.value
        return payload


def update_activity(
    tracks: Dict[str, ActivityTrack],
    device: DeviceRecord,
    *,
    now_ms: int,
    today: date,
) -> ActivityTrack:
    energy = today_energy(device, today)
    control = device.control_state.value
    track = tracks.get(device.outlet_key)
    if track is None:
        track = ActivityTrack(
            last_energy_update_ms=now_ms,
            last_control_update_ms=now_ms,
            last_total_energy=energy,
            last_control_state=control,
        )
        tracks[device.outlet_key] = track
        return track
    if energy != track.last_total_energy:
        track.last_total_energy = energy
        track.last_energy_update_ms = now_ms
    if control != track.last_control_state:
        track.last_control_state = control
        track.last_control_update_ms = now_ms
    return track


def derive_status(
    device: DeviceRecord,
    track: Optional[ActivityTrack],
    *,
    now_ms: int,
    idle_timeout_ms: int,
) -> DisplayStatus:
    if device.root_status is RootStatus.UNPLUG or device.disabled_by_unplug:
        return DisplayStatus.UNPLUG
    if device.control_state is not ControlState.ON:
        return DisplayStatus.INACTIVE
    if device.root_status is RootStatus.IDLE:
        return DisplayStatus.IDLE
    if track is not None:
        last_change = max(track.last_energy_update_ms, track.last_control_update_ms)
        if now_ms - last_change >= idle_timeout_ms:
            return DisplayStatus.IDLE
    return DisplayStatus.ACTIVE


def schedule_label(schedule: Optional[Schedule]) -> Optional[str]:
    if schedule is None or not schedule.is_configured:
        return None
    if schedule.start_time and schedule.end_time:
        window = f"{schedule.start_time} - {schedule.end_time}"
    else:
        window = schedule.time_range or ""
    frequency = schedule.frequency or "Daily"
    return f"{window} ({frequency})"


def limit_label(limit_wh: Optional[float]) -> str:
    if limit_wh is None or limit_wh <= 0:
        return NO_LIMIT
    return f"{limit_wh / KILO:.3f} kWh"


class DeviceRegistry:
    """Keeps the latest device records and activity trackers in sync with the store."""

    def __init__(
        self,
        repository: DeviceRepository,
        *,
        tracking: Optional[TrackingState] = None,
        clock: Optional[Clock] = None,
        idle_timeout_ms: int = 15000,
    ) -> None:
        self._repository = repository
        self._tracking = tracking or TrackingState()
        self._clock = clock or Clock()
        self._idle_timeout_ms = idle_timeout_ms
        self._devices: Dict[str, DeviceRecord] = {}
        self._lock = threading.Lock()
        self._unsubscribe: Optional[Unsubscribe] = None

    def start(self) -> None:
        if self._unsubscribe is not None:
            return
        self._unsubscribe = self._repository.store.subscribe(DEVICES_ROOT, self._on_change)
        LOGGER.info("Device registry subscribed to %s", DEVICES_ROOT)

    def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def refresh(self) -> List[DeviceView]:
        self._apply(self._repository.list_devices())
        return self.views()

    def records(self) -> Dict[str, DeviceRecord]:
        with self._lock:
            return dict(self._devices)

    def views(self) -> List[DeviceView]:
        with self._lock:
            devices = dict(self._devices)
        now = self._clock.now()
        now_ms = self._clock.now_ms()
        return [self._project(devices[key], now.date(), now_ms) for key in sorted(devices)]

    def get(self, outlet_key: str) -> Optional[DeviceView]:
        with self._lock:
            device = self._devices.get(outlet_key)
        if device is None:
            return None
        now = self._clock.now()
        return self._project(device, now.date(), self._clock.now_ms())

    def _on_change(self, raw: Any) -> None:
        self._apply(parse_devices(raw))

    def _apply(self, devices: Mapping[str, DeviceRecord]) -> None:
        now = self._clock.now()
        now_ms = self._clock.now_ms()
        with self._lock:
            for key in [key for key in self._devices if key not in devices]:
                self._tracking.activity.pop(key, None)
            for device in devices.values():
                update_activity(self._tracking.activity, device, now_ms=now_ms, today=now.date())
            self._devices = dict(devices)
        LOGGER.debug("Device registry updated (%d devices)", len(devices))

    def _project(self, device: DeviceRecord, today: date, now_ms: int) -> DeviceView:
        track = self._tracking.activity.get(device.outlet_key)
        return DeviceView(
            outlet_key=device.outlet_key,
            name=device.display_name,
            office=device.office,
            appliance=device.appliance,
            department=device.department,
            status=derive_status(device, track, now_ms=now_ms, idle_timeout_ms=self._idle_timeout_ms),
            control_state=device.control_state.value,
            main_status=device.main_status.value,
            bypassed=device.is_bypassed,
            power_w=device.sensor.power,
            today_energy_wh=today_energy(device, today),
            month_energy_wh=device_monthly_energy(device, today),
            lifetime_energy_wh=device.lifetime_energy_wh,
            power_limit_wh=device.power_limit_wh,
            limit_label=limit_label(device.power_limit_wh),
            schedule_label=schedule_label(device.schedule),
        )


__all__ = [
    "DeviceRegistry",
    "DeviceView",
    "DisplayStatus",
    "derive_status",
    "limit_label",
    "schedule_label",
    "update_activity",
]
