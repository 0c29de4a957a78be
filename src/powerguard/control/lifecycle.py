"""Device profile edits, combined-limit group changes and the delete cascade."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from powerguard.devices.types import Schedule, normalize_outlet_key
from powerguard.logging.activity import ActivityLogger
from powerguard.policy.schedule import parse_days, parse_time_window
from powerguard.policy.tracking import Clock, TrackingState
from powerguard.store.base import StoreError
from powerguard.store.repository import LOG_COLLECTIONS, DeviceRepository, filter_outlets

LOGGER = logging.getLogger(__name__)

_FREQUENCY_KEYWORDS = ("daily", "everyday", "every day", "weekdays", "weekends")


class LifecycleError(ValueError):
    """Raised when an operator edit cannot be applied."""


@dataclass(frozen=True)
class DeviceProfile:
    outlet_key: str
    office: str
    appliance: str
    department: Optional[str] = None
    power_limit_wh: Optional[float] = None
    enable_power_scheduling: bool = False


@dataclass(frozen=True)
class ScheduleRequest:
    frequency: str = "daily"
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    time_range: Optional[str] = None


@dataclass
class DeleteReport:
    outlet_key: str
    removed_from_groups: List[str] = field(default_factory=list)
    removed_from_combined_schedule: bool = False
    removed_logs: Dict[str, int] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)


class DeviceLifecycle:
    """Applies operator edits to provisioned outlets."""

    def __init__(
        self,
        repository: DeviceRepository,
        *,
        clock: Optional[Clock] = None,
        activity_log: Optional[ActivityLogger] = None,
        tracking: Optional[TrackingState] = None,
    ) -> None:
        self._repository = repository
        self._clock = clock or Clock()
        self._activity = activity_log or ActivityLogger.disabled()
        self._tracking = tracking

    def save_profile(self, profile: DeviceProfile) -> None:
        key = normalize_outlet_key(profile.outlet_key)
        if not self._repository.device_exists(key):
            raise LifecycleError(f"Outlet {key} has not been provisioned")
        if not profile.office.strip() or not profile.appliance.strip():
            raise LifecycleError("Office and appliance are required")
        if profile.power_limit_wh is not None and profile.power_limit_wh < 0:
            raise LifecycleError("Power limit must be positive")
        self._repository.save_office_info(
            key,
            {
                "office": profile.office.strip(),
                "appliance": profile.appliance.strip(),
                "department": profile.department.strip() if profile.department else None,
                "enable_power_scheduling": profile.enable_power_scheduling,
            },
        )
        self._repository.set_power_limit(key, profile.power_limit_wh, enabled=bool(profile.power_limit_wh))
        LOGGER.info("Saved profile for %s", key)

    def save_schedule(self, outlet_key: str, request: ScheduleRequest) -> None:
        key = normalize_outlet_key(outlet_key)
        if not self._repository.device_exists(key):
            raise LifecycleError(f"Outlet {key} has not been provisioned")
        candidate = Schedule(
            time_range=request.time_range,
            start_time=request.start_time,
            end_time=request.end_time,
            frequency=request.frequency,
        )
        if parse_time_window(candidate) is None:
            raise LifecycleError("Schedule needs startTime/endTime (HH:MM) or a timeRange like '8:00 AM - 5:00 PM'")
        frequency = request.frequency.strip()
        if frequency.lower() not in _FREQUENCY_KEYWORDS and not parse_days(frequency):
            raise LifecycleError(f"Unrecognized schedule frequency {request.frequency!r}")
        self._repository.save_schedule(
            key,
            {
                "timeRange": request.time_range,
                "startTime": request.start_time,
                "endTime": request.end_time,
                "frequency": frequency,
                "basis": self._clock.now_ms(),
            },
        )
        LOGGER.info("Saved schedule for %s", key)

    def clear_schedule(self, outlet_key: str) -> None:
        key = normalize_outlet_key(outlet_key)
        self._repository.save_schedule(
            key,
            {"timeRange": None, "startTime": None, "endTime": None, "frequency": None},
        )

    def save_combined_limit(
        self,
        department: str,
        *,
        enabled: bool,
        outlets: Iterable[str],
        limit_wh: Optional[float],
    ) -> List[str]:
        department = department.strip()
        if not department:
            raise LifecycleError("Department is required")
        selected = _dedupe(normalize_outlet_key(name) for name in outlets)
        known = self._repository.list_devices()
        missing = [name for name in selected if name not in known]
        if missing:
            raise LifecycleError(f"Unknown outlets: {', '.join(missing)}")
        conflicts: List[str] = []
        for other, group in self._repository.list_combined_limits().items():
            if other == department or not group.enabled:
                continue
            conflicts.extend(f"{name} ({other})" for name in selected if group.contains(name))
        if conflicts:
            raise LifecycleError(f"Outlets already belong to another department: {', '.join(conflicts)}")
        self._repository.save_combined_limit(
            department,
            enabled=enabled,
            outlets=selected,
            limit_wh=limit_wh,
            timestamp_ms=self._clock.now_ms(),
        )
        LOGGER.info("Saved combined limit for %s (%d outlets)", department, len(selected))
        return selected

    def delete_device(self, outlet_key: str) -> DeleteReport:
        key = normalize_outlet_key(outlet_key)
        device = self._repository.get_device(key)
        if device is None:
            raise LifecycleError(f"Outlet {key} not found")
        report = DeleteReport(outlet_key=key)

        try:
            for name, group in self._repository.list_combined_limits().items():
                if group.contains(key):
                    self._repository.set_group_outlets(group, filter_outlets(group.selected_outlets, key))
                    report.removed_from_groups.append(name)
        except StoreError as exc:
            LOGGER.warning("Delete %s: combined limit cleanup failed: %s", key, exc)
            report.errors.append(f"combined_limit_settings: {exc}")

        try:
            combined_schedule = self._repository.get_combined_schedule()
            outlets = combined_schedule.get("selected_outlets")
            if isinstance(outlets, list):
                remaining = filter_outlets([name for name in outlets if isinstance(name, str)], key)
                if len(remaining) != len(outlets):
                    self._repository.set_combined_schedule_outlets(remaining)
                    report.removed_from_combined_schedule = True
        except StoreError as exc:
            LOGGER.warning("Delete %s: combined schedule cleanup failed: %s", key, exc)
            report.errors.append(f"combined_schedule_settings: {exc}")

        for collection in LOG_COLLECTIONS:
            try:
                report.removed_logs[collection] = self._remove_logs(collection, key)
            except StoreError as exc:
                LOGGER.warning("Delete %s: %s cleanup failed: %s", key, collection, exc)
                report.errors.append(f"{collection}: {exc}")

        self._repository.remove_device(key)
        if self._tracking is not None:
            self._tracking.forget(key)
        LOGGER.info(
            "Deleted %s (groups=%s, logs=%s)",
            key,
            ",".join(report.removed_from_groups) or "-",
            sum(report.removed_logs.values()),
        )
        self._activity.record_device(device, "Device deleted", timestamp_ms=self._clock.now_ms())
        return report

    def _remove_logs(self, collection: str, outlet_key: str) -> int:
        target = outlet_key.lower()
        removed = 0
        for log_key, entry in self._repository.list_log_entries(collection).items():
            if _log_outlet(entry) == target:
                self._repository.remove_log_entry(collection, log_key)
                removed += 1
        return removed


def _log_outlet(entry: Any) -> Optional[str]:
    if not isinstance(entry, dict):
        return None
    name = entry.get("outletName") or entry.get("outletSource")
    if not isinstance(name, str):
        return None
    return normalize_outlet_key(name).lower()


def _dedupe(names: Iterable[str]) -> List[str]:
    seen: Dict[str, None] = {}
    for name in names:
        if name:
            seen.setdefault(name, None)
    return list(seen)


__all__ = ["DeleteReport", "DeviceLifecycle", "DeviceProfile", "LifecycleError", "ScheduleRequest"]
