"""Typed read/write access to outlet records over a realtime store."""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional

from powerguard.devices.types import (
    CombinedLimitGroup,
    ControlState,
    DeviceRecord,
    MainStatus,
    RootStatus,
    format_power_limit,
    normalize_outlet_key,
    parse_combined_groups,
    parse_control_state,
    parse_devices,
)
from powerguard.store.base import RealtimeStore, join_path

LOGGER = logging.getLogger(__name__)

DEVICES_ROOT = "devices"
COMBINED_LIMITS_ROOT = "combined_limit_settings"
COMBINED_SCHEDULE_ROOT = "combined_schedule_settings"
LOG_COLLECTIONS = ("device_logs", "user_logs", "logs")


class DeviceRepository:
    """One method per logical entity write; keeps the store's shallow-merge semantics."""

    def __init__(self, store: RealtimeStore) -> None:
        self._store = store

    @property
    def store(self) -> RealtimeStore:
        return self._store

    # Reads

    def list_devices(self) -> Dict[str, DeviceRecord]:
        return parse_devices(self._store.get(DEVICES_ROOT))

    def get_device(self, outlet_key: str) -> Optional[DeviceRecord]:
        raw = self._store.get(_device_path(outlet_key))
        if not isinstance(raw, dict):
            return None
        return DeviceRecord.from_raw(outlet_key, raw)

    def get_control_state(self, outlet_key: str) -> ControlState:
        return parse_control_state(self._store.get(_device_path(outlet_key, "control", "device")))

    def list_combined_limits(self) -> Dict[str, CombinedLimitGroup]:
        return parse_combined_groups(self._store.get(COMBINED_LIMITS_ROOT), COMBINED_LIMITS_ROOT)

    def get_combined_limit(self, department: str) -> Optional[CombinedLimitGroup]:
        return self.list_combined_limits().get(department)

    def get_combined_schedule(self) -> Dict[str, Any]:
        raw = self._store.get(COMBINED_SCHEDULE_ROOT)
        return raw if isinstance(raw, dict) else {}

    def list_log_entries(self, collection: str) -> Dict[str, Any]:
        raw = self._store.get(collection)
        return raw if isinstance(raw, dict) else {}

    # Control writes

    def set_control_state(self, outlet_key: str, state: ControlState) -> None:
        self._store.update(_device_path(outlet_key, "control"), {"device": state.value})

    def set_main_status(self, outlet_key: str, status: MainStatus) -> None:
        self._store.update(_device_path(outlet_key, "relay_control"), {"main_status": status.value})

    def set_root_status(self, outlet_key: str, status: RootStatus) -> None:
        self._store.update(_device_path(outlet_key), {"status": status.value})

    def set_schedule_unplug_flag(self, outlet_key: str, disabled: bool, *, basis: Optional[int] = None) -> None:
        values: Dict[str, Any] = {"disabled_by_unplug": disabled}
        if basis is not None:
            values["basis"] = basis
        self._store.update(_device_path(outlet_key, "schedule"), values)

    def set_schedule_basis(self, outlet_key: str, basis: int) -> None:
        self._store.update(_device_path(outlet_key, "schedule"), {"basis": basis})

    def clear_combined_schedule(self, outlet_key: str) -> None:
        self._store.update(
            _device_path(outlet_key, "schedule"),
            {"isCombinedSchedule": False, "combinedScheduleId": None, "selectedOutlets": None},
        )

    # Group writes

    def set_combined_limit_enforcement(
        self,
        group: CombinedLimitGroup,
        control: ControlState,
        *,
        reason: Optional[str],
        timestamp_ms: Optional[int] = None,
    ) -> None:
        values: Dict[str, Any] = {"device_control": control.value, "enforcement_reason": reason}
        if timestamp_ms is not None:
            values["last_enforcement"] = timestamp_ms
        self._store.update(group.path, values)

    def set_group_outlets(self, group: CombinedLimitGroup, outlets: Iterable[str]) -> None:
        self._store.update(group.path, {"selected_outlets": list(outlets)})

    def save_combined_limit(
        self,
        department: str,
        *,
        enabled: bool,
        outlets: Iterable[str],
        limit_wh: Optional[float],
        timestamp_ms: int,
    ) -> None:
        self._store.update(
            join_path(COMBINED_LIMITS_ROOT, department),
            {
                "enabled": enabled,
                "selected_outlets": list(outlets),
                "combined_limit_watts": limit_wh if limit_wh and limit_wh > 0 else format_power_limit(None),
                "device_control": ControlState.ON.value,
                "enforcement_reason": None,
                "last_updated": timestamp_ms,
            },
        )

    def set_combined_schedule_outlets(self, outlets: Iterable[str]) -> None:
        self._store.update(COMBINED_SCHEDULE_ROOT, {"selected_outlets": list(outlets)})

    # Profile writes

    def save_office_info(self, outlet_key: str, values: Mapping[str, Any]) -> None:
        self._store.update(_device_path(outlet_key, "office_info"), dict(values))

    def set_power_limit(self, outlet_key: str, limit_wh: Optional[float], *, enabled: bool = True) -> None:
        self._store.update(
            _device_path(outlet_key, "relay_control", "auto_cutoff"),
            {"enabled": enabled, "power_limit": format_power_limit(limit_wh)},
        )

    def save_schedule(self, outlet_key: str, values: Mapping[str, Any]) -> None:
        self._store.update(_device_path(outlet_key, "schedule"), dict(values))

    def device_exists(self, outlet_key: str) -> bool:
        return isinstance(self._store.get(_device_path(outlet_key)), dict)

    def remove_device(self, outlet_key: str) -> None:
        LOGGER.debug("Removing device record %s", outlet_key)
        self._store.remove(_device_path(outlet_key))

    def remove_log_entry(self, collection: str, log_key: str) -> None:
        self._store.remove(join_path(collection, log_key))

    def push_log(self, collection: str, entry: Mapping[str, Any]) -> str:
        return self._store.push(collection, dict(entry))


def _device_path(outlet_key: str, *parts: str) -> str:
    return join_path(DEVICES_ROOT, outlet_key, *parts)


def filter_outlets(outlets: Iterable[str], outlet_key: str) -> List[str]:
    """Drop every spelling of ``outlet_key`` ("Outlet 1", "outlet_1", ...) from ``outlets``."""
    target = normalize_outlet_key(outlet_key).lower()
    return [name for name in outlets if normalize_outlet_key(name).lower() != target]


__all__ = [
    "COMBINED_LIMITS_ROOT",
    "COMBINED_SCHEDULE_ROOT",
    "DEVICES_ROOT",
    "DeviceRepository",
    "LOG_COLLECTIONS",
    "filter_outlets",
]
