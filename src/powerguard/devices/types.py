"""Typed views of the raw outlet records kept in the realtime store."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

LOGGER = logging.getLogger(__name__)

NO_LIMIT = "No Limit"
KILO = 1000.0

_WHITESPACE = re.compile(r"\s+")


class ControlState(str, Enum):
    ON = "on"
    OFF = "off"


class MainStatus(str, Enum):
    ON = "ON"
    OFF = "OFF"


class RootStatus(str, Enum):
    ON = "ON"
    OFF = "OFF"
    UNPLUG = "UNPLUG"
    IDLE = "Idle"
    WARNING = "Warning"


@dataclass(frozen=True)
class Schedule:
    time_range: Optional[str] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    frequency: str = ""
    disabled_by_unplug: bool = False
    basis: Optional[int] = None
    is_combined_schedule: bool = False
    combined_schedule_id: Optional[str] = None

    @property
    def is_configured(self) -> bool:
        return bool(self.time_range or self.start_time)


@dataclass(frozen=True)
class SensorReading:
    power: float = 0.0
    current: float = 0.0
    voltage: float = 0.0
    power_factor: float = 0.0
    energy: float = 0.0
    timestamp: Optional[str] = None


@dataclass(frozen=True)
class DeviceRecord:
    """One outlet with energy values converted to base units (Wh)."""

    outlet_key: str
    control_state: ControlState = ControlState.OFF
    main_status: MainStatus = MainStatus.OFF
    root_status: Optional[RootStatus] = None
    power_limit_wh: Optional[float] = None
    auto_cutoff_enabled: bool = False
    daily_logs: Dict[str, float] = field(default_factory=dict)
    schedule: Optional[Schedule] = None
    sensor: SensorReading = field(default_factory=SensorReading)
    office: Optional[str] = None
    appliance: Optional[str] = None
    department: Optional[str] = None
    power_scheduling_enabled: bool = False
    lifetime_energy_wh: float = 0.0

    @property
    def display_name(self) -> str:
        return display_outlet_name(self.outlet_key)

    @property
    def sensor_timestamp(self) -> Optional[str]:
        return self.sensor.timestamp

    @property
    def disabled_by_unplug(self) -> bool:
        return bool(self.schedule and self.schedule.disabled_by_unplug)

    @property
    def has_power_limit(self) -> bool:
        return self.power_limit_wh is not None and self.power_limit_wh > 0

    @property
    def is_bypassed(self) -> bool:
        return self.main_status is MainStatus.ON

    @property
    def is_manually_off(self) -> bool:
        return self.root_status is RootStatus.OFF and self.main_status is MainStatus.OFF

    @classmethod
    def from_raw(cls, outlet_key: str, raw: Mapping[str, Any]) -> "DeviceRecord":
        control = _mapping(raw.get("control"))
        relay = _mapping(raw.get("relay_control"))
        cutoff = _mapping(relay.get("auto_cutoff"))
        office_info = _mapping(raw.get("office_info"))
        return cls(
            outlet_key=outlet_key,
            control_state=parse_control_state(control.get("device")),
            main_status=parse_main_status(relay.get("main_status")),
            root_status=parse_root_status(raw.get("status")),
            power_limit_wh=parse_power_limit(cutoff.get("power_limit")),
            auto_cutoff_enabled=bool(cutoff.get("enabled", False)),
            daily_logs=_parse_daily_logs(raw.get("daily_logs")),
            schedule=_parse_schedule(raw.get("schedule")),
            sensor=_parse_sensor(raw.get("sensor_data")),
            office=_optional_text(office_info.get("office") or office_info.get("office_room")),
            appliance=_optional_text(office_info.get("appliance")),
            department=_optional_text(office_info.get("department")),
            power_scheduling_enabled=bool(office_info.get("enable_power_scheduling", False)),
            lifetime_energy_wh=_number(raw.get("lifetime_energy")) * KILO,
        )


@dataclass(frozen=True)
class CombinedLimitGroup:
    """Department-wide monthly energy cap shared by a set of outlets."""

    department: str
    path: str
    enabled: bool = False
    selected_outlets: Tuple[str, ...] = ()
    limit_wh: Optional[float] = None
    device_control: ControlState = ControlState.ON
    enforcement_reason: Optional[str] = None
    last_enforcement: Optional[int] = None

    @property
    def has_limit(self) -> bool:
        return self.limit_wh is not None and self.limit_wh > 0

    def contains(self, outlet_key: str) -> bool:
        target = normalize_outlet_key(outlet_key).lower()
        return any(normalize_outlet_key(name).lower() == target for name in self.selected_outlets)

    @classmethod
    def from_raw(cls, department: str, path: str, raw: Mapping[str, Any]) -> "CombinedLimitGroup":
        return cls(
            department=department,
            path=path,
            enabled=bool(raw.get("enabled", False)),
            selected_outlets=tuple(_string_list(raw.get("selected_outlets"))),
            limit_wh=_parse_combined_limit(raw.get("combined_limit_watts")),
            device_control=parse_control_state(raw.get("device_control"), default=ControlState.ON),
            enforcement_reason=_optional_text(raw.get("enforcement_reason")),
            last_enforcement=_optional_int(raw.get("last_enforcement")),
        )


def normalize_outlet_key(name: str) -> str:
    """Canonical store key for an outlet name ("Outlet 1" -> "Outlet_1")."""
    return _WHITESPACE.sub("_", name.strip())


def display_outlet_name(outlet_key: str) -> str:
    return outlet_key.replace("_", " ")


def resolve_outlet_key(name: str, known_keys: Iterable[str]) -> Optional[str]:
    """Find the stored key matching ``name`` exactly or case-insensitively after normalization."""
    candidate = normalize_outlet_key(name)
    keys = list(known_keys)
    if candidate in keys:
        return candidate
    lowered = candidate.lower()
    for key in keys:
        if key.lower() == lowered:
            return key
    return None


def parse_control_state(value: Any, default: ControlState = ControlState.OFF) -> ControlState:
    if isinstance(value, str) and value.strip().lower() in ("on", "off"):
        return ControlState(value.strip().lower())
    return default


def parse_main_status(value: Any) -> MainStatus:
    if isinstance(value, str) and value.strip().upper() == "ON":
        return MainStatus.ON
    return MainStatus.OFF


def parse_root_status(value: Any) -> Optional[RootStatus]:
    if not isinstance(value, str):
        return None
    lookup = {status.value.lower(): status for status in RootStatus}
    return lookup.get(value.strip().lower())


def parse_power_limit(value: Any) -> Optional[float]:
    """Stored kW-equivalent limit -> Wh, ``None`` for the sentinel or a non-positive value."""
    if value is None or (isinstance(value, str) and value.strip() == NO_LIMIT):
        return None
    amount = _number(value)
    if amount <= 0:
        return None
    return amount * KILO


def format_power_limit(limit_wh: Optional[float]) -> Any:
    if limit_wh is None or limit_wh <= 0:
        return NO_LIMIT
    return limit_wh / KILO


def parse_devices(raw: Any) -> Dict[str, DeviceRecord]:
    devices: Dict[str, DeviceRecord] = {}
    for key, value in _mapping(raw).items():
        if not isinstance(value, dict):
            LOGGER.debug("Skipping non-mapping device entry %s", key)
            continue
        try:
            devices[key] = DeviceRecord.from_raw(key, value)
        except (TypeError, ValueError) as exc:
            LOGGER.warning("Skipping malformed device record %s: %s", key, exc)
    return devices


def parse_combined_groups(raw: Any, base_path: str = "combined_limit_settings") -> Dict[str, CombinedLimitGroup]:
    data = _mapping(raw)
    if "selected_outlets" in data or "combined_limit_watts" in data:
        return {"": CombinedLimitGroup.from_raw("", base_path, data)}
    groups: Dict[str, CombinedLimitGroup] = {}
    for department, value in data.items():
        if not isinstance(value, dict):
            continue
        groups[department] = CombinedLimitGroup.from_raw(department, f"{base_path}/{department}", value)
    return groups


def _parse_combined_limit(value: Any) -> Optional[float]:
    if value is None or (isinstance(value, str) and value.strip() == NO_LIMIT):
        return None
    amount = _number(value)
    return amount if amount > 0 else None


def _parse_daily_logs(raw: Any) -> Dict[str, float]:
    logs: Dict[str, float] = {}
    for day_key, entry in _mapping(raw).items():
        if isinstance(entry, dict):
            logs[day_key] = _number(entry.get("total_energy")) * KILO
    return logs


def _parse_schedule(raw: Any) -> Optional[Schedule]:
    if not isinstance(raw, dict):
        return None
    return Schedule(
        time_range=_optional_text(raw.get("timeRange")),
        start_time=_optional_text(raw.get("startTime")),
        end_time=_optional_text(raw.get("endTime")),
        frequency=_optional_text(raw.get("frequency")) or "",
        disabled_by_unplug=raw.get("disabled_by_unplug") is True,
        basis=_optional_int(raw.get("basis")),
        is_combined_schedule=bool(raw.get("isCombinedSchedule", False)),
        combined_schedule_id=_optional_text(raw.get("combinedScheduleId")),
    )


def _parse_sensor(raw: Any) -> SensorReading:
    data = _mapping(raw)
    timestamp = data.get("timestamp")
    return SensorReading(
        power=_number(data.get("power")),
        current=_number(data.get("current")),
        voltage=_number(data.get("voltage")),
        power_factor=_number(data.get("power_factor")),
        energy=_number(data.get("energy")),
        timestamp=str(timestamp) if timestamp not in (None, "") else None,
    )


def _mapping(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _string_list(value: Any) -> List[str]:
    # The store serializes sparse arrays as index-keyed objects.
    if isinstance(value, dict):
        value = [value[key] for key in sorted(value, key=_index_sort_key)]
    if not isinstance(value, (list, tuple)):
        return []
    return [item for item in value if isinstance(item, str) and item.strip()]


def _index_sort_key(key: str) -> Tuple[int, str]:
    return (int(key), "") if key.isdigit() else (1 << 30, key)


def _number(value: Any) -> float:
    if isinstance(value, bool) or value is None:
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return 0.0
    return 0.0


def _optional_int(value: Any) -> Optional[int]:
    if isinstance(value, bool) or value in (None, ""):
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError, OverflowError):
        return None


def _optional_text(value: Any) -> Optional[str]:
    if not isinstance(value, str) or not value.strip():
        return None
    return value.strip()


__all__ = [
    "CombinedLimitGroup",
    "ControlState",
    "DeviceRecord",
    "KILO",
    "MainStatus",
    "NO_LIMIT",
    "RootStatus",
    "Schedule",
    "SensorReading",
    "display_outlet_name",
    "format_power_limit",
    "normalize_outlet_key",
    "parse_combined_groups",
    "parse_control_state",
    "parse_devices",
    "parse_main_status",
    "parse_power_limit",
    "parse_root_status",
    "resolve_outlet_key",
]
