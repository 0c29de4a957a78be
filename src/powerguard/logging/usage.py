"""Monthly usage summaries per outlet and per department group."""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Mapping, Optional

from powerguard.devices.types import CombinedLimitGroup, DeviceRecord, resolve_outlet_key
from powerguard.policy.energy import combined_monthly_energy, monthly_energy

LOGGER = logging.getLogger(__name__)
_REPORT_VERSION = "1.0.0"


@dataclass(frozen=True)
class DeviceUsage:
    outlet_key: str
    name: str
    department: Optional[str]
    month_energy_wh: float
    limit_wh: Optional[float]
    percent_of_limit: Optional[float]
    group: Optional[str]


@dataclass(frozen=True)
class GroupUsage:
    department: str
    enabled: bool
    outlets: List[str]
    month_energy_wh: float
    limit_wh: Optional[float]
    percent_of_limit: Optional[float]
    device_control: str


@dataclass(frozen=True)
class UsageSummary:
    report_version: str
    generated_ts: str
    year: int
    month: int
    total_energy_wh: float
    devices: List[DeviceUsage]
    groups: List[GroupUsage]

    def to_dict(self) -> Dict[str, object]:
        return asdict(self)


def summarize_usage(
    devices: Mapping[str, DeviceRecord],
    groups: Mapping[str, CombinedLimitGroup],
    year: int,
    month: int,
) -> UsageSummary:
    membership: Dict[str, str] = {}
    for department in sorted(groups):
        group = groups[department]
        if not group.enabled:
            continue
        for name in group.selected_outlets:
            key = resolve_outlet_key(name, devices.keys())
            if key is not None:
                membership.setdefault(key, department)

    device_rows: List[DeviceUsage] = []
    total = 0.0
    for key in sorted(devices):
        device = devices[key]
        used = monthly_energy(device.daily_logs, year, month)
        total += used
        device_rows.append(
            DeviceUsage(
                outlet_key=key,
                name=device.display_name,
                department=device.department,
                month_energy_wh=round(used, 3),
                limit_wh=device.power_limit_wh,
                percent_of_limit=_percent(used, device.power_limit_wh),
                group=membership.get(key),
            )
        )

    group_rows: List[GroupUsage] = []
    for department in sorted(groups):
        group = groups[department]
        used = combined_monthly_energy(devices, group.selected_outlets, year, month)
        group_rows.append(
            GroupUsage(
                department=department,
                enabled=group.enabled,
                outlets=list(group.selected_outlets),
                month_energy_wh=round(used, 3),
                limit_wh=group.limit_wh,
                percent_of_limit=_percent(used, group.limit_wh),
                device_control=group.device_control.value,
            )
        )

    return UsageSummary(
        report_version=_REPORT_VERSION,
        generated_ts=_now_iso(),
        year=year,
        month=month,
        total_energy_wh=round(total, 3),
        devices=device_rows,
        groups=group_rows,
    )


def persist_summary(summary: UsageSummary, *, out_path: Path) -> None:
    out_path.parent.mkdir(parents=True, exist_ok=True)
    out_path.write_text(json.dumps(summary.to_dict(), indent=2), encoding="utf-8")
    LOGGER.info("Wrote usage report for %04d-%02d to %s", summary.year, summary.month, out_path)


def _percent(used_wh: float, limit_wh: Optional[float]) -> Optional[float]:
    if limit_wh is None or limit_wh <= 0:
        return None
    return round(used_wh / limit_wh * 100.0, 2)


def _now_iso() -> str:
    return datetime.now(tz=timezone.utc).isoformat().replace("+00:00", "Z")


__all__ = ["DeviceUsage", "GroupUsage", "UsageSummary", "persist_summary", "summarize_usage"]
