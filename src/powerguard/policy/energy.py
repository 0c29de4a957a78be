"""Calendar-month energy totals from per-day outlet logs."""

from __future__ import annotations

import calendar
import logging
from datetime import date
from typing import Iterable, Mapping, Set

from powerguard.devices.types import DeviceRecord, normalize_outlet_key, resolve_outlet_key

LOGGER = logging.getLogger(__name__)


def day_key(day: date) -> str:
    return f"day_{day.year}_{day.month:02d}_{day.day:02d}"


def monthly_energy(daily_logs: Mapping[str, float], year: int, month: int) -> float:
    """Sum the month's per-day totals; days without a log contribute nothing."""
    days_in_month = calendar.monthrange(year, month)[1]
    total = 0.0
    for day in range(1, days_in_month + 1):
        value = daily_logs.get(day_key(date(year, month, day)))
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            total += value
    return total


def device_monthly_energy(device: DeviceRecord, today: date) -> float:
    return monthly_energy(device.daily_logs, today.year, today.month)


def today_energy(device: DeviceRecord, today: date) -> float:
    return device.daily_logs.get(day_key(today), 0.0)


def combined_monthly_energy(
    devices: Mapping[str, DeviceRecord],
    outlets: Iterable[str],
    year: int,
    month: int,
) -> float:
    """Sum monthly energy across ``outlets``, counting each canonical outlet once."""
    seen: Set[str] = set()
    total = 0.0
    for name in outlets:
        canonical = normalize_outlet_key(name).lower()
        if canonical in seen:
            continue
        seen.add(canonical)
        key = resolve_outlet_key(name, devices.keys())
        if key is None:
            LOGGER.debug("Outlet %s listed in group but missing from device records", name)
            continue
        total += monthly_energy(devices[key].daily_logs, year, month)
    return total


__all__ = [
    "combined_monthly_energy",
    "day_key",
    "device_monthly_energy",
    "monthly_energy",
    "today_energy",
]
