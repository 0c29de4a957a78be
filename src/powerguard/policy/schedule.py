"""Schedule evaluation for time-of-day windows and day-of-week frequencies.

All checks are pure functions of the schedule, the requested control state and
the supplied ``now``. Parse failures never raise: an unreadable window falls
back to the requested control state and an unreadable frequency means daily.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Any, Optional, Set, Tuple

from powerguard.devices.types import ControlState, DeviceRecord, Schedule
from powerguard.policy.energy import device_monthly_energy

LOGGER = logging.getLogger(__name__)

Window = Tuple[int, int]

# Monday == 0, matching datetime.weekday().
_DAY_NAMES = {
    "monday": 0, "mon": 0, "m": 0,
    "tuesday": 1, "tue": 1, "tues": 1, "t": 1,
    "wednesday": 2, "wed": 2, "w": 2,
    "thursday": 3, "thu": 3, "thur": 3, "thurs": 3, "th": 3,
    "friday": 4, "fri": 4, "f": 4,
    "saturday": 5, "sat": 5, "s": 5,
    "sunday": 6, "sun": 6, "su": 6,
}
_DAILY = ("", "daily", "everyday", "every day")
_TOKEN_SPLIT = re.compile(r"[,;/\s]+")
_CLOCK_24 = re.compile(r"^(\d{1,2}):(\d{2})(?::\d{2})?$")
_CLOCK_12 = re.compile(r"^(\d{1,2}):(\d{2})\s*([AaPp])\.?[Mm]\.?$")
_RANGE_SPLIT = re.compile(r"\s*[-–]\s*")


def parse_clock(text: Optional[str]) -> Optional[int]:
    """Minutes after midnight for ``"HH:MM"`` or ``"H:MM AM"``; ``None`` when malformed."""
    if not text:
        return None
    value = text.strip()
    match = _CLOCK_12.match(value)
    if match:
        hours, minutes = int(match.group(1)), int(match.group(2))
        if not 1 <= hours <= 12 or minutes > 59:
            return None
        if hours == 12:
            hours = 0
        if match.group(3).lower() == "p":
            hours += 12
        return hours * 60 + minutes
    match = _CLOCK_24.match(value)
    if match:
        hours, minutes = int(match.group(1)), int(match.group(2))
        if hours > 23 or minutes > 59:
            return None
        return hours * 60 + minutes
    return None


def parse_time_window(schedule: Schedule) -> Optional[Window]:
    if schedule.start_time and schedule.end_time:
        start = parse_clock(schedule.start_time)
        end = parse_clock(schedule.end_time)
        if start is not None and end is not None:
            return start, end
    if schedule.time_range:
        parts = _RANGE_SPLIT.split(schedule.time_range.strip())
        if len(parts) == 2:
            start = parse_clock(parts[0])
            end = parse_clock(parts[1])
            if start is not None and end is not None:
                return start, end
    return None


def minutes_of_day(now: datetime) -> int:
    return now.hour * 60 + now.minute


def in_window(window: Window, minute: int) -> bool:
    """Half-open ``start <= minute < end``; a window ending before it starts never matches."""
    start, end = window
    return start <= minute < end


def parse_days(frequency: str) -> Set[int]:
    days: Set[int] = set()
    for token in _TOKEN_SPLIT.split(frequency.strip().lower()):
        if token in _DAY_NAMES:
            days.add(_DAY_NAMES[token])
    return days


def matches_day(frequency: Optional[str], weekday: int) -> bool:
    text = (frequency or "").strip().lower()
    if text in _DAILY:
        return True
    if text == "weekdays":
        return weekday < 5
    if text == "weekends":
        return weekday >= 5
    days = parse_days(text)
    if not days:
        LOGGER.debug("Unrecognized schedule frequency %r; treating as daily", frequency)
        return True
    return weekday in days


def is_active_by_schedule(
    schedule: Optional[Schedule],
    control_state: Any,
    device: Optional[DeviceRecord] = None,
    skip_limit_check: bool = False,
    *,
    now: Optional[datetime] = None,
) -> bool:
    state = _as_control_state(control_state)
    if schedule is not None and schedule.disabled_by_unplug:
        return False
    if schedule is None or not schedule.is_configured:
        return state is ControlState.ON
    if state is not ControlState.ON:
        return False

    window = parse_time_window(schedule)
    if window is None:
        LOGGER.debug(
            "Unparseable schedule window (timeRange=%r start=%r end=%r); keeping control state",
            schedule.time_range,
            schedule.start_time,
            schedule.end_time,
        )
        return True

    current = now or datetime.now()
    within = in_window(window, minutes_of_day(current))
    correct_day = matches_day(schedule.frequency, current.weekday())

    if within and correct_day and device is not None and not skip_limit_check and device.has_power_limit:
        used = device_monthly_energy(device, current.date())
        if used >= device.power_limit_wh:
            LOGGER.debug(
                "Schedule match for %s overridden by monthly limit (%.1f >= %.1f Wh)",
                device.outlet_key,
                used,
                device.power_limit_wh,
            )
            return False
    return within and correct_day


def can_device_be_turned_on(schedule: Optional[Schedule], *, now: Optional[datetime] = None) -> bool:
    return is_active_by_schedule(schedule, ControlState.ON, now=now)


def can_be_manually_controlled(
    schedule: Optional[Schedule],
    requested_status: Any,
    *,
    now: Optional[datetime] = None,
) -> bool:
    """Turning off is always allowed; turning on only inside the schedule window."""
    if str(getattr(requested_status, "value", requested_status)).strip().upper() == "OFF":
        return True
    return is_active_by_schedule(schedule, ControlState.ON, now=now)


def is_past_schedule_end(schedule: Optional[Schedule], now: datetime) -> bool:
    if schedule is None or not schedule.is_configured:
        return False
    window = parse_time_window(schedule)
    if window is None:
        return False
    _start, end = window
    return minutes_of_day(now) >= end


def _as_control_state(value: Any) -> ControlState:
    if isinstance(value, ControlState):
        return value
    if isinstance(value, str) and value.strip().lower() == "on":
        return ControlState.ON
    return ControlState.OFF


__all__ = [
    "can_be_manually_controlled",
    "can_device_be_turned_on",
    "in_window",
    "is_active_by_schedule",
    "is_past_schedule_end",
    "matches_day",
    "minutes_of_day",
    "parse_clock",
    "parse_days",
    "parse_time_window",
]
