"""Monthly energy limit checks and enforcement for outlets and department groups."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Mapping, Optional

from powerguard.devices.types import (
    KILO,
    CombinedLimitGroup,
    ControlState,
    DeviceRecord,
    resolve_outlet_key,
)
from powerguard.logging.activity import ActivityLogger
from powerguard.policy.actions import force_off
from powerguard.policy.energy import combined_monthly_energy, device_monthly_energy
from powerguard.store.base import StoreError
from powerguard.store.repository import DeviceRepository, filter_outlets

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class LimitCheck:
    exceeded: bool
    used_wh: float
    limit_wh: Optional[float]
    reason: Optional[str] = None


@dataclass(frozen=True)
class TurnOnCheck:
    can_turn_on: bool
    reason: Optional[str]
    current_monthly_energy: float
    combined_limit: Optional[float]


@dataclass
class GroupEnforcement:
    department: str
    exceeded: bool
    used_wh: float
    limit_wh: Optional[float]
    outlets_turned_off: List[str] = field(default_factory=list)
    group_written: bool = False


def format_limit_reason(used_wh: float, limit_wh: float) -> str:
    return (
        "Monthly limit exceeded. "
        f"Current monthly energy: {used_wh / KILO:.3f} kWh, Limit: {limit_wh / KILO:.3f} kWh"
    )


def individual_limit_check(device: DeviceRecord, now: datetime) -> LimitCheck:
    used = device_monthly_energy(device, now.date())
    if not device.has_power_limit:
        return LimitCheck(exceeded=False, used_wh=used, limit_wh=None)
    limit = float(device.power_limit_wh)
    if used >= limit:
        return LimitCheck(exceeded=True, used_wh=used, limit_wh=limit, reason=format_limit_reason(used, limit))
    return LimitCheck(exceeded=False, used_wh=used, limit_wh=limit)


def combined_limit_check(
    group: CombinedLimitGroup,
    devices: Mapping[str, DeviceRecord],
    now: datetime,
) -> LimitCheck:
    used = combined_monthly_energy(devices, group.selected_outlets, now.year, now.month)
    if not group.has_limit:
        return LimitCheck(exceeded=False, used_wh=used, limit_wh=None)
    limit = float(group.limit_wh)
    if used >= limit:
        return LimitCheck(exceeded=True, used_wh=used, limit_wh=limit, reason=format_limit_reason(used, limit))
    return LimitCheck(exceeded=False, used_wh=used, limit_wh=limit)


def find_group_for(outlet_key: str, groups: Mapping[str, CombinedLimitGroup]) -> Optional[CombinedLimitGroup]:
    """Enabled group listing ``outlet_key``; the first department wins if several claim it."""
    matches = [groups[name] for name in sorted(groups) if groups[name].enabled and groups[name].contains(outlet_key)]
    if len(matches) > 1:
        LOGGER.warning(
            "Outlet %s is listed in %d combined groups (%s); using %s",
            outlet_key,
            len(matches),
            ", ".join(group.department or "<default>" for group in matches),
            matches[0].department or "<default>",
        )
    return matches[0] if matches else None


def can_turn_on_in_group(
    group: CombinedLimitGroup,
    devices: Mapping[str, DeviceRecord],
    now: datetime,
) -> TurnOnCheck:
    check = combined_limit_check(group, devices, now)
    return TurnOnCheck(
        can_turn_on=not check.exceeded,
        reason=check.reason,
        current_monthly_energy=check.used_wh,
        combined_limit=check.limit_wh,
    )


class LimitEnforcer:
    """Applies individual and combined monthly limits with write suppression."""

    def __init__(
        self,
        repository: DeviceRepository,
        *,
        debounce_ms: int = 5000,
        activity_log: Optional[ActivityLogger] = None,
    ) -> None:
        self._repository = repository
        self._debounce_ms = debounce_ms
        self._activity = activity_log or ActivityLogger.disabled()
        self._last_group_pass_ms: Optional[int] = None

    def enforce_individual(self, device: DeviceRecord, *, now: datetime, now_ms: int) -> bool:
        check = individual_limit_check(device, now)
        if not check.exceeded:
            return False
        if device.control_state is not ControlState.ON:
            return False
        if device.is_bypassed:
            LOGGER.debug("Limit exceeded for %s but bypass is active; leaving on", device.outlet_key)
            return False
        if device.is_manually_off:
            return False
        written = force_off(self._repository, device)
        if written:
            LOGGER.info("Turned off %s: %s", device.outlet_key, check.reason)
            self._activity.record_device(
                device, "Auto turn off (monthly limit)", timestamp_ms=now_ms, reason=check.reason
            )
        return bool(written)

    def enforce_groups(
        self,
        groups: Mapping[str, CombinedLimitGroup],
        devices: Mapping[str, DeviceRecord],
        *,
        now: datetime,
        now_ms: int,
        force: bool = False,
    ) -> Optional[List[GroupEnforcement]]:
        """Enforce every enabled group; returns ``None`` when debounced."""
        if not force and self._last_group_pass_ms is not None:
            elapsed = now_ms - self._last_group_pass_ms
            if 0 <= elapsed < self._debounce_ms:
                LOGGER.debug("Skipping combined limit pass (%dms since last)", elapsed)
                return None
        self._last_group_pass_ms = now_ms
        results: List[GroupEnforcement] = []
        for name in sorted(groups):
            group = groups[name]
            if not group.enabled:
                continue
            try:
                results.append(self.enforce_group(group, devices, now=now, now_ms=now_ms))
            except StoreError as exc:
                LOGGER.warning("Combined limit enforcement failed for %s: %s", group.department or "<default>", exc)
        return results

    def enforce_group(
        self,
        group: CombinedLimitGroup,
        devices: Mapping[str, DeviceRecord],
        *,
        now: datetime,
        now_ms: int,
    ) -> GroupEnforcement:
        check = combined_limit_check(group, devices, now)
        result = GroupEnforcement(
            department=group.department,
            exceeded=check.exceeded,
            used_wh=check.used_wh,
            limit_wh=check.limit_wh,
        )
        if not group.has_limit:
            return result

        if check.exceeded:
            for key in _group_members(group, devices):
                device = devices[key]
                if device.is_bypassed:
                    LOGGER.debug("Combined limit: %s bypassed; not turning off", key)
                    continue
                try:
                    written = force_off(self._repository, device)
                except StoreError as exc:
                    LOGGER.warning("Combined limit: failed to turn off %s: %s", key, exc)
                    continue
                if written:
                    result.outlets_turned_off.append(key)
                    self._activity.record_device(
                        device, "Auto turn off (combined limit)", timestamp_ms=now_ms, reason=check.reason
                    )
            if group.device_control is not ControlState.OFF:
                self._repository.set_combined_limit_enforcement(
                    group, ControlState.OFF, reason=check.reason, timestamp_ms=now_ms
                )
                result.group_written = True
                LOGGER.info("Combined limit enforced for %s: %s", group.department or "<default>", check.reason)
                self._activity.record_group(
                    group, "Combined limit enforced", timestamp_ms=now_ms, reason=check.reason
                )
        elif group.device_control is not ControlState.ON or group.enforcement_reason:
            self._repository.set_combined_limit_enforcement(group, ControlState.ON, reason=None)
            result.group_written = True
            LOGGER.info("Combined limit cleared for %s", group.department or "<default>")
        return result

    def check_monthly_limit_before_turn_on(self, outlet_key: str, *, now: datetime) -> TurnOnCheck:
        """Fresh-read variant used by manual turn-on; store failures do not block the user."""
        try:
            groups = self._repository.list_combined_limits()
            group = find_group_for(outlet_key, groups)
            if group is None:
                return TurnOnCheck(can_turn_on=True, reason=None, current_monthly_energy=0.0, combined_limit=None)
            devices = self._repository.list_devices()
        except StoreError as exc:
            LOGGER.warning("Combined limit check failed for %s; allowing turn on: %s", outlet_key, exc)
            return TurnOnCheck(can_turn_on=True, reason=None, current_monthly_energy=0.0, combined_limit=None)
        return can_turn_on_in_group(group, devices, now)

    def remove_from_combined_group(
        self,
        device: DeviceRecord,
        group: CombinedLimitGroup,
        *,
        now_ms: int,
    ) -> None:
        remaining = filter_outlets(group.selected_outlets, device.outlet_key)
        self._repository.set_group_outlets(group, remaining)
        force_off(self._repository, device)
        self._repository.clear_combined_schedule(device.outlet_key)
        LOGGER.info(
            "Removed %s from combined group %s (%d outlets remain)",
            device.outlet_key,
            group.department or "<default>",
            len(remaining),
        )
        self._activity.record_device(
            device,
            "Removed from combined limit group",
            timestamp_ms=now_ms,
            reason=f"department={group.department or '<default>'}",
        )


def _group_members(group: CombinedLimitGroup, devices: Mapping[str, DeviceRecord]) -> List[str]:
    members: Dict[str, None] = {}
    for name in group.selected_outlets:
        key = resolve_outlet_key(name, devices.keys())
        if key is not None:
            members.setdefault(key, None)
    return list(members)


__all__ = [
    "GroupEnforcement",
    "LimitCheck",
    "LimitEnforcer",
    "TurnOnCheck",
    "can_turn_on_in_group",
    "combined_limit_check",
    "find_group_for",
    "format_limit_reason",
    "individual_limit_check",
]
