"""Operator-initiated relay toggles with human-readable rejections."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from powerguard.devices.types import ControlState, DeviceRecord, MainStatus, RootStatus
from powerguard.logging.activity import ActivityLogger
from powerguard.policy.limits import LimitEnforcer, find_group_for, individual_limit_check
from powerguard.policy.schedule import can_device_be_turned_on, parse_time_window
from powerguard.policy.tracking import Clock
from powerguard.store.repository import DeviceRepository

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class Operator:
    name: str = "Operator"
    user_id: str = "unknown"
    role: str = "admin"


@dataclass(frozen=True)
class ControlResult:
    accepted: bool
    outlet_key: str
    control_state: Optional[str] = None
    reason: Optional[str] = None
    removed_from_group: Optional[str] = None


class ManualControlService:
    """Turns outlets on or off on behalf of an operator.

    Turning off is always accepted and marks the device as manually disabled, so
    automatic control leaves it alone. Turning on sets the bypass flag after the
    unplug, limit and schedule checks pass; otherwise the request is rejected with
    a reason the operator can act on.
    """

    def __init__(
        self,
        repository: DeviceRepository,
        limits: LimitEnforcer,
        *,
        clock: Optional[Clock] = None,
        activity_log: Optional[ActivityLogger] = None,
    ) -> None:
        self._repository = repository
        self._limits = limits
        self._clock = clock or Clock()
        self._activity = activity_log or ActivityLogger.disabled()

    def toggle(
        self,
        outlet_key: str,
        *,
        operator: Optional[Operator] = None,
        leave_group_if_blocked: bool = False,
    ) -> ControlResult:
        device = self._repository.get_device(outlet_key)
        if device is None:
            return ControlResult(False, outlet_key, reason=f"Device {outlet_key} not found")
        if device.control_state is ControlState.ON:
            return self._turn_off(device, operator or Operator())
        return self._turn_on(device, operator or Operator(), leave_group_if_blocked=leave_group_if_blocked)

    def turn_on(
        self,
        outlet_key: str,
        *,
        operator: Optional[Operator] = None,
        leave_group_if_blocked: bool = False,
    ) -> ControlResult:
        device = self._repository.get_device(outlet_key)
        if device is None:
            return ControlResult(False, outlet_key, reason=f"Device {outlet_key} not found")
        return self._turn_on(device, operator or Operator(), leave_group_if_blocked=leave_group_if_blocked)

    def turn_off(self, outlet_key: str, *, operator: Optional[Operator] = None) -> ControlResult:
        device = self._repository.get_device(outlet_key)
        if device is None:
            return ControlResult(False, outlet_key, reason=f"Device {outlet_key} not found")
        return self._turn_off(device, operator or Operator())

    def _turn_on(self, device: DeviceRecord, operator: Operator, *, leave_group_if_blocked: bool) -> ControlResult:
        key = device.outlet_key
        now = self._clock.now()
        now_ms = self._clock.now_ms()

        if device.disabled_by_unplug:
            return self._reject(device, f"{device.display_name} is unplugged. Reconnect it before turning it on.")

        removed_from: Optional[str] = None
        group = find_group_for(key, self._repository.list_combined_limits())
        if group is not None:
            check = self._limits.check_monthly_limit_before_turn_on(key, now=now)
            if not check.can_turn_on:
                if not leave_group_if_blocked:
                    department = group.department or "the combined group"
                    return self._reject(
                        device,
                        f"Combined limit for {department} reached. {check.reason}",
                    )
                self._limits.remove_from_combined_group(device, group, now_ms=now_ms)
                removed_from = group.department
                refreshed = self._repository.get_device(key)
                device = refreshed or device
                group = None

        if group is None:
            if not device.has_power_limit:
                return self._reject(
                    device,
                    f"Set a power limit for {device.display_name} before turning it on.",
                    removed_from=removed_from,
                )
            individual = individual_limit_check(device, now)
            if individual.exceeded:
                return self._reject(
                    device,
                    f"Cannot turn on {device.display_name}. {individual.reason}",
                    removed_from=removed_from,
                )

        if not can_device_be_turned_on(device.schedule, now=now):
            window = _describe_window(device)
            return self._reject(
                device,
                f"{device.display_name} can only be turned on inside its schedule ({window}).",
                removed_from=removed_from,
            )

        self._repository.set_control_state(key, ControlState.ON)
        self._repository.set_main_status(key, MainStatus.ON)
        self._repository.set_root_status(key, RootStatus.ON)
        LOGGER.info("Manual turn on of %s by %s", key, operator.name)
        self._activity.record_device(
            device,
            "Manual turn on",
            timestamp_ms=now_ms,
            user=operator.name,
            user_id=operator.user_id,
            user_role=operator.role,
        )
        return ControlResult(True, key, control_state=ControlState.ON.value, removed_from_group=removed_from)

    def _turn_off(self, device: DeviceRecord, operator: Operator) -> ControlResult:
        key = device.outlet_key
        self._repository.set_control_state(key, ControlState.OFF)
        self._repository.set_main_status(key, MainStatus.OFF)
        if device.root_status is not RootStatus.UNPLUG:
            self._repository.set_root_status(key, RootStatus.OFF)
        LOGGER.info("Manual turn off of %s by %s", key, operator.name)
        self._activity.record_device(
            device,
            "Manual turn off",
            timestamp_ms=self._clock.now_ms(),
            user=operator.name,
            user_id=operator.user_id,
            user_role=operator.role,
        )
        return ControlResult(True, key, control_state=ControlState.OFF.value)

    def _reject(self, device: DeviceRecord, reason: str, *, removed_from: Optional[str] = None) -> ControlResult:
        LOGGER.info("Rejected turn on of %s: %s", device.outlet_key, reason)
        return ControlResult(
            False,
            device.outlet_key,
            control_state=device.control_state.value,
            reason=reason,
            removed_from_group=removed_from,
        )


def _describe_window(device: DeviceRecord) -> str:
    schedule = device.schedule
    if schedule is None or parse_time_window(schedule) is None:
        return "no window"
    if schedule.start_time and schedule.end_time:
        window = f"{schedule.start_time}-{schedule.end_time}"
    else:
        window = schedule.time_range or ""
    return f"{window}, {schedule.frequency or 'daily'}"


__all__ = ["ControlResult", "ManualControlService", "Operator"]
