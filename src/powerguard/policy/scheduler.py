"""Periodic policy driver reconciling desired and actual relay state for every outlet."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from powerguard.config.loader import Config, IntervalConfig, ThresholdConfig
from powerguard.devices.types import CombinedLimitGroup, ControlState, DeviceRecord
from powerguard.logging.activity import ActivityLogger
from powerguard.policy.actions import force_off
from powerguard.policy.limits import GroupEnforcement, LimitEnforcer, find_group_for
from powerguard.policy.rules import (
    POWER_LIMIT_GUARDS,
    SCHEDULE_GUARDS,
    TURN_ON_GUARDS,
    Decision,
    EvaluationContext,
    Verdict,
    evaluate_guards,
)
from powerguard.policy.schedule import is_active_by_schedule
from powerguard.policy.tracking import Clock, TrackingState, load_timezone
from powerguard.policy.unplug import UnplugDetector, UnplugTransition
from powerguard.store.base import StoreError
from powerguard.store.repository import DeviceRepository

LOGGER = logging.getLogger(__name__)

_DEVICE_ERRORS = (StoreError, KeyError, TypeError, ValueError)


class OutcomeKind(str, Enum):
    SKIPPED = "skipped"
    FORCED_OFF = "forced_off"
    TURNED_ON = "turned_on"
    TURNED_OFF = "turned_off"
    UNCHANGED = "unchanged"
    FAILED = "failed"


@dataclass(frozen=True)
class DeviceOutcome:
    outlet_key: str
    kind: OutcomeKind
    rule: Optional[str] = None
    reason: Optional[str] = None
    writes: Tuple[str, ...] = ()


@dataclass(frozen=True)
class PolicySnapshot:
    devices: Dict[str, DeviceRecord]
    groups: Dict[str, CombinedLimitGroup]
    now: datetime
    now_ms: int


@dataclass
class _Tick:
    name: str
    interval_s: float
    action: Callable[[], object]
    next_due: float = 0.0


class PolicyScheduler:
    """Runs the unplug, limit, schedule and sweep passes on independent intervals.

    Every pass reads a fresh snapshot, evaluates devices one at a time and never
    lets an exception escape: a failing device is logged and skipped, and the
    next tick acts as the retry.
    """

    def __init__(
        self,
        repository: DeviceRepository,
        *,
        intervals: Optional[IntervalConfig] = None,
        thresholds: Optional[ThresholdConfig] = None,
        clock: Optional[Clock] = None,
        activity_log: Optional[ActivityLogger] = None,
        tracking: Optional[TrackingState] = None,
    ) -> None:
        self._repository = repository
        self._intervals = intervals or IntervalConfig()
        self._thresholds = thresholds or ThresholdConfig()
        self._clock = clock or Clock()
        self._activity = activity_log or ActivityLogger.disabled()
        self._tracking = tracking or TrackingState()
        self._unplug = UnplugDetector(
            repository,
            self._tracking.timestamps,
            timeout_ms=self._thresholds.unplug_timeout_ms,
            activity_log=self._activity,
        )
        self._limits = LimitEnforcer(
            repository,
            debounce_ms=self._thresholds.monthly_debounce_ms,
            activity_log=self._activity,
        )
        self._stop = threading.Event()
        self._ticks = [
            _Tick("unplug", self._intervals.unplug_ms / 1000.0, self.run_unplug_pass),
            _Tick("monthly_limit", self._intervals.monthly_limit_ms / 1000.0, self.run_monthly_limit_pass),
            _Tick("schedule", self._intervals.schedule_ms / 1000.0, self.run_schedule_pass),
            _Tick("power_limit", self._intervals.power_limit_ms / 1000.0, self.run_power_limit_pass),
            _Tick("combined_sweep", self._intervals.combined_sweep_ms / 1000.0, self.run_combined_sweep),
        ]

    @classmethod
    def from_config(
        cls,
        repository: DeviceRepository,
        config: Config,
        *,
        activity_log: Optional[ActivityLogger] = None,
        tracking: Optional[TrackingState] = None,
    ) -> "PolicyScheduler":
        return cls(
            repository,
            intervals=config.intervals,
            thresholds=config.thresholds,
            clock=Clock(load_timezone(config.timezone)),
            activity_log=activity_log,
            tracking=tracking,
        )

    @property
    def tracking(self) -> TrackingState:
        return self._tracking

    @property
    def limits(self) -> LimitEnforcer:
        return self._limits

    @property
    def clock(self) -> Clock:
        return self._clock

    # Passes

    def load_snapshot(self, pass_name: str = "policy") -> Optional[PolicySnapshot]:
        try:
            devices = self._repository.list_devices()
            groups = self._repository.list_combined_limits()
        except StoreError as exc:
            LOGGER.warning("Store read failed; skipping %s pass: %s", pass_name, exc)
            return None
        return PolicySnapshot(devices=devices, groups=groups, now=self._clock.now(), now_ms=self._clock.now_ms())

    def run_unplug_pass(self) -> List[UnplugTransition]:
        snapshot = self.load_snapshot("unplug")
        if snapshot is None:
            return []
        return self._unplug.check_all(snapshot.devices, snapshot.now_ms)

    def run_monthly_limit_pass(self, *, force: bool = False) -> Optional[List[GroupEnforcement]]:
        snapshot = self.load_snapshot("monthly limit")
        if snapshot is None:
            return None
        return self._limits.enforce_groups(
            snapshot.groups,
            snapshot.devices,
            now=snapshot.now,
            now_ms=snapshot.now_ms,
            force=force,
        )

    def run_combined_sweep(self) -> Optional[List[GroupEnforcement]]:
        return self.run_monthly_limit_pass(force=True)

    def run_schedule_pass(self) -> List[DeviceOutcome]:
        snapshot = self.load_snapshot("schedule")
        if snapshot is None:
            return []
        return self._for_each_device(snapshot, self.evaluate_device)

    def run_power_limit_pass(self) -> List[DeviceOutcome]:
        snapshot = self.load_snapshot("power limit")
        if snapshot is None:
            return []
        return self._for_each_device(snapshot, self._evaluate_power_limit)

    def run_once(self) -> None:
        """Run each enforcement pass once, in precedence order."""
        self._run_action("unplug", self.run_unplug_pass)
        self._run_action("monthly_limit", self.run_combined_sweep)
        self._run_action("schedule", self.run_schedule_pass)
        self._run_action("power_limit", self.run_power_limit_pass)

    # Device evaluation

    def evaluate_device(self, device: DeviceRecord, snapshot: PolicySnapshot) -> DeviceOutcome:
        key = device.outlet_key
        group = find_group_for(key, snapshot.groups)
        ctx = EvaluationContext(device=device, devices=snapshot.devices, group=group, now=snapshot.now)
        decision = evaluate_guards(ctx, SCHEDULE_GUARDS)
        if decision is not None:
            return self._apply_decision(device, decision, snapshot)

        schedule = device.schedule
        if schedule is None or not schedule.is_configured:
            return DeviceOutcome(key, OutcomeKind.UNCHANGED, rule="no_schedule")

        desired_on = is_active_by_schedule(
            schedule,
            ControlState.ON,
            device,
            skip_limit_check=group is not None,
            now=snapshot.now,
        )
        current_on = device.control_state is ControlState.ON
        if desired_on == current_on:
            return DeviceOutcome(key, OutcomeKind.UNCHANGED, rule="schedule")
        if desired_on:
            return self._turn_on(device, snapshot)

        writes = force_off(self._repository, device)
        LOGGER.info("Schedule turned off %s", key)
        self._activity.record_device(device, "Schedule turn off", timestamp_ms=snapshot.now_ms)
        return DeviceOutcome(key, OutcomeKind.TURNED_OFF, rule="schedule", writes=tuple(writes))

    def _evaluate_power_limit(self, device: DeviceRecord, snapshot: PolicySnapshot) -> DeviceOutcome:
        key = device.outlet_key
        ctx = EvaluationContext(device=device, devices=snapshot.devices, group=None, now=snapshot.now)
        decision = evaluate_guards(ctx, POWER_LIMIT_GUARDS)
        if decision is not None:
            return self._apply_decision(device, decision, snapshot)
        if find_group_for(key, snapshot.groups) is not None:
            return DeviceOutcome(key, OutcomeKind.SKIPPED, rule="combined_group")
        if self._limits.enforce_individual(device, now=snapshot.now, now_ms=snapshot.now_ms):
            return DeviceOutcome(key, OutcomeKind.FORCED_OFF, rule="individual_limit", writes=("control",))
        return DeviceOutcome(key, OutcomeKind.UNCHANGED, rule="individual_limit")

    def _turn_on(self, device: DeviceRecord, snapshot: PolicySnapshot) -> DeviceOutcome:
        key = device.outlet_key
        fresh = self._repository.get_device(key)
        if fresh is None:
            return DeviceOutcome(key, OutcomeKind.SKIPPED, rule="turn_on_recheck", reason="device record missing")
        groups = self._repository.list_combined_limits()
        devices = dict(snapshot.devices)
        devices[key] = fresh
        ctx = EvaluationContext(
            device=fresh,
            devices=devices,
            group=find_group_for(key, groups),
            now=snapshot.now,
        )
        decision = evaluate_guards(ctx, TURN_ON_GUARDS)
        if decision is not None:
            LOGGER.info("Turn-on of %s aborted by fresh %s check: %s", key, decision.rule, decision.reason)
            writes = force_off(self._repository, fresh, mark_unplugged=decision.mark_unplugged)
            return DeviceOutcome(
                key,
                OutcomeKind.FORCED_OFF,
                rule=f"turn_on_recheck:{decision.rule}",
                reason=decision.reason,
                writes=tuple(writes),
            )
        if fresh.control_state is ControlState.ON:
            return DeviceOutcome(key, OutcomeKind.UNCHANGED, rule="schedule")
        self._repository.set_control_state(key, ControlState.ON)
        LOGGER.info("Schedule turned on %s", key)
        self._activity.record_device(fresh, "Schedule turn on", timestamp_ms=snapshot.now_ms)
        return DeviceOutcome(key, OutcomeKind.TURNED_ON, rule="schedule", writes=("control",))

    def _apply_decision(self, device: DeviceRecord, decision: Decision, snapshot: PolicySnapshot) -> DeviceOutcome:
        key = device.outlet_key
        if decision.verdict is Verdict.SKIP:
            return DeviceOutcome(key, OutcomeKind.SKIPPED, rule=decision.rule, reason=decision.reason)
        writes = force_off(self._repository, device, mark_unplugged=decision.mark_unplugged)
        if writes:
            LOGGER.info("Turned off %s (%s): %s", key, decision.rule, decision.reason)
            self._activity.record_device(
                device,
                f"Auto turn off ({decision.rule.replace('_', ' ')})",
                timestamp_ms=snapshot.now_ms,
                reason=decision.reason,
            )
        return DeviceOutcome(
            key,
            OutcomeKind.FORCED_OFF,
            rule=decision.rule,
            reason=decision.reason,
            writes=tuple(writes),
        )

    def _for_each_device(
        self,
        snapshot: PolicySnapshot,
        evaluate: Callable[[DeviceRecord, PolicySnapshot], DeviceOutcome],
    ) -> List[DeviceOutcome]:
        outcomes: List[DeviceOutcome] = []
        for key in sorted(snapshot.devices):
            try:
                outcomes.append(evaluate(snapshot.devices[key], snapshot))
            except _DEVICE_ERRORS as exc:
                LOGGER.warning("Skipping %s for this pass: %s", key, exc)
                outcomes.append(DeviceOutcome(key, OutcomeKind.FAILED, reason=str(exc)))
        return outcomes

    # Driver

    def run_forever(self) -> None:
        """Drive every tick on the calling thread until ``stop()`` is called."""
        first_due = self._clock.monotonic() + self._intervals.startup_delay_ms / 1000.0
        for tick in self._ticks:
            tick.next_due = first_due
        LOGGER.info(
            "Policy scheduler started (%s)",
            ", ".join(f"{tick.name}={tick.interval_s:g}s" for tick in self._ticks),
        )
        while not self._stop.is_set():
            tick = min(self._ticks, key=lambda item: item.next_due)
            delay = tick.next_due - self._clock.monotonic()
            if delay > 0 and self._stop.wait(delay):
                break
            self._run_action(tick.name, tick.action)
            tick.next_due = max(tick.next_due + tick.interval_s, self._clock.monotonic())
        LOGGER.info("Policy scheduler stopped")

    def stop(self) -> None:
        self._stop.set()

    @property
    def tick_names(self) -> Sequence[str]:
        return [tick.name for tick in self._ticks]

    def _run_action(self, name: str, action: Callable[[], object]) -> None:
        try:
            action()
        except Exception:  # pylint: disable=broad-exception-caught
            LOGGER.exception("Policy tick %s failed; continuing", name)


__all__ = [
    "DeviceOutcome",
    "OutcomeKind",
    "PolicyScheduler",
    "PolicySnapshot",
]
