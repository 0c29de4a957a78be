"""Ordered guard predicates deciding whether automatic control may touch a device.

Each guard returns a terminal ``Decision`` or ``None`` to let the next guard run.
The order is the precedence: unplug veto, bypass, manual off, past schedule end,
group enforcement, then monthly limits. Only a device that passes every guard
reaches the schedule check.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Mapping, Optional, Sequence

from powerguard.devices.types import CombinedLimitGroup, ControlState, DeviceRecord
from powerguard.policy.limits import combined_limit_check, individual_limit_check
from powerguard.policy.schedule import is_past_schedule_end


class Verdict(str, Enum):
    SKIP = "skip"
    FORCE_OFF = "force_off"


@dataclass(frozen=True)
class Decision:
    verdict: Verdict
    rule: str
    reason: str
    mark_unplugged: bool = False
    limit_caused: bool = False


@dataclass(frozen=True)
class EvaluationContext:
    device: DeviceRecord
    devices: Mapping[str, DeviceRecord]
    group: Optional[CombinedLimitGroup]
    now: datetime


Guard = Callable[[EvaluationContext], Optional[Decision]]


def unplug_veto(ctx: EvaluationContext) -> Optional[Decision]:
    if ctx.device.disabled_by_unplug:
        return Decision(Verdict.FORCE_OFF, "unplug_veto", "device is unplugged", mark_unplugged=True)
    return None


def bypass(ctx: EvaluationContext) -> Optional[Decision]:
    if ctx.device.is_bypassed:
        return Decision(Verdict.SKIP, "bypass", "manual override is active")
    return None


def manual_off(ctx: EvaluationContext) -> Optional[Decision]:
    if ctx.device.is_manually_off:
        return Decision(Verdict.SKIP, "manual_off", "device was turned off manually")
    return None


def past_schedule_end(ctx: EvaluationContext) -> Optional[Decision]:
    if is_past_schedule_end(ctx.device.schedule, ctx.now):
        return Decision(Verdict.FORCE_OFF, "past_schedule_end", "schedule window has ended")
    return None


def group_enforcement(ctx: EvaluationContext) -> Optional[Decision]:
    if ctx.group is not None and ctx.group.device_control is ControlState.OFF:
        reason = ctx.group.enforcement_reason or "combined limit group is switched off"
        return Decision(Verdict.FORCE_OFF, "group_enforcement", reason, limit_caused=True)
    return None


def limit_check(ctx: EvaluationContext) -> Optional[Decision]:
    if ctx.group is not None:
        check = combined_limit_check(ctx.group, ctx.devices, ctx.now)
        rule = "combined_limit"
    else:
        check = individual_limit_check(ctx.device, ctx.now)
        rule = "individual_limit"
    if check.exceeded:
        return Decision(Verdict.FORCE_OFF, rule, check.reason or "monthly limit exceeded", limit_caused=True)
    return None


SCHEDULE_GUARDS: Sequence[Guard] = (
    unplug_veto,
    bypass,
    manual_off,
    past_schedule_end,
    group_enforcement,
    limit_check,
)

# Individual power-limit tick: limits are enforced separately by the Limit Enforcer.
POWER_LIMIT_GUARDS: Sequence[Guard] = (unplug_veto, bypass, manual_off)

# Re-run against fresh state right before a turn-on write.
TURN_ON_GUARDS: Sequence[Guard] = (unplug_veto, group_enforcement, limit_check)


def evaluate_guards(ctx: EvaluationContext, guards: Sequence[Guard] = SCHEDULE_GUARDS) -> Optional[Decision]:
    for guard in guards:
        decision = guard(ctx)
        if decision is not None:
            return decision
    return None


__all__ = [
    "Decision",
    "EvaluationContext",
    "Guard",
    "POWER_LIMIT_GUARDS",
    "SCHEDULE_GUARDS",
    "TURN_ON_GUARDS",
    "Verdict",
    "bypass",
    "evaluate_guards",
    "group_enforcement",
    "limit_check",
    "manual_off",
    "past_schedule_end",
    "unplug_veto",
]
