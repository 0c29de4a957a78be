from __future__ import annotations

from datetime import datetime
from typing import Optional

from powerguard.devices.types import CombinedLimitGroup, ControlState, DeviceRecord
from powerguard.policy.rules import (
    POWER_LIMIT_GUARDS,
    SCHEDULE_GUARDS,
    EvaluationContext,
    Verdict,
    evaluate_guards,
)

NOW = datetime(2026, 10, 20, 10, 0)


def _ctx(raw: dict, group: Optional[CombinedLimitGroup] = None, now: datetime = NOW) -> EvaluationContext:
    device = DeviceRecord.from_raw("Outlet_1", raw)
    return EvaluationContext(device=device, devices={"Outlet_1": device}, group=group, now=now)


def test_healthy_device_passes_every_guard(make_device) -> None:
    raw = make_device(limit=100, schedule={"startTime": "08:00", "endTime": "17:00"})
    assert evaluate_guards(_ctx(raw)) is None


def test_unplug_veto_wins_over_bypass(make_device) -> None:
    raw = make_device(main="ON", schedule={"disabled_by_unplug": True})

    decision = evaluate_guards(_ctx(raw))

    assert decision.verdict is Verdict.FORCE_OFF
    assert decision.rule == "unplug_veto"
    assert decision.mark_unplugged is True


def test_bypass_skips_even_past_schedule_end(make_device) -> None:
    raw = make_device(main="ON", schedule={"startTime": "08:00", "endTime": "17:00"})

    decision = evaluate_guards(_ctx(raw, now=datetime(2026, 10, 20, 18, 0)))

    assert decision.verdict is Verdict.SKIP
    assert decision.rule == "bypass"


def test_manual_off_skips(make_device) -> None:
    raw = make_device(control="off", status="OFF", schedule={"startTime": "08:00", "endTime": "17:00"})
    assert evaluate_guards(_ctx(raw)).rule == "manual_off"


def test_past_schedule_end_forces_off(make_device) -> None:
    raw = make_device(schedule={"startTime": "08:00", "endTime": "17:00"})

    decision = evaluate_guards(_ctx(raw, now=datetime(2026, 10, 20, 17, 30)))

    assert decision.verdict is Verdict.FORCE_OFF
    assert decision.rule == "past_schedule_end"


def test_group_switched_off_forces_member_off(make_device) -> None:
    group = CombinedLimitGroup(
        department="COED",
        path="combined_limit_settings/COED",
        enabled=True,
        selected_outlets=("Outlet_1",),
        limit_wh=500000.0,
        device_control=ControlState.OFF,
        enforcement_reason="Monthly limit exceeded.",
    )

    decision = evaluate_guards(_ctx(make_device(), group=group))

    assert decision.rule == "group_enforcement"
    assert decision.reason == "Monthly limit exceeded."
    assert decision.limit_caused is True


def test_limit_check_uses_group_when_present(make_device) -> None:
    group = CombinedLimitGroup(
        department="COED",
        path="combined_limit_settings/COED",
        enabled=True,
        selected_outlets=("Outlet_1",),
        limit_wh=1000.0,
    )
    raw = make_device(limit=100, daily={"day_2026_10_01": 2})

    assert evaluate_guards(_ctx(raw, group=group)).rule == "combined_limit"
    individual = make_device(limit=1, daily={"day_2026_10_01": 2})
    assert evaluate_guards(_ctx(individual)).rule == "individual_limit"


def test_power_limit_guards_ignore_schedule(make_device) -> None:
    raw = make_device(schedule={"startTime": "08:00", "endTime": "17:00"})
    assert evaluate_guards(_ctx(raw, now=datetime(2026, 10, 20, 20, 0)), POWER_LIMIT_GUARDS) is None
    assert len(SCHEDULE_GUARDS) == 6
