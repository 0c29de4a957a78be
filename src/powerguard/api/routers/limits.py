"""
Combined limits API router.

Reads and writes department-wide monthly energy caps.
"""
from typing import List, Mapping

from fastapi import APIRouter, Depends, HTTPException, status

from powerguard.control.lifecycle import LifecycleError
from powerguard.devices.types import KILO, CombinedLimitGroup, DeviceRecord
from powerguard.policy.energy import combined_monthly_energy
from powerguard.runtime import Runtime

from ..dependencies import get_runtime
from ..schemas import CombinedLimitOut, CombinedLimitRequest


router = APIRouter(tags=["combined-limits"])


@router.get("/", response_model=List[CombinedLimitOut])
def list_combined_limits(runtime: Runtime = Depends(get_runtime)):
    """List every department group with its month-to-date usage."""
    repository = runtime.repository
    devices = repository.list_devices()
    today = runtime.clock.now().date()
    groups = repository.list_combined_limits()
    return [_to_out(groups[name], devices, today.year, today.month) for name in sorted(groups)]


@router.get("/{department}", response_model=CombinedLimitOut)
def get_combined_limit(department: str, runtime: Runtime = Depends(get_runtime)):
    """Get one department group."""
    group = runtime.repository.get_combined_limit(department)
    if group is None:
        raise HTTPException(status_code=404, detail=f"No combined limit for {department}")
    today = runtime.clock.now().date()
    return _to_out(group, runtime.repository.list_devices(), today.year, today.month)


@router.put("/{department}", response_model=CombinedLimitOut)
def save_combined_limit(
    department: str,
    request: CombinedLimitRequest,
    runtime: Runtime = Depends(get_runtime),
):
    """
    Create or replace a department group.

    Outlets already claimed by another enabled department are rejected with 400.
    """
    limit_wh = request.limit_kwh * KILO if request.limit_kwh else None
    try:
        runtime.lifecycle.save_combined_limit(
            department,
            enabled=request.enabled,
            outlets=request.selected_outlets,
            limit_wh=limit_wh,
        )
    except LifecycleError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return get_combined_limit(department.strip(), runtime)


def _to_out(group: CombinedLimitGroup, devices: Mapping[str, DeviceRecord], year: int, month: int) -> CombinedLimitOut:
    used = combined_monthly_energy(devices, group.selected_outlets, year, month)
    percent = round(used / group.limit_wh * 100.0, 2) if group.has_limit else None
    return CombinedLimitOut(
        department=group.department,
        enabled=group.enabled,
        selected_outlets=list(group.selected_outlets),
        limit_wh=group.limit_wh,
        month_energy_wh=round(used, 3),
        percent_of_limit=percent,
        device_control=group.device_control.value,
        enforcement_reason=group.enforcement_reason,
    )
