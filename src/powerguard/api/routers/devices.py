"""
Devices API router.

Lists outlets, edits their profiles, deletes them and accepts manual control.
"""
from dataclasses import asdict
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse

from powerguard.control.lifecycle import DeviceLifecycle, DeviceProfile, LifecycleError, ScheduleRequest
from powerguard.control.manual import ManualControlService, Operator
from powerguard.devices.registry import DeviceRegistry
from powerguard.devices.types import KILO, normalize_outlet_key
from powerguard.policy.limits import find_group_for
from powerguard.store.repository import DeviceRepository

from ..dependencies import get_lifecycle, get_manual_control, get_registry, get_repository
from ..schemas import (
    ControlRequest,
    ControlResponse,
    DeleteResponse,
    DeviceDetail,
    DeviceProfileRequest,
    DeviceSummary,
    ScheduleModel,
)


router = APIRouter(tags=["devices"])


@router.get("/", response_model=List[DeviceSummary])
def list_devices(registry: DeviceRegistry = Depends(get_registry)):
    """
    List every outlet with its display status.

    Status:
    - **UNPLUG**: no heartbeat for the unplug timeout
    - **Inactive**: relay commanded off
    - **Idle**: on, but neither energy nor control changed recently
    - **Active**: otherwise
    """
    return [DeviceSummary(**view.to_dict()) for view in registry.refresh()]


@router.get("/{outlet_key}", response_model=DeviceDetail)
def get_device_detail(
    outlet_key: str,
    repository: DeviceRepository = Depends(get_repository),
    registry: DeviceRegistry = Depends(get_registry),
):
    """Get one outlet with its schedule, unplug veto and combined-limit group."""
    key = normalize_outlet_key(outlet_key)
    return _detail(key, repository, registry)


@router.put("/{outlet_key}", response_model=DeviceDetail)
def save_device_profile(
    outlet_key: str,
    request: DeviceProfileRequest,
    repository: DeviceRepository = Depends(get_repository),
    registry: DeviceRegistry = Depends(get_registry),
    lifecycle: DeviceLifecycle = Depends(get_lifecycle),
):
    """Register or edit the profile of a provisioned outlet."""
    key = normalize_outlet_key(outlet_key)
    if not repository.device_exists(key):
        raise HTTPException(status_code=404, detail=f"Outlet {key} not found")
    limit_wh = request.power_limit_kwh * KILO if request.power_limit_kwh else None
    try:
        lifecycle.save_profile(
            DeviceProfile(
                outlet_key=key,
                office=request.office,
                appliance=request.appliance,
                department=request.department,
                power_limit_wh=limit_wh,
                enable_power_scheduling=request.enable_power_scheduling,
            )
        )
        if request.schedule is not None:
            lifecycle.save_schedule(
                key,
                ScheduleRequest(
                    frequency=request.schedule.frequency,
                    start_time=request.schedule.start_time,
                    end_time=request.schedule.end_time,
                    time_range=request.schedule.time_range,
                ),
            )
    except LifecycleError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return _detail(key, repository, registry)


@router.delete("/{outlet_key}", response_model=DeleteResponse)
def delete_device(outlet_key: str, lifecycle: DeviceLifecycle = Depends(get_lifecycle)):
    """Delete an outlet, its group memberships and its log entries."""
    try:
        report = lifecycle.delete_device(normalize_outlet_key(outlet_key))
    except LifecycleError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return DeleteResponse(**asdict(report))


@router.post(
    "/{outlet_key}/control",
    response_model=ControlResponse,
    responses={409: {"model": ControlResponse, "description": "Request rejected"}},
)
def control_device(
    outlet_key: str,
    request: ControlRequest,
    manual: ManualControlService = Depends(get_manual_control),
):
    """
    Turn an outlet on or off on behalf of an operator.

    Rejections (unplugged, over limit, no limit set, outside schedule) return
    409 with the reason in the body.
    """
    key = normalize_outlet_key(outlet_key)
    operator = Operator(name=request.user, user_id=request.user_id, role=request.role)
    if request.action == "on":
        result = manual.turn_on(key, operator=operator, leave_group_if_blocked=request.leave_group_if_blocked)
    elif request.action == "off":
        result = manual.turn_off(key, operator=operator)
    else:
        result = manual.toggle(key, operator=operator, leave_group_if_blocked=request.leave_group_if_blocked)

    body = ControlResponse(**asdict(result))
    if not result.accepted:
        if result.control_state is None:
            raise HTTPException(status_code=404, detail=result.reason)
        return JSONResponse(status_code=status.HTTP_409_CONFLICT, content=body.model_dump())
    return body


def _detail(key: str, repository: DeviceRepository, registry: DeviceRegistry) -> DeviceDetail:
    device = repository.get_device(key)
    if device is None:
        raise HTTPException(status_code=404, detail=f"Outlet {key} not found")
    registry.refresh()
    view = registry.get(key)
    if view is None:
        raise HTTPException(status_code=404, detail=f"Outlet {key} not found")
    group = find_group_for(key, repository.list_combined_limits())
    schedule = None
    if device.schedule is not None and device.schedule.is_configured:
        schedule = ScheduleModel(
            frequency=device.schedule.frequency or "daily",
            start_time=device.schedule.start_time,
            end_time=device.schedule.end_time,
            time_range=device.schedule.time_range,
        )
    return DeviceDetail(
        **view.to_dict(),
        root_status=device.root_status.value if device.root_status else None,
        disabled_by_unplug=device.disabled_by_unplug,
        sensor_timestamp=device.sensor_timestamp,
        combined_group=group.department if group is not None else None,
        schedule=schedule,
    )
