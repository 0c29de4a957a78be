"""
Pydantic schemas for the outlet API.

Energy values in responses are in Wh; limits in requests are entered in kWh.
"""
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class DeviceSummary(BaseModel):
    """Display entity for one outlet."""
    outlet_key: str = Field(description="Store key, e.g. Outlet_1")
    name: str = Field(description="Display name, e.g. Outlet 1")
    office: Optional[str] = Field(None, description="Office or room the outlet is in")
    appliance: Optional[str] = Field(None, description="Appliance plugged into the outlet")
    department: Optional[str] = Field(None, description="Owning department")
    status: str = Field(description="Active, Inactive, Idle or UNPLUG")
    control_state: str = Field(description="Relay command: on or off")
    main_status: str = Field(description="ON while a manual override is active")
    bypassed: bool = Field(description="True if automatic control is bypassed")
    power_w: float = Field(description="Latest sensor power reading")
    today_energy_wh: float = Field(description="Energy used today")
    month_energy_wh: float = Field(description="Energy used in the current calendar month")
    lifetime_energy_wh: float = Field(description="Lifetime energy counter")
    power_limit_wh: Optional[float] = Field(None, description="Monthly limit, null for No Limit")
    limit_label: str = Field(description="Human-readable monthly limit")
    schedule_label: Optional[str] = Field(None, description="Human-readable schedule window")

    class Config:
        json_schema_extra = {
            "example": {
                "outlet_key": "Outlet_1",
                "name": "Outlet 1",
                "office": "Registrar",
                "appliance": "Aircon",
                "department": "COED",
                "status": "Active",
                "control_state": "on",
                "main_status": "OFF",
                "bypassed": False,
                "power_w": 812.4,
                "today_energy_wh": 2400.0,
                "month_energy_wh": 48200.0,
                "lifetime_energy_wh": 912000.0,
                "power_limit_wh": 100000.0,
                "limit_label": "100.000 kWh",
                "schedule_label": "08:00 - 17:00 (Weekdays)"
            }
        }


class ScheduleModel(BaseModel):
    """Operating window for an outlet."""
    frequency: str = Field("daily", description="daily, weekdays, weekends or a day list like 'M, W, F'")
    start_time: Optional[str] = Field(None, description="24h start time, e.g. 08:00")
    end_time: Optional[str] = Field(None, description="24h end time, e.g. 17:00")
    time_range: Optional[str] = Field(None, description="Legacy 12h range, e.g. '8:00 AM - 5:00 PM'")


class DeviceDetail(DeviceSummary):
    """Display entity plus enforcement state."""
    root_status: Optional[str] = Field(None, description="Raw status field of the record")
    disabled_by_unplug: bool = Field(description="True while the unplug veto is active")
    sensor_timestamp: Optional[str] = Field(None, description="Latest heartbeat from the outlet")
    combined_group: Optional[str] = Field(None, description="Department whose combined limit covers this outlet")
    schedule: Optional[ScheduleModel] = Field(None, description="Configured schedule, if any")


class DeviceProfileRequest(BaseModel):
    """Profile for a provisioned outlet."""
    office: str = Field(min_length=1, description="Office or room")
    appliance: str = Field(min_length=1, description="Connected appliance")
    department: Optional[str] = Field(None, description="Owning department")
    power_limit_kwh: Optional[float] = Field(None, ge=0, description="Monthly limit in kWh, null for No Limit")
    enable_power_scheduling: bool = Field(False, description="Enable schedule-driven control")
    schedule: Optional[ScheduleModel] = Field(None, description="Optional schedule to save with the profile")

    class Config:
        json_schema_extra = {
            "example": {
                "office": "Registrar",
                "appliance": "Aircon",
                "department": "COED",
                "power_limit_kwh": 100,
                "enable_power_scheduling": True,
                "schedule": {"frequency": "weekdays", "start_time": "08:00", "end_time": "17:00"}
            }
        }


class ControlRequest(BaseModel):
    """Manual control request; omit ``action`` to toggle."""
    action: Optional[str] = Field(None, pattern="^(on|off)$", description="on, off, or null to toggle")
    user: str = Field("Operator", description="Name recorded in the activity log")
    user_id: str = Field("unknown", description="User id recorded in the activity log")
    role: str = Field("admin", description="User role recorded in the activity log")
    leave_group_if_blocked: bool = Field(
        False,
        description="Remove the outlet from its combined-limit group when the group blocks the turn on",
    )


class ControlResponse(BaseModel):
    """Outcome of a manual control request."""
    accepted: bool = Field(description="False if the request was rejected")
    outlet_key: str = Field(description="Outlet that was addressed")
    control_state: Optional[str] = Field(None, description="Relay command after the request")
    reason: Optional[str] = Field(None, description="Why the request was rejected")
    removed_from_group: Optional[str] = Field(None, description="Department the outlet was removed from")


class DeleteResponse(BaseModel):
    """Summary of the delete cascade."""
    outlet_key: str
    removed_from_groups: List[str] = Field(default_factory=list)
    removed_from_combined_schedule: bool = False
    removed_logs: Dict[str, int] = Field(default_factory=dict)
    errors: List[str] = Field(default_factory=list)


class CombinedLimitOut(BaseModel):
    """Department-wide monthly energy cap."""
    department: str
    enabled: bool
    selected_outlets: List[str]
    limit_wh: Optional[float] = Field(None, description="Combined monthly limit, null for No Limit")
    month_energy_wh: float = Field(description="Energy used by the group this month")
    percent_of_limit: Optional[float] = None
    device_control: str = Field(description="off while the group limit is enforced")
    enforcement_reason: Optional[str] = None


class CombinedLimitRequest(BaseModel):
    """Create or replace a department's combined-limit group."""
    enabled: bool = True
    selected_outlets: List[str] = Field(default_factory=list)
    limit_kwh: Optional[float] = Field(None, ge=0, description="Combined monthly limit in kWh")

    class Config:
        json_schema_extra = {
            "example": {"enabled": True, "selected_outlets": ["Outlet_2", "Outlet_4"], "limit_kwh": 500}
        }


class DeviceUsageOut(BaseModel):
    outlet_key: str
    name: str
    department: Optional[str] = None
    month_energy_wh: float
    limit_wh: Optional[float] = None
    percent_of_limit: Optional[float] = None
    group: Optional[str] = None


class GroupUsageOut(BaseModel):
    department: str
    enabled: bool
    outlets: List[str]
    month_energy_wh: float
    limit_wh: Optional[float] = None
    percent_of_limit: Optional[float] = None
    device_control: str


class UsageReportOut(BaseModel):
    """Monthly usage per outlet and per department group."""
    report_version: str
    generated_ts: str
    year: int
    month: int
    total_energy_wh: float
    devices: List[DeviceUsageOut]
    groups: List[GroupUsageOut]
