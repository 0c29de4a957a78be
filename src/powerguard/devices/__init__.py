"""Outlet records, combined-limit groups and their parsers."""

from powerguard.devices.types import (
    CombinedLimitGroup,
    ControlState,
    DeviceRecord,
    MainStatus,
    RootStatus,
    Schedule,
)

__all__ = [
    "CombinedLimitGroup",
    "ControlState",
    "DeviceRecord",
    "MainStatus",
    "RootStatus",
    "Schedule",
]
