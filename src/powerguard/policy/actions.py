"""Relay writes shared by the enforcement paths."""

from __future__ import annotations

import logging
from typing import List

from powerguard.devices.types import ControlState, DeviceRecord, MainStatus, RootStatus
from powerguard.store.repository import DeviceRepository

LOGGER = logging.getLogger(__name__)


def force_off(
    repository: DeviceRepository,
    device: DeviceRecord,
    *,
    lock_main_status: bool = True,
    mark_unplugged: bool = False,
) -> List[str]:
    """Drive ``device`` to off, skipping writes whose target value is already stored.

    Root ``status = OFF`` is written only alongside an actual transition and only
    when the prior control state was not ``on``; an "on" device may be idle and
    its status belongs to the idle display logic. Returns the fields written.
    """

    written: List[str] = []
    prior = device.control_state
    if prior is not ControlState.OFF:
        repository.set_control_state(device.outlet_key, ControlState.OFF)
        written.append("control")
    if lock_main_status and device.main_status is not MainStatus.OFF:
        repository.set_main_status(device.outlet_key, MainStatus.OFF)
        written.append("main_status")
    if mark_unplugged:
        if device.root_status is not RootStatus.UNPLUG:
            repository.set_root_status(device.outlet_key, RootStatus.UNPLUG)
            written.append("status")
    elif (
        written
        and prior is not ControlState.ON
        and device.root_status not in (RootStatus.OFF, RootStatus.UNPLUG)
    ):
        repository.set_root_status(device.outlet_key, RootStatus.OFF)
        written.append("status")
    if not written:
        LOGGER.debug("Skipping redundant off write for %s", device.outlet_key)
    return written


__all__ = ["force_off"]
