"""Activity logging for enforcement and operator actions."""

from __future__ import annotations

import json
import logging
from collections import deque
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Deque, Dict, List, Optional

from powerguard.devices.types import CombinedLimitGroup, DeviceRecord, display_outlet_name
from powerguard.store.base import StoreError
from powerguard.store.repository import DeviceRepository

LOGGER = logging.getLogger(__name__)

SYSTEM_USER = "System"
DEVICE_LOG_COLLECTION = "device_logs"
_RECENT_ENTRIES = 200


@dataclass(frozen=True)
class ActivityEntry:
    timestamp_ms: int
    outlet_key: Optional[str]
    activity: str
    reason: Optional[str] = None
    user: str = SYSTEM_USER
    user_id: str = "system"
    user_role: str = "system"
    office: Optional[str] = None
    appliance: Optional[str] = None
    department: Optional[str] = None

    def to_store_entry(self) -> Dict[str, object]:
        return {
            "user": self.user,
            "activity": self.activity,
            "officeRoom": self.office or "Unknown",
            "outletSource": display_outlet_name(self.outlet_key) if self.outlet_key else "Multiple",
            "applianceConnected": self.appliance or "Unknown",
            "timestamp": _ms_to_iso(self.timestamp_ms),
            "userId": self.user_id,
            "userRole": self.user_role,
        }


class ActivityLogger:
    """Appends activity entries to daily JSONL files and optionally mirrors them to the store."""

    def __init__(
        self,
        log_dir: str | Path = "logs/activity",
        *,
        enabled: bool = True,
        repository: Optional[DeviceRepository] = None,
    ) -> None:
        self._log_dir = Path(log_dir)
        self._enabled = enabled
        self._repository = repository
        self.recent: Deque[ActivityEntry] = deque(maxlen=_RECENT_ENTRIES)
        if enabled:
            self._log_dir.mkdir(parents=True, exist_ok=True)

    @classmethod
    def disabled(cls) -> "ActivityLogger":
        return cls(enabled=False)

    @property
    def enabled(self) -> bool:
        return self._enabled

    def record_device(
        self,
        device: DeviceRecord,
        activity: str,
        *,
        timestamp_ms: int,
        reason: Optional[str] = None,
        user: str = SYSTEM_USER,
        user_id: str = "system",
        user_role: str = "system",
    ) -> None:
        self.record(
            ActivityEntry(
                timestamp_ms=timestamp_ms,
                outlet_key=device.outlet_key,
                activity=activity,
                reason=reason,
                user=user,
                user_id=user_id,
                user_role=user_role,
                office=device.office,
                appliance=device.appliance,
                department=device.department,
            )
        )

    def record_group(
        self,
        group: CombinedLimitGroup,
        activity: str,
        *,
        timestamp_ms: int,
        reason: Optional[str] = None,
    ) -> None:
        self.record(
            ActivityEntry(
                timestamp_ms=timestamp_ms,
                outlet_key=None,
                activity=activity,
                reason=reason,
                office=group.department or None,
                appliance=f"Combined group ({len(group.selected_outlets)} outlets)",
                department=group.department or None,
            )
        )

    def record(self, entry: ActivityEntry) -> None:
        if not self._enabled:
            return
        self.recent.append(entry)
        LOGGER.info("Activity %s outlet=%s reason=%s", entry.activity, entry.outlet_key or "-", entry.reason or "-")
        try:
            self._write_entry(entry)
        except OSError as exc:
            LOGGER.warning("Failed to write activity log in %s: %s", self._log_dir, exc)
        if self._repository is not None:
            try:
                self._repository.push_log(DEVICE_LOG_COLLECTION, entry.to_store_entry())
            except StoreError as exc:
                LOGGER.warning("Failed to mirror activity to %s: %s", DEVICE_LOG_COLLECTION, exc)

    def _write_entry(self, entry: ActivityEntry) -> None:
        date_bucket = datetime.fromtimestamp(entry.timestamp_ms / 1000.0, tz=timezone.utc).strftime("%Y-%m-%d")
        target = self._log_dir / f"{date_bucket}.jsonl"
        target.parent.mkdir(parents=True, exist_ok=True)
        payload = asdict(entry)
        payload["timestamp"] = _ms_to_iso(entry.timestamp_ms)
        line = json.dumps(payload, separators=(",", ":"))
        with target.open("a", encoding="utf-8") as handle:
            handle.write(line)
            handle.write("\n")


def load_activity_entries(log_dir: Path) -> List[Dict[str, object]]:
    if not log_dir.exists():
        LOGGER.warning("Activity log directory %s not found", log_dir)
        return []
    records: List[Dict[str, object]] = []
    for path in sorted(log_dir.glob("*.jsonl")):
        with path.open("r", encoding="utf-8") as handle:
            for line in handle:
                if not line.strip():
                    continue
                try:
                    records.append(json.loads(line))
                except json.JSONDecodeError as exc:
                    LOGGER.warning("Skipping invalid log line in %s: %s", path, exc)
    return records


def _ms_to_iso(value: int) -> str:
    return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc).isoformat().replace("+00:00", "Z")


__all__ = ["ActivityEntry", "ActivityLogger", "SYSTEM_USER", "load_activity_entries"]
