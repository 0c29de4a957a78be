"""Config loader with schema validation for the outlet policy engine."""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

VALID_STORE_BACKENDS = ("memory", "firebase")


class ConfigError(ValueError):
    """Raised when a configuration file fails validation."""


@dataclass(frozen=True)
class StoreConfig:
    backend: str
    url: Optional[str] = None
    auth_token: Optional[str] = None
    timeout_ms: int = 5000
    seed_path: Optional[Path] = None


@dataclass(frozen=True)
class IntervalConfig:
    startup_delay_ms: int = 2000
    unplug_ms: int = 5000
    monthly_limit_ms: int = 10000
    schedule_ms: int = 10000
    power_limit_ms: int = 12000
    combined_sweep_ms: int = 30000


@dataclass(frozen=True)
class ThresholdConfig:
    unplug_timeout_ms: int = 30000
    idle_timeout_ms: int = 15000
    monthly_debounce_ms: int = 5000


@dataclass(frozen=True)
class ActivityLogConfig:
    enabled: bool
    log_dir: Path
    mirror_to_store: bool = False


@dataclass(frozen=True)
class Config:
    source: Path
    config_version: str
    timezone: Optional[str]
    store: StoreConfig
    intervals: IntervalConfig
    thresholds: ThresholdConfig
    activity_log: ActivityLogConfig


def load_config(path: str | Path) -> Config:
    """Load and validate a YAML/JSON config file."""
    source = Path(path)
    if not source.exists():
        raise ConfigError(f"Config file not found: {source}")

    data = _deserialize(source)
    if not isinstance(data, dict):
        raise ConfigError("Config root must be a mapping")
    return _parse_config(data, source)


def _deserialize(source: Path) -> Any:
    text = source.read_text(encoding="utf-8")
    suffix = source.suffix.lower()
    if suffix == ".json":
        return json.loads(text)
    return yaml.safe_load(text)


def _parse_config(data: Dict[str, Any], source: Path) -> Config:
    config_version = _require_str(data, "config_version")

    timezone = data.get("timezone")
    if timezone is not None and (not isinstance(timezone, str) or not timezone.strip()):
        raise ConfigError("'timezone' must be a non-empty string when provided")

    store_section = _require_dict(data, "store")
    backend = _require_str(store_section, "backend").lower()
    if backend not in VALID_STORE_BACKENDS:
        raise ConfigError(f"store.backend must be one of {', '.join(VALID_STORE_BACKENDS)}")
    store = StoreConfig(
        backend=backend,
        url=_optional_str(store_section.get("url"), "store.url"),
        auth_token=_optional_str(store_section.get("auth_token"), "store.auth_token"),
        timeout_ms=_coerce_int(store_section.get("timeout_ms", 5000), "store.timeout_ms", minimum=1),
        seed_path=_optional_path(store_section.get("seed_path")),
    )
    if store.backend == "firebase" and not store.url:
        raise ConfigError("store.url is required when store.backend is firebase")

    interval_section = _optional_dict(data, "intervals")
    intervals = IntervalConfig(
        startup_delay_ms=_coerce_int(
            interval_section.get("startup_delay_ms", 2000), "intervals.startup_delay_ms", minimum=0
        ),
        unplug_ms=_coerce_int(interval_section.get("unplug_ms", 5000), "intervals.unplug_ms", minimum=1),
        monthly_limit_ms=_coerce_int(
            interval_section.get("monthly_limit_ms", 10000), "intervals.monthly_limit_ms", minimum=1
        ),
        schedule_ms=_coerce_int(interval_section.get("schedule_ms", 10000), "intervals.schedule_ms", minimum=1),
        power_limit_ms=_coerce_int(
            interval_section.get("power_limit_ms", 12000), "intervals.power_limit_ms", minimum=1
        ),
        combined_sweep_ms=_coerce_int(
            interval_section.get("combined_sweep_ms", 30000), "intervals.combined_sweep_ms", minimum=1
        ),
    )

    threshold_section = _optional_dict(data, "thresholds")
    thresholds = ThresholdConfig(
        unplug_timeout_ms=_coerce_int(
            threshold_section.get("unplug_timeout_ms", 30000), "thresholds.unplug_timeout_ms", minimum=1
        ),
        idle_timeout_ms=_coerce_int(
            threshold_section.get("idle_timeout_ms", 15000), "thresholds.idle_timeout_ms", minimum=1
        ),
        monthly_debounce_ms=_coerce_int(
            threshold_section.get("monthly_debounce_ms", 5000), "thresholds.monthly_debounce_ms", minimum=0
        ),
    )

    activity_section = _optional_dict(data, "activity_log")
    activity_log = ActivityLogConfig(
        enabled=bool(activity_section.get("enabled", False)),
        log_dir=_optional_path(activity_section.get("log_dir")) or Path("logs/activity"),
        mirror_to_store=bool(activity_section.get("mirror_to_store", False)),
    )

    return Config(
        source=source,
        config_version=config_version,
        timezone=timezone.strip() if isinstance(timezone, str) else None,
        store=store,
        intervals=intervals,
        thresholds=thresholds,
        activity_log=activity_log,
    )


def _require_dict(obj: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = obj.get(key)
    if not isinstance(value, dict):
        raise ConfigError(f"'{key}' must be a mapping")
    return value


def _optional_dict(obj: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = obj.get(key, {})
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"{key} block must be a mapping if provided")
    return value


def _require_str(obj: Dict[str, Any], key: str) -> str:
    value = obj.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"'{key}' must be a non-empty string")
    return value


def _optional_str(value: Any, field: str) -> Optional[str]:
    if value in (None, ""):
        return None
    if not isinstance(value, str):
        raise ConfigError(f"'{field}' must be a string when provided")
    return value.strip()


def _coerce_int(value: Any, field: str, minimum: Optional[int] = None) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"'{field}' must be an integer, not boolean")
    try:
        parsed = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"'{field}' must be an integer") from exc
    if minimum is not None and parsed < minimum:
        raise ConfigError(f"'{field}' must be >= {minimum}")
    return parsed


def _optional_path(value: Any) -> Optional[Path]:
    if not value:
        return None
    if not isinstance(value, str):
        raise ConfigError("Path fields must be strings when provided")
    return Path(value)


__all__ = [
    "ActivityLogConfig",
    "Config",
    "ConfigError",
    "IntervalConfig",
    "StoreConfig",
    "ThresholdConfig",
    "VALID_STORE_BACKENDS",
    "load_config",
]
