"""Wires a loaded config into a store, repository and the engine's services."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from powerguard.config.loader import Config, ConfigError
from powerguard.control.lifecycle import DeviceLifecycle
from powerguard.control.manual import ManualControlService
from powerguard.devices.registry import DeviceRegistry
from powerguard.logging.activity import ActivityLogger
from powerguard.policy.scheduler import PolicyScheduler
from powerguard.policy.tracking import Clock, TrackingState, load_timezone
from powerguard.store.base import RealtimeStore
from powerguard.store.firebase import FirebaseRestStore
from powerguard.store.memory import MemoryStore
from powerguard.store.repository import DeviceRepository

LOGGER = logging.getLogger(__name__)


@dataclass
class Runtime:
    config: Config
    store: RealtimeStore
    repository: DeviceRepository
    clock: Clock
    tracking: TrackingState
    activity_log: ActivityLogger
    scheduler: PolicyScheduler
    manual: ManualControlService
    lifecycle: DeviceLifecycle
    registry: DeviceRegistry

    def close(self) -> None:
        self.scheduler.stop()
        self.registry.stop()
        if isinstance(self.store, FirebaseRestStore):
            self.store.close()


def build_store(config: Config) -> RealtimeStore:
    settings = config.store
    if settings.backend == "firebase":
        LOGGER.info("Using Firebase store at %s", settings.url)
        return FirebaseRestStore(settings)
    if settings.seed_path is None:
        LOGGER.info("Using empty in-memory store")
        return MemoryStore()
    seed = _resolve_seed(settings.seed_path, config.source)
    LOGGER.info("Using in-memory store seeded from %s", seed)
    return MemoryStore.from_json(seed)


def build_runtime(
    config: Config,
    *,
    store: Optional[RealtimeStore] = None,
    clock: Optional[Clock] = None,
) -> Runtime:
    store = store if store is not None else build_store(config)
    repository = DeviceRepository(store)
    clock = clock or Clock(load_timezone(config.timezone))
    tracking = TrackingState()
    settings = config.activity_log
    if settings.enabled:
        activity_log = ActivityLogger(
            settings.log_dir,
            repository=repository if settings.mirror_to_store else None,
        )
    else:
        activity_log = ActivityLogger.disabled()
    scheduler = PolicyScheduler(
        repository,
        intervals=config.intervals,
        thresholds=config.thresholds,
        clock=clock,
        activity_log=activity_log,
        tracking=tracking,
    )
    return Runtime(
        config=config,
        store=store,
        repository=repository,
        clock=clock,
        tracking=tracking,
        activity_log=activity_log,
        scheduler=scheduler,
        manual=ManualControlService(repository, scheduler.limits, clock=clock, activity_log=activity_log),
        lifecycle=DeviceLifecycle(repository, clock=clock, activity_log=activity_log, tracking=tracking),
        registry=DeviceRegistry(
            repository,
            tracking=tracking,
            clock=clock,
            idle_timeout_ms=config.thresholds.idle_timeout_ms,
        ),
    )


def _resolve_seed(seed_path: Path, config_source: Path) -> Path:
    if seed_path.is_absolute() or seed_path.exists():
        return seed_path
    beside_config = config_source.parent / seed_path
    if beside_config.exists():
        return beside_config
    raise ConfigError(f"store.seed_path not found: {seed_path}")


__all__ = ["Runtime", "build_runtime", "build_store"]
