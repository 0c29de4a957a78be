"""
FastAPI dependencies exposing the engine runtime and its services.
"""
import logging
from functools import lru_cache

from fastapi import Depends, HTTPException, status

from powerguard.cli._helpers import resolve_config_path
from powerguard.config.loader import ConfigError, load_config
from powerguard.control.lifecycle import DeviceLifecycle
from powerguard.control.manual import ManualControlService
from powerguard.devices.registry import DeviceRegistry
from powerguard.runtime import Runtime, build_runtime
from powerguard.store.base import StoreError
from powerguard.store.repository import DeviceRepository

from .settings import settings

LOGGER = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_runtime() -> Runtime:
    """
    Runtime dependency.

    Built once per process from ``POWERGUARD_CONFIG``. Tests override this
    dependency with a runtime over an in-memory store.
    """
    path = resolve_config_path(settings.POWERGUARD_CONFIG or None)
    try:
        config = load_config(path)
        return build_runtime(config)
    except (ConfigError, StoreError) as exc:
        LOGGER.error("Failed to build runtime from %s: %s", path, exc)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Engine configuration unavailable: {exc}",
        ) from exc


def get_repository(runtime: Runtime = Depends(get_runtime)) -> DeviceRepository:
    return runtime.repository


def get_registry(runtime: Runtime = Depends(get_runtime)) -> DeviceRegistry:
    return runtime.registry


def get_manual_control(runtime: Runtime = Depends(get_runtime)) -> ManualControlService:
    return runtime.manual


def get_lifecycle(runtime: Runtime = Depends(get_runtime)) -> DeviceLifecycle:
    return runtime.lifecycle
