"""Realtime store adapters (in-memory, Firebase REST) and the typed repository."""

from powerguard.store.base import RealtimeStore, StoreError
from powerguard.store.memory import MemoryStore
from powerguard.store.repository import DeviceRepository

__all__ = ["DeviceRepository", "MemoryStore", "RealtimeStore", "StoreError"]
