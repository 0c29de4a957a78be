"""In-process realtime store used for local runs and tests."""

from __future__ import annotations

import copy
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple
from uuid import uuid4

from powerguard.store.base import ChangeCallback, StoreError, Unsubscribe, join_path, split_path

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class WriteRecord:
    op: str
    path: str
    values: Any


class MemoryStore:
    """Nested-dict store with shallow-merge updates and synchronous subscriptions."""

    def __init__(self, data: Optional[Dict[str, Any]] = None) -> None:
        self._root: Dict[str, Any] = copy.deepcopy(data) if data else {}
        self._subscribers: Dict[int, Tuple[str, ChangeCallback]] = {}
        self._next_token = 0
        self.writes: List[WriteRecord] = []

    @classmethod
    def from_json(cls, path: str | Path) -> "MemoryStore":
        source = Path(path)
        try:
            data = json.loads(source.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise StoreError(f"Failed to load store seed {source}: {exc}") from exc
        if not isinstance(data, dict):
            raise StoreError(f"Store seed {source} must contain a JSON object")
        LOGGER.info("Loaded memory store seed from %s", source)
        return cls(data)

    def get(self, path: str) -> Any:
        node: Any = self._root
        for part in split_path(path):
            if not isinstance(node, dict) or part not in node:
                return None
            node = node[part]
        return copy.deepcopy(node)

    def set(self, path: str, value: Any) -> None:
        parts = split_path(path)
        if not parts:
            if not isinstance(value, dict):
                raise StoreError("Root value must be a mapping")
            self._root = copy.deepcopy(value)
        else:
            parent = self._ensure_parent(parts)
            if value is None:
                parent.pop(parts[-1], None)
            else:
                parent[parts[-1]] = copy.deepcopy(value)
        self.writes.append(WriteRecord("set", path, copy.deepcopy(value)))
        self._notify(path)

    def update(self, path: str, values: Mapping[str, Any]) -> None:
        parts = split_path(path)
        node = self._root
        for part in parts:
            child = node.get(part)
            if not isinstance(child, dict):
                child = {}
                node[part] = child
            node = child
        for key, value in values.items():
            if value is None:
                node.pop(key, None)
            else:
                node[key] = copy.deepcopy(value)
        self.writes.append(WriteRecord("update", path, dict(values)))
        self._notify(path)

    def remove(self, path: str) -> None:
        parts = split_path(path)
        if not parts:
            raise StoreError("Refusing to remove the store root")
        node: Any = self._root
        for part in parts[:-1]:
            if not isinstance(node, dict) or part not in node:
                return
            node = node[part]
        if isinstance(node, dict):
            node.pop(parts[-1], None)
        self.writes.append(WriteRecord("remove", path, None))
        self._notify(path)

    def push(self, path: str, value: Any) -> str:
        key = f"-{uuid4().hex[:19]}"
        self.set(join_path(path, key), value)
        return key

    def subscribe(self, path: str, callback: ChangeCallback) -> Unsubscribe:
        token = self._next_token
        self._next_token += 1
        self._subscribers[token] = (path, callback)
        callback(self.get(path))

        def _unsubscribe() -> None:
            self._subscribers.pop(token, None)

        return _unsubscribe

    def clear_writes(self) -> None:
        self.writes.clear()

    def snapshot(self) -> Dict[str, Any]:
        return copy.deepcopy(self._root)

    def _ensure_parent(self, parts: List[str]) -> Dict[str, Any]:
        node = self._root
        for part in parts[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                child = {}
                node[part] = child
            node = child
        return node

    def _notify(self, changed_path: str) -> None:
        changed = split_path(changed_path)
        for sub_path, callback in list(self._subscribers.values()):
            watched = split_path(sub_path)
            overlap = min(len(watched), len(changed))
            if watched[:overlap] != changed[:overlap]:
                continue
            callback(self.get(sub_path))


__all__ = ["MemoryStore", "WriteRecord"]
