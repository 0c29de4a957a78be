"""Realtime key-value store protocol shared by the in-memory and Firebase adapters."""

from __future__ import annotations

from typing import Any, Callable, List, Mapping, Optional, Protocol

ChangeCallback = Callable[[Any], None]
Unsubscribe = Callable[[], None]


class StoreError(RuntimeError):
    """Raised when a store read or write fails."""


class RealtimeStore(Protocol):
    """Hierarchical store addressed by slash-separated paths.

    ``update`` shallow-merges ``values`` into the mapping at ``path``; a ``None``
    value deletes that field. ``subscribe`` invokes ``callback`` with the current
    value at ``path`` whenever anything at or below it changes.
    """

    def get(self, path: str) -> Any:
        ...

    def update(self, path: str, values: Mapping[str, Any]) -> None:
        ...

    def remove(self, path: str) -> None:
        ...

    def push(self, path: str, value: Any) -> str:
        ...

    def subscribe(self, path: str, callback: ChangeCallback) -> Unsubscribe:
        ...


def split_path(path: str) -> List[str]:
    parts = [part for part in path.strip("/").split("/") if part]
    for part in parts:
        if part in (".", ".."):
            raise StoreError(f"Invalid path segment in {path!r}")
    return parts


def join_path(*parts: Optional[str]) -> str:
    return "/".join(part.strip("/") for part in parts if part)


__all__ = ["ChangeCallback", "RealtimeStore", "StoreError", "Unsubscribe", "join_path", "split_path"]
