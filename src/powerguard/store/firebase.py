"""Firebase Realtime Database REST adapter."""

from __future__ import annotations

import json
import logging
import threading
import time
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple

import requests

from powerguard.config.loader import StoreConfig
from powerguard.store.base import ChangeCallback, StoreError, Unsubscribe, split_path

LOGGER = logging.getLogger(__name__)

_STREAM_EVENTS = ("put", "patch")
_STREAM_RETRY_S = 5.0


class FirebaseRestStore:
    """Reads and writes the realtime database over its REST interface."""

    def __init__(self, config: StoreConfig, *, session: Optional[requests.Session] = None) -> None:
        if not config.url:
            raise StoreError("Firebase store requires a database URL")
        self._base_url = config.url.rstrip("/")
        self._auth_token = config.auth_token
        self._timeout_s = max(config.timeout_ms, 1) / 1000.0
        self._session = session or requests.Session()
        self._streams: List[_StreamWorker] = []

    def get(self, path: str) -> Any:
        return self._request("GET", path)

    def update(self, path: str, values: Mapping[str, Any]) -> None:
        self._request("PATCH", path, payload=dict(values))

    def remove(self, path: str) -> None:
        if not split_path(path):
            raise StoreError("Refusing to remove the store root")
        self._request("DELETE", path)

    def push(self, path: str, value: Any) -> str:
        result = self._request("POST", path, payload=value)
        if not isinstance(result, dict) or "name" not in result:
            raise StoreError(f"Unexpected push response for {path}: {result!r}")
        return str(result["name"])

    def subscribe(self, path: str, callback: ChangeCallback) -> Unsubscribe:
        worker = _StreamWorker(self, path, callback)
        self._streams.append(worker)
        worker.start()

        def _unsubscribe() -> None:
            worker.stop()
            if worker in self._streams:
                self._streams.remove(worker)

        return _unsubscribe

    def close(self) -> None:
        for worker in list(self._streams):
            worker.stop()
        self._streams.clear()
        self._session.close()

    def url_for(self, path: str) -> str:
        parts = split_path(path)
        suffix = "/".join(parts)
        return f"{self._base_url}/{suffix}.json" if suffix else f"{self._base_url}/.json"

    def _params(self) -> Dict[str, str]:
        return {"auth": self._auth_token} if self._auth_token else {}

    def _request(self, method: str, path: str, *, payload: Any = None) -> Any:
        url = self.url_for(path)
        try:
            start = time.perf_counter()
            response = self._session.request(
                method,
                url,
                params=self._params(),
                json=payload,
                timeout=self._timeout_s,
            )
            latency_ms = (time.perf_counter() - start) * 1000.0
            response.raise_for_status()
        except requests.RequestException as exc:
            raise StoreError(f"{method} {path} failed: {exc.__class__.__name__}: {exc}") from exc
        LOGGER.debug("Store %s %s ok latency=%.2fms", method, path, latency_ms)
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise StoreError(f"{method} {path} returned invalid JSON") from exc


class _StreamWorker:
    """Follows a server-sent event stream and refetches the watched path on change."""

    def __init__(self, store: FirebaseRestStore, path: str, callback: ChangeCallback) -> None:
        self._store = store
        self._path = path
        self._callback = callback
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._run, name=f"store-stream:{path}", daemon=True)

    def start(self) -> None:
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                self._follow()
            except (requests.RequestException, StoreError) as exc:
                LOGGER.warning("Stream for %s dropped (%s); retrying in %.0fs", self._path, exc, _STREAM_RETRY_S)
                self._stop.wait(_STREAM_RETRY_S)

    def _follow(self) -> None:
        with self._store._session.get(
            self._store.url_for(self._path),
            params=self._store._params(),
            headers={"Accept": "text/event-stream"},
            stream=True,
            timeout=(self._store._timeout_s, None),
        ) as response:
            response.raise_for_status()
            for event, _data in parse_event_stream(response.iter_lines(decode_unicode=True)):
                if self._stop.is_set():
                    return
                if event in ("cancel", "auth_revoked"):
                    raise StoreError(f"Stream for {self._path} ended by server ({event})")
                if event in _STREAM_EVENTS:
                    self._deliver(self._store.get(self._path))

    def _deliver(self, value: Any) -> None:
        try:
            self._callback(value)
        except Exception:  # pylint: disable=broad-exception-caught
            LOGGER.exception("Stream callback for %s failed", self._path)


def parse_event_stream(lines: Iterator[Optional[str]]) -> Iterator[Tuple[str, Any]]:
    """Yield ``(event, data)`` pairs from raw server-sent-event lines."""

    event: Optional[str] = None
    data_lines: List[str] = []
    for raw in lines:
        line = raw or ""
        if not line:
            if event is not None:
                yield event, _decode_data("\n".join(data_lines))
            event = None
            data_lines = []
            continue
        if line.startswith("event:"):
            event = line[len("event:"):].strip()
        elif line.startswith("data:"):
            data_lines.append(line[len("data:"):].strip())
    if event is not None:
        yield event, _decode_data("\n".join(data_lines))


def _decode_data(text: str) -> Any:
    if not text:
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return text


__all__ = ["FirebaseRestStore", "parse_event_stream"]
