from __future__ import annotations

import json
from typing import Any, List, Optional

import pytest
import requests

from powerguard.config.loader import StoreConfig
from powerguard.store.base import StoreError
from powerguard.store.firebase import FirebaseRestStore, _StreamWorker, parse_event_stream


class FakeResponse:
    def __init__(self, payload: Any = None, status_code: int = 200) -> None:
        self.status_code = status_code
        self.content = b"" if payload is None else json.dumps(payload).encode("utf-8")

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error")

    def json(self) -> Any:
        return json.loads(self.content)


class FakeStreamResponse:
    def __init__(self, lines: List[str]) -> None:
        self.lines = lines

    def __enter__(self) -> "FakeStreamResponse":
        return self

    def __exit__(self, *exc_info) -> None:
        return None

    def raise_for_status(self) -> None:
        return None

    def iter_lines(self, decode_unicode: bool = False):
        return iter(self.lines)


class FakeSession:
    def __init__(self, responses: Optional[List[Any]] = None) -> None:
        self.responses = list(responses or [])
        self.calls: List[dict] = []
        self.closed = False
        self.streams: List[FakeStreamResponse] = []

    def request(self, method, url, **kwargs):
        self.calls.append({"method": method, "url": url, **kwargs})
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def get(self, url, **kwargs):
        self.calls.append({"method": "STREAM", "url": url, **kwargs})
        return self.streams.pop(0)

    def close(self) -> None:
        self.closed = True


def _store(session: FakeSession, token: Optional[str] = "secret") -> FirebaseRestStore:
    config = StoreConfig(backend="firebase", url="https://plugs.example.com/", auth_token=token, timeout_ms=2000)
    return FirebaseRestStore(config, session=session)


def test_url_for() -> None:
    store = _store(FakeSession())
    assert store.url_for("devices/Outlet_1") == "https://plugs.example.com/devices/Outlet_1.json"
    assert store.url_for("") == "https://plugs.example.com/.json"


def test_get_sends_auth_and_timeout() -> None:
    session = FakeSession([FakeResponse({"status": "ON"})])

    assert _store(session).get("devices/Outlet_1") == {"status": "ON"}

    call = session.calls[0]
    assert call["method"] == "GET"
    assert call["params"] == {"auth": "secret"}
    assert call["timeout"] == 2.0


def test_update_patches_values() -> None:
    session = FakeSession([FakeResponse()])

    _store(session, token=None).update("devices/Outlet_1/control", {"device": "off"})

    call = session.calls[0]
    assert call["method"] == "PATCH"
    assert call["json"] == {"device": "off"}
    assert call["params"] == {}


def test_push_returns_generated_name() -> None:
    session = FakeSession([FakeResponse({"name": "-Nabc"}), FakeResponse({"unexpected": True})])
    store = _store(session)

    assert store.push("device_logs", {"activity": "x"}) == "-Nabc"
    with pytest.raises(StoreError, match="Unexpected push response"):
        store.push("device_logs", {"activity": "y"})


def test_request_failures_become_store_errors() -> None:
    session = FakeSession([requests.ConnectionError("down"), FakeResponse({"error": "denied"}, status_code=401)])
    store = _store(session)

    with pytest.raises(StoreError, match="ConnectionError"):
        store.get("devices")
    with pytest.raises(StoreError, match="HTTPError"):
        store.remove("devices/Outlet_1")


def test_store_requires_url_and_refuses_root_delete() -> None:
    with pytest.raises(StoreError):
        FirebaseRestStore(StoreConfig(backend="firebase"), session=FakeSession())
    session = FakeSession()
    store = _store(session)
    with pytest.raises(StoreError):
        store.remove("")
    store.close()
    assert session.closed is True


def test_parse_event_stream() -> None:
    lines = [
        "event: put",
        'data: {"path": "/", "data": {"status": "ON"}}',
        "",
        "event: keep-alive",
        "data: null",
        "",
        "event: patch",
        "data: not-json",
    ]

    events = list(parse_event_stream(iter(lines)))

    assert events == [
        ("put", {"path": "/", "data": {"status": "ON"}}),
        ("keep-alive", None),
        ("patch", "not-json"),
    ]


def test_stream_uses_session_and_survives_callback_errors() -> None:
    session = FakeSession([FakeResponse({"status": "ON"}), FakeResponse({"status": "OFF"})])
    lines = ["event: put", "data: {}", "", "event: keep-alive", "data: null", "", "event: patch", "data: {}", ""]
    session.streams.append(FakeStreamResponse(lines))
    seen: List[Any] = []

    def _callback(value: Any) -> None:
        seen.append(value)
        if len(seen) == 1:
            raise RuntimeError("read model refresh failed")

    worker = _StreamWorker(_store(session), "devices", _callback)
    worker._follow()

    assert seen == [{"status": "ON"}, {"status": "OFF"}]
    stream_call = session.calls[0]
    assert stream_call["method"] == "STREAM"
    assert stream_call["url"] == "https://plugs.example.com/devices.json"
    assert stream_call["stream"] is True
    assert stream_call["headers"] == {"Accept": "text/event-stream"}
