import os
from typing import Any, Dict, Iterable, Optional, Tuple

import pytest

from reqlog.context import RequestInfo, ResponseInfo


def build_scope(
    method: str = "GET",
    path: str = "/",
    query: bytes = b"",
    headers: Iterable[Tuple[str, str]] = (),
    client: Optional[Tuple[str, int]] = ("10.0.0.1", 50000),
    http_version: str = "1.1",
    state: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    scope: Dict[str, Any] = {
        "type": "http",
        "asgi": {"version": "3.0"},
        "http_version": http_version,
        "method": method,
        "scheme": "http",
        "path": path,
        "raw_path": path.encode("latin-1"),
        "query_string": query,
        "root_path": "",
        "headers": [(k.lower().encode("latin-1"), v.encode("latin-1")) for k, v in headers],
        "client": client,
        "server": ("testserver", 80),
    }
    if state is not None:
        scope["state"] = state
    return scope


@pytest.fixture
def make_request():
    def _make(trust_proxy: bool = False, capture_limit: int = 65536, **kw: Any) -> RequestInfo:
        return RequestInfo.capture(build_scope(**kw), trust_proxy=trust_proxy, capture_limit=capture_limit)

    return _make


@pytest.fixture
def make_response():
    def _make(
        status: Optional[int] = None,
        headers: Iterable[Tuple[str, str]] = (),
        body: Optional[bytes] = None,
    ) -> ResponseInfo:
        res = ResponseInfo()
        if status is not None:
            res.on_start(
                {
                    "type": "http.response.start",
                    "status": status,
                    "headers": [(k.lower().encode("latin-1"), v.encode("latin-1")) for k, v in headers],
                }
            )
        if body is not None:
            res.on_body({"type": "http.response.body", "body": body, "more_body": False})
        return res

    return _make


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in list(os.environ):
        if name.startswith("REQLOG_"):
            monkeypatch.delenv(name, raising=False)


class ListWriter:
    def __init__(self) -> None:
        self.lines = []
        self.closed = False

    def write(self, line: str) -> None:
        self.lines.append(line)

    def close(self) -> None:
        self.closed = True


class RecordingStream:
    def __init__(self) -> None:
        self.writes = []

    def write(self, data: str) -> None:
        self.writes.append(data)


class FakeHandle:
    def __init__(self, when: float, callback) -> None:
        self.when = when
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeLoop:
    """Just enough of an event loop for call_later-driven timers."""

    def __init__(self) -> None:
        self.now = 0.0
        self.handles = []

    def is_closed(self) -> bool:
        return False

    def call_later(self, delay: float, callback) -> FakeHandle:
        h = FakeHandle(self.now + delay, callback)
        self.handles.append(h)
        return h

    def advance(self, seconds: float) -> None:
        target = self.now + seconds
        while True:
            due = [h for h in self.handles if not h.cancelled and h.when <= target]
            if not due:
                break
            h = min(due, key=lambda x: x.when)
            self.handles.remove(h)
            self.now = h.when
            h.callback()
        self.now = target


@pytest.fixture
def fake_loop():
    return FakeLoop()


@pytest.fixture
def list_writer():
    return ListWriter()


@pytest.fixture
def recording_stream():
    return RecordingStream()
