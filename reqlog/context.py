# FILE: reqlog/context.py
"""
Request-scoped logging state.

A `RequestInfo` is captured once when a request enters the logger
middleware and a `ResponseInfo` is filled in as the downstream app sends
its response. Both live exactly as long as one request/response cycle and
are what token extractors receive.

Fields that may change while the app runs (the socket address, the
request path under mounted sub-apps) are frozen at entry; the live scope
is still reachable for tokens that want the current value.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from starlette.datastructures import Headers
from starlette.types import Scope


def _client_host(scope: Scope) -> Optional[str]:
    client = scope.get("client")
    if not client:
        return None
    return client[0]


def _url_from_scope(scope: Scope) -> str:
    path = scope.get("path", "") or "/"
    qs = scope.get("query_string", b"") or b""
    if qs:
        return f"{path}?{qs.decode('latin-1')}"
    return path


def _forwarded_ip(headers: Headers) -> Optional[str]:
    """
    Left-most X-Forwarded-For entry, i.e. the original client as seen by
    the first proxy.
    """
    xff = headers.get("x-forwarded-for")
    if not xff:
        return None
    parts = [p.strip() for p in xff.split(",") if p.strip()]
    if not parts:
        return None
    return parts[0]


@dataclass
class RequestInfo:
    """
    Request side of one logging cycle.

    - scope:
        The live ASGI scope. Downstream routers may rewrite `path` in place.
    - original_url:
        Path and query string as they were when the request arrived.
    - remote_address:
        Socket peer address frozen at arrival.
    - ip:
        Client IP from a trusted X-Forwarded-For header, frozen at
        arrival. `request.state.ip` is read live through `state`.
    - start_time:
        Monotonic arrival time, for elapsed time.
    - body:
        Request body bytes seen through the wrapped `receive`, unless the
        capture limit was exceeded.
    """

    scope: Scope
    original_url: str
    remote_address: Optional[str] = None
    ip: Optional[str] = None
    start_time: float = field(default_factory=time.perf_counter)
    capture_limit: int = 65536
    body: bytearray = field(default_factory=bytearray)
    body_dropped: bool = False

    @classmethod
    def capture(
        cls,
        scope: Scope,
        *,
        trust_proxy: bool = False,
        capture_limit: int = 65536,
    ) -> "RequestInfo":
        info = cls(
            scope=scope,
            original_url=_url_from_scope(scope),
            remote_address=_client_host(scope),
            capture_limit=capture_limit,
        )
        if trust_proxy:
            info.ip = _forwarded_ip(info.headers)
        return info

    # ------- live views -------

    @property
    def method(self) -> str:
        return self.scope.get("method", "")

    @property
    def url(self) -> str:
        return _url_from_scope(self.scope)

    @property
    def path(self) -> str:
        return self.scope.get("path", "")

    @property
    def http_version(self) -> str:
        return self.scope.get("http_version", "1.1")

    @property
    def headers(self) -> Headers:
        return Headers(scope=self.scope)

    @property
    def client_host(self) -> Optional[str]:
        return _client_host(self.scope)

    @property
    def state(self) -> Dict[str, Any]:
        state = self.scope.get("state")
        return state if isinstance(state, dict) else {}

    def elapsed_ms(self) -> int:
        return int((time.perf_counter() - self.start_time) * 1000.0)

    def add_body(self, chunk: bytes) -> None:
        if self.body_dropped or not chunk:
            return
        if len(self.body) + len(chunk) > self.capture_limit:
            # Partial bodies cannot be parsed; keep nothing.
            self.body_dropped = True
            self.body.clear()
            return
        self.body.extend(chunk)


@dataclass
class ResponseInfo:
    """
    Response side of one logging cycle, filled from the messages the app
    sends. Before `http.response.start` nothing but defaults is known.
    """

    status_code: Optional[int] = None
    raw_headers: List[Tuple[bytes, bytes]] = field(default_factory=list)
    headers_sent: bool = False
    body: Optional[bytes] = None
    body_messages: int = 0

    @property
    def headers(self) -> Headers:
        return Headers(raw=self.raw_headers)

    def on_start(self, message: Dict[str, Any]) -> None:
        self.status_code = int(message.get("status", 200))
        self.raw_headers = list(message.get("headers") or [])
        self.headers_sent = True

    def on_body(self, message: Dict[str, Any]) -> None:
        self.body_messages += 1
        if not message.get("more_body", False) and self.body_messages == 1:
            self.body = bytes(message.get("body", b"") or b"")
