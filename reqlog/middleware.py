# FILE: reqlog/middleware.py
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, fields
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

from starlette.types import ASGIApp, Message, Receive, Scope, Send

from .compiler import compile_format
from .context import RequestInfo, ResponseInfo
from .metrics import LoggerMetrics
from .registry import FormatSpec, Registry, default_registry
from .writer import Sink, Writer, build_writer


_logger = logging.getLogger(__name__)

SkipFn = Callable[[RequestInfo, ResponseInfo], bool]


class ConfigError(ValueError):
    """Invalid request logger options."""


# --------------------------------
# Config
# --------------------------------


@dataclass
class RequestLoggerConfig:
    """
    Options for RequestLoggerMiddleware.

    - format:
        Registered format name, inline template, or render callable
        `fn(registry, req, res) -> str | None`.
    - immediate:
        Log when the request arrives instead of when the response is done.
        Response tokens then render as "-".
    - skip:
        Predicate `fn(req, res) -> bool`; True drops the line.
    - stream:
        Destination with a `write(str)` method; defaults to sys.stdout.
    - buffer:
        False/0 writes every line directly; True batches with the default
        interval; a number is the batching interval in milliseconds.
    - trust_proxy:
        Use the left-most X-Forwarded-For entry as the client address.
    - capture_limit:
        Max request body bytes kept for the payload token.
    - close_stream:
        Close `stream` when the writer closes. Set for destinations the
        logger opened itself.
    """

    format: Optional[FormatSpec] = "default"
    immediate: bool = False
    skip: Optional[SkipFn] = None
    stream: Optional[Sink] = None
    buffer: Union[bool, int, float] = False
    trust_proxy: bool = False
    capture_limit: int = 65536
    close_stream: bool = False


_CONFIG_FIELDS = {f.name for f in fields(RequestLoggerConfig)}


def coerce_config(options: Any = None) -> RequestLoggerConfig:
    """
    Accept the shapes callers tend to pass: nothing, a format string or
    render callable, a mapping of option names, or a config instance.
    """
    if options is None:
        cfg = RequestLoggerConfig()
    elif isinstance(options, RequestLoggerConfig):
        cfg = options
    elif isinstance(options, Mapping):
        unknown = set(options) - _CONFIG_FIELDS
        if unknown:
            raise ConfigError(f"unknown request logger options: {sorted(unknown)}")
        cfg = RequestLoggerConfig(**dict(options))
    elif isinstance(options, str) or callable(options):
        cfg = RequestLoggerConfig(format=options)
    else:
        raise ConfigError(f"unsupported request logger options: {type(options).__name__}")

    if cfg.buffer is not None and not isinstance(cfg.buffer, (bool, int, float)):
        raise ConfigError(f"buffer must be a bool or milliseconds, not {type(cfg.buffer).__name__}")
    if not isinstance(cfg.buffer, bool) and cfg.buffer and cfg.buffer < 0:
        raise ConfigError("buffer interval must not be negative")
    if cfg.capture_limit < 0:
        raise ConfigError("capture_limit must not be negative")
    if cfg.skip is not None and not callable(cfg.skip):
        raise ConfigError("skip must be callable")
    return cfg


# --------------------------------
# Completion signals
# --------------------------------


class SignalEmitter:
    """Minimal named-event emitter for one request cycle."""

    def __init__(self) -> None:
        self._listeners: Dict[str, List[Callable[[], None]]] = {}

    def on(self, event: str, fn: Callable[[], None]) -> None:
        self._listeners.setdefault(event, []).append(fn)

    def remove_listener(self, event: str, fn: Callable[[], None]) -> None:
        listeners = self._listeners.get(event)
        if listeners and fn in listeners:
            listeners.remove(fn)

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, ()))

    def emit(self, event: str) -> None:
        for fn in list(self._listeners.get(event, ())):
            fn()


class OneShot:
    """
    Subscribe one callback to several events; the first event to fire runs
    it and removes the subscription from all of them.
    """

    def __init__(self, emitter: SignalEmitter, events: Tuple[str, ...], callback: Callable[[], None]) -> None:
        self._emitter = emitter
        self._events = tuple(events)
        self._callback = callback
        self.fired = False
        for event in self._events:
            emitter.on(event, self._fire)

    def _fire(self) -> None:
        if self.fired:
            return
        self.fired = True
        self.cancel()
        self._callback()

    def cancel(self) -> None:
        for event in self._events:
            self._emitter.remove_listener(event, self._fire)


# --------------------------------
# Request logger middleware
# --------------------------------


class RequestLoggerMiddleware:
    """
    ASGI middleware that writes one rendered line per request/response
    cycle.

    On entry the request context is captured (arrival time, client
    address) and `send`/`receive` are wrapped so the response status,
    headers and single-message body are recorded as they go out. The line
    is rendered once, on whichever comes first of the final body message
    ("finish") or a disconnect / app exit ("close"), or right away with
    `immediate`.

    Usage:
        app.add_middleware(RequestLoggerMiddleware, config="tiny")
        app.add_middleware(RequestLoggerMiddleware, config={"format": "dev", "buffer": 500})
    """

    def __init__(
        self,
        app: ASGIApp,
        *,
        config: Any = None,
        registry: Optional[Registry] = None,
        writer: Optional[Writer] = None,
        metrics: Optional[LoggerMetrics] = None,
    ) -> None:
        self.app = app
        self._cfg = coerce_config(config)
        self.registry = registry if registry is not None else default_registry
        self._metrics = metrics
        # Compile now so a bad format fails at startup, not on traffic.
        self.render = compile_format(self._cfg.format, self.registry)
        self.writer = writer if writer is not None else build_writer(
            self._cfg.stream, self._cfg.buffer, metrics=metrics, close_stream=self._cfg.close_stream
        )

    @property
    def config(self) -> RequestLoggerConfig:
        return self._cfg

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "lifespan":
            await self._lifespan(scope, receive, send)
            return
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        req = RequestInfo.capture(
            scope,
            trust_proxy=self._cfg.trust_proxy,
            capture_limit=self._cfg.capture_limit,
        )
        res = ResponseInfo()
        signals = SignalEmitter()

        def log_request() -> None:
            self._log_request(req, res)

        if self._cfg.immediate:
            log_request()
        else:
            OneShot(signals, ("finish", "close"), log_request)

        async def _send_wrapper(message: Message) -> None:
            mtype = message["type"]
            if mtype == "http.response.start":
                res.on_start(message)
            elif mtype == "http.response.body":
                res.on_body(message)
            await send(message)
            if mtype == "http.response.body" and not message.get("more_body", False):
                signals.emit("finish")

        async def _recv_wrapper() -> Message:
            message = await receive()
            if message["type"] == "http.request":
                req.add_body(message.get("body", b"") or b"")
            elif message["type"] == "http.disconnect":
                signals.emit("close")
            return message

        try:
            await self.app(scope, _recv_wrapper, _send_wrapper)
        finally:
            signals.emit("close")

    async def _lifespan(self, scope: Scope, receive: Receive, send: Send) -> None:
        async def _send_wrapper(message: Message) -> None:
            if message["type"] == "lifespan.shutdown.complete":
                self.writer.close()
            await send(message)

        await self.app(scope, receive, _send_wrapper)

    def _log_request(self, req: RequestInfo, res: ResponseInfo) -> None:
        """
        Skip check, render and write for one cycle. Failures in the skip
        predicate or the render function are logged and swallowed so they
        can never disturb the response; writer failures propagate.
        """
        m = self._metrics
        skip = self._cfg.skip
        if skip is not None:
            try:
                skipped = bool(skip(req, res))
            except Exception:
                _logger.warning(
                    "request log skip predicate failed",
                    extra={"method": req.method, "path": req.path},
                    exc_info=True,
                )
                if m is not None:
                    m.render_errors.inc()
                skipped = False
            if skipped:
                if m is not None:
                    m.skipped.inc()
                return

        t0 = time.perf_counter()
        try:
            line = self.render(self.registry, req, res)
        except Exception:
            _logger.warning(
                "request log render failed",
                extra={"method": req.method, "path": req.path},
                exc_info=True,
            )
            if m is not None:
                m.render_errors.inc()
            return
        if m is not None:
            m.render_latency.observe(time.perf_counter() - t0)

        if line is None:
            if m is not None:
                m.suppressed.inc()
            return

        self.writer.write(f"{line}\n")
        if m is not None:
            m.lines.inc()
