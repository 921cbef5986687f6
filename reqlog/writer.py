# FILE: reqlog/writer.py
"""
Output writers.

`StreamWriter` hands every line to the destination as soon as it is
rendered. `BufferedWriter` collects lines and writes them as one chunk on
a recurring timer driven by the event loop, so nothing here ever blocks
or needs a lock: appends and flushes run on the same loop.

Lines still buffered when the process dies are lost. `close()` flushes
what is pending and is called by the middleware on lifespan shutdown.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import Any, List, Optional, Protocol, Union

from .metrics import LoggerMetrics


_logger = logging.getLogger(__name__)

DEFAULT_BUFFER_MS = 1000


class Sink(Protocol):
    def write(self, data: str) -> Any:  # pragma: no cover - protocol
        ...


def _release(stream: Sink, close_stream: bool) -> None:
    flush = getattr(stream, "flush", None)
    if callable(flush):
        flush()
    if close_stream:
        close = getattr(stream, "close", None)
        if callable(close):
            close()


class StreamWriter:
    def __init__(self, stream: Optional[Sink] = None, *, close_stream: bool = False) -> None:
        self.stream = stream if stream is not None else sys.stdout
        self.close_stream = close_stream

    def write(self, line: str) -> None:
        # Sink failures belong to whoever owns the sink.
        self.stream.write(line)

    def close(self) -> None:
        _release(self.stream, self.close_stream)


class BufferedWriter:
    """
    Batching decorator around a sink.

    The flush timer is armed lazily by the first write (so the writer can
    be built before any event loop exists) and then re-arms itself every
    `interval_ms` until `close()`.
    """

    def __init__(
        self,
        stream: Optional[Sink] = None,
        interval_ms: float = DEFAULT_BUFFER_MS,
        *,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        metrics: Optional[LoggerMetrics] = None,
        close_stream: bool = False,
    ) -> None:
        if interval_ms <= 0:
            raise ValueError("interval_ms must be positive")
        self.stream = stream if stream is not None else sys.stdout
        self.interval_ms = float(interval_ms)
        self._loop = loop
        self._metrics = metrics
        self.close_stream = close_stream
        self._buf: List[str] = []
        self._handle: Optional[asyncio.TimerHandle] = None
        self._closed = False

    @property
    def pending(self) -> int:
        return len(self._buf)

    def write(self, line: str) -> None:
        self._buf.append(line)
        if self._metrics is not None:
            self._metrics.buffered_lines.inc()
        if self._closed:
            # Late lines after shutdown go straight out.
            self.flush()
            return
        self._arm()

    def _arm(self) -> None:
        loop = self._loop
        if self._handle is not None and loop is not None and not loop.is_closed():
            return
        if loop is None or loop.is_closed():
            # First write, or the loop the timer lived on has gone away.
            loop = asyncio.get_running_loop()
            self._loop = loop
        self._handle = loop.call_later(self.interval_ms / 1000.0, self._tick)

    def _tick(self) -> None:
        self._handle = None
        try:
            self.flush()
        finally:
            if not self._closed:
                self._arm()

    def flush(self) -> None:
        if not self._buf:
            return
        data = "".join(self._buf)
        count = len(self._buf)
        self._buf.clear()
        if self._metrics is not None:
            self._metrics.buffered_lines.dec(count)
            self._metrics.buffer_flushes.inc()
        self.stream.write(data)

    def close(self) -> None:
        self._closed = True
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self.flush()
        _release(self.stream, self.close_stream)


Writer = Union[StreamWriter, BufferedWriter]


def build_writer(
    stream: Optional[Sink] = None,
    buffer: Union[bool, int, float, None] = None,
    *,
    metrics: Optional[LoggerMetrics] = None,
    close_stream: bool = False,
) -> Writer:
    """
    Pick the writer for a `buffer` option: falsy disables batching, True
    uses the default interval, a number is the interval in milliseconds.
    """
    if not buffer:
        return StreamWriter(stream, close_stream=close_stream)
    if buffer is True:
        interval = DEFAULT_BUFFER_MS
    else:
        interval = float(buffer)
    _logger.debug("request log batching every %sms", interval)
    return BufferedWriter(stream, interval, metrics=metrics, close_stream=close_stream)
