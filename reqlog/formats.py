# FILE: reqlog/formats.py
from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:  # pragma: no cover
    from .context import RequestInfo, ResponseInfo
    from .registry import Registry


DEFAULT_FORMAT = (
    '{"address": ":remote-addr", "date": ":date", "method": ":method", "url": ":url", '
    '"httpVersion": "HTTP/:http-version", "status": ":status", '
    '"contentLength": ":res[content-length]", "referrer": ":referrer", "userAgent": ":user-agent"}'
)

SHORT_FORMAT = (
    '{"address": ":remote-addr", "method": ":method", "url": ":url", '
    '"httpVersion": "HTTP/:http-version", "status": ":status", '
    '"contentLength": ":res[content-length]", "time": ":response-time ms", '
    '"payload": ":payload", "response": ":res-body"}'
)

TINY_FORMAT = (
    '{"method": ":method", "url": ":url", "status": ":status", '
    '"contentLength": ":res[content-length]", "time": ":response-time ms"}'
)


# ------------------------------
# dev (colored)
# ------------------------------

_GREY = "\x1b[90m"
_RESET = "\x1b[0m"

_KB = 1 << 10
_MB = 1 << 20
_GB = 1 << 30


def format_bytes(n: int) -> str:
    """Human size with binary units: 512 -> "512b", 1536 -> "1.5kb"."""
    for unit, size in (("gb", _GB), ("mb", _MB), ("kb", _KB)):
        if n >= size:
            return f"{round(n / size, 2):g}{unit}"
    return f"{n}b"


def status_color(status: Optional[int]) -> int:
    code = status or 0
    if code >= 500:
        return 31
    if code >= 400:
        return 33
    if code >= 300:
        return 36
    return 32


def dev_format(registry: "Registry", req: "RequestInfo", res: "ResponseInfo") -> str:
    status = res.status_code
    length = ""
    raw_len = res.headers.get("content-length")
    if raw_len is not None:
        try:
            length = " - " + format_bytes(int(raw_len))
        except ValueError:
            length = ""

    return (
        f"{_GREY}{req.method} {req.original_url or req.url} "
        f"\x1b[{status_color(status)}m{status if status is not None else '-'} "
        f"{_GREY}{req.elapsed_ms()}ms{length}{_RESET}"
    )


def register_builtin_formats(registry: "Registry") -> "Registry":
    return (
        registry.format("default", DEFAULT_FORMAT)
        .format("short", SHORT_FORMAT)
        .format("tiny", TINY_FORMAT)
        .format("dev", dev_format)
    )
