# FILE: reqlog/logging.py
"""
Diagnostic logging for the request logger.

This is not where request lines go (those are written by the Output
Writer); it is where the logger reports on itself: render failures, skip
predicate errors, configuration problems. Records are emitted as compact
single-line JSON so they can share a stream with JSON request lines.
"""

from __future__ import annotations

import datetime as _dt
import json
import logging
import os
import sys
import traceback
from typing import Any, Dict, Optional, Set

# ---------- Module-level config (env-driven, safe defaults) ----------
_LOG_SERVICE = os.environ.get("REQLOG_SERVICE", "reqlog")

# Max chars per field (truncate to keep JSON small)
try:
    _MAX_FIELD = int(os.environ.get("REQLOG_LOG_MAX_FIELD", "4096"))
    _MAX_FIELD = max(256, _MAX_FIELD)
except ValueError:
    _MAX_FIELD = 4096

# Standard LogRecord attributes that are not treated as dynamic meta
_LOG_RECORD_STD_ATTRS: Set[str] = {
    "name",
    "msg",
    "args",
    "levelname",
    "levelno",
    "pathname",
    "filename",
    "module",
    "exc_info",
    "exc_text",
    "stack_info",
    "lineno",
    "funcName",
    "created",
    "msecs",
    "relativeCreated",
    "thread",
    "threadName",
    "processName",
    "process",
    "taskName",
    "message",
}

# Request fields promoted to the top level when passed via `extra`.
_REQUEST_FIELDS = ("method", "path", "status", "token", "format")


# ---------- Helpers ----------
def _ts_iso() -> str:
    # RFC3339 with milliseconds, UTC Z
    now = _dt.datetime.now(_dt.timezone.utc)
    ms = int(now.microsecond / 1000)
    base = now.replace(microsecond=0).isoformat().replace("+00:00", "Z")
    return f"{base[:-1]}.{ms:03d}Z"


def _compact_json(obj: Dict[str, Any]) -> str:
    return json.dumps(obj, ensure_ascii=False, separators=(",", ":"), default=str)


def _truncate(v: Any) -> Any:
    if isinstance(v, str) and len(v) > _MAX_FIELD:
        return v[:_MAX_FIELD] + "...<truncated>"
    return v


# ---------- JSON formatter ----------
class JSONFormatter(logging.Formatter):
    """
    JSON formatter with a small stable envelope:

      - service, ts, lvl, logger, msg
      - method, path, status, token, format (when given via `extra`)
      - exc_type, exc_message, stack (when exc_info is set)
      - meta: any other `extra` fields
    """

    def __init__(self, *, include_stack: bool = True) -> None:
        super().__init__()
        self.include_stack = include_stack

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        evt: Dict[str, Any] = {
            "service": _LOG_SERVICE,
            "ts": _ts_iso(),
            "lvl": record.levelname,
            "logger": record.name,
            "msg": _truncate(str(record.getMessage())),
        }

        for name in _REQUEST_FIELDS:
            v = getattr(record, name, None)
            if v is not None:
                evt[name] = _truncate(v)

        if record.exc_info and self.include_stack:
            exc_type, exc_val, exc_tb = record.exc_info
            evt["exc_type"] = getattr(exc_type, "__name__", str(exc_type))
            evt["exc_message"] = str(exc_val)[:_MAX_FIELD]
            evt["stack"] = "".join(
                traceback.format_exception(exc_type, exc_val, exc_tb)
            )[:_MAX_FIELD]

        meta: Dict[str, Any] = {}
        for k, v in record.__dict__.items():
            if k in _LOG_RECORD_STD_ATTRS or k in evt or k.startswith("_"):
                continue
            meta[k] = _truncate(v)
        if meta:
            evt["meta"] = meta

        return _compact_json(evt)


# ---------- Root integration ----------
def _clear_handlers(logger: logging.Logger) -> None:
    for h in list(logger.handlers):
        logger.removeHandler(h)


def configure_json_logging(
    level: str = "INFO",
    *,
    stream: Any = None,
    json_logs: bool = True,
    include_stack: bool = True,
) -> logging.Logger:
    """
    Route the `reqlog` logger hierarchy to one handler on `stream`
    (stderr by default), as JSON or plain text.
    """
    lvl = getattr(logging, (level or "INFO").upper(), logging.INFO)
    stream = stream or sys.stderr

    h = logging.StreamHandler(stream=stream)
    if json_logs:
        h.setFormatter(JSONFormatter(include_stack=include_stack))
    else:
        h.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    h.setLevel(lvl)

    logger = logging.getLogger("reqlog")
    logger.setLevel(lvl)
    _clear_handlers(logger)
    logger.addHandler(h)
    logger.propagate = False
    return logger


# ---------- Convenience: module-level logger ----------
_configured: Optional[logging.Logger] = None


def get_logger(name: str = "reqlog") -> logging.Logger:
    """
    Return a logger under the `reqlog` hierarchy.

    First call configures JSON output from REQLOG_LOG_LEVEL if nothing
    else has.
    """
    global _configured
    if _configured is None:
        lvl = os.environ.get("REQLOG_LOG_LEVEL", "INFO")
        _configured = configure_json_logging(level=lvl)
    return logging.getLogger(name)


__all__ = [
    "JSONFormatter",
    "configure_json_logging",
    "get_logger",
]
