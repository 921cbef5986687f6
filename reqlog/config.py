# reqlog/config.py
from __future__ import annotations

import logging
import os
import re
import sys
from typing import Any, Dict, Optional, Tuple

import yaml
from pydantic import BaseModel, ConfigDict

from .context import RequestInfo, ResponseInfo
from .middleware import RequestLoggerConfig, SkipFn


_log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Env helpers
# ---------------------------------------------------------------------------


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    v = raw.strip().lower()
    return v in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_str(name: str, default: str) -> str:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return raw


def _load_yaml_mapping(path: str) -> Dict[str, Any]:
    """
    Load a simple top-level mapping from YAML.

    Constraints:
      - Ignore if path missing.
      - Only accept dict at top-level.
      - Lists are kept (skip_paths); other non-scalars are coerced via str().
    """
    if not path or not os.path.exists(path):
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            doc = yaml.safe_load(f)
    except (OSError, yaml.YAMLError):
        _log.warning("failed to load YAML config from %s", path, exc_info=True)
        return {}
    if not isinstance(doc, dict):
        return {}
    out: Dict[str, Any] = {}
    for k, v in doc.items():
        if isinstance(v, (str, int, float, bool)) or v is None:
            out[str(k)] = v
        elif isinstance(v, (list, tuple)):
            out[str(k)] = [str(x) for x in v]
        else:
            out[str(k)] = str(v)
    return out


# ---------------------------------------------------------------------------
# Settings model
# ---------------------------------------------------------------------------


class Settings(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    # Registered format name or inline template.
    format: str = "default"
    immediate: bool = False
    # Batching interval in milliseconds; 0 writes every line directly.
    buffer_ms: int = 0
    # "stdout", "stderr" or a file path opened for append.
    stream: str = "stdout"
    trust_proxy: bool = False
    capture_limit: int = 65536

    # Skip rules (combined with OR).
    skip_paths: Tuple[str, ...] = ()
    skip_status_below: int = 0

    # Diagnostic logging for the logger itself.
    log_level: str = "INFO"
    json_logs: bool = True


# ---------------------------------------------------------------------------
# Loading / merging
# ---------------------------------------------------------------------------


def load_settings() -> Settings:
    """
    Load Settings from defaults, optional YAML, and environment variables.

    Priority:
      1. Settings defaults (in-code).
      2. YAML file pointed to by REQLOG_CONFIG_PATH.
      3. Environment variables (REQLOG_*); out-of-range values are ignored.
    """
    merged: Dict[str, Any] = Settings().model_dump()

    # 1) YAML overlay
    yaml_path = os.environ.get("REQLOG_CONFIG_PATH", "").strip()
    yaml_doc = _load_yaml_mapping(yaml_path)
    if yaml_doc:
        tmp = dict(merged)
        tmp.update(yaml_doc)
        merged = Settings(**tmp).model_dump()  # will enforce extra="forbid"

    # 2) Environment overrides
    merged["format"] = _env_str("REQLOG_FORMAT", merged["format"])
    merged["immediate"] = _env_bool("REQLOG_IMMEDIATE", merged["immediate"])
    merged["trust_proxy"] = _env_bool("REQLOG_TRUST_PROXY", merged["trust_proxy"])
    merged["stream"] = _env_str("REQLOG_STREAM", merged["stream"])
    merged["json_logs"] = _env_bool("REQLOG_JSON_LOGS", merged["json_logs"])
    merged["log_level"] = _env_str("REQLOG_LOG_LEVEL", merged["log_level"]).upper()

    buffer_env = _env_int("REQLOG_BUFFER_MS", merged["buffer_ms"])
    if 0 <= buffer_env <= 600_000:
        merged["buffer_ms"] = buffer_env

    limit_env = _env_int("REQLOG_CAPTURE_LIMIT", merged["capture_limit"])
    if limit_env >= 0:
        merged["capture_limit"] = limit_env

    below_env = _env_int("REQLOG_SKIP_STATUS_BELOW", merged["skip_status_below"])
    if 0 <= below_env <= 999:
        merged["skip_status_below"] = below_env

    paths_env = os.environ.get("REQLOG_SKIP_PATHS", "")
    if paths_env.strip():
        merged["skip_paths"] = tuple(p.strip() for p in paths_env.split(",") if p.strip())

    return Settings(**merged)


# ---------------------------------------------------------------------------
# Settings -> middleware config
# ---------------------------------------------------------------------------


def _open_stream(target: str) -> Any:
    if target == "stdout":
        return sys.stdout
    if target == "stderr":
        return sys.stderr
    # Line-buffered so direct mode does not sit on lines.
    return open(target, "a", encoding="utf-8", buffering=1)


def build_skip(settings: Settings) -> Optional[SkipFn]:
    patterns = [re.compile(p) for p in settings.skip_paths]
    below = settings.skip_status_below
    if not patterns and below <= 0:
        return None

    def skip(req: RequestInfo, res: ResponseInfo) -> bool:
        if patterns and any(p.search(req.path) for p in patterns):
            return True
        if below > 0 and res.status_code is not None and res.status_code < below:
            return True
        return False

    return skip


def config_from_settings(settings: Settings, *, stream: Any = None) -> RequestLoggerConfig:
    # Files opened here are closed with the writer; caller streams are not.
    owned = False
    if stream is None:
        stream = _open_stream(settings.stream)
        owned = settings.stream not in ("stdout", "stderr")
    return RequestLoggerConfig(
        format=settings.format,
        immediate=settings.immediate,
        skip=build_skip(settings),
        stream=stream,
        close_stream=owned,
        buffer=settings.buffer_ms,
        trust_proxy=settings.trust_proxy,
        capture_limit=settings.capture_limit,
    )
