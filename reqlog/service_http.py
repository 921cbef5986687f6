# FILE: reqlog/service_http.py
"""
Reference host app.

A small FastAPI service with the request logger installed from Settings.
Useful as a smoke target (`uvicorn reqlog.service_http:create_app --factory`)
and as the end-to-end fixture for the test suite.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, generate_latest

from .config import Settings, config_from_settings, load_settings
from .logging import configure_json_logging, get_logger
from .metrics import build_metrics
from .middleware import RequestLoggerMiddleware
from .registry import Registry


API_VERSION = "0.1.0"


def create_app(
    settings: Optional[Settings] = None,
    *,
    stream: Any = None,
    registry: Optional[Registry] = None,
    metrics_registry: Optional[CollectorRegistry] = None,
) -> FastAPI:
    """
    Build the reference app.

    - settings: defaults to load_settings() (YAML + REQLOG_* env).
    - stream: overrides the request line destination from settings.
    - registry: token/format registry; defaults to the process-wide one.
    - metrics_registry: Prometheus registry for the logger metrics; a
      private one is created when omitted so several apps can coexist.
    """
    settings = settings or load_settings()
    configure_json_logging(settings.log_level, json_logs=settings.json_logs)
    logger = get_logger("reqlog.http")

    prom = metrics_registry or CollectorRegistry()
    logger_metrics = build_metrics(prom)

    app = FastAPI(title="reqlog-demo", version=API_VERSION, docs_url=None, redoc_url=None)
    app.add_middleware(
        RequestLoggerMiddleware,
        config=config_from_settings(settings, stream=stream),
        registry=registry,
        metrics=logger_metrics,
    )
    app.state.settings = settings
    app.state.prom_registry = prom

    @app.get("/healthz")
    def healthz() -> Dict[str, Any]:
        logger.debug("healthz", extra={"format": settings.format})
        return {"ok": True, "version": API_VERSION, "format": settings.format}

    @app.post("/echo")
    async def echo(request: Request) -> Dict[str, Any]:
        body = await request.json()
        return {"echo": body}

    @app.get("/status/{code}")
    def status_code(code: int) -> Response:
        return Response(content=f"status {code}", status_code=code, media_type="text/plain")

    @app.get("/metrics")
    def metrics() -> Response:
        return Response(generate_latest(prom), media_type=CONTENT_TYPE_LATEST)

    logger.info("request logger installed", extra={"format": settings.format})
    return app
