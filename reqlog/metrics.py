# FILE: reqlog/metrics.py
"""
Prometheus instruments for the request logger itself.

Nothing here is per-route or per-client: label-free counters describing
how many lines were produced, skipped or lost to render failures, and how
the batching buffer behaves. Pass a dedicated CollectorRegistry when more
than one logger instance lives in a process (tests, multiple apps).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Gauge, Histogram


@dataclass
class LoggerMetrics:
    lines: Counter
    skipped: Counter
    suppressed: Counter
    render_errors: Counter
    render_latency: Histogram
    buffer_flushes: Counter
    buffered_lines: Gauge


def build_metrics(registry: Optional[CollectorRegistry] = None) -> LoggerMetrics:
    reg = registry or REGISTRY
    return LoggerMetrics(
        lines=Counter(
            "reqlog_lines_total",
            "Request log lines handed to the writer",
            registry=reg,
        ),
        skipped=Counter(
            "reqlog_skipped_total",
            "Cycles skipped by the skip predicate",
            registry=reg,
        ),
        suppressed=Counter(
            "reqlog_suppressed_total",
            "Cycles whose render function returned no line",
            registry=reg,
        ),
        render_errors=Counter(
            "reqlog_render_errors_total",
            "Render or skip-predicate failures",
            registry=reg,
        ),
        render_latency=Histogram(
            "reqlog_render_seconds",
            "Time spent rendering one line (seconds)",
            buckets=(0.00001, 0.00005, 0.0001, 0.0005, 0.001, 0.005, 0.01),
            registry=reg,
        ),
        buffer_flushes=Counter(
            "reqlog_buffer_flushes_total",
            "Batched writes to the destination stream",
            registry=reg,
        ),
        buffered_lines=Gauge(
            "reqlog_buffered_lines",
            "Lines waiting in the batching buffer",
            registry=reg,
        ),
    )
