"""
Lightweight metrics collection for the verification services.
Metric definitions shared by the fetcher and the pipeline.
"""
from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram, start_http_server

from shared.config import get_settings
from shared.utils.logging import get_logger

logger = get_logger(__name__)

# ── Counters ────────────────────────────────────────────────────────────
SOURCE_REQUESTS = Counter(
    "mv_source_requests_total",
    "Total catalog fetch attempts",
    ["source", "status"],
)
SOURCE_RETRIES = Counter(
    "mv_source_retries_total",
    "Catalog fetch attempts that were retried",
    ["source", "error_kind"],
)
RATE_LIMIT_WAITS = Counter(
    "mv_rate_limit_waits_total",
    "Times a fetch task waited on a source token bucket",
    ["source"],
)
CIRCUIT_REJECTIONS = Counter(
    "mv_circuit_rejections_total",
    "Fetches skipped because a source circuit was open",
    ["source"],
)
RECORDS_PROCESSED = Counter(
    "mv_records_processed_total",
    "Records processed by the verification pipeline",
    ["outcome"],
)
DISCREPANCIES = Counter(
    "mv_discrepancies_total",
    "Discrepancies detected by the consensus builder",
    ["classification", "severity"],
)

# ── Histograms ──────────────────────────────────────────────────────────
SOURCE_LATENCY = Histogram(
    "mv_source_latency_seconds",
    "Catalog request latency in seconds",
    ["source"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)
RECORD_CONFIDENCE = Histogram(
    "mv_record_confidence",
    "Overall consensus confidence per record",
    buckets=(0.1, 0.25, 0.5, 0.6, 0.7, 0.8, 0.9, 0.95, 1.0),
)

# ── Gauges ──────────────────────────────────────────────────────────────
BATCH_REMAINING = Gauge(
    "mv_batch_records_remaining",
    "Records not yet processed in the running batch",
    ["batch_id"],
)


def start_metrics_server(port: int | None = None) -> None:
    """Start the Prometheus metrics HTTP server."""
    settings = get_settings()
    if not settings.metrics_enabled:
        return
    metrics_port = port or settings.metrics_port
    try:
        start_http_server(metrics_port)
        logger.info("metrics_server_started", port=metrics_port)
    except OSError as exc:
        logger.warning("metrics_server_failed", error=str(exc), port=metrics_port)
