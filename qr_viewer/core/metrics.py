"""
Prometheus metrics

Upload outcomes, per-strategy and whole-run detection latency, decoded code
types and HTTP traffic. Scraped from GET /api/v1/metrics.
"""

import time
from contextlib import contextmanager
from typing import Iterable, Tuple

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
)

_LATENCY_BUCKETS = (0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)

# =============================================================================
# Ingestion
# =============================================================================

uploads_total = Counter(
    "qr_uploads_total",
    "Upload attempts by outcome",
    labelnames=["outcome"]  # accepted, rejected, scheduling_failed
)

upload_size_bytes = Histogram(
    "qr_upload_size_bytes",
    "Size of accepted uploads",
    buckets=(10_000, 100_000, 500_000, 1_000_000, 5_000_000, 10_000_000, 20_000_000)
)

# =============================================================================
# Detection
# =============================================================================

detection_strategy_latency_seconds = Histogram(
    "qr_detection_strategy_latency_seconds",
    "Transform plus decode time of one strategy",
    labelnames=["strategy", "status"],
    buckets=_LATENCY_BUCKETS
)

detection_duration_seconds = Histogram(
    "qr_detection_duration_seconds",
    "Detection run from raster load to terminal write",
    labelnames=["status"],
    buckets=_LATENCY_BUCKETS + (30.0, 60.0)
)

codes_detected_total = Counter(
    "qr_codes_detected_total",
    "Unique codes persisted, by content type",
    labelnames=["code_type"]
)

active_detections_gauge = Gauge(
    "qr_active_detections",
    "Detection runs in flight in this process"
)

# =============================================================================
# HTTP
# =============================================================================

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labelnames=["method", "endpoint", "status"]
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration",
    labelnames=["method", "endpoint"],
    buckets=_LATENCY_BUCKETS
)

app_info = Info("qr_viewer_app", "Build and runtime information")


def set_app_info(version: str, environment: str, detection_backend: str):
    app_info.info({
        "version": version,
        "environment": environment,
        "detection_backend": detection_backend,
    })


@contextmanager
def track_strategy_latency(strategy: str):
    """Time the enclosed block under the strategy's label; errors are labelled `error`."""
    start = time.time()
    status = "success"
    try:
        yield
    except Exception:
        status = "error"
        raise
    finally:
        detection_strategy_latency_seconds.labels(strategy=strategy, status=status).observe(
            time.time() - start
        )


def record_upload(outcome: str, size_bytes: int = 0):
    uploads_total.labels(outcome=outcome).inc()
    if outcome == "accepted":
        upload_size_bytes.observe(size_bytes)


def record_detection_outcome(status: str, duration_seconds: float, code_types: Iterable[str] = ()):
    detection_duration_seconds.labels(status=status).observe(duration_seconds)
    for code_type in code_types:
        codes_detected_total.labels(code_type=code_type).inc()


def record_http_request(method: str, endpoint: str, status: int, duration_seconds: float):
    http_request_duration_seconds.labels(method=method, endpoint=endpoint).observe(duration_seconds)
    http_requests_total.labels(method=method, endpoint=endpoint, status=status).inc()


def render_metrics() -> Tuple[bytes, str]:
    """Exposition payload and its content type."""
    return generate_latest(REGISTRY), CONTENT_TYPE_LATEST
