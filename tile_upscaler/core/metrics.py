"""
Prometheus Metrics for Observability

Tracks pipeline stage latency, tile throughput and enhancement API calls.
Exposes /metrics endpoint for Prometheus scraping.
"""

import time
from contextlib import contextmanager

from prometheus_client import (
    Counter,
    Histogram,
    Gauge,
    Info,
    generate_latest,
    CONTENT_TYPE_LATEST,
    REGISTRY
)

# =============================================================================
# Metrics Definitions
# =============================================================================

# Pipeline Latency - Per Stage
pipeline_latency_seconds = Histogram(
    "upscaler_stage_latency_seconds",
    "Time spent in each pipeline stage",
    labelnames=["stage", "status"],
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0]
)

# Total Pipeline Duration
pipeline_total_duration = Histogram(
    "upscaler_total_duration_seconds",
    "Total time for a complete upscale request",
    labelnames=["status"],
    buckets=[0.5, 1.0, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0, 600.0]
)

# Per-tile enhancement latency
tile_enhancement_seconds = Histogram(
    "upscaler_tile_enhancement_seconds",
    "Time spent enhancing a single tile",
    labelnames=["capability"],
    buckets=[0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 10.0, 30.0, 60.0]
)

tiles_processed_total = Counter(
    "upscaler_tiles_processed_total",
    "Total number of tiles sent through the enhancement capability",
    labelnames=["capability", "status"]
)

# Remote enhancement API calls
enhancement_api_calls_total = Counter(
    "upscaler_enhancement_api_calls_total",
    "Total number of enhancement API calls",
    labelnames=["status", "http_status"]
)

analysis_api_calls_total = Counter(
    "upscaler_analysis_api_calls_total",
    "Total number of image analysis API calls",
    labelnames=["status"]
)

# Requests
requests_total = Counter(
    "upscaler_requests_total",
    "Total number of upscale requests",
    labelnames=["status", "error_kind"]
)

active_requests_gauge = Gauge(
    "upscaler_active_requests",
    "Number of upscale requests currently in flight"
)

# API Request Metrics
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labelnames=["method", "endpoint", "status"]
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration",
    labelnames=["method", "endpoint"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0]
)

app_info = Info(
    "upscaler_app",
    "Application information"
)


# =============================================================================
# Helper Functions
# =============================================================================

def set_app_info(version: str, environment: str):
    """Set application info metric."""
    app_info.info({
        "version": version,
        "environment": environment
    })


@contextmanager
def track_stage_latency(stage: str):
    """
    Context manager to track stage latency.

    Usage:
        with track_stage_latency("merge"):
            # do work
    """
    start = time.time()
    status = "success"
    try:
        yield
    except Exception:
        status = "error"
        raise
    finally:
        duration = time.time() - start
        pipeline_latency_seconds.labels(stage=stage, status=status).observe(duration)


def record_tile_enhanced(capability: str, duration_seconds: float, status: str = "success"):
    """Record one tile going through the enhancement capability."""
    tiles_processed_total.labels(capability=capability, status=status).inc()
    if status == "success":
        tile_enhancement_seconds.labels(capability=capability).observe(duration_seconds)


def record_enhancement_api_call(status: str, http_status: int = 200):
    """Record an enhancement API call."""
    enhancement_api_calls_total.labels(
        status=status,
        http_status=str(http_status)
    ).inc()


def record_analysis_api_call(status: str):
    """Record an image analysis API call."""
    analysis_api_calls_total.labels(status=status).inc()


def record_request_completion(status: str, error_kind: str = "none", duration_seconds: float = 0.0):
    """Record an upscale request outcome."""
    requests_total.labels(status=status, error_kind=error_kind).inc()
    pipeline_total_duration.labels(status=status).observe(duration_seconds)


def get_metrics() -> bytes:
    """Generate Prometheus metrics output."""
    return generate_latest(REGISTRY)


def get_metrics_content_type() -> str:
    """Get the content type for Prometheus metrics."""
    return CONTENT_TYPE_LATEST
