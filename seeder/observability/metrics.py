"""
Prometheus metrics collection for uat-seeder

This module provides metrics instrumentation for monitoring seeding runs:
per-stage record outcomes, stage durations, ingestion polling and
checkpoint persistence.
"""
import os
from typing import Optional

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

# Global registry for metrics
REGISTRY = CollectorRegistry()


# =======================
# STAGE METRICS
# =======================

# Records seeded counter
records_seeded_total = Counter(
    name="seeder_records_total",
    documentation="Total number of records handled per stage",
    labelnames=["stage", "status"],  # status: created, existing, failed, skipped
    registry=REGISTRY,
)

# Stage duration histogram
stage_duration_seconds = Histogram(
    name="seeder_stage_duration_seconds",
    documentation="Time spent running a pipeline stage in seconds",
    labelnames=["stage"],
    buckets=[0.5, 1.0, 5.0, 15.0, 30.0, 60.0, 120.0, 300.0, 600.0],
    registry=REGISTRY,
)

# Runs counter
runs_total = Counter(
    name="seeder_runs_total",
    documentation="Total number of seeding runs by outcome",
    labelnames=["outcome"],  # outcome: completed, partial, aborted, failed
    registry=REGISTRY,
)

# =======================
# POLLING METRICS
# =======================

poll_ticks_total = Counter(
    name="seeder_poll_ticks_total",
    documentation="Total number of ingestion poll ticks",
    registry=REGISTRY,
)

poll_outcomes_total = Counter(
    name="seeder_poll_outcomes_total",
    documentation="Terminal ingestion poll outcomes",
    labelnames=["outcome"],  # outcome: all_found, partial_timeout, total_timeout
    registry=REGISTRY,
)

poll_duration_seconds = Histogram(
    name="seeder_poll_duration_seconds",
    documentation="Time spent waiting for downstream ingestion",
    buckets=[5.0, 15.0, 30.0, 60.0, 120.0, 180.0, 300.0, 600.0],
    registry=REGISTRY,
)

# =======================
# CHECKPOINT METRICS
# =======================

checkpoint_operations_total = Counter(
    name="seeder_checkpoint_operations_total",
    documentation="Checkpoint store operations",
    labelnames=["operation", "status"],  # operation: save, load, delete
    registry=REGISTRY,
)

# =======================
# ERROR METRICS
# =======================

errors_total = Counter(
    name="seeder_errors_total",
    documentation="Total number of errors",
    labelnames=["error_type", "component"],
    registry=REGISTRY,
)


# =======================
# HELPER FUNCTIONS
# =======================

def generate_metrics() -> bytes:
    """
    Generate Prometheus metrics in text format

    Returns:
        Metrics in Prometheus text format
    """
    return generate_latest(REGISTRY)


def start_metrics_server(port: Optional[int] = None) -> None:
    """
    Start HTTP server for Prometheus metrics

    Args:
        port: Port to listen on (defaults to env var METRICS_PORT or 8000)
    """
    # Lazy import: the HTTP server is only needed when the endpoint is enabled
    from prometheus_client import start_http_server

    metrics_port = port or int(os.getenv("METRICS_PORT", "8000"))
    start_http_server(metrics_port, registry=REGISTRY)


# =======================
# CONTEXT MANAGERS
# =======================

class track_duration:
    """
    Context manager for tracking operation duration

    Usage:
        with track_duration(stage_duration_seconds, stage="remote_orders"):
            # do work
            pass
    """

    def __init__(self, histogram: Histogram, **labels):
        """
        Initialize duration tracker

        Args:
            histogram: Prometheus Histogram metric
            **labels: Label values for the metric
        """
        self.histogram = histogram
        self.labels = labels
        self.timer = None

    def __enter__(self):
        """Start timer"""
        target = self.histogram.labels(**self.labels) if self.labels else self.histogram
        self.timer = target.time()
        self.timer.__enter__()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Stop timer"""
        self.timer.__exit__(exc_type, exc_val, exc_tb)
        return False


def increment_counter(counter: Counter, value: float = 1.0, **labels) -> None:
    """
    Increment a counter metric

    Args:
        counter: Prometheus Counter metric
        value: Amount to increment (default: 1.0)
        **labels: Label values for the metric
    """
    if value <= 0:
        return
    target = counter.labels(**labels) if labels else counter
    target.inc(value)


def observe_histogram(histogram: Histogram, value: float, **labels) -> None:
    """
    Observe a value in a histogram metric

    Args:
        histogram: Prometheus Histogram metric
        value: Value to observe
        **labels: Label values for the metric
    """
    target = histogram.labels(**labels) if labels else histogram
    target.observe(value)


def record_stage_outcome(stage: str, created: int, existing: int, failed: int, skipped: int) -> None:
    """
    Record per-stage record counts.

    Args:
        stage: Stage name
        created: Records created in this run
        existing: Records found already present downstream
        failed: Records that failed
        skipped: Records skipped because the checkpoint marks them done
    """
    increment_counter(records_seeded_total, created, stage=stage, status="created")
    increment_counter(records_seeded_total, existing, stage=stage, status="existing")
    increment_counter(records_seeded_total, failed, stage=stage, status="failed")
    increment_counter(records_seeded_total, skipped, stage=stage, status="skipped")
