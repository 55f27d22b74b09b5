"""
Prometheus metrics for scheduled jobs.

Design principles:
- Low cardinality: labels are job and schedule names (a fixed catalogue),
  outcome/status enums and bootstrap decisions. Never attempt numbers,
  error messages or timestamps.
- Best-effort: recording helpers swallow their own errors and never break
  the job flow.
"""

import logging
import time
from typing import Optional

from prometheus_client import (
    Counter,
    Histogram,
    Gauge,
    generate_latest,
    CONTENT_TYPE_LATEST,
    REGISTRY,
)

logger = logging.getLogger(__name__)

# =============================================================================
# JOB RUN METRICS
# =============================================================================

job_runs_total = Counter(
    "job_runs_total",
    "Total job attempts by job and outcome",
    ["job", "status"],  # status: succeeded, retrying, failed_terminal, skipped_overlap
)

job_last_success_timestamp = Gauge(
    "job_last_success_timestamp",
    "Unix timestamp of last successful job run",
    ["job"],
)

job_duration_ms = Histogram(
    "job_duration_ms",
    "Job attempt duration in milliseconds",
    ["job"],
    buckets=[100, 500, 1000, 5000, 10000, 30000, 60000, 120000, 300000, 600000, 1800000],
)

job_retries_total = Counter(
    "job_retries_total",
    "Retries scheduled after a failed attempt",
    ["job"],
)

job_overlap_skipped_total = Counter(
    "job_overlap_skipped_total",
    "Recurring firings skipped because the previous run was still active",
    ["schedule"],
)

# =============================================================================
# BOOTSTRAP METRICS
# =============================================================================

bootstrap_decisions_total = Counter(
    "bootstrap_decisions_total",
    "Historical-data bootstrap decisions",
    ["decision"],  # enqueued, skipped, error
)

bootstrap_observed_records = Gauge(
    "bootstrap_observed_records",
    "Historical record count observed by the last bootstrap check",
    [],
)


# =============================================================================
# HELPERS
# =============================================================================


def record_job_run(job: str, status: str, duration_ms: float) -> None:
    """
    Record one job attempt.

    Args:
        job: Job name (full-data-update, historical-data-collection, ...)
        status: succeeded, retrying, failed_terminal or skipped_overlap
        duration_ms: Attempt duration in milliseconds (0 for skips)
    """
    try:
        job_runs_total.labels(job=job, status=status).inc()
        if duration_ms > 0:
            job_duration_ms.labels(job=job).observe(duration_ms)
        if status == "succeeded":
            job_last_success_timestamp.labels(job=job).set(time.time())
        elif status == "retrying":
            job_retries_total.labels(job=job).inc()
    except Exception as e:
        logger.warning(f"Failed to record job run metric: {e}")


def record_overlap_skip(schedule: str) -> None:
    try:
        job_overlap_skipped_total.labels(schedule=schedule).inc()
    except Exception as e:
        logger.warning(f"Failed to record overlap skip metric: {e}")


def record_bootstrap_decision(decision: str, observed: Optional[int] = None) -> None:
    """Record a bootstrap guard decision (enqueued, skipped, error)."""
    try:
        bootstrap_decisions_total.labels(decision=decision).inc()
        if observed is not None:
            bootstrap_observed_records.set(observed)
    except Exception as e:
        logger.warning(f"Failed to record bootstrap metric: {e}")


def get_metrics_text() -> tuple[str, str]:
    """
    Generate Prometheus metrics text output.

    Returns:
        Tuple of (content, content_type)
    """
    return generate_latest(REGISTRY).decode("utf-8"), CONTENT_TYPE_LATEST
