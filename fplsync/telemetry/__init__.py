"""
Job telemetry: Prometheus metrics and Sentry error tracking.
"""

from fplsync.telemetry.metrics import (
    job_runs_total,
    job_duration_ms,
    job_last_success_timestamp,
    job_retries_total,
    job_overlap_skipped_total,
    bootstrap_decisions_total,
    record_job_run,
    record_overlap_skip,
    record_bootstrap_decision,
    get_metrics_text,
)
from fplsync.telemetry.sentry import (
    init_sentry,
    is_sentry_enabled,
    sentry_job_context,
    capture_exception,
)

__all__ = [
    # Metrics
    "job_runs_total",
    "job_duration_ms",
    "job_last_success_timestamp",
    "job_retries_total",
    "job_overlap_skipped_total",
    "bootstrap_decisions_total",
    # Helpers
    "record_job_run",
    "record_overlap_skip",
    "record_bootstrap_decision",
    "get_metrics_text",
    # Sentry
    "init_sentry",
    "is_sentry_enabled",
    "sentry_job_context",
    "capture_exception",
]
