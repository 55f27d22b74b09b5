"""
Sentry error tracking for the job layer.

Only terminal job failures are reported: a failed attempt that will be
retried is logged, not captured. Each report is tagged with the job name,
the schedule (if any) and the attempt count.

Configuration comes from Settings (SENTRY_DSN, SENTRY_ENVIRONMENT,
SENTRY_TRACES_SAMPLE_RATE, GIT_COMMIT_SHA). With no DSN every helper here
is a no-op.

The only credential this service sees is the /metrics bearer token, so
scrubbing redacts the Authorization header and drops request bodies.
"""

import logging
from contextlib import contextmanager
from typing import Iterator, Optional

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

from fplsync.config import Settings, get_settings

logger = logging.getLogger(__name__)

_enabled = False


def redact_event(event: dict, hint: dict) -> Optional[dict]:
    """before_send hook: redact Authorization and drop request bodies."""
    request = event.get("request")
    if not request:
        return event

    headers = request.get("headers") or {}
    for name in headers:
        if name.lower() == "authorization":
            headers[name] = "[REDACTED]"
    request.pop("data", None)
    return event


def init_sentry(settings: Optional[Settings] = None) -> bool:
    """
    Initialize the Sentry SDK once per process.

    Returns:
        True if Sentry is active after the call.
    """
    global _enabled

    if _enabled:
        return True

    settings = settings or get_settings()
    if not settings.SENTRY_DSN:
        logger.info("[SENTRY] No SENTRY_DSN configured, error tracking off")
        return False

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.SENTRY_ENVIRONMENT,
        release=settings.GIT_COMMIT_SHA or None,
        traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
            # Terminal job failures are captured explicitly; log lines only add breadcrumbs
            LoggingIntegration(level=logging.INFO, event_level=None),
        ],
        send_default_pii=False,
        before_send=redact_event,
    )
    _enabled = True
    logger.info(f"[SENTRY] Error tracking on (env={settings.SENTRY_ENVIRONMENT})")
    return True


def is_sentry_enabled() -> bool:
    return _enabled


@contextmanager
def sentry_job_context(job_name: str, **tags) -> Iterator[None]:
    """Tag everything reported while one job attempt runs."""
    if not _enabled:
        yield
        return

    with sentry_sdk.new_scope() as scope:
        scope.set_tag("job", job_name)
        for key, value in tags.items():
            if value is not None:
                scope.set_tag(key, str(value))
        yield


def capture_exception(exc: BaseException, job_id: Optional[str] = None, **extra) -> None:
    """Report a terminal failure. Extra keyword arguments become Sentry extras."""
    if not _enabled:
        return

    with sentry_sdk.new_scope() as scope:
        if job_id:
            scope.set_tag("job", job_id)
        for key, value in extra.items():
            scope.set_extra(key, value)
        sentry_sdk.capture_exception(exc)
