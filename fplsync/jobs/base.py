"""
Job: a named, asynchronous unit of work with an attached retry policy.

A job wraps exactly one collaborator call (or a short fixed sequence of
them, see fplsync.jobs.pipeline). execute() runs one attempt and never
retries on its own: retries belong to the dispatcher, which reads the job's
RetryPolicy.

Jobs are frozen and hold no mutable state, so the same Job may be executed
concurrently by a recurring trigger and a manual trigger.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from fplsync.jobs.errors import CollaboratorFailure
from fplsync.jobs.retry import NO_RETRY, RetryPolicy
from fplsync.telemetry.sentry import sentry_job_context

logger = logging.getLogger(__name__)

Operation = Callable[[], Awaitable[Any]]


class RunState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    AWAITING_RETRY = "awaiting_retry"
    SUCCEEDED = "succeeded"
    FAILED_TERMINAL = "failed_terminal"

    @property
    def is_terminal(self) -> bool:
        return self in (RunState.SUCCEEDED, RunState.FAILED_TERMINAL)


class RunOutcome(str, Enum):
    SUCCEEDED = "succeeded"
    RETRYING = "retrying"
    FAILED_TERMINAL = "failed_terminal"
    SKIPPED_OVERLAP = "skipped_overlap"


@dataclass(frozen=True)
class JobExecutionRecord:
    """One attempt (or skipped firing) of a job, kept for observability and tests."""

    job_name: str
    attempt: int
    started_at: datetime
    outcome: RunOutcome
    duration_ms: float = 0.0
    error: Optional[str] = None
    schedule_name: Optional[str] = None

    def as_dict(self) -> dict:
        return {
            "job_name": self.job_name,
            "attempt": self.attempt,
            "started_at": self.started_at.isoformat(),
            "outcome": self.outcome.value,
            "duration_ms": round(self.duration_ms, 1),
            "error": self.error,
            "schedule_name": self.schedule_name,
        }


@dataclass(frozen=True)
class Job:
    name: str
    operation: Operation = field(compare=False)
    retry_policy: RetryPolicy = NO_RETRY
    timeout_seconds: Optional[float] = None
    description: str = ""

    async def execute(self, attempt: int = 1) -> Any:
        """
        Run one attempt of the job.

        Args:
            attempt: 1-indexed attempt number (for logs and error context).

        Returns:
            Whatever the operation returned.

        Raises:
            CollaboratorFailure: the operation raised or exceeded its timeout.
        """
        logger.info(
            f"[JOB] Starting {self.name} (attempt {attempt}/{self.retry_policy.max_attempts})",
            extra=_event("job_started", self.name, attempt),
        )
        start = time.monotonic()

        try:
            with sentry_job_context(self.name, attempt=attempt):
                if self.timeout_seconds:
                    result = await asyncio.wait_for(self.operation(), timeout=self.timeout_seconds)
                else:
                    result = await self.operation()
        except asyncio.TimeoutError as e:
            cause = e
            if self.timeout_seconds:
                cause = TimeoutError(f"{self.name} exceeded {self.timeout_seconds:g}s deadline")
            self._log_failure(attempt, start, cause)
            raise CollaboratorFailure(self.name, attempt, cause) from e
        except Exception as e:
            self._log_failure(attempt, start, e)
            raise CollaboratorFailure(self.name, attempt, e) from e

        duration_ms = (time.monotonic() - start) * 1000
        logger.info(
            f"[JOB] Completed {self.name} in {duration_ms:.0f}ms",
            extra=_event("job_succeeded", self.name, attempt, duration_ms=duration_ms),
        )
        return result

    def _log_failure(self, attempt: int, start: float, error: BaseException) -> None:
        duration_ms = (time.monotonic() - start) * 1000
        logger.warning(
            f"[JOB] {self.name} failed on attempt {attempt} after {duration_ms:.0f}ms: {error!r}",
            extra=_event("job_failed", self.name, attempt, error=repr(error), duration_ms=duration_ms),
        )


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _event(kind: str, job: str, attempt: int, **fields) -> dict:
    return {"event": kind, "job": job, "attempt": attempt, **fields}
