"""Job run tracking in the database.

Execution records are kept in memory by the dispatcher; when
JOB_TRACKING_DB_ENABLED is set they are also persisted to job_runs so the
last success of each job survives restarts.

Wiring (see fplsync.main):

    dispatcher.add_listener(persist_execution_record)
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import AsyncContextManager, Callable, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from fplsync.database import session_scope
from fplsync.jobs.base import JobExecutionRecord, RunOutcome
from fplsync.models import JobRun

logger = logging.getLogger(__name__)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands timestamps back without an offset; they were written as UTC
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


async def record_job_run(session: AsyncSession, record: JobExecutionRecord) -> JobRun:
    """Insert one execution record as a job_runs row (timestamps stored as UTC)."""
    started_at = _as_utc(record.started_at)
    job_run = JobRun(
        job_name=record.job_name,
        schedule_name=record.schedule_name,
        attempt=record.attempt,
        status=record.outcome.value,
        started_at=started_at,
        finished_at=started_at + timedelta(milliseconds=record.duration_ms),
        duration_ms=int(record.duration_ms),
        error_message=record.error,
    )

    session.add(job_run)
    await session.commit()

    logger.debug(
        f"[JOB_TRACKING] Recorded {record.job_name} attempt {record.attempt}: "
        f"{record.outcome.value} in {record.duration_ms:.0f}ms"
    )
    return job_run


async def persist_execution_record(
    record: JobExecutionRecord,
    session_factory: Callable[[], AsyncContextManager[AsyncSession]] = session_scope,
) -> None:
    """Dispatcher listener: persist a record, never raising into the job flow."""
    try:
        async with session_factory() as session:
            await record_job_run(session, record)
    except Exception as db_err:
        logger.warning(f"[JOB_TRACKING] DB persist failed (non-blocking): {db_err!r}")


async def get_last_success_at(
    session: AsyncSession,
    job_name: str,
) -> Optional[datetime]:
    """Finish time of the newest succeeded attempt of `job_name`, or None."""
    result = await session.execute(
        select(JobRun.finished_at)
        .where(JobRun.job_name == job_name)
        .where(JobRun.status == RunOutcome.SUCCEEDED.value)
        .order_by(JobRun.finished_at.desc())
        .limit(1)
    )
    row = result.first()
    return _as_utc(row[0]) if row else None


async def get_jobs_health(session: AsyncSession) -> dict:
    """
    Latest run per job plus its last success.

    Returns dict mapping job_name -> {last_run_status, last_run_at,
    last_success_at, duration_ms, last_error}.
    """
    result = await session.execute(
        select(JobRun).order_by(JobRun.job_name, JobRun.started_at.desc())
    )
    runs = result.scalars().all()

    jobs_data = {}
    for run in runs:
        data = jobs_data.get(run.job_name)
        if data is None:
            data = jobs_data[run.job_name] = {
                "last_run_status": run.status,
                "last_run_at": _isoformat(run.finished_at),
                "last_success_at": None,
                "duration_ms": run.duration_ms,
                "last_error": run.error_message if run.status != RunOutcome.SUCCEEDED.value else None,
            }
        if data["last_success_at"] is None and run.status == RunOutcome.SUCCEEDED.value:
            data["last_success_at"] = _isoformat(run.finished_at)

    return jobs_data


async def cleanup_old_runs(session: AsyncSession, days_to_keep: int = 7) -> int:
    """Prune job_runs rows created more than `days_to_keep` days ago; returns the count."""
    cutoff = datetime.now(timezone.utc) - timedelta(days=days_to_keep)
    result = await session.execute(delete(JobRun).where(JobRun.created_at < cutoff))
    await session.commit()
    deleted = result.rowcount or 0
    if deleted > 0:
        logger.info(f"[JOB_TRACKING] Cleaned up {deleted} old job runs")
    return deleted


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    value = _as_utc(value)
    return value.isoformat() if value else None
