"""
The FPL job catalogue: job definitions, recurring schedules and startup one-shots.

Retry tables per job (attempts / waits between them):

    full-data-update            4 / 30s, 60s, 120s
    quick-data-update           3 / 15s, 30s
    injury-update               3 / 20s, 40s
    transfer-news-update        3 / 20s, 40s
    prediction-analysis         3 / 30s, 60s
    historical-data-collection  4 / 60s, 120s, 300s
    historical-data-check       2 / 30s (the guard swallows its own failures)
"""

import logging
from dataclasses import dataclass
from functools import partial
from typing import Optional

from fplsync.collaborators import CollectionSummary, PredictionResult, StatsCollaborators
from fplsync.config import Settings
from fplsync.database import session_scope
from fplsync.jobs.base import Job
from fplsync.jobs.bootstrap import BootstrapGuard, Enqueuer
from fplsync.jobs.pipeline import PipelineSequencer
from fplsync.jobs.registry import ScheduleEntry, ScheduleRegistry
from fplsync.jobs.retry import RetryPolicy
from fplsync.jobs.tracking import cleanup_old_runs

logger = logging.getLogger(__name__)

# Schedule names
FULL_DATA_UPDATE = "full-data-update"
QUICK_DATA_UPDATE = "quick-data-update"
INJURY_UPDATES = "injury-updates"
TRANSFER_NEWS_UPDATES = "transfer-news-updates"
PREDICTION_ANALYSIS = "prediction-analysis"
WEEKEND_PREDICTIONS = "weekend-predictions"
WEEKEND_INTENSIVE_UPDATE = "weekend-intensive-update"
JOB_RUNS_CLEANUP = "job-runs-cleanup"

FULL_UPDATE_RETRY = RetryPolicy.with_delays(30, 60, 120)
QUICK_UPDATE_RETRY = RetryPolicy.with_delays(15, 30)
NEWS_UPDATE_RETRY = RetryPolicy.with_delays(20, 40)
PREDICTION_RETRY = RetryPolicy.with_delays(30, 60)
HISTORICAL_COLLECTION_RETRY = RetryPolicy.with_delays(60, 120, 300)
BOOTSTRAP_CHECK_RETRY = RetryPolicy.with_delays(30)


@dataclass(frozen=True)
class FplJobs:
    full_update: Job
    quick_update: Job
    injury_update: Job
    transfer_update: Job
    prediction_analysis: Job
    historical_collection: Job
    bootstrap_check: Job
    runs_cleanup: Optional[Job] = None


async def run_prediction_analysis(collaborators: StatsCollaborators) -> PredictionResult:
    """Predict the gameweek after the current one."""
    current = await collaborators.current_period_id()
    prediction = await collaborators.compute_prediction(current + 1)
    logger.info(
        f"[PREDICTIONS] Generated predictions for gameweek {prediction.period_id} "
        f"with {prediction.analyzed_count} analyzed players"
    )
    return prediction


async def run_historical_collection(collaborators: StatsCollaborators) -> CollectionSummary:
    summary = await collaborators.run_historical_collection()
    log = logger.info if summary.success else logger.warning
    log(
        f"[HISTORICAL] Historical data collection completed. Success: {summary.success}, "
        f"Records: {summary.total_records_created}"
        + (f", Error: {summary.error_message}" if summary.error_message else "")
    )
    return summary


async def run_job_runs_cleanup(days_to_keep: int) -> int:
    async with session_scope() as session:
        return await cleanup_old_runs(session, days_to_keep=days_to_keep)


def build_jobs(collaborators: StatsCollaborators, dispatcher: Enqueuer, settings: Settings) -> FplJobs:
    """Compose jobs from collaborators. Collaborators are bound here, never looked up at run time."""
    timeout = settings.JOB_TIMEOUT_SECONDS

    full_update = PipelineSequencer(
        FULL_DATA_UPDATE,
        [
            ("refresh-core-records", collaborators.refresh_core_records),
            ("refresh-injury-records", collaborators.refresh_injury_records),
            ("refresh-transfer-records", collaborators.refresh_transfer_records),
        ],
        retry_policy=FULL_UPDATE_RETRY,
        timeout_seconds=timeout,
    ).as_job()

    historical_collection = Job(
        name="historical-data-collection",
        operation=partial(run_historical_collection, collaborators),
        retry_policy=HISTORICAL_COLLECTION_RETRY,
        timeout_seconds=timeout,
        description="collect historical player performances for model training",
    )

    guard = BootstrapGuard(
        count_records=collaborators.current_historical_record_count,
        collection_job=historical_collection,
        dispatcher=dispatcher,
        threshold=settings.BOOTSTRAP_THRESHOLD,
    )

    runs_cleanup = None
    if settings.JOB_TRACKING_DB_ENABLED:
        runs_cleanup = Job(
            name=JOB_RUNS_CLEANUP,
            operation=partial(run_job_runs_cleanup, settings.JOB_RUNS_RETENTION_DAYS),
            description=f"prune job_runs older than {settings.JOB_RUNS_RETENTION_DAYS} days",
        )

    return FplJobs(
        full_update=full_update,
        quick_update=Job(
            name=QUICK_DATA_UPDATE,
            operation=collaborators.refresh_core_records,
            retry_policy=QUICK_UPDATE_RETRY,
            timeout_seconds=timeout,
            description="refresh players, teams and fixtures",
        ),
        injury_update=Job(
            name="injury-update",
            operation=collaborators.refresh_injury_records,
            retry_policy=NEWS_UPDATE_RETRY,
            timeout_seconds=timeout,
            description="refresh injury and availability news",
        ),
        transfer_update=Job(
            name="transfer-news-update",
            operation=collaborators.refresh_transfer_records,
            retry_policy=NEWS_UPDATE_RETRY,
            timeout_seconds=timeout,
            description="refresh transfer news",
        ),
        prediction_analysis=Job(
            name=PREDICTION_ANALYSIS,
            operation=partial(run_prediction_analysis, collaborators),
            retry_policy=PREDICTION_RETRY,
            timeout_seconds=timeout,
            description="predict the next gameweek",
        ),
        historical_collection=historical_collection,
        bootstrap_check=guard.as_job(retry_policy=BOOTSTRAP_CHECK_RETRY),
        runs_cleanup=runs_cleanup,
    )


def register_recurring_jobs(registry: ScheduleRegistry, jobs: FplJobs, settings: Settings) -> list[ScheduleEntry]:
    """Upsert every recurring schedule. Safe to call on every start."""
    tz = settings.SCHEDULER_TIMEZONE
    schedules = [
        # Full comprehensive update, morning and evening
        (FULL_DATA_UPDATE, jobs.full_update, settings.CRON_FULL_DATA_UPDATE),
        # Core data only, every 2 hours
        (QUICK_DATA_UPDATE, jobs.quick_update, settings.CRON_QUICK_DATA_UPDATE),
        (INJURY_UPDATES, jobs.injury_update, settings.CRON_INJURY_UPDATES),
        (TRANSFER_NEWS_UPDATES, jobs.transfer_update, settings.CRON_TRANSFER_NEWS_UPDATES),
        # Offset after the full updates; a late update just means staler inputs
        (PREDICTION_ANALYSIS, jobs.prediction_analysis, settings.CRON_PREDICTION_ANALYSIS),
        # Before the weekend deadlines
        (WEEKEND_PREDICTIONS, jobs.prediction_analysis, settings.CRON_WEEKEND_PREDICTIONS),
        # Match days
        (WEEKEND_INTENSIVE_UPDATE, jobs.full_update, settings.CRON_WEEKEND_INTENSIVE_UPDATE),
    ]
    if jobs.runs_cleanup is not None:
        schedules.append((JOB_RUNS_CLEANUP, jobs.runs_cleanup, "15 3 * * *"))

    entries = [registry.upsert(name, job, trigger, tz) for name, job, trigger in schedules]
    logger.info(f"[SCHEDULES] {len(entries)} recurring schedules registered")
    return entries


def schedule_startup_jobs(dispatcher, jobs: FplJobs, settings: Settings) -> list[str]:
    """
    One-shots at process start, staggered to spread the initial load:
    full update now, then bootstrap check, injuries, transfers, predictions.
    """
    job_ids = [
        dispatcher.enqueue(jobs.full_update),
        dispatcher.enqueue_after(jobs.bootstrap_check, settings.STARTUP_BOOTSTRAP_DELAY_SECONDS),
        dispatcher.enqueue_after(jobs.injury_update, settings.STARTUP_INJURY_DELAY_SECONDS),
        dispatcher.enqueue_after(jobs.transfer_update, settings.STARTUP_TRANSFER_DELAY_SECONDS),
        dispatcher.enqueue_after(jobs.prediction_analysis, settings.STARTUP_PREDICTION_DELAY_SECONDS),
    ]
    logger.info(f"[SCHEDULES] {len(job_ids)} startup jobs enqueued")
    return job_ids
