"""Core routes: health, metrics, schedules and job history.

Auth per-endpoint:
- /health: public
- /metrics: Bearer token (METRICS_BEARER_TOKEN, open when empty)
- /jobs/*: internal network only, no auth at this layer
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Header, HTTPException, Query, Request
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel

from fplsync.config import get_settings
from fplsync.database import session_scope
from fplsync.jobs.errors import OverlapSkipped
from fplsync.jobs.tracking import get_jobs_health
from fplsync.scheduler import JobDispatcher
from fplsync.telemetry import get_metrics_text, is_sentry_enabled

router = APIRouter(tags=["core"])


class HealthResponse(BaseModel):
    status: str
    scheduler_running: bool
    schedules: int
    sentry_enabled: bool


class ScheduleStatus(BaseModel):
    schedule_name: str
    job: str
    trigger: str
    timezone: str
    retry_policy: str
    next_run_at: Optional[datetime] = None
    run_state: Optional[str] = None


class TriggerResponse(BaseModel):
    schedule_name: str
    status: str


def _dispatcher(request: Request) -> JobDispatcher:
    return request.app.state.dispatcher


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request):
    """Health check endpoint."""
    dispatcher = _dispatcher(request)
    return HealthResponse(
        status="ok",
        scheduler_running=dispatcher.scheduler.running,
        schedules=len(dispatcher.registry),
        sentry_enabled=is_sentry_enabled(),
    )


@router.get("/metrics")
async def prometheus_metrics(
    authorization: str = Header(None, alias="Authorization"),
):
    """Prometheus metrics (job runs, retries, overlap skips, bootstrap decisions)."""
    expected_token = get_settings().METRICS_BEARER_TOKEN
    if expected_token:
        parts = (authorization or "").split(" ", 1)
        if len(parts) != 2 or parts[0].lower() != "bearer" or parts[1] != expected_token:
            return PlainTextResponse(
                content="# Unauthorized\n",
                status_code=401,
                media_type="text/plain",
            )

    content, content_type = get_metrics_text()
    return PlainTextResponse(content=content, media_type=content_type)


@router.get("/jobs/schedules", response_model=list[ScheduleStatus])
async def list_schedules(request: Request):
    dispatcher = _dispatcher(request)
    statuses = []
    for entry in dispatcher.registry.list():
        state = dispatcher.run_state(entry.schedule_name)
        statuses.append(ScheduleStatus(
            schedule_name=entry.schedule_name,
            job=entry.job.name,
            trigger=entry.trigger.describe(),
            timezone=entry.timezone,
            retry_policy=entry.job.retry_policy.describe(),
            next_run_at=dispatcher.next_run_time(entry.schedule_name),
            run_state=state.value if state else None,
        ))
    return statuses


@router.get("/jobs/history")
async def job_history(
    request: Request,
    job: Optional[str] = Query(None, description="Filter by job name"),
    limit: int = Query(50, ge=1, le=500),
):
    """Most recent execution records, newest first."""
    dispatcher = _dispatcher(request)
    records = dispatcher.records_for(job) if job else list(dispatcher.history)
    return [r.as_dict() for r in reversed(records[-limit:])]


@router.post("/jobs/schedules/{schedule_name}/trigger", response_model=TriggerResponse, status_code=202)
async def trigger_schedule(schedule_name: str, request: Request):
    """Fire a schedule now. Subject to the same overlap rule as its trigger."""
    dispatcher = _dispatcher(request)
    if schedule_name not in dispatcher.registry:
        raise HTTPException(status_code=404, detail=f"Unknown schedule: {schedule_name}")
    try:
        dispatcher.fire(schedule_name, raise_on_overlap=True)
    except OverlapSkipped as e:
        raise HTTPException(status_code=409, detail=str(e))
    return TriggerResponse(schedule_name=schedule_name, status="started")


@router.get("/jobs/runs")
async def persisted_job_health():
    """Per-job last run and last success from job_runs (survives restarts)."""
    if not get_settings().JOB_TRACKING_DB_ENABLED:
        raise HTTPException(status_code=404, detail="Job tracking is disabled (JOB_TRACKING_DB_ENABLED=false)")
    async with session_scope() as session:
        return await get_jobs_health(session)
