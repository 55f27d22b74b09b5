"""Tests for the HTTP surface: health, metrics and schedule endpoints."""

import asyncio
from datetime import datetime, timezone

import httpx
import pytest
from fastapi import FastAPI
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import SQLModel

from fplsync import routes
from fplsync.config import get_settings
from fplsync.database import build_engine
from fplsync.jobs.base import Job, JobExecutionRecord, RunOutcome
from fplsync.jobs.tracking import record_job_run
from fplsync.routes import router

from conftest import Flaky


@pytest.fixture
def app(registry, dispatcher):
    app = FastAPI()
    app.include_router(router)
    app.state.registry = registry
    app.state.dispatcher = dispatcher
    return app


@pytest.fixture
def client(app):
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")


class TestHealthAndMetrics:
    @pytest.mark.asyncio
    async def test_health(self, client, registry):
        registry.upsert("quick-data-update", Job("quick", Flaky(failures=0)), "0 */2 * * *")
        async with client:
            response = await client.get("/health")

        assert response.status_code == 200
        assert response.json() == {
            "status": "ok",
            "scheduler_running": False,
            "schedules": 1,
            "sentry_enabled": False,
        }

    @pytest.mark.asyncio
    async def test_metrics_open_without_token(self, client, monkeypatch):
        monkeypatch.setattr(get_settings(), "METRICS_BEARER_TOKEN", "")
        async with client:
            response = await client.get("/metrics")

        assert response.status_code == 200
        assert "job_runs_total" in response.text

    @pytest.mark.asyncio
    async def test_metrics_require_bearer_token(self, client, monkeypatch):
        monkeypatch.setattr(get_settings(), "METRICS_BEARER_TOKEN", "s3cret")
        async with client:
            denied = await client.get("/metrics")
            allowed = await client.get("/metrics", headers={"Authorization": "Bearer s3cret"})

        assert denied.status_code == 401
        assert allowed.status_code == 200


class TestScheduleEndpoints:
    @pytest.mark.asyncio
    async def test_list_schedules(self, client, registry):
        registry.upsert("weekend-predictions", Job("prediction-analysis", Flaky(failures=0)), "0 9 * * 5,6")
        async with client:
            response = await client.get("/jobs/schedules")

        [status] = response.json()
        assert status["schedule_name"] == "weekend-predictions"
        assert status["job"] == "prediction-analysis"
        assert status["trigger"] == "cron '0 9 * * 5,6'"
        assert status["retry_policy"] == "no retries"
        assert status["next_run_at"] is not None
        assert status["run_state"] is None

    @pytest.mark.asyncio
    async def test_trigger_unknown_schedule(self, client):
        async with client:
            response = await client.post("/jobs/schedules/missing/trigger")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_trigger_runs_job_and_records_history(self, client, registry, dispatcher):
        op = Flaky(failures=0)
        registry.upsert("quick-data-update", Job("quick", op), "0 */2 * * *")

        async with client:
            response = await client.post("/jobs/schedules/quick-data-update/trigger")
            assert response.status_code == 202
            await dispatcher.drain()
            history = await client.get("/jobs/history", params={"job": "quick"})

        assert op.calls == 1
        assert [r["outcome"] for r in history.json()] == ["succeeded"]

    @pytest.mark.asyncio
    async def test_trigger_while_running_conflicts(self, client, registry, dispatcher):
        release = asyncio.Event()

        async def op():
            await release.wait()

        registry.upsert("full-data-update", Job("full", op), "0 6,18 * * *")

        async with client:
            first = await client.post("/jobs/schedules/full-data-update/trigger")
            second = await client.post("/jobs/schedules/full-data-update/trigger")
            release.set()
            await dispatcher.drain()

        assert first.status_code == 202
        assert second.status_code == 409
        assert "still" in second.json()["detail"]

    @pytest.mark.asyncio
    async def test_history_newest_first_with_limit(self, client, dispatcher):
        for i in range(3):
            await dispatcher.dispatch(Job(f"job-{i}", Flaky(failures=0)))

        async with client:
            response = await client.get("/jobs/history", params={"limit": 2})

        assert [r["job_name"] for r in response.json()] == ["job-2", "job-1"]


class TestPersistedRuns:
    @pytest.mark.asyncio
    async def test_disabled_tracking_is_404(self, client, monkeypatch):
        monkeypatch.setattr(get_settings(), "JOB_TRACKING_DB_ENABLED", False)
        async with client:
            response = await client.get("/jobs/runs")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_reports_persisted_runs(self, client, monkeypatch):
        engine = build_engine("sqlite:///:memory:")
        async with engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)
        factory = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)

        async with factory() as session:
            await record_job_run(session, JobExecutionRecord(
                job_name="injury-update",
                attempt=1,
                started_at=datetime(2025, 10, 4, 8, 0, tzinfo=timezone.utc),
                outcome=RunOutcome.SUCCEEDED,
                duration_ms=250.0,
            ))

        monkeypatch.setattr(get_settings(), "JOB_TRACKING_DB_ENABLED", True)
        monkeypatch.setattr(routes, "session_scope", factory)
        try:
            async with client:
                response = await client.get("/jobs/runs")
        finally:
            await engine.dispose()

        assert response.status_code == 200
        assert response.json()["injury-update"]["last_run_status"] == "succeeded"
