"""FastAPI application for fplsync.

Run with:
    COLLABORATORS_FACTORY=mypkg.services:build_collaborators \
        uvicorn --factory fplsync.main:create_app_from_settings
"""

import importlib
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from fplsync import __version__, models  # noqa: F401  (models registers tables for init_db)
from fplsync.collaborators import StatsCollaborators
from fplsync.config import Settings, get_settings
from fplsync.database import close_db, init_db
from fplsync.jobs.definitions import build_jobs, register_recurring_jobs, schedule_startup_jobs
from fplsync.jobs.registry import ScheduleRegistry
from fplsync.jobs.tracking import persist_execution_record
from fplsync.routes import router
from fplsync.scheduler import JobDispatcher
from fplsync.telemetry.sentry import init_sentry

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def create_app(collaborators: StatsCollaborators, settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    init_sentry(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Starting fplsync {__version__}...")
        await init_db()

        registry = ScheduleRegistry(default_timezone=settings.SCHEDULER_TIMEZONE)
        dispatcher = JobDispatcher(
            registry,
            max_concurrent_runs=settings.SCHEDULER_MAX_CONCURRENT_RUNS,
            history_size=settings.JOB_HISTORY_SIZE,
            misfire_grace_time=settings.SCHEDULER_MISFIRE_GRACE_SECONDS,
        )
        if settings.JOB_TRACKING_DB_ENABLED:
            dispatcher.add_listener(persist_execution_record)

        jobs = build_jobs(collaborators, dispatcher, settings)
        register_recurring_jobs(registry, jobs, settings)

        app.state.registry = registry
        app.state.dispatcher = dispatcher
        app.state.jobs = jobs

        if settings.SCHEDULER_ENABLED:
            dispatcher.start()
            if settings.STARTUP_JOBS_ENABLED:
                schedule_startup_jobs(dispatcher, jobs, settings)
        else:
            logger.warning("Scheduler disabled via SCHEDULER_ENABLED=false (manual triggers only)")

        yield

        logger.info("Shutting down fplsync...")
        await dispatcher.shutdown(timeout=30)
        await close_db()

    app = FastAPI(title="fplsync", version=__version__, lifespan=lifespan)
    app.include_router(router)
    return app


def load_collaborators(factory_path: str) -> StatsCollaborators:
    """Import "package.module:factory" and call it."""
    module_name, _, attr = factory_path.partition(":")
    if not module_name or not attr:
        raise ValueError(f"COLLABORATORS_FACTORY must look like 'package.module:factory', got {factory_path!r}")
    factory = getattr(importlib.import_module(module_name), attr)
    return factory()


def create_app_from_settings() -> FastAPI:
    """Uvicorn factory entry point."""
    settings = get_settings()
    if not settings.COLLABORATORS_FACTORY:
        raise RuntimeError("COLLABORATORS_FACTORY is not set")
    return create_app(load_collaborators(settings.COLLABORATORS_FACTORY), settings)
