"""
Background job dispatcher.

Wraps an APScheduler AsyncIOScheduler:

- Recurring schedules come from a ScheduleRegistry. Each entry is installed
  as an APScheduler job whose callback only *fires* the schedule; the run
  itself is a separate asyncio task so the overlap rule below is ours, not
  APScheduler's.
- Overlap: a schedule whose previous run has not reached a terminal state
  (pending, running or awaiting a retry) skips the new firing. Skips are
  logged, counted and recorded; the running instance is never cancelled.
- Immediate and delayed one-shot enqueues go through APScheduler
  DateTriggers. They carry no schedule name and are not subject to overlap.
- Retries: a failed attempt consults the job's RetryPolicy. The run waits
  the returned delay outside the worker pool and re-enters pending; after
  the last attempt it is failed_terminal and logged at error.

The run-state table and history are only touched from the event loop
thread.
"""

import asyncio
import logging
import time
import uuid
from collections import deque
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Optional

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger

from fplsync.jobs.base import Job, JobExecutionRecord, RunOutcome, RunState, utcnow
from fplsync.jobs.errors import CollaboratorFailure, InvalidArgument, OverlapSkipped
from fplsync.jobs.registry import ScheduleEntry, ScheduleRegistry
from fplsync.jobs.triggers import build_trigger, next_fire_time
from fplsync.telemetry.metrics import record_job_run, record_overlap_skip
from fplsync.telemetry.sentry import capture_exception

logger = logging.getLogger(__name__)

RecordListener = Callable[[JobExecutionRecord], Optional[Awaitable[None]]]

_SCHEDULE_PREFIX = "schedule:"
_ONESHOT_PREFIX = "oneshot:"


class JobDispatcher:
    def __init__(
        self,
        registry: ScheduleRegistry,
        scheduler: Optional[AsyncIOScheduler] = None,
        *,
        max_concurrent_runs: int = 4,
        history_size: int = 500,
        misfire_grace_time: int = 300,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        if max_concurrent_runs < 1:
            raise InvalidArgument(f"max_concurrent_runs must be >= 1, got {max_concurrent_runs}")

        self.registry = registry
        self.scheduler = scheduler or AsyncIOScheduler(timezone=registry.default_timezone)
        self.misfire_grace_time = misfire_grace_time
        self.history: deque[JobExecutionRecord] = deque(maxlen=history_size)

        self._sleep = sleep
        self._slots = asyncio.Semaphore(max_concurrent_runs)
        self._run_states: dict[str, RunState] = {}
        self._tasks: set[asyncio.Task] = set()
        self._listeners: list[RecordListener] = []
        self._started = False

        registry.subscribe(self._on_registry_change)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Install every registered schedule and start evaluating triggers."""
        if self._started:
            logger.warning("[DISPATCH] Dispatcher already started, skipping duplicate start")
            return

        for entry in self.registry.list():
            self._install(entry)
        self.scheduler.start()
        self._started = True

        logger.info(f"[DISPATCH] Scheduler started with {len(self.registry)} recurring schedules")
        self.log_scheduled_jobs()

    async def shutdown(self, timeout: Optional[float] = None) -> None:
        """Stop firing triggers and let in-flight runs finish (up to `timeout`)."""
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        self._started = False

        pending = [t for t in self._tasks if not t.done()]
        if pending:
            logger.info(f"[DISPATCH] Waiting for {len(pending)} in-flight run(s)")
            _, still_running = await asyncio.wait(pending, timeout=timeout)
            if still_running:
                logger.warning(f"[DISPATCH] {len(still_running)} run(s) still active at shutdown")
        logger.info("[DISPATCH] Scheduler stopped")

    async def drain(self) -> None:
        """Wait until every spawned run (and its follow-ups) has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ------------------------------------------------------------------
    # Trigger path
    # ------------------------------------------------------------------

    def fire(self, schedule_name: str, *, raise_on_overlap: bool = False) -> Optional[asyncio.Task]:
        """
        Fire a registered schedule now.

        Returns:
            The task running the job, or None if the schedule is unknown or
            the firing was skipped because the previous run is still active.

        Raises:
            OverlapSkipped: only when raise_on_overlap is set (manual triggers).
        """
        entry = self.registry.get(schedule_name)
        if entry is None:
            logger.warning(f"[DISPATCH] Unknown schedule {schedule_name}, firing ignored")
            return None

        try:
            self._claim(schedule_name)
        except OverlapSkipped as skipped:
            self._record_skip(entry, skipped)
            if raise_on_overlap:
                raise
            return None

        logger.info(
            f"[DISPATCH] Firing {schedule_name} -> {entry.job.name}",
            extra={"event": "schedule_fired", "schedule": schedule_name, "job": entry.job.name},
        )
        return self._spawn(
            self._run(entry.job, schedule_name, raise_on_failure=False),
            name=f"{_SCHEDULE_PREFIX}{schedule_name}",
        )

    async def _on_trigger(self, schedule_name: str) -> None:
        self.fire(schedule_name)

    # ------------------------------------------------------------------
    # One-shot path
    # ------------------------------------------------------------------

    def enqueue(self, job: Job) -> str:
        """Run a job once, as soon as possible (fire-and-forget)."""
        return self.enqueue_after(job, 0)

    def enqueue_after(self, job: Job, delay_seconds: float) -> str:
        """
        Run a job once after `delay_seconds` (fire-and-forget).

        Returns:
            The APScheduler job id of the one-shot.
        """
        if delay_seconds < 0:
            raise InvalidArgument(f"delay must be non-negative, got {delay_seconds}")

        run_date = utcnow() + timedelta(seconds=delay_seconds)
        job_id = f"{_ONESHOT_PREFIX}{job.name}:{uuid.uuid4().hex[:8]}"
        self.scheduler.add_job(
            self._run_enqueued,
            trigger=DateTrigger(run_date=run_date, timezone=timezone.utc),
            args=[job],
            id=job_id,
            name=f"{job.name} (one-shot)",
            misfire_grace_time=None,  # late is better than never for one-shots
        )

        when = "immediately" if delay_seconds == 0 else f"in {delay_seconds:g}s"
        logger.info(
            f"[DISPATCH] Enqueued {job.name} {when}",
            extra={"event": "job_enqueued", "job": job.name, "delay_seconds": delay_seconds},
        )
        return job_id

    async def _run_enqueued(self, job: Job) -> None:
        # Tracked like fired runs so drain() and shutdown() wait for it
        await self._spawn(self._run(job, None, raise_on_failure=False), name=f"{_ONESHOT_PREFIX}{job.name}")

    # ------------------------------------------------------------------
    # Run loop
    # ------------------------------------------------------------------

    async def dispatch(
        self,
        job: Job,
        *,
        schedule_name: Optional[str] = None,
        raise_on_failure: bool = True,
    ) -> Any:
        """
        Run a job to completion, applying its retry policy, and await it.

        With a schedule_name the run takes part in the overlap rule.

        Raises:
            OverlapSkipped: schedule_name is given and its previous run is active.
            CollaboratorFailure: retries exhausted (unless raise_on_failure=False).
        """
        if schedule_name is not None:
            try:
                self._claim(schedule_name)
            except OverlapSkipped as skipped:
                entry = self.registry.get(schedule_name)
                if entry is not None:
                    self._record_skip(entry, skipped)
                raise
        return await self._run(job, schedule_name, raise_on_failure)

    async def _run(self, job: Job, schedule_name: Optional[str], raise_on_failure: bool) -> Any:
        policy = job.retry_policy
        attempts: list[JobExecutionRecord] = []
        attempt = 1

        try:
            while True:
                self._set_state(schedule_name, RunState.PENDING)
                async with self._slots:
                    self._set_state(schedule_name, RunState.RUNNING)
                    started_at = utcnow()
                    start = time.monotonic()
                    try:
                        result = await job.execute(attempt)
                    except CollaboratorFailure as failure:
                        decision = policy.should_retry(attempt)
                        attempts.append(self._record(JobExecutionRecord(
                            job_name=job.name,
                            attempt=attempt,
                            started_at=started_at,
                            outcome=RunOutcome.RETRYING if decision.retry else RunOutcome.FAILED_TERMINAL,
                            duration_ms=(time.monotonic() - start) * 1000,
                            error=str(failure),
                            schedule_name=schedule_name,
                        )))
                        if not decision.retry:
                            self._set_state(schedule_name, RunState.FAILED_TERMINAL)
                            self._log_terminal_failure(job, attempts, failure)
                            if raise_on_failure:
                                raise
                            return None
                    else:
                        attempts.append(self._record(JobExecutionRecord(
                            job_name=job.name,
                            attempt=attempt,
                            started_at=started_at,
                            outcome=RunOutcome.SUCCEEDED,
                            duration_ms=(time.monotonic() - start) * 1000,
                            schedule_name=schedule_name,
                        )))
                        self._set_state(schedule_name, RunState.SUCCEEDED)
                        if attempt > 1:
                            logger.info(f"[DISPATCH] {job.name} recovered on attempt {attempt}")
                        return result

                self._set_state(schedule_name, RunState.AWAITING_RETRY)
                logger.warning(
                    f"[DISPATCH] {job.name} attempt {attempt}/{policy.max_attempts} failed, "
                    f"retrying in {decision.delay:g}s",
                    extra={"event": "job_retry_scheduled", "job": job.name, "attempt": attempt,
                           "delay_seconds": decision.delay},
                )
                await self._sleep(decision.delay)
                attempt += 1
        finally:
            # Cancelled mid-run: release the schedule so later firings can proceed
            if schedule_name is not None:
                state = self._run_states.get(schedule_name)
                if state is not None and not state.is_terminal:
                    self._run_states.pop(schedule_name, None)

    def _log_terminal_failure(
        self,
        job: Job,
        attempts: list[JobExecutionRecord],
        failure: CollaboratorFailure,
    ) -> None:
        history = "; ".join(
            f"#{r.attempt} at {r.started_at.isoformat(timespec='seconds')}: {r.error}" for r in attempts
        )
        logger.error(
            f"[DISPATCH] {job.name} failed permanently after {len(attempts)} attempt(s): {history}",
            extra={"event": "job_failed_terminal", "job": job.name, "attempt": failure.attempt,
                   "error": str(failure.cause)},
        )
        capture_exception(failure.cause, job_id=job.name, attempts=len(attempts))

    # ------------------------------------------------------------------
    # Run state
    # ------------------------------------------------------------------

    def _claim(self, schedule_name: str) -> None:
        state = self._run_states.get(schedule_name)
        if state is not None and not state.is_terminal:
            raise OverlapSkipped(schedule_name, state.value)
        self._run_states[schedule_name] = RunState.PENDING

    def _set_state(self, schedule_name: Optional[str], state: RunState) -> None:
        if schedule_name is not None:
            self._run_states[schedule_name] = state

    def run_state(self, schedule_name: str) -> Optional[RunState]:
        return self._run_states.get(schedule_name)

    def is_active(self, schedule_name: str) -> bool:
        state = self._run_states.get(schedule_name)
        return state is not None and not state.is_terminal

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    def add_listener(self, listener: RecordListener) -> None:
        """Register a callback (sync or async) invoked with every execution record."""
        self._listeners.append(listener)

    def records_for(self, job_name: str) -> list[JobExecutionRecord]:
        return [r for r in self.history if r.job_name == job_name]

    def _record(self, record: JobExecutionRecord) -> JobExecutionRecord:
        self.history.append(record)
        record_job_run(record.job_name, record.outcome.value, record.duration_ms)

        for listener in self._listeners:
            try:
                result = listener(record)
                if asyncio.iscoroutine(result):
                    self._spawn(result, name=f"record:{record.job_name}")
            except Exception as e:
                logger.warning(f"[DISPATCH] Record listener failed (non-blocking): {e!r}")
        return record

    def _record_skip(self, entry: ScheduleEntry, skipped: OverlapSkipped) -> None:
        logger.info(
            f"[DISPATCH] Skipped {entry.schedule_name}: previous run still {skipped.state}",
            extra={"event": "overlap_skipped", "schedule": entry.schedule_name, "job": entry.job.name},
        )
        record_overlap_skip(entry.schedule_name)
        self._record(JobExecutionRecord(
            job_name=entry.job.name,
            attempt=0,
            started_at=utcnow(),
            outcome=RunOutcome.SKIPPED_OVERLAP,
            schedule_name=entry.schedule_name,
        ))

    # ------------------------------------------------------------------
    # APScheduler plumbing
    # ------------------------------------------------------------------

    def _install(self, entry: ScheduleEntry) -> None:
        self.scheduler.add_job(
            self._on_trigger,
            trigger=build_trigger(entry.trigger, entry.timezone),
            args=[entry.schedule_name],
            id=f"{_SCHEDULE_PREFIX}{entry.schedule_name}",
            name=entry.describe(),
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=self.misfire_grace_time,
        )

    def _on_registry_change(self, schedule_name: str, entry: Optional[ScheduleEntry]) -> None:
        if not self._started:
            return  # start() installs everything registered so far
        if entry is not None:
            self._install(entry)
            return
        try:
            self.scheduler.remove_job(f"{_SCHEDULE_PREFIX}{schedule_name}")
        except JobLookupError:
            logger.debug(f"[DISPATCH] {schedule_name} had no installed trigger")

    def next_run_time(self, schedule_name: str) -> Optional[datetime]:
        if self.scheduler.running:
            aps_job = self.scheduler.get_job(f"{_SCHEDULE_PREFIX}{schedule_name}")
            return aps_job.next_run_time if aps_job else None
        entry = self.registry.get(schedule_name)
        if entry is None:
            return None
        return next_fire_time(entry.trigger, entry.timezone)

    def pending_one_shots(self) -> list[str]:
        return [j.id for j in self.scheduler.get_jobs() if j.id.startswith(_ONESHOT_PREFIX)]

    def log_scheduled_jobs(self) -> None:
        """Heartbeat: log every installed job with its next run time."""
        for aps_job in self.scheduler.get_jobs():
            next_run = getattr(aps_job, "next_run_time", None)
            logger.info(f"[DISPATCH]   {aps_job.name}: next run {next_run.isoformat() if next_run else 'n/a'}")

    # ------------------------------------------------------------------

    def _spawn(self, coro: Awaitable, name: str) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"[DISPATCH] Task {task.get_name()} crashed: {error!r}")
