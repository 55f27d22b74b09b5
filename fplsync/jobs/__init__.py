"""Scheduled job layer: jobs, retry policies, triggers, schedules, bootstrap."""

from fplsync.jobs.base import Job, JobExecutionRecord, RunOutcome, RunState
from fplsync.jobs.bootstrap import BootstrapGuard
from fplsync.jobs.errors import (
    CollaboratorFailure,
    InvalidArgument,
    InvalidTrigger,
    JobError,
    OverlapSkipped,
    PipelineStepError,
)
from fplsync.jobs.pipeline import PipelineSequencer, PipelineStep
from fplsync.jobs.registry import ScheduleEntry, ScheduleRegistry
from fplsync.jobs.retry import NO_RETRY, RetryDecision, RetryPolicy
from fplsync.jobs.triggers import After, Cron, Every, Trigger, parse_trigger

__all__ = [
    "Job",
    "JobExecutionRecord",
    "RunOutcome",
    "RunState",
    "BootstrapGuard",
    "CollaboratorFailure",
    "InvalidArgument",
    "InvalidTrigger",
    "JobError",
    "OverlapSkipped",
    "PipelineStepError",
    "PipelineSequencer",
    "PipelineStep",
    "ScheduleEntry",
    "ScheduleRegistry",
    "NO_RETRY",
    "RetryDecision",
    "RetryPolicy",
    "After",
    "Cron",
    "Every",
    "Trigger",
    "parse_trigger",
]
