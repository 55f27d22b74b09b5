"""Job layer exception taxonomy."""

from typing import Optional


class JobError(Exception):
    """Base class for job layer errors."""


class InvalidArgument(JobError, ValueError):
    """A programming error: a value outside the accepted domain."""


class InvalidTrigger(JobError, ValueError):
    """A schedule was registered with a malformed trigger or timezone."""


class CollaboratorFailure(JobError):
    """An external operation failed (or timed out) while a job was running."""

    def __init__(self, job_name: str, attempt: int, cause: BaseException):
        self.job_name = job_name
        self.attempt = attempt
        self.cause = cause
        super().__init__(f"{job_name} attempt {attempt} failed: {_describe(cause)}")


class OverlapSkipped(JobError):
    """A recurring trigger fired while the previous run was still active.

    Not a failure. The dispatcher raises and handles it internally so the
    skip can be logged and counted.
    """

    def __init__(self, schedule_name: str, state: Optional[str] = None):
        self.schedule_name = schedule_name
        self.state = state
        super().__init__(f"{schedule_name} still {state or 'active'}, firing skipped")


class PipelineStepError(JobError):
    """A step of a sequenced pipeline failed; later steps were not run."""

    def __init__(self, pipeline: str, step: str, index: int, total: int, cause: BaseException):
        self.pipeline = pipeline
        self.step = step
        self.index = index
        self.total = total
        self.cause = cause
        super().__init__(f"{pipeline} step {index}/{total} ({step}) failed: {_describe(cause)}")


def _describe(exc: BaseException) -> str:
    text = str(exc)
    return f"{type(exc).__name__}: {text}" if text else type(exc).__name__
