"""
Sequenced pipelines: several collaborator calls run as one job.

Steps run strictly in declaration order, each awaited before the next.
The first failing step aborts the sequence and the composite counts as a
single failed attempt; a retry starts again from step 1, so steps must be
safe to re-run.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Iterable, Optional, Union

from fplsync.jobs.base import Job, Operation
from fplsync.jobs.errors import InvalidArgument, PipelineStepError
from fplsync.jobs.retry import NO_RETRY, RetryPolicy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PipelineStep:
    name: str
    operation: Operation = field(compare=False)


class PipelineSequencer:
    def __init__(
        self,
        name: str,
        steps: Iterable[Union[PipelineStep, tuple[str, Operation]]],
        retry_policy: RetryPolicy = NO_RETRY,
        timeout_seconds: Optional[float] = None,
        description: str = "",
    ):
        self.name = name
        self.steps = tuple(s if isinstance(s, PipelineStep) else PipelineStep(*s) for s in steps)
        if not self.steps:
            raise InvalidArgument(f"pipeline {name} needs at least one step")
        self.retry_policy = retry_policy
        self.timeout_seconds = timeout_seconds
        self.description = description or " -> ".join(s.name for s in self.steps)

    async def run(self) -> None:
        total = len(self.steps)
        for index, step in enumerate(self.steps, start=1):
            logger.info(f"[PIPELINE] {self.name} step {index}/{total}: {step.name}")
            start = time.monotonic()
            try:
                await step.operation()
            except Exception as e:
                logger.warning(
                    f"[PIPELINE] {self.name} aborted at step {index}/{total} ({step.name}): {e!r}"
                )
                raise PipelineStepError(self.name, step.name, index, total, e) from e
            logger.debug(
                f"[PIPELINE] {self.name} step {step.name} done in "
                f"{(time.monotonic() - start) * 1000:.0f}ms"
            )
        logger.info(f"[PIPELINE] {self.name} completed all {total} steps")

    def as_job(self) -> Job:
        return Job(
            name=self.name,
            operation=self.run,
            retry_policy=self.retry_policy,
            timeout_seconds=self.timeout_seconds,
            description=self.description,
        )
