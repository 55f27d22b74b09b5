"""
Conditional bootstrap of historical data.

Historical collection is expensive and only needed once: the guard reads
the current record count and enqueues the collection job only when the
count is below the threshold. A failing count query is logged and
swallowed; the check simply runs again on the next process start.
"""

import logging
from typing import Awaitable, Callable, Protocol

from fplsync.jobs.base import Job
from fplsync.jobs.retry import RetryPolicy
from fplsync.telemetry.metrics import record_bootstrap_decision

logger = logging.getLogger(__name__)

CHECK_JOB_NAME = "historical-data-check"


class Enqueuer(Protocol):
    def enqueue(self, job: Job) -> str: ...


class BootstrapGuard:
    def __init__(
        self,
        count_records: Callable[[], Awaitable[int]],
        collection_job: Job,
        dispatcher: Enqueuer,
        threshold: int,
    ):
        self._count_records = count_records
        self._collection_job = collection_job
        self._dispatcher = dispatcher
        self.threshold = threshold

    async def check_and_initialize(self) -> bool:
        """
        Enqueue historical collection if too few records exist.

        Returns:
            True if the collection job was enqueued.
        """
        try:
            count = await self._count_records()
        except Exception as e:
            logger.error(f"[BOOTSTRAP] Historical record count failed, deferring bootstrap: {e!r}")
            record_bootstrap_decision("error")
            return False

        if count < self.threshold:
            logger.info(
                f"[BOOTSTRAP] Insufficient historical data ({count} records, threshold "
                f"{self.threshold}). Enqueueing {self._collection_job.name}"
            )
            self._dispatcher.enqueue(self._collection_job)
            record_bootstrap_decision("enqueued", observed=count)
            return True

        logger.info(
            f"[BOOTSTRAP] Historical data already exists ({count} records). "
            f"Skipping {self._collection_job.name}"
        )
        record_bootstrap_decision("skipped", observed=count)
        return False

    def as_job(self, retry_policy: RetryPolicy = RetryPolicy(2, (30,))) -> Job:
        return Job(
            name=CHECK_JOB_NAME,
            operation=self.check_and_initialize,
            retry_policy=retry_policy,
            description=f"enqueue {self._collection_job.name} below {self.threshold} records",
        )
