"""
Schedule registry: schedule name -> (job, trigger, timezone).

Registration is an upsert keyed by schedule name, so re-registering every
schedule at process start is idempotent. Triggers are validated before the
entry is stored; a malformed schedule raises InvalidTrigger and the
registry is left unchanged.

The entry map is lock-protected because upserts may come from request
handlers while the dispatcher evaluates entries. Subscribers (the
dispatcher) are notified outside the lock.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Optional, Union

from fplsync.jobs.base import Job
from fplsync.jobs.errors import InvalidArgument
from fplsync.jobs.triggers import Trigger, validate_timezone, validate_trigger

logger = logging.getLogger(__name__)

# Called with (schedule_name, entry); entry is None when the schedule was removed.
RegistryListener = Callable[[str, Optional["ScheduleEntry"]], None]


@dataclass(frozen=True)
class ScheduleEntry:
    schedule_name: str
    job: Job
    trigger: Trigger
    timezone: str = "UTC"

    def describe(self) -> str:
        return f"{self.schedule_name}: {self.job.name} {self.trigger.describe()} ({self.timezone})"


class ScheduleRegistry:
    def __init__(self, default_timezone: str = "UTC"):
        self.default_timezone = validate_timezone(default_timezone)
        self._entries: dict[str, ScheduleEntry] = {}
        self._listeners: list[RegistryListener] = []
        self._lock = threading.RLock()

    def upsert(
        self,
        schedule_name: str,
        job: Job,
        trigger: Union[Trigger, str],
        timezone: Optional[str] = None,
    ) -> ScheduleEntry:
        """
        Register or replace a schedule.

        The replacement takes effect on the next evaluation cycle; a run
        already in flight under the old entry keeps its own Job reference.

        Raises:
            InvalidArgument: empty schedule name or missing job.
            InvalidTrigger: malformed trigger or unknown timezone.
        """
        if not isinstance(schedule_name, str) or not schedule_name.strip():
            raise InvalidArgument(f"schedule name must be a non-empty string, got {schedule_name!r}")
        if not isinstance(job, Job):
            raise InvalidArgument(f"schedule {schedule_name} needs a Job, got {type(job).__name__}")

        tz = timezone or self.default_timezone
        parsed = validate_trigger(trigger, tz)
        entry = ScheduleEntry(schedule_name=schedule_name, job=job, trigger=parsed, timezone=tz)

        with self._lock:
            replaced = schedule_name in self._entries
            self._entries[schedule_name] = entry
            listeners = list(self._listeners)

        logger.info(f"[SCHEDULES] {'Replaced' if replaced else 'Registered'} {entry.describe()}")
        self._notify(listeners, schedule_name, entry)
        return entry

    def remove(self, schedule_name: str) -> bool:
        with self._lock:
            entry = self._entries.pop(schedule_name, None)
            listeners = list(self._listeners)

        if entry is None:
            return False
        logger.info(f"[SCHEDULES] Removed {schedule_name}")
        self._notify(listeners, schedule_name, None)
        return True

    def get(self, schedule_name: str) -> Optional[ScheduleEntry]:
        with self._lock:
            return self._entries.get(schedule_name)

    def list(self) -> list[ScheduleEntry]:
        """Snapshot of all entries in registration order."""
        with self._lock:
            return list(self._entries.values())

    def subscribe(self, listener: RegistryListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, schedule_name: object) -> bool:
        with self._lock:
            return schedule_name in self._entries

    def _notify(self, listeners: list, schedule_name: str, entry: Optional[ScheduleEntry]) -> None:
        for listener in listeners:
            listener(schedule_name, entry)
