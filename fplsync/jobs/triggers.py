"""
Trigger expressions for schedules.

A trigger is one of three frozen variants:

- Cron(expression): standard 5-field crontab, evaluated in the entry's timezone
- Every(seconds): fixed interval
- After(seconds): one-shot, fires once after a relative delay

Each variant is evaluated by its own APScheduler trigger (see build_trigger).
Validation happens here so a malformed schedule is rejected at registration
time instead of silently never firing.
"""

import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from apscheduler.triggers.base import BaseTrigger
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from fplsync.jobs.errors import InvalidTrigger

# Crontab numbering (0 and 7 = Sunday). APScheduler 3.x numbers weekdays from
# Monday, so numeric day_of_week fields are translated to names before use.
_CRONTAB_DAYS = ["sun", "mon", "tue", "wed", "thu", "fri", "sat", "sun"]

_UNIT_SECONDS = {
    "second": 1,
    "minute": 60,
    "hour": 3600,
    "day": 86400,
}

_RELATIVE_RE = re.compile(
    r"^(every|after)\s+(?:(\d+(?:\.\d+)?)\s+)?(second|minute|hour|day)s?$",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class Cron:
    expression: str

    def describe(self) -> str:
        return f"cron '{self.expression}'"


@dataclass(frozen=True)
class Every:
    seconds: float

    def describe(self) -> str:
        return f"every {_humanize(self.seconds)}"


@dataclass(frozen=True)
class After:
    seconds: float

    def describe(self) -> str:
        return f"after {_humanize(self.seconds)}"


Trigger = Union[Cron, Every, After]


def parse_trigger(text: str) -> Trigger:
    """
    Parse a trigger string.

    Accepts "every 2 hours", "every hour", "after 10 minutes" or a crontab
    expression such as "0 */2 * * *". The result is not validated yet; see
    validate_trigger.
    """
    if not isinstance(text, str) or not text.strip():
        raise InvalidTrigger(f"empty trigger expression: {text!r}")

    normalized = " ".join(text.split())
    match = _RELATIVE_RE.match(normalized)
    if match:
        kind, amount, unit = match.groups()
        seconds = float(amount or 1) * _UNIT_SECONDS[unit.lower()]
        return Every(seconds) if kind.lower() == "every" else After(seconds)

    if normalized.split()[0].lower() in ("every", "after"):
        raise InvalidTrigger(f"unrecognized relative trigger: {text!r}")

    return Cron(normalized)


def build_trigger(
    trigger: Trigger,
    timezone: str = "UTC",
    now: Optional[datetime] = None,
) -> BaseTrigger:
    """Build the APScheduler trigger for a validated trigger variant."""
    if isinstance(trigger, Cron):
        minute, hour, day, month, day_of_week = _split_crontab(trigger.expression)
        return CronTrigger(
            minute=minute,
            hour=hour,
            day=day,
            month=month,
            day_of_week=_crontab_day_of_week(day_of_week),
            timezone=timezone,
        )
    if isinstance(trigger, Every):
        start = now + timedelta(seconds=trigger.seconds) if now else None
        return IntervalTrigger(seconds=trigger.seconds, start_date=start, timezone=timezone)
    if isinstance(trigger, After):
        start = now or datetime.now(ZoneInfo(timezone))
        return DateTrigger(run_date=start + timedelta(seconds=trigger.seconds), timezone=timezone)
    raise InvalidTrigger(f"unsupported trigger type: {type(trigger).__name__}")


def validate_trigger(trigger: Union[Trigger, str], timezone: str = "UTC") -> Trigger:
    """
    Validate a trigger (and timezone), returning the parsed variant.

    Raises:
        InvalidTrigger: malformed expression, non-positive duration, or
            unknown timezone.
    """
    if isinstance(trigger, str):
        trigger = parse_trigger(trigger)
    if not isinstance(trigger, (Cron, Every, After)):
        raise InvalidTrigger(f"unsupported trigger type: {type(trigger).__name__}")

    validate_timezone(timezone)

    if isinstance(trigger, (Every, After)) and not trigger.seconds > 0:
        raise InvalidTrigger(f"{trigger.describe()} must be a positive duration")

    try:
        build_trigger(trigger, timezone)
    except (ValueError, TypeError) as e:
        raise InvalidTrigger(f"invalid {trigger.describe()}: {e}") from e

    return trigger


def validate_timezone(timezone: str) -> str:
    if not isinstance(timezone, str) or not timezone:
        raise InvalidTrigger(f"invalid timezone: {timezone!r}")
    try:
        ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise InvalidTrigger(f"unknown timezone: {timezone!r}") from e
    return timezone


def next_fire_time(
    trigger: Trigger,
    timezone: str = "UTC",
    now: Optional[datetime] = None,
) -> Optional[datetime]:
    """Next time the trigger would fire after `now` (None for an expired one-shot)."""
    now = now or datetime.now(ZoneInfo(timezone))
    return build_trigger(trigger, timezone, now=now).get_next_fire_time(None, now)


def _split_crontab(expression: str) -> list[str]:
    fields = expression.split()
    if len(fields) != 5:
        raise ValueError(f"expected 5 crontab fields, got {len(fields)}")
    return fields


def _crontab_day_of_week(field: str) -> str:
    parts: list[str] = []

    def add(name: str) -> None:
        if name not in parts:
            parts.append(name)

    for token in field.split(","):
        body, _, step = token.partition("/")
        if step:
            # Stepped tokens are expanded so the step counts from Sunday
            for day in _stepped_days(body, step):
                add(_CRONTAB_DAYS[day])
            continue
        if body == "*" or not any(c.isdigit() for c in body):
            add(token)
            continue

        start, _, end = body.partition("-")
        first = _day_name(start)
        if not end:
            add(first)
            continue

        last = _day_name(end)
        if int(start) == 0:
            # "0-3" wraps from Sunday; APScheduler ranges start on Monday
            add("sun")
            if int(end) >= 1:
                add(f"mon-{last}")
        else:
            add(f"{first}-{last}")
    return ",".join(parts)


def _stepped_days(body: str, step: str) -> list[int]:
    if not step.isdigit() or int(step) == 0:
        raise ValueError(f"invalid day of week step: {step!r}")
    if body == "*":
        low, high = 0, 6
    else:
        start, _, end = body.partition("-")
        _day_name(start)
        if end:
            _day_name(end)
        low, high = int(start), int(end or 7)
        if low > high:
            raise ValueError(f"invalid day of week range: {body!r}")
    return sorted({day % 7 for day in range(low, high + 1, int(step))})


def _day_name(value: str) -> str:
    if not value.isdigit() or int(value) > 7:
        raise ValueError(f"invalid day of week: {value!r}")
    return _CRONTAB_DAYS[int(value)]


def _humanize(seconds: float) -> str:
    for unit, size in (("day", 86400), ("hour", 3600), ("minute", 60)):
        if seconds >= size and seconds % size == 0:
            count = int(seconds // size)
            return f"{count} {unit}{'s' if count != 1 else ''}"
    return f"{seconds:g}s"
