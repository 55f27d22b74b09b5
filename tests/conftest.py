"""Shared fixtures for job layer tests."""

import asyncio

import pytest
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from fplsync.jobs.registry import ScheduleRegistry
from fplsync.scheduler import JobDispatcher


class FakeSleep:
    """Records retry delays instead of waiting them out."""

    def __init__(self):
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)
        await asyncio.sleep(0)


class Flaky:
    """Async operation that fails a fixed number of times, then succeeds."""

    def __init__(self, failures, result="ok", error=RuntimeError("upstream unavailable")):
        self.failures = failures
        self.result = result
        self.error = error
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return self.result


@pytest.fixture
def fake_sleep():
    return FakeSleep()


@pytest.fixture
def registry():
    return ScheduleRegistry(default_timezone="UTC")


@pytest.fixture
def dispatcher(registry, fake_sleep):
    return JobDispatcher(registry, AsyncIOScheduler(timezone="UTC"), sleep=fake_sleep)
