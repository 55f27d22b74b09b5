"""Tests for current gameweek lookup and the historical record count."""

from contextlib import asynccontextmanager
from datetime import date
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from fplsync.collaborators import (
    BuiltinLookups,
    GameweekClient,
    count_historical_records,
    gameweek_by_calculation,
    select_current_gameweek,
)
from fplsync.config import Settings

SEASON_START = date(2025, 8, 15)


class TestSelectCurrentGameweek:
    def test_prefers_is_current(self):
        events = [
            {"id": 1, "finished": True},
            {"id": 2, "is_current": True},
            {"id": 3, "is_next": True},
        ]
        assert select_current_gameweek(events) == 2

    def test_falls_back_to_event_before_next(self):
        events = [{"id": 4, "finished": True}, {"id": 5, "is_next": True}]
        assert select_current_gameweek(events) == 4

    def test_highest_finished(self):
        events = [{"id": 1, "finished": True}, {"id": 2, "finished": True}, {"id": 3}]
        assert select_current_gameweek(events) == 2

    def test_preseason(self):
        assert select_current_gameweek([{"id": 1, "is_next": True}]) == 1
        assert select_current_gameweek([]) == 1


class TestGameweekByCalculation:
    @pytest.mark.parametrize("today,expected", [
        (date(2025, 8, 10), 1),   # before the season
        (date(2025, 8, 15), 1),
        (date(2025, 8, 22), 2),
        (date(2025, 10, 3), 8),
        (date(2026, 8, 1), 38),   # clamped
    ])
    def test_weeks_since_start(self, today, expected):
        assert gameweek_by_calculation(SEASON_START, today) == expected


def _client(handler, clock=None):
    calls = []

    def recording(request):
        calls.append(request)
        return handler(request)

    http = httpx.AsyncClient(transport=httpx.MockTransport(recording))
    client = GameweekClient(
        "https://fpl.test/api/",
        SEASON_START,
        cache_seconds=3600,
        client=http,
        clock=clock or (lambda: 0.0),
        today=lambda: date(2025, 10, 3),
    )
    return client, calls


class TestGameweekClient:
    @pytest.mark.asyncio
    async def test_reads_bootstrap_static(self):
        client, calls = _client(lambda r: httpx.Response(200, json={"events": [{"id": 9, "is_current": True}]}))

        assert await client.current_gameweek() == 9
        assert str(calls[0].url) == "https://fpl.test/api/bootstrap-static/"

    @pytest.mark.asyncio
    async def test_caches_for_an_hour(self):
        now = [0.0]
        client, calls = _client(
            lambda r: httpx.Response(200, json={"events": [{"id": 9, "is_current": True}]}),
            clock=lambda: now[0],
        )

        await client.current_gameweek()
        now[0] = 3599.0
        await client.current_gameweek()
        assert len(calls) == 1

        now[0] = 3601.0
        await client.current_gameweek()
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_http_error_falls_back_to_calendar(self, caplog):
        client, calls = _client(lambda r: httpx.Response(503))

        assert await client.current_gameweek() == 8
        assert "using calculated gameweek 8" in caplog.text

    @pytest.mark.asyncio
    async def test_fallback_is_not_cached(self):
        responses = [httpx.Response(500), httpx.Response(200, json={"events": [{"id": 10, "is_current": True}]})]
        client, calls = _client(lambda r: responses.pop(0))

        assert await client.current_gameweek() == 8
        assert await client.current_gameweek() == 10

    @pytest.mark.asyncio
    async def test_malformed_payload_falls_back(self):
        client, _ = _client(lambda r: httpx.Response(200, json={"teams": []}))
        assert await client.current_gameweek() == 8

    @pytest.mark.asyncio
    async def test_injected_client_is_not_closed(self):
        client, _ = _client(lambda r: httpx.Response(200, json={"events": []}))
        await client.aclose()
        assert not client._client.is_closed


class TestCountHistoricalRecords:
    @pytest.mark.asyncio
    async def test_uses_scoped_session(self):
        result = MagicMock()
        result.scalar.return_value = 1234
        session = MagicMock()
        session.execute = AsyncMock(return_value=result)
        opened = []

        @asynccontextmanager
        async def factory():
            opened.append(1)
            yield session

        assert await count_historical_records(factory) == 1234
        assert opened == [1]

    @pytest.mark.asyncio
    async def test_empty_table(self):
        result = MagicMock()
        result.scalar.return_value = None
        session = MagicMock()
        session.execute = AsyncMock(return_value=result)

        @asynccontextmanager
        async def factory():
            yield session

        assert await count_historical_records(factory) == 0


class TestFromSettings:
    @pytest.mark.asyncio
    async def test_reads_api_and_season_settings(self):
        settings = Settings(
            _env_file=None,
            FPL_API_BASE_URL="https://fpl.test/api",
            SEASON_START_DATE="2025-08-15",
            GAMEWEEK_CACHE_SECONDS=60,
        )
        http = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200, json={"events": []})))

        client = GameweekClient.from_settings(settings, client=http)

        assert client.base_url == "https://fpl.test/api"
        assert client.season_start == SEASON_START
        assert client.cache_seconds == 60
        await http.aclose()


class TestBuiltinLookups:
    @pytest.mark.asyncio
    async def test_answers_count_and_period(self):
        result = MagicMock()
        result.scalar.return_value = 42
        session = MagicMock()
        session.execute = AsyncMock(return_value=result)

        @asynccontextmanager
        async def factory():
            yield session

        gameweeks, _ = _client(lambda r: httpx.Response(200, json={"events": [{"id": 12, "is_current": True}]}))
        lookups = BuiltinLookups(gameweeks, session_factory=factory)

        assert await lookups.current_historical_record_count() == 42
        assert await lookups.current_period_id() == 12
        await lookups.aclose()
