"""
External collaborators consumed by the job layer.

The scraping, prediction and historical collection services live outside
this package; jobs only see the StatsCollaborators protocol, and the object
implementing it is built by the COLLABORATORS_FACTORY named in settings.

Two building blocks for that factory are provided here: the historical
record count (a COUNT on the training table through a scoped session) and
the current gameweek lookup against the public FPL API. BuiltinLookups
wires both into the two protocol methods they answer, so a factory only has
to supply the refresh, prediction and collection services:

    class Services(BuiltinLookups):
        def __init__(self, settings):
            super().__init__(GameweekClient.from_settings(settings))
        async def refresh_core_records(self): ...
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, AsyncContextManager, Callable, Optional, Protocol

import httpx
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from fplsync.config import Settings
from fplsync.database import session_scope
from fplsync.models import HistoricalPlayerPerformance

logger = logging.getLogger(__name__)

MAX_GAMEWEEK = 38


@dataclass
class PredictionResult:
    period_id: int
    top_performers: list[Any] = field(default_factory=list)
    best_value: list[Any] = field(default_factory=list)
    differentials: list[Any] = field(default_factory=list)

    @property
    def analyzed_count(self) -> int:
        return len(self.top_performers) + len(self.best_value) + len(self.differentials)


@dataclass
class CollectionSummary:
    success: bool
    current_season_records: int = 0
    synthetic_records: int = 0
    alternative_source_records: int = 0
    error_message: Optional[str] = None

    @property
    def total_records_created(self) -> int:
        return self.current_season_records + self.synthetic_records + self.alternative_source_records


class StatsCollaborators(Protocol):
    """Operations the jobs call. Refresh operations must be safe to re-run."""

    async def refresh_core_records(self) -> None: ...

    async def refresh_injury_records(self) -> None: ...

    async def refresh_transfer_records(self) -> None: ...

    async def compute_prediction(self, period_id: int) -> PredictionResult: ...

    async def current_historical_record_count(self) -> int: ...

    async def run_historical_collection(self) -> CollectionSummary: ...

    async def current_period_id(self) -> int: ...


async def count_historical_records(
    session_factory: Callable[[], AsyncContextManager[AsyncSession]] = session_scope,
) -> int:
    """Number of historical player performance rows (scoped session per call)."""
    async with session_factory() as session:
        result = await session.execute(select(func.count(HistoricalPlayerPerformance.id)))
        return result.scalar() or 0


# =============================================================================
# CURRENT GAMEWEEK
# =============================================================================


def select_current_gameweek(events: list[dict]) -> int:
    """
    Pick the current gameweek from bootstrap-static events.

    Order of preference: the event flagged is_current; the one before the
    event flagged is_next; the highest finished event; 1.
    """
    current = 1
    for event in events:
        event_id = int(event["id"])
        if event.get("is_current"):
            return event_id
        if event.get("is_next"):
            return max(1, event_id - 1)
        if event.get("finished"):
            current = max(current, event_id)
    return current


def gameweek_by_calculation(season_start: date, today: date) -> int:
    """Calendar estimate: one gameweek per week since the season start, clamped to 1..38."""
    weeks_since_start = (today - season_start).days // 7
    return min(MAX_GAMEWEEK, max(1, weeks_since_start + 1))


class GameweekClient:
    """Current gameweek from the FPL API, cached, with a calendar fallback."""

    def __init__(
        self,
        base_url: str,
        season_start: date,
        timeout: float = 30.0,
        cache_seconds: int = 3600,
        client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.monotonic,
        today: Callable[[], date] = lambda: datetime.utcnow().date(),
    ):
        self.base_url = base_url.rstrip("/")
        self.season_start = season_start
        self.cache_seconds = cache_seconds
        self._client = client or httpx.AsyncClient(
            timeout=timeout,
            headers={"User-Agent": "fplsync/0.1 (+scheduled stats refresh)"},
        )
        self._owns_client = client is None
        self._clock = clock
        self._today = today
        self._cached: Optional[int] = None
        self._cache_expiry = 0.0

    @classmethod
    def from_settings(cls, settings: Settings, client: Optional[httpx.AsyncClient] = None) -> "GameweekClient":
        return cls(
            base_url=settings.FPL_API_BASE_URL,
            season_start=date.fromisoformat(settings.SEASON_START_DATE),
            timeout=settings.FPL_API_TIMEOUT_SECONDS,
            cache_seconds=settings.GAMEWEEK_CACHE_SECONDS,
            client=client,
        )

    async def current_gameweek(self) -> int:
        if self._cached is not None and self._clock() < self._cache_expiry:
            return self._cached

        try:
            logger.info("[GAMEWEEK] Fetching current gameweek from FPL API...")
            response = await self._client.get(f"{self.base_url}/bootstrap-static/")
            response.raise_for_status()
            gameweek = select_current_gameweek(response.json()["events"])
        except (httpx.HTTPError, KeyError, TypeError, ValueError) as e:
            fallback = gameweek_by_calculation(self.season_start, self._today())
            logger.error(f"[GAMEWEEK] FPL API lookup failed ({e!r}), using calculated gameweek {fallback}")
            return fallback

        self._cached = gameweek
        self._cache_expiry = self._clock() + self.cache_seconds
        logger.info(f"[GAMEWEEK] Current gameweek determined as {gameweek}")
        return gameweek

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class BuiltinLookups:
    """current_historical_record_count and current_period_id for collaborator factories."""

    def __init__(
        self,
        gameweeks: GameweekClient,
        session_factory: Callable[[], AsyncContextManager[AsyncSession]] = session_scope,
    ):
        self.gameweeks = gameweeks
        self.session_factory = session_factory

    async def current_historical_record_count(self) -> int:
        return await count_historical_records(self.session_factory)

    async def current_period_id(self) -> int:
        return await self.gameweeks.current_gameweek()

    async def aclose(self) -> None:
        await self.gameweeks.aclose()
