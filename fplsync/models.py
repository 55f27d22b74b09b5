"""Database models using SQLModel."""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import Column, DateTime, UniqueConstraint
from sqlmodel import Field, SQLModel


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class JobRun(SQLModel, table=True):
    """One job attempt (or skipped firing), persisted for ops fallback."""

    __tablename__ = "job_runs"

    id: Optional[int] = Field(default=None, primary_key=True)
    job_name: str = Field(max_length=100, index=True)
    schedule_name: Optional[str] = Field(default=None, max_length=100)
    attempt: int = Field(default=1)
    status: str = Field(
        max_length=20, description="succeeded, retrying, failed_terminal, skipped_overlap"
    )
    started_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False, index=True))
    finished_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    duration_ms: Optional[int] = Field(default=None)
    error_message: Optional[str] = Field(default=None)
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False, index=True),
    )


class HistoricalPlayerPerformance(SQLModel, table=True):
    """Per-gameweek player performance used as training history.

    Written by the historical collection service; this service only counts rows.
    """

    __tablename__ = "historical_player_performances"
    __table_args__ = (UniqueConstraint("fpl_player_id", "season", "gameweek"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    fpl_player_id: int = Field(index=True)
    player_name: str = Field(max_length=255)
    season: str = Field(max_length=10, description="e.g. 2024-25")
    gameweek: int
    points: int = 0
    minutes: int = 0
    goals: int = 0
    assists: int = 0
    clean_sheets: int = 0
    bonus_points: int = 0
    influence: Decimal = Field(default=Decimal("0"), max_digits=8, decimal_places=2)
    creativity: Decimal = Field(default=Decimal("0"), max_digits=8, decimal_places=2)
    threat: Decimal = Field(default=Decimal("0"), max_digits=8, decimal_places=2)
    created_at: datetime = Field(default_factory=utc_now, sa_column=Column(DateTime(timezone=True), nullable=False))
