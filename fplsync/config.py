"""Application configuration using Pydantic Settings."""

from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Database (historical record counts, optional job run tracking)
    DATABASE_URL: str = "sqlite:///./fplsync.db"

    # ═══════════════════════════════════════════════════════════════
    # Scheduler
    # ═══════════════════════════════════════════════════════════════
    SCHEDULER_ENABLED: bool = True
    SCHEDULER_TIMEZONE: str = "UTC"
    SCHEDULER_MAX_CONCURRENT_RUNS: int = 4      # worker pool size
    SCHEDULER_MISFIRE_GRACE_SECONDS: int = 300  # late firings within this window still run

    JOB_TIMEOUT_SECONDS: float = 1800.0         # per-attempt deadline for collaborator calls
    JOB_HISTORY_SIZE: int = 500                 # in-memory execution records kept

    # Persist every execution record to job_runs (best-effort, off by default)
    JOB_TRACKING_DB_ENABLED: bool = False
    JOB_RUNS_RETENTION_DAYS: int = 7

    # ═══════════════════════════════════════════════════════════════
    # Bootstrap: historical data collection below this record count
    # ═══════════════════════════════════════════════════════════════
    BOOTSTRAP_THRESHOLD: int = 100

    # Startup one-shots, staggered (seconds after boot; must be increasing)
    STARTUP_JOBS_ENABLED: bool = True
    STARTUP_BOOTSTRAP_DELAY_SECONDS: int = 120
    STARTUP_INJURY_DELAY_SECONDS: int = 600
    STARTUP_TRANSFER_DELAY_SECONDS: int = 900
    STARTUP_PREDICTION_DELAY_SECONDS: int = 1200

    # ═══════════════════════════════════════════════════════════════
    # Recurring schedules (crontab, evaluated in SCHEDULER_TIMEZONE)
    # ═══════════════════════════════════════════════════════════════
    CRON_FULL_DATA_UPDATE: str = "0 6,18 * * *"        # 06:00 and 18:00
    CRON_QUICK_DATA_UPDATE: str = "0 */2 * * *"        # every 2 hours
    CRON_INJURY_UPDATES: str = "0 8,14,20 * * *"       # three times daily
    CRON_TRANSFER_NEWS_UPDATES: str = "0 */4 * * *"    # every 4 hours
    CRON_PREDICTION_ANALYSIS: str = "30 7,19 * * *"    # 30 min after the full updates
    CRON_WEEKEND_PREDICTIONS: str = "0 9 * * 5,6"      # Friday and Saturday 09:00
    CRON_WEEKEND_INTENSIVE_UPDATE: str = "0 * * * 6,0" # hourly Saturday and Sunday

    # ═══════════════════════════════════════════════════════════════
    # FPL API (current gameweek lookup)
    # ═══════════════════════════════════════════════════════════════
    FPL_API_BASE_URL: str = "https://fantasy.premierleague.com/api"
    FPL_API_TIMEOUT_SECONDS: float = 30.0
    GAMEWEEK_CACHE_SECONDS: int = 3600
    SEASON_START_DATE: str = "2025-08-15"  # calendar fallback when the API is down

    # Bearer token for /metrics (empty = open)
    METRICS_BEARER_TOKEN: str = ""

    # Sentry (error tracking is off without a DSN)
    SENTRY_DSN: str = ""
    SENTRY_ENVIRONMENT: str = "development"
    SENTRY_TRACES_SAMPLE_RATE: float = 0.0
    GIT_COMMIT_SHA: str = ""

    # "package.module:factory" returning the StatsCollaborators implementation
    COLLABORATORS_FACTORY: str = ""

    @model_validator(mode="after")
    def _check_startup_stagger(self):
        delays = [
            self.STARTUP_BOOTSTRAP_DELAY_SECONDS,
            self.STARTUP_INJURY_DELAY_SECONDS,
            self.STARTUP_TRANSFER_DELAY_SECONDS,
            self.STARTUP_PREDICTION_DELAY_SECONDS,
        ]
        if delays[0] <= 0 or any(later <= earlier for earlier, later in zip(delays, delays[1:])):
            raise ValueError(f"startup delays must be positive and strictly increasing, got {delays}")
        return self


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
