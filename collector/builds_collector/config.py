"""
Typed settings for the builds collector worker service.

Uses Pydantic Settings to load configuration from environment variables
with validation and type safety. Settings are loaded from the root .env
file for local development; in containers the variables are passed directly.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .validate_env import validate_env


class WarcraftLogsConfig(BaseModel):
    api_url: str = Field(default="https://www.warcraftlogs.com/api/v2/client")
    token_url: str = Field(default="https://www.warcraftlogs.com/oauth/token")
    request_timeout_seconds: float = 30.0
    # Wait used when the API reports a rate limit without a Retry-After header
    default_retry_after_seconds: float = 5.0
    # Refresh the OAuth token this many seconds before it actually expires
    token_refresh_margin_seconds: int = 300


class RateBudgetConfig(BaseModel):
    total_points: float = 18000.0
    # Rankings query (~15 points) plus two report queries (~36 points)
    cost_per_combination: float = 51.0
    safety_margin: float = 1.10


class RankingsStageConfig(BaseModel):
    page_size: int = 5  # spec/dungeon combinations per page
    max_rankings_per_spec: int = 150
    upstream_page_limit: int = 2
    update_interval_days: int = 7
    max_pages_per_execution: int = 20


class ReportsStageConfig(BaseModel):
    page_size: int = 10
    max_pages_per_execution: int = 25


class BuildsStageConfig(BaseModel):
    page_size: int = 50
    report_batch_size: int = 10
    max_concurrency: int = 4
    max_pages_per_execution: int = 10
    child_timeout_seconds: float = 3600.0
    child_max_attempts: int = 2


class StatisticsConfig(BaseModel):
    page_size: int = 100
    num_workers: int = 4
    max_concurrency: int = 4
    lock_timeout_seconds: int = 3600


class ActivityConfig(BaseModel):
    initial_interval_seconds: float = 1.0
    backoff_coefficient: float = 2.0
    max_interval_seconds: float = 60.0
    max_attempts: int = 3
    start_to_close_seconds: float = 600.0
    heartbeat_timeout_seconds: float = 120.0


class RetentionConfig(BaseModel):
    workflow_state_days: int = 30
    # Running checkpoints older than this are treated as interrupted
    stale_running_hours: int = 12


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Nested sections group the knobs of each pipeline stage so a worker can be
    tuned without touching code. All settings are validated by Pydantic.
    """
    model_config = SettingsConfigDict(
        env_file=Path(__file__).resolve().parents[2] / ".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
        extra="allow",
    )

    database_url: str = Field(..., alias="DATABASE_URL")

    @field_validator("database_url", mode="before")
    @classmethod
    def convert_async_to_sync(cls, v: str) -> str:
        """Convert an asyncpg URL to psycopg so the synchronous engine can use it."""
        if isinstance(v, str) and "asyncpg" in v:
            return v.replace("asyncpg", "psycopg")
        return v

    redis_url: str = Field("redis://localhost:6379/3", alias="REDIS_URL")
    redis_host: str = Field("localhost", alias="REDIS_HOST")
    redis_password: str | None = Field(None, alias="REDIS_PASSWORD")
    redis_db: int = Field(3, alias="REDIS_DB")

    @model_validator(mode="after")
    def _build_redis_url(self) -> Settings:
        """Build the Redis URL from components when REDIS_HOST points elsewhere."""
        if self.redis_host != "localhost":
            if self.redis_password:
                self.redis_url = f"redis://:{self.redis_password}@{self.redis_host}:6379/{self.redis_db}"
            else:
                self.redis_url = f"redis://{self.redis_host}:6379/{self.redis_db}"
        return self

    wcl_client_id: str | None = Field(None, alias="WCL_CLIENT_ID")
    wcl_client_secret: str | None = Field(None, alias="WCL_CLIENT_SECRET")
    environment: str = Field("development", alias="ENVIRONMENT")
    log_level: str | None = Field(None, alias="LOG_LEVEL")
    sql_echo: bool = Field(False, alias="SQL_ECHO")

    workflow_queue: str = Field("builds-collector", alias="WORKFLOW_QUEUE")
    children_queue: str = Field("builds-collector-children", alias="CHILDREN_QUEUE")
    batch_queue: str = Field("builds-collector-batches", alias="BATCH_QUEUE")
    # How often a waiting workflow task polls its children's results
    child_poll_interval_seconds: float = Field(2.0, alias="CHILD_POLL_INTERVAL_SECONDS")

    warcraftlogs: WarcraftLogsConfig = Field(default_factory=WarcraftLogsConfig)
    rate_budget: RateBudgetConfig = Field(default_factory=RateBudgetConfig)
    rankings: RankingsStageConfig = Field(default_factory=RankingsStageConfig)
    reports: ReportsStageConfig = Field(default_factory=ReportsStageConfig)
    builds: BuildsStageConfig = Field(default_factory=BuildsStageConfig)
    statistics: StatisticsConfig = Field(default_factory=StatisticsConfig)
    activities: ActivityConfig = Field(default_factory=ActivityConfig)
    retention: RetentionConfig = Field(default_factory=RetentionConfig)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    validate_env()
    return Settings()


settings = get_settings()
