from functools import lru_cache
from typing import Any

from pydantic import PostgresDsn, RedisDsn, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Application
    app_name: str = "Contribution Leaderboard"
    app_version: str = "1.0.0"
    debug: bool = False
    environment: str = "development"

    # Database
    database_url: PostgresDsn
    database_pool_size: int = 5
    database_max_overflow: int = 10

    # Redis
    redis_url: RedisDsn

    # GitHub API (GitHub refreshes are skipped without a token)
    github_token: str | None = None
    github_graphql_url: str = "https://api.github.com/graphql"
    github_timeout_seconds: float = 30.0

    # GitLab API
    gitlab_token: str | None = None
    gitlab_base_url: str = "https://gitlab.com"
    gitlab_timeout_seconds: float = 15.0

    # Internal endpoints
    cron_secret: str | None = None

    # Leaderboard refresh
    leaderboard_default_concurrency: int = 4
    leaderboard_daily_user_limit: int = 1000
    leaderboard_lock_ttl_seconds: int = 180

    # Job processing
    celery_broker_url: str | None = None
    celery_result_backend: str | None = None
    job_default_timeout: int = 3600  # 1 hour

    @field_validator("celery_broker_url", "celery_result_backend", mode="before")
    @classmethod
    def set_celery_urls(cls, v: str | None, info: Any) -> str | None:
        if v is None and "redis_url" in info.data:
            return str(info.data["redis_url"])
        return v


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
