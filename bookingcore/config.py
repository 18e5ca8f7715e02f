"""Centralized application configuration using Pydantic settings."""
from functools import lru_cache
from typing import List, Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-driven configuration shared across services."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    database_url: str = Field(
        default="sqlite:///./reservations.db",
        description="SQLAlchemy database URL. Defaults to local SQLite for development.",
    )
    run_db_migrations: bool = Field(
        default=False,
        description="Whether this service should create/update database tables on startup.",
    )
    jwt_secret: str = Field(default="super-secret", description="JWT signing secret")
    jwt_algorithm: str = Field(default="HS256", description="JWT signing algorithm")
    access_token_expire_minutes: int = Field(default=60, description="Token lifetime in minutes")
    cors_origins: List[str] = Field(default_factory=lambda: ["*"], description="Allowed CORS origins")
    default_rate_limit: str = Field(default="30/minute", description="Global rate limiting rule")
    rate_limiting_enabled: bool = Field(default=True, description="Toggle to disable SlowAPI limits (useful in tests)")
    room_cache_ttl: int = Field(default=60, description="TTL (s) for cached room listings")

    commit_retry_attempts: int = Field(
        default=3,
        ge=1,
        description="How many times an admission unit of work is retried after a transient storage failure.",
    )
    interval_index_backend: Literal["sql", "memory"] = Field(
        default="sql",
        description="Conflict index: 'sql' queries the database, 'memory' keeps a per-room sorted index (single process only).",
    )

    events_enabled: bool = Field(default=False, description="Publish reservation events to RabbitMQ")
    event_broker_host: str = Field(default="rabbitmq", description="RabbitMQ host for reservation events")
    event_queue: str = Field(default="reservations", description="Durable queue receiving reservation events")

    log_dir: str = Field(default="logs", description="Directory for per-service audit logs")
    log_level: str = Field(default="INFO", description="Level for the audit loggers")

    users_service_port: int = 8001
    rooms_service_port: int = 8002
    reservations_service_port: int = 8003


@lru_cache
def get_settings() -> Settings:
    """Return a cached instance of the Settings object."""

    return Settings()


def reset_settings_cache() -> None:
    """Clear the cached Settings instance (useful for tests)."""

    get_settings.cache_clear()
