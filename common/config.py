"""Centralized application configuration using Pydantic settings."""
from functools import lru_cache
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-driven configuration shared across services."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    database_url: str = Field(
        default="sqlite:///./open_studio.db",
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
    default_rate_limit: str = Field(default="60/minute", description="Global rate limiting rule")
    rate_limiting_enabled: bool = Field(default=True, description="Toggle to disable SlowAPI limits (useful in tests)")
    log_dir: str = Field(default="logs", description="Directory receiving the per-service audit logs")
    metrics_enabled: bool = Field(default=True, description="Expose Prometheus metrics on /metrics")

    slot_minutes: int = Field(default=60, gt=0, description="Granularity of availability slots in minutes")
    check_in_grace_minutes: int = Field(
        default=120,
        ge=0,
        description="How long before session start a reserved booking may be checked in",
    )
    booking_retry_attempts: int = Field(
        default=3,
        ge=1,
        description="Attempts of the atomic booking transaction before reporting the slot as unavailable",
    )
    upcoming_horizon_days: int = Field(default=30, ge=0, description="Days ahead listed by the session calendar")
    upcoming_session_limit: int = Field(default=30, gt=0, description="Maximum sessions returned by a listing")
    session_cache_ttl: int = Field(default=30, description="TTL (s) for cached upcoming-session listings")
    waitlist_claim_minutes: int = Field(
        default=60,
        gt=0,
        description="Minutes a promoted waitlist entry stays eligible before it lapses",
    )

    events_enabled: bool = Field(default=False, description="Publish domain events to RabbitMQ")
    rabbitmq_host: str = Field(default="rabbitmq", description="RabbitMQ host for domain events")
    events_queue: str = Field(default="open_studio_events", description="Durable queue receiving domain events")

    resources_service_port: int = 8001
    open_studio_service_port: int = 8002
    entitlements_service_port: int = 8003


@lru_cache
def get_settings() -> Settings:
    """Return a cached instance of the Settings object."""

    return Settings()


def reset_settings_cache() -> None:
    """Clear the cached Settings instance (useful for tests)."""

    get_settings.cache_clear()
