"""
Application configuration using Pydantic Settings.
"""

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from rollout_engine.core.features.bucketing import DEFAULT_ALGORITHM, BucketAlgorithm
from rollout_engine.core.features.catalog import PILOT_DEVELOPER, PILOT_PROJECT


class DatabaseSettings(BaseSettings):
    """Database configuration (used when ROLLOUT_STORE=database)."""

    model_config = SettingsConfigDict(env_prefix="DB_")

    url: str = Field(
        default="sqlite+aiosqlite:///./rollout.db",
        description="SQLAlchemy async connection URL",
    )
    echo: bool = Field(default=False, description="Echo SQL queries")


class RolloutSettings(BaseSettings):
    """Feature rollout configuration."""

    model_config = SettingsConfigDict(env_prefix="ROLLOUT_")

    store: str = Field(
        default="memory",
        description="Rollout state store: memory, database",
    )
    bucket_algorithm: BucketAlgorithm = Field(
        default=DEFAULT_ALGORITHM,
        description="Bucketing hash; changing it reshuffles every live rollout",
    )
    catalog_path: str | None = Field(
        default=None,
        description="JSON flag catalog used when the store is empty",
    )

    # Pilot health reference
    reference_developer_id: str | None = Field(default=PILOT_DEVELOPER)
    reference_project_id: str | None = Field(default=PILOT_PROJECT)
    required_flags: list[str] = Field(
        default=["cr008_doc_first_flow"],
        description="Flags that must be enabled for the pilot to be healthy",
    )

    gradual_tick_seconds: float = Field(
        default=0,
        ge=0,
        description="Interval for advancing due gradual rollouts (0 disables)",
    )

    @field_validator("store")
    @classmethod
    def validate_store(cls, v: str) -> str:
        allowed = {"memory", "database"}
        if v not in allowed:
            raise ValueError(f"store must be one of {allowed}")
        return v


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="Rollout Engine")
    app_version: str = Field(default="0.1.0")
    debug: bool = Field(default=False)
    environment: str = Field(default="development")

    # Server
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json", description="json or text")

    # Nested settings
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    rollout: RolloutSettings = Field(default_factory=RolloutSettings)

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        allowed = {"development", "staging", "production", "testing"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        if v not in {"json", "text"}:
            raise ValueError("log_format must be json or text")
        return v

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def is_development(self) -> bool:
        return self.environment == "development"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
