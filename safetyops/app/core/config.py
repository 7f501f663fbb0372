"""Application configuration using pydantic-settings."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore", # Allow extra env vars without failing
    )

    # App
    app_name: str = "SafetyOps"
    app_version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"

    # API
    api_prefix: str = "/api/v1"
    allowed_origins: list[str] = ["http://localhost:3000"]

    # Database (document store backing table)
    database_url: str = "sqlite+aiosqlite:///./safetyops.db"
    db_ssl_mode: str = "disable" # "require" for production
    database_pool_size: int = 5
    database_max_overflow: int = 10

    # Identifier prefixes (INC-2026-0001, CAPA-2026-0001)
    incident_number_prefix: str = "INC"
    capa_number_prefix: str = "CAPA"

    # Lifecycle policy. When False, any status may be assigned from any status.
    enforce_transitions: bool = True

    # Actor recorded in timelines / status history when none is supplied
    default_actor: str = "System"

    # Dashboard
    capa_due_soon_days: int = 7
    trend_months: int = 12
    exclude_near_miss_from_streak: bool = True


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
