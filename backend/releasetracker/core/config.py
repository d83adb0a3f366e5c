from functools import lru_cache
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from releasetracker.errors import ConfigurationError
from releasetracker.utils.logger import logger


class Settings(BaseSettings):
    model_config = SettingsConfigDict(case_sensitive=False, extra="ignore")

    database_url: str = "postgresql+asyncpg://releasetracker:releasetracker@db:5432/releasetracker"
    redis_url: str = "redis://redis:6379/0"

    # External services
    tmdb_api_key: str = ""
    brevo_api_key: str = ""
    app_url: str = "http://localhost:3000"
    mail_sender_email: str = "noreply@moviereleasetracker.com"
    mail_sender_name: str = "Movie Release Tracker"
    healthcheck_daily_releases_url: Optional[str] = None
    http_timeout_seconds: float = 10.0

    # Catalog home territory for theatrical/streaming facts
    release_country: str = "US"
    timezone: str = "UTC"

    # Date discovery job
    discovery_batch_size: int = Field(50, gt=0)
    discovery_horizon_days: int = Field(90, gt=0)
    discovery_validation_hours: int = Field(24, gt=0)
    discovery_request_delay: float = Field(0.25, ge=0)

    # Enrichment throttle (concurrent catalog lookups per batch, pause between batches)
    enrichment_concurrency: int = Field(5, gt=0)
    enrichment_batch_delay: float = Field(0.25, ge=0)

    # Recent digital releases cache
    recent_cache_days_back: int = Field(90, gt=0)
    recent_cache_vote_count_min: int = Field(10, ge=0)
    recent_cache_vote_average_min: float = Field(6.0, ge=0)
    recent_cache_target_count: int = Field(100, gt=0)
    recent_cache_max_pages: int = Field(15, gt=0)

    # Upcoming releases cache
    upcoming_cache_months_ahead: int = Field(6, gt=0)
    upcoming_cache_languages: List[str] = ["en", "ko", "ja", "fr", "de", "es", "it", "pt"]
    upcoming_cache_page_delay: float = Field(0.25, ge=0)

    cache_ttl_seconds: int = Field(24 * 60 * 60, gt=0)


# (field, description, required)
ENV_VARS = [
    ("database_url", "PostgreSQL connection string", True),
    ("redis_url", "Redis URL used for the cache store and the Celery broker", True),
    ("tmdb_api_key", "The Movie Database API key", True),
    ("brevo_api_key", "Brevo transactional email API key", True),
    ("app_url", "Public URL of the application (for email links)", False),
    ("healthcheck_daily_releases_url", "Healthcheck ping URL for the daily releases job", False),
]


def validate_settings(settings: Settings) -> Settings:
    """Check required settings once at process start.

    Raises ConfigurationError naming every missing required value; optional
    values only produce a warning.
    """
    missing = []
    for field, description, required in ENV_VARS:
        if getattr(settings, field, None):
            continue
        if required:
            missing.append(f"{field.upper()} ({description})")
        else:
            logger.warning(f"Optional setting {field.upper()} not set: {description}")

    if missing:
        for item in missing:
            logger.error(f"Missing required setting: {item}")
        raise ConfigurationError(
            "Missing required environment variables: " + ", ".join(m.split(" ")[0] for m in missing),
            missing=missing,
        )

    logger.info("All required settings are present")
    return settings


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load and validate settings once per process."""
    return validate_settings(Settings())
