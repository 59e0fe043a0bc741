"""Application configuration."""

import logging

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ttc_incidents import __version__


class Settings(BaseSettings):
    """Application settings from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # API Settings
    API_V1_PREFIX: str = "/api/v1"
    PROJECT_NAME: str = "ttc-incidents"
    ENVIRONMENT: str = "production"
    DEBUG: bool = False
    ALLOWED_ORIGINS: str = "http://localhost:5173"

    @field_validator("ALLOWED_ORIGINS", mode="after")
    @classmethod
    def parse_cors(cls, v: str | list[str]) -> list[str]:
        """Parse comma-separated CORS origins or pass through list."""
        return v if isinstance(v, list) else [origin.strip() for origin in v.split(",") if origin.strip()]

    # Database Settings
    DATABASE_URL: str = Field(validation_alias="SECRET_DATABASE_URL")
    DATABASE_ECHO: bool = False
    DATABASE_POOL_SIZE: int = 5
    DATABASE_MAX_OVERFLOW: int = 10

    # Redis Settings (live-update channel)
    REDIS_URL: str = Field(default="redis://localhost:6379/0", validation_alias="SECRET_REDIS_URL")
    CHANGE_FEED_ENABLED: bool = True
    CHANGE_FEED_CHANNEL_PREFIX: str = "ttc_incidents"

    # Celery Settings
    CELERY_BROKER_URL: str = Field(validation_alias="SECRET_CELERY_BROKER_URL")
    CELERY_RESULT_BACKEND: str = Field(validation_alias="SECRET_CELERY_RESULT_BACKEND")

    # Upstream feeds
    TTC_LIVE_ALERTS_URL: str = "https://alerts.ttc.ca/api/alerts/live-alerts"
    TTC_RSZ_URL: str = "https://www.ttc.ca/riding-the-ttc/Updates/Reduced-Speed-Zones"
    TTC_MAINTENANCE_URL: str = (
        "https://www.ttc.ca/sxa/search/results/"
        "?v=%7B23DC07D4-6BAC-4B98-A9CC-07606C5B1322%7D"
        "&s=%7BF79E7245-3705-4E03-827E-02569508B481%7D"
        "&itemid=%7BB3DD22A4-3F53-4470-A87A-37A77976B07F%7D"
    )
    MAINTENANCE_PAGE_SIZE: int = 50
    UPSTREAM_TIMEOUT_SECONDS: float = 15.0
    UPSTREAM_RETRY_ATTEMPTS: int = 1
    UPSTREAM_REQUEST_DELAY_SECONDS: float = 0.5  # Courtesy delay between paged requests
    UPSTREAM_USER_AGENT: str = f"ttc-incidents/{__version__}"
    MAINTENANCE_MAX_PAGES: int = 5

    # Threading / retention
    THREAD_HIDE_GRACE_POLLS: int = 2  # Raise during incident-response windows to absorb flapping
    ALERT_RETENTION_HOURS: int = 48
    THREAD_RETENTION_HOURS: int = 24

    @field_validator("THREAD_HIDE_GRACE_POLLS", mode="after")
    @classmethod
    def validate_grace_polls(cls, v: int) -> int:
        """Grace period must allow at least one missed poll."""
        if v < 1:
            msg = f"THREAD_HIDE_GRACE_POLLS must be at least 1, got {v}"
            raise ValueError(msg)
        return v

    # Accuracy monitor
    ACCURACY_SIMILARITY_THRESHOLD: float = 0.3

    # Beat schedule intervals (seconds)
    POLL_INTERVAL_SECONDS: int = 60
    VERIFY_INTERVAL_SECONDS: int = 300
    ACCURACY_INTERVAL_SECONDS: int = 300
    MAINTENANCE_INTERVAL_SECONDS: int = 3600
    CLEANUP_INTERVAL_SECONDS: int = 21600

    # Alembic Settings
    ALEMBIC_INI_PATH: str = "alembic.ini"

    # OpenTelemetry Settings
    OTEL_ENABLED: bool = True
    OTEL_SERVICE_NAME: str = "ttc-incidents"
    OTEL_EXPORTER_OTLP_TRACES_ENDPOINT: str | None = None
    OTEL_EXPORTER_OTLP_HEADERS: str | None = Field(default=None, validation_alias="SECRET_OTEL_HEADERS")
    OTEL_EXCLUDED_URLS: str = "/health,/ready"

    @field_validator("OTEL_EXCLUDED_URLS", mode="after")
    @classmethod
    def parse_otel_excluded_urls(cls, v: str | list[str]) -> list[str]:
        """Parse comma-separated excluded URLs or pass through list, filtering out empty strings."""
        if isinstance(v, list):
            return [url for url in v if url]
        return [url.strip() for url in v.split(",") if url.strip()]

    # Logging Settings
    LOG_LEVEL: str = "INFO"

    @field_validator("LOG_LEVEL", mode="after")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate and normalize log level."""
        normalized = v.upper()
        valid_levels = logging.getLevelNamesMapping()
        if normalized not in valid_levels:
            msg = f"Invalid LOG_LEVEL '{v}'. Must be one of: {', '.join(sorted(valid_levels.keys()))}"
            raise ValueError(msg)
        return normalized


settings = Settings()


# Settings every pass needs before touching upstream or the store.
PASS_REQUIRED_CONFIG = ("DATABASE_URL", "TTC_LIVE_ALERTS_URL", "TTC_RSZ_URL")


def require_config(*field_names: str) -> None:
    """
    Validate that required configuration fields are set.

    Passes call this before fetching anything so that a misconfigured
    deployment fails with one top-level error and writes nothing.

    Args:
        *field_names: Names of required configuration fields

    Raises:
        ValueError: If any required field is missing or blank

    Example:
        from ttc_incidents.core.config import require_config
        require_config("DATABASE_URL", "TTC_LIVE_ALERTS_URL")
    """
    missing = []
    for field in field_names:
        value = getattr(settings, field, None)
        if value is None or (isinstance(value, str) and not value.strip()):
            missing.append(field)

    if missing:
        msg = f"Required configuration missing: {', '.join(missing)}"
        raise ValueError(msg)
