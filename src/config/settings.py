"""Portal data-layer settings loaded from environment variables."""

from enum import StrEnum

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(StrEnum):
    """Deployment environment."""

    DEV = "dev"
    STAGING = "staging"
    PROD = "prod"


class LogLevel(StrEnum):
    """Supported log levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class Settings(BaseSettings):
    """Application-wide settings loaded from environment variables / .env file.

    LRS credentials and deployment-specific values live here. Never hardcode them.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Learning Record Store ---
    LRS_ENDPOINT: str = Field(
        default="http://localhost:8080/xapi/",
        description="Base URL of the xAPI Learning Record Store.",
    )
    LRS_USERNAME: str = Field(
        default="",
        description="Basic-auth key for the LRS.",
    )
    LRS_PASSWORD: str = Field(
        default="",
        description="Basic-auth secret for the LRS.",
    )
    LRS_VERSION: str = Field(
        default="1.0.3",
        description="Value sent in the X-Experience-API-Version header.",
    )
    LRS_TIMEOUT_S: float = Field(
        default=30.0,
        gt=0,
        description="Per-request HTTP timeout in seconds.",
    )
    LRS_MAX_RETRIES: int = Field(
        default=3,
        ge=0,
        description="Retries for transient LRS failures (transport, 429, 5xx).",
    )
    LRS_BACKOFF_BASE_S: float = Field(
        default=0.5,
        ge=0,
        description="Base delay for exponential backoff between retries.",
    )
    LRS_PAGE_SIZE: int = Field(
        default=500,
        ge=1,
        description="Statements requested per page when following 'more' links.",
    )

    # --- Vocabulary ---
    BASE_ACTIVITY_ID: str = Field(
        default="http://hulab.edu.hk",
        description="IRI prefix for every portal activity and custom verb.",
    )
    PLATFORM_NAME: str = Field(
        default="HuLab Portal",
        description="Value written to context.platform on every statement.",
    )

    # --- Analytics ---
    ANALYTICS_CACHE_TTL_S: float = Field(
        default=300.0,
        ge=0,
        description="Time-to-live for cached analytics payloads.",
    )
    ANALYTICS_SCAN_TIMEOUT_S: float = Field(
        default=60.0,
        gt=0,
        description="Budget for a single analytics scan before it is aborted.",
    )
    ANALYTICS_MAX_EVENTS: int = Field(
        default=10_000,
        ge=1,
        description="Upper bound on statements fetched for one dashboard scan.",
    )

    # --- Collaboration ---
    RESOLVER_SCAN_LIMIT: int = Field(
        default=1000,
        ge=1,
        description="Statements scanned per relationship lookup (team, shares, threads).",
    )
    INVITATION_TTL_DAYS: int = Field(
        default=7,
        ge=1,
        description="Days before a pending invitation expires.",
    )

    # --- Logging ---
    LOG_LEVEL: LogLevel = Field(
        default=LogLevel.INFO,
        description="Application log level.",
    )

    # --- Environment ---
    ENVIRONMENT: Environment = Field(
        default=Environment.DEV,
        description="Deployment environment (dev/staging/prod).",
    )

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.ENVIRONMENT == Environment.PROD


def get_settings() -> Settings:
    """Factory function for callers that build their own service graph."""
    return Settings()
