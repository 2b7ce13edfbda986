"""Worker configuration"""

import logging
from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class WorkerSettings(BaseSettings):
    """Background worker settings"""

    model_config = SettingsConfigDict(
        env_file=Path(__file__).parent.parent / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Twitch (app token)
    client_id: str = Field(..., description="Twitch Client ID")
    client_secret: str = Field(..., description="Twitch Client Secret")

    # Primary social channel
    x_api_base: str = Field(default="https://api.x.com/2", description="X API base URL")

    # Database
    database_url: str = Field(..., description="PostgreSQL database URL")
    database_ssl: str = Field(default="require", description="asyncpg ssl mode")

    # Links
    app_origin: str = Field(
        default="http://localhost:8000", description="Public origin used for short links"
    )
    redirect_allowed_domains: str = Field(
        default="twitch.tv", description="Comma-separated redirect target domains"
    )

    # Quota
    quota_owner_limit: int = Field(default=12, description="Posts per owner per month")
    quota_global_limit: int = Field(default=400, description="Posts per month across all owners")
    quota_reset_check_interval: int = Field(
        default=3600, description="Seconds between monthly reset checks"
    )

    # Drafts
    default_grace_seconds: int = Field(default=90, description="Grace window when unset")
    default_timeout_action: str = Field(default="post", description="'post' or 'skip'")
    draft_sweep_interval: int = Field(default=60, description="Seconds between draft sweeps")
    draft_sweep_slack_seconds: int = Field(default=30, description="Sweep tolerance")

    # Sampling
    sampling_interval: int = Field(default=300, description="Seconds between sampling runs")
    sampling_concurrency: int = Field(default=10, description="Parallel viewer-count lookups")
    stale_stream_after_seconds: int = Field(
        default=3 * 3600, description="Close streams without samples for this long"
    )
    http_timeout: float = Field(default=10.0, description="Platform API timeout in seconds")

    # Health server
    health_host: str = Field(default="0.0.0.0", description="Health server host")
    health_port: int = Field(default=4344, description="Health server port")

    # Environment
    log_level: str = Field(default="INFO", description="Logging level")

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        """Validate database URL starts with postgresql://"""
        if not v.startswith(("postgresql://", "postgres://")):
            raise ValueError("DATABASE_URL must start with 'postgresql://'")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is valid"""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            logger.warning(f"Invalid log level '{v}', defaulting to INFO")
            return "INFO"
        return v_upper

    @field_validator("sampling_interval")
    @classmethod
    def validate_sampling_interval(cls, v: int) -> int:
        if not 300 <= v <= 900:
            raise ValueError("SAMPLING_INTERVAL must be between 300 and 900 seconds")
        return v

    @field_validator("default_grace_seconds")
    @classmethod
    def clamp_grace(cls, v: int) -> int:
        return max(30, min(300, v))

    @field_validator("default_timeout_action")
    @classmethod
    def validate_timeout_action(cls, v: str) -> str:
        v = v.lower()
        if v not in ("post", "skip"):
            raise ValueError("DEFAULT_TIMEOUT_ACTION must be 'post' or 'skip'")
        return v

    @property
    def allowed_redirect_domains(self) -> list[str]:
        return [d.strip() for d in self.redirect_allowed_domains.split(",") if d.strip()]


@lru_cache
def get_settings() -> WorkerSettings:
    """Get cached settings instance"""
    return WorkerSettings()  # type: ignore[call-arg]
