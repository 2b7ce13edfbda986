"""Application configuration using Pydantic Settings"""

import logging
from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings with environment variable support"""

    model_config = SettingsConfigDict(
        env_file=Path(__file__).parent.parent / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Twitch (app token + EventSub)
    client_id: str = Field(..., description="Twitch Client ID")
    client_secret: str = Field(..., description="Twitch Client Secret")
    eventsub_secret: str = Field(..., description="EventSub webhook HMAC secret")

    # Primary social channel
    x_api_base: str = Field(default="https://api.x.com/2", description="X API base URL")

    # JWT Configuration
    jwt_secret_key: str = Field(..., description="Secret key for JWT token verification")
    jwt_algorithm: str = Field(default="HS256", description="JWT signing algorithm")
    jwt_expire_days: int = Field(default=30, description="JWT token expiration in days")

    # Database
    database_url: str = Field(..., description="PostgreSQL database URL")
    database_ssl: str = Field(default="require", description="asyncpg ssl mode")

    # Server URLs
    frontend_url: str = Field(default="http://localhost:3000", description="Frontend URL for CORS")
    app_origin: str = Field(
        default="http://localhost:8000", description="Public origin used for short links"
    )
    redirect_allowed_domains: str = Field(
        default="twitch.tv", description="Comma-separated redirect target domains"
    )

    # Quota
    quota_owner_limit: int = Field(default=12, description="Posts per owner per month")
    quota_global_limit: int = Field(default=400, description="Posts per month across all owners")

    # Drafts
    default_grace_seconds: int = Field(default=90, description="Grace window when unset")
    default_timeout_action: str = Field(default="post", description="'post' or 'skip'")
    draft_sweep_slack_seconds: int = Field(default=30, description="Sweep tolerance")

    # Sampling
    stale_stream_after_seconds: int = Field(
        default=3 * 3600, description="Close streams without samples for this long"
    )
    http_timeout: float = Field(default=10.0, description="Platform API timeout in seconds")

    # Operators
    cron_secret: str = Field(default="", description="Bearer secret for /api/cron/*")
    admin_owner_ids: str = Field(default="", description="Comma-separated operator owner ids")

    # Environment
    environment: str = Field(default="development", description="Environment name")
    log_level: str = Field(default="INFO", description="Logging level")

    # Server Configuration
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port")

    # Keep-Alive (Render)
    enable_keep_alive: bool = Field(default=True, description="Enable heartbeat keep-alive task")
    keep_alive_interval: int = Field(default=300, description="Heartbeat interval in seconds")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is a valid logging level"""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            logger.warning(f"Invalid log level '{v}', defaulting to INFO")
            return "INFO"
        return v_upper

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        if not v.startswith(("postgresql://", "postgres://")):
            raise ValueError("database_url must be a postgresql:// URL")
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
            raise ValueError("default_timeout_action must be 'post' or 'skip'")
        return v

    @property
    def allowed_redirect_domains(self) -> list[str]:
        return [d.strip() for d in self.redirect_allowed_domains.split(",") if d.strip()]

    @property
    def admin_ids(self) -> set[str]:
        return {i.strip() for i in self.admin_owner_ids.split(",") if i.strip()}

    @property
    def cors_origins(self) -> list[str]:
        """Get CORS allowed origins"""
        return [self.frontend_url]

    @property
    def is_production(self) -> bool:
        """Check if running in production environment"""
        return self.environment.lower() == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development environment"""
        return self.environment.lower() == "development"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()  # type: ignore[call-arg]
