"""Application configuration using Pydantic Settings.

All configuration is loaded from environment variables.
See .env.example for the available variables.
"""

from functools import lru_cache
from typing import Annotated, Literal

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

DEFAULT_CORS_ORIGINS = ["http://localhost:5173", "http://127.0.0.1:5173"]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    # ==========================================================================
    # Upstream (server only, never sent to clients)
    # ==========================================================================
    openai_api_key: SecretStr | None = Field(
        default=None, description="Long-lived key used to mint ephemeral sessions"
    )
    realtime_sessions_url: str = Field(
        default="https://api.openai.com/v1/realtime/sessions",
        description="Upstream endpoint that mints ephemeral client secrets",
    )
    upstream_timeout_seconds: float = Field(
        default=10.0, description="Total timeout for the session-minting call"
    )
    credential_ttl_seconds: float = Field(
        default=60.0,
        description="Assumed credential lifetime when upstream reports no expiry",
    )

    # ==========================================================================
    # HTTP server
    # ==========================================================================
    port: int = Field(default=3001, description="Listening port")
    cors_origins: Annotated[list[str], NoDecode] = Field(
        default_factory=list,
        description="Extra allowed origins (comma-separated), added to the defaults",
    )
    trust_forwarded_for: bool = Field(
        default=False,
        description="Use X-Forwarded-For as caller identity (behind a proxy only)",
    )

    # ==========================================================================
    # Rate limiting
    # ==========================================================================
    rate_limit_max_requests: int = Field(
        default=10, description="Credential requests allowed per window per caller"
    )
    rate_limit_window_seconds: float = Field(
        default=60.0, description="Rate limit window length"
    )

    # ==========================================================================
    # Realtime client
    # ==========================================================================
    server_url: str = Field(
        default="http://localhost:3001", description="Broker base URL used by clients"
    )
    realtime_url: str = Field(
        default="https://api.openai.com/v1/realtime",
        description="Transport negotiation endpoint (SDP offer/answer)",
    )
    default_model: str = Field(default="gpt-realtime", description="Default model")
    default_voice: str = Field(default="marin", description="Default voice")
    negotiation_timeout_seconds: float = Field(
        default=15.0, description="Upper bound for the offer/answer handshake"
    )
    refresh_safety_margin_seconds: float = Field(
        default=10.0, description="Refresh this long before the credential expires"
    )
    refresh_min_delay_seconds: float = Field(
        default=5.0, description="Never schedule a refresh sooner than this"
    )
    capture_device: str = Field(
        default="default", description="Audio capture device passed to FFmpeg"
    )
    capture_format: str | None = Field(
        default="pulse",
        description="FFmpeg input format for capture (pulse, avfoundation, dshow)",
    )

    # ==========================================================================
    # Application
    # ==========================================================================
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", description="Logging level"
    )
    environment: Literal["development", "staging", "production"] = Field(
        default="development", description="Deployment environment"
    )

    @field_validator("cors_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: object) -> object:
        if isinstance(value, str):
            return [s.strip() for s in value.split(",") if s.strip()]
        return value

    # ==========================================================================
    # Derived Properties
    # ==========================================================================
    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"

    @property
    def allowed_origins(self) -> list[str]:
        """Default dev origins plus configured extras, deduplicated in order."""
        origins: list[str] = []
        for origin in [*DEFAULT_CORS_ORIGINS, *self.cors_origins]:
            if origin not in origins:
                origins.append(origin)
        return origins


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Use dependency injection in FastAPI:
        settings: Settings = Depends(get_settings)
    """
    return Settings()
