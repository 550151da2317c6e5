from pydantic import Field, computed_field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .constants import (
    DEFAULT_FEED_POLL_INTERVAL_SECONDS,
    DEFAULT_HTTP_TIMEOUT_SECONDS,
    DEFAULT_METRICS_PORT,
    DEFAULT_PORT,
    DEFAULT_TELEGRAM_API_BASE_URL,
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env files."""

    # Server configuration
    debug: bool = Field(default=True, description="Enable debug mode")
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=DEFAULT_PORT, ge=1, le=65535, description="Server port")

    # Database configuration
    database_url: str = Field(
        default="sqlite:///./service_tracker.db", description="Database connection URL"
    )

    # Application configuration
    app_name: str = Field(default="Service Tracker", description="Application name")
    version: str = Field(default="0.1.0", description="Application version")

    # Telegram approval channel
    telegram_bot_token: str = Field(
        default="", description="Bot token used to post approval cards"
    )
    telegram_admin_chat_id: str = Field(
        default="", description="The only chat whose callbacks are trusted"
    )
    telegram_webhook_secret: str = Field(
        default="", description="Expected X-Telegram-Bot-Api-Secret-Token value"
    )
    telegram_api_base_url: str = Field(
        default=DEFAULT_TELEGRAM_API_BASE_URL, description="Telegram Bot API base URL"
    )
    telegram_timeout_seconds: float = Field(
        default=DEFAULT_HTTP_TIMEOUT_SECONDS, gt=0, description="Bot API call timeout"
    )

    # Upstream service-day API (consumed by the client core)
    source_api_base_url: str = Field(
        default="", description="Base URL of the /getjson service-day API"
    )
    source_api_timeout_seconds: float = Field(
        default=30.0, gt=0, description="Service-day API call timeout"
    )
    feed_poll_interval_seconds: float = Field(
        default=DEFAULT_FEED_POLL_INTERVAL_SECONDS,
        gt=0,
        description="Polling interval of the store-backed live queries",
    )

    # Logging configuration
    log_to_file: bool = Field(
        default=False, description="Force logging to file even in debug mode"
    )

    # Telemetry configuration
    enable_telemetry: bool = Field(
        default=False, description="Export OpenTelemetry traces and metrics"
    )
    metrics_port: int = Field(
        default=DEFAULT_METRICS_PORT, ge=1, le=65535, description="Prometheus port"
    )

    # Pydantic Settings configuration
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False, extra="ignore"
    )

    @field_validator("telegram_admin_chat_id", mode="before")
    @classmethod
    def validate_admin_chat_id(cls, v: object) -> str:
        """Chat ids arrive as ints from some deploy tooling; compare as strings."""
        return str(v).strip() if v is not None else ""

    @field_validator("source_api_base_url", "telegram_api_base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.strip().rstrip("/")

    @computed_field  # type: ignore[prop-decorator]
    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.debug

    @computed_field  # type: ignore[prop-decorator]
    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return not self.debug

    @computed_field  # type: ignore[prop-decorator]
    @property
    def telegram_configured(self) -> bool:
        """Check if approval cards can be posted at all."""
        return bool(self.telegram_bot_token and self.telegram_admin_chat_id)
