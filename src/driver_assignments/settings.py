"""Settings for the temporary assignment client."""

from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings
from pydantic_settings import SettingsConfigDict


class Settings(BaseSettings):
    """
    Settings for the temporary assignment client.

    [pydantic.BaseSettings](https://docs.pydantic.dev/latest/concepts/pydantic_settings/) reads
    configuration values from environment variables and, for local development, a .env file.

    Environment variable names are treated case-insensitively (API_BASE_URL, api_base_url).
    """

    # Backend API
    api_base_url: str
    """Base URL of the driver backend, e.g. https://fleet.example.com (required)."""

    request_timeout_seconds: float = 15.0
    """Total timeout for a single backend call."""

    # Realtime change feed
    enable_realtime: bool = True
    """Use the realtime websocket channel when realtime_url is set; otherwise fall back to polling."""

    realtime_url: Optional[str] = None
    """Realtime websocket endpoint, e.g. wss://project.supabase.co/realtime/v1/websocket."""

    realtime_api_key: Optional[str] = None
    """Public API key sent as the apikey query parameter when joining the realtime socket."""

    realtime_heartbeat_seconds: float = 30.0
    """Interval between heartbeat frames on the realtime socket."""

    poll_interval_seconds: float = 30.0
    """Interval of the fallback polling channel."""

    change_debounce_seconds: float = 0.5
    """Notifications arriving within this window collapse into one refetch."""

    # Countdown
    countdown_interval_seconds: float = 1.0
    """Cadence of the countdown tick."""

    # Logging
    log_level: str = "INFO"
    """Minimum log level for console and file sinks."""

    log_file: Optional[str] = None
    """Optional rotating log file path."""

    log_serialize: bool = False
    """Write the file sink as JSON lines."""

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=".env",  # Load from .env file if it exists (local development)
        env_file_encoding="utf-8",
        extra="ignore",  # Ignore extra environment variables not defined in the model
        validate_default=True,
    )

    @field_validator("api_base_url")
    @classmethod
    def validate_api_base_url(cls, v: str) -> str:
        """Require an http(s) URL and strip the trailing slash."""
        v = v.strip()
        if not v.startswith(("https://", "http://")):
            raise ValueError("api_base_url must be an http(s) URL")
        return v.rstrip("/")

    @field_validator("change_debounce_seconds", "countdown_interval_seconds", "poll_interval_seconds")
    @classmethod
    def validate_positive(cls, v: float) -> float:
        """Intervals must be positive."""
        if v <= 0:
            raise ValueError("interval must be greater than 0")
        return v

    @property
    def realtime_enabled(self) -> bool:
        """Whether the realtime channel can be used."""
        return bool(self.enable_realtime and self.realtime_url)
