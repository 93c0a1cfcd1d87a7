"""Application configuration using environment variables."""

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve the project root once so that `.env` is discovered regardless of CWD
PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent


class Settings(BaseSettings):
    """Load configuration from environment variables and `.env`."""

    model_config = SettingsConfigDict(
        env_file=str(PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Message channel
    channel_host: str = Field(
        default="localhost",
        validation_alias=AliasChoices("NARRATOR_CHANNEL_HOST", "channel_host"),
    )
    reconnect_delay_seconds: float = Field(
        default=5.0,
        gt=0,
        validation_alias=AliasChoices(
            "NARRATOR_RECONNECT_DELAY", "reconnect_delay_seconds"
        ),
    )
    connect_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        validation_alias=AliasChoices(
            "NARRATOR_CONNECT_TIMEOUT", "connect_timeout_seconds"
        ),
    )

    # Persisted reader settings (port, voice, pitch/rate/volume)
    reader_settings_path: Path = Field(
        default_factory=lambda: Path("data/reader_settings.json"),
        validation_alias=AliasChoices(
            "READER_SETTINGS_PATH", "reader_settings_path"
        ),
    )

    # Delivery backend
    delivery_backend: Literal["native", "remote"] = Field(
        default="native",
        validation_alias=AliasChoices("NARRATOR_BACKEND", "delivery_backend"),
    )
    request_timeout_seconds: float = Field(
        default=2.0,
        gt=0,
        validation_alias=AliasChoices(
            "NARRATOR_REQUEST_TIMEOUT", "request_timeout_seconds"
        ),
    )
    settle_delay_seconds: float = Field(
        default=0.05,
        ge=0,
        validation_alias=AliasChoices("NARRATOR_SETTLE_DELAY", "settle_delay_seconds"),
    )
    recovery_delay_seconds: float = Field(
        default=0.1,
        ge=0,
        validation_alias=AliasChoices(
            "NARRATOR_RECOVERY_DELAY", "recovery_delay_seconds"
        ),
    )
    voice_retry_delay_seconds: float = Field(
        default=0.2,
        ge=0,
        validation_alias=AliasChoices(
            "NARRATOR_VOICE_RETRY_DELAY", "voice_retry_delay_seconds"
        ),
    )
    speech_host_command: Optional[list[str]] = Field(
        default=None,
        validation_alias=AliasChoices(
            "NARRATOR_SPEECH_HOST_COMMAND", "speech_host_command"
        ),
    )

    # Remote surface (browser tab driven over CDP)
    remote_surface_url: str = Field(
        default="http://localhost:8080/",
        validation_alias=AliasChoices("REMOTE_SURFACE_URL", "remote_surface_url"),
    )
    remote_cdp_url: str = Field(
        default="http://localhost:9222",
        validation_alias=AliasChoices("REMOTE_CDP_URL", "remote_cdp_url"),
    )
    remote_stop_selector: str = Field(
        default="[data-action='stop']",
        validation_alias=AliasChoices(
            "REMOTE_STOP_SELECTOR", "remote_stop_selector"
        ),
    )
    remote_text_selector: str = Field(
        default="textarea",
        validation_alias=AliasChoices(
            "REMOTE_TEXT_SELECTOR", "remote_text_selector"
        ),
    )
    remote_speak_selector: str = Field(
        default="[data-action='speak']",
        validation_alias=AliasChoices(
            "REMOTE_SPEAK_SELECTOR", "remote_speak_selector"
        ),
    )
    remote_input_settle_seconds: float = Field(
        default=0.1,
        ge=0,
        validation_alias=AliasChoices(
            "REMOTE_INPUT_SETTLE", "remote_input_settle_seconds"
        ),
    )
    remote_max_candidate_attempts: int = Field(
        default=2,
        ge=1,
        validation_alias=AliasChoices(
            "REMOTE_MAX_CANDIDATE_ATTEMPTS", "remote_max_candidate_attempts"
        ),
    )

    # Control API
    api_host: str = Field(
        default="127.0.0.1",
        validation_alias=AliasChoices("NARRATOR_API_HOST", "api_host"),
    )
    api_port: int = Field(
        default=8000,
        ge=1,
        le=65535,
        validation_alias=AliasChoices("NARRATOR_API_PORT", "api_port"),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached `Settings` instance."""

    return Settings()  # pyright: ignore[reportCallIssue]


__all__ = ["Settings", "get_settings", "PROJECT_ROOT"]
