"""Persisted reader settings: channel port and voice parameters."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator
from pydantic.alias_generators import to_camel

DEFAULT_PORT = 7123

# Preferred voice; matched by exact name first, then by DEFAULT_VOICE_HINTS.
DEFAULT_VOICE = "Microsoft AndrewMultilingual Online (Natural) - English (United States)"
DEFAULT_VOICE_HINTS = ("Microsoft", "Andrew")

DEFAULT_PITCH = 1.0
DEFAULT_RATE = 1.0
DEFAULT_VOLUME = 1.0


def coerce_port(value: Any) -> int:
    """Return ``value`` as a usable TCP port, or the default port."""
    if isinstance(value, bool):
        return DEFAULT_PORT
    try:
        port = int(value)
    except (TypeError, ValueError):
        return DEFAULT_PORT
    if isinstance(value, float) and not value.is_integer():
        return DEFAULT_PORT
    if 0 < port <= 65535:
        return port
    return DEFAULT_PORT


def _coerce_ranged(value: Any, low: float, high: float, default: float, *, low_inclusive: bool) -> float:
    if isinstance(value, bool):
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    above_low = number >= low if low_inclusive else number > low
    if above_low and number <= high:
        return number
    return default


class VoiceSettings(BaseModel):
    """Voice parameters handed by value to a delivery backend."""

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    selected_voice: str = DEFAULT_VOICE
    pitch: float = DEFAULT_PITCH
    rate: float = DEFAULT_RATE
    volume: float = DEFAULT_VOLUME


class ReaderSettings(BaseModel):
    """Everything the relay persists between runs.

    Invalid values are replaced with their defaults instead of being
    rejected, so a hand-edited or stale file never stops the relay.
    """

    port: int = Field(default=DEFAULT_PORT, description="Channel port on localhost.")
    selected_voice: str = Field(
        default=DEFAULT_VOICE,
        description="Exact name of the preferred synthesis voice.",
    )
    pitch: float = Field(default=DEFAULT_PITCH, description="Pitch in (0, 2].")
    rate: float = Field(default=DEFAULT_RATE, description="Rate in (0, 2].")
    volume: float = Field(default=DEFAULT_VOLUME, description="Volume in [0, 1].")
    connected: bool = Field(
        default=False,
        description="Last known connection status. Advisory only.",
    )

    @field_validator("port", mode="before")
    @classmethod
    def _default_port(cls, value: Any) -> int:
        return coerce_port(value)

    @field_validator("selected_voice", mode="before")
    @classmethod
    def _default_voice(cls, value: Any) -> str:
        if isinstance(value, str) and value.strip():
            return value
        return DEFAULT_VOICE

    @field_validator("pitch", "rate", mode="before")
    @classmethod
    def _default_speed(cls, value: Any, info: ValidationInfo) -> float:
        default = DEFAULT_PITCH if info.field_name == "pitch" else DEFAULT_RATE
        return _coerce_ranged(value, 0.0, 2.0, default, low_inclusive=False)

    @field_validator("volume", mode="before")
    @classmethod
    def _default_volume(cls, value: Any) -> float:
        return _coerce_ranged(value, 0.0, 1.0, DEFAULT_VOLUME, low_inclusive=True)

    @field_validator("connected", mode="before")
    @classmethod
    def _default_connected(cls, value: Any) -> bool:
        return value if isinstance(value, bool) else False

    def voice_settings(self) -> VoiceSettings:
        return VoiceSettings(
            selected_voice=self.selected_voice,
            pitch=self.pitch,
            rate=self.rate,
            volume=self.volume,
        )


class ReaderSettingsUpdate(BaseModel):
    """Partial update schema - all fields optional.

    Values are taken as sent; merging into ReaderSettings replaces invalid
    ones with defaults.
    """

    port: Any = Field(default=None)
    selected_voice: Any = Field(default=None)
    pitch: Any = Field(default=None)
    rate: Any = Field(default=None)
    volume: Any = Field(default=None)


__all__ = [
    "DEFAULT_PORT",
    "DEFAULT_VOICE",
    "DEFAULT_VOICE_HINTS",
    "VoiceSettings",
    "ReaderSettings",
    "ReaderSettingsUpdate",
    "coerce_port",
]
