"""Reader settings service for persisting the channel port and voice parameters."""

import json
import logging
from pathlib import Path
from typing import Optional

from narrator.schemas.reader_settings import (
    ReaderSettings,
    ReaderSettingsUpdate,
    VoiceSettings,
)

logger = logging.getLogger(__name__)

# Default storage path
_DATA_DIR = Path(__file__).parent.parent / "data"
_SETTINGS_FILE = _DATA_DIR / "reader_settings.json"


class ReaderSettingsService:
    """Service for managing reader settings persistence.

    The file is the source of truth: the control surface may write it while the
    relay is running, so voice parameters are re-read for every dispatch.
    """

    def __init__(self, settings_path: Optional[Path] = None):
        self._path = settings_path or _SETTINGS_FILE
        self._cached: Optional[ReaderSettings] = None

    @property
    def path(self) -> Path:
        return self._path

    def _ensure_data_dir(self) -> None:
        """Ensure the data directory exists."""
        self._path.parent.mkdir(parents=True, exist_ok=True)

    def _read(self) -> ReaderSettings:
        """Parse the settings file; raises OSError or ValueError if it is unreadable."""
        if not self._path.exists():
            return ReaderSettings()
        data = json.loads(self._path.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError("settings file is not an object")
        return ReaderSettings.model_validate(data)

    def _load(self) -> ReaderSettings:
        try:
            return self._read()
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to load reader settings: {e}, using defaults")
            return ReaderSettings()

    def get_settings(self, *, refresh: bool = False) -> ReaderSettings:
        """Load settings from file or return defaults."""
        if self._cached is None or refresh:
            self._cached = self._load()
        return self._cached

    def get_port(self) -> int:
        return self.get_settings(refresh=True).port

    def get_voice_settings(self) -> VoiceSettings:
        """Return the voice parameters currently on disk."""
        return self.get_settings(refresh=True).voice_settings()

    def update_settings(self, update: ReaderSettingsUpdate) -> ReaderSettings:
        """Update settings with partial data and persist to file."""
        current = self.get_settings(refresh=True)

        # Apply non-None updates, re-validating so invalid values fall back to defaults
        update_data = update.model_dump(exclude_none=True)
        merged = ReaderSettings.model_validate({**current.model_dump(), **update_data})

        self._save(merged)
        return merged

    def save_port(self, port: int) -> ReaderSettings:
        return self.update_settings(ReaderSettingsUpdate(port=port))

    def set_connected(self, connected: bool) -> None:
        """Record the advisory connection flag.

        Skipped while the file cannot be parsed, so a half-written file is
        never replaced with defaults.
        """
        try:
            current = self._read()
        except (OSError, ValueError) as e:
            logger.warning(f"Not recording connection status, settings file unreadable: {e}")
            return
        self._cached = current
        if current.connected == connected and self._path.exists():
            return
        self._save(current.model_copy(update={"connected": connected}))

    def reset_to_defaults(self) -> ReaderSettings:
        """Reset settings to defaults."""
        defaults = ReaderSettings()
        self._save(defaults)
        return defaults

    def _save(self, settings: ReaderSettings) -> None:
        """Persist settings to file."""
        self._ensure_data_dir()
        self._path.write_text(settings.model_dump_json(indent=2), encoding="utf-8")
        self._cached = settings
        logger.debug(f"Saved reader settings to {self._path}")


__all__ = ["ReaderSettingsService"]
