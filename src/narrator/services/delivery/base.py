"""Contract shared by the native-engine and remote-surface backends."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict

from narrator.schemas.reader_settings import VoiceSettings


class DeliveryBackend(ABC):
    """Produces or controls audible speech on behalf of the orchestrator.

    Every call is bounded by the backend's own timeout and raises
    `DeliveryError` on failure. `start` must stop any in-flight utterance
    before speaking; `stop` must be safe to call when nothing is playing.
    """

    name: str = "backend"

    @abstractmethod
    async def ensure_ready(self) -> bool:
        """Make sure a delivery target exists.

        Returns True when a fresh target was provisioned by this call, so the
        caller knows to give it a settle delay before use.
        """

    @abstractmethod
    async def start(self, text: str, settings: VoiceSettings) -> Dict[str, Any]:
        """Speak ``text``, replacing whatever is currently audible."""

    @abstractmethod
    async def stop(self) -> Dict[str, Any]:
        """Silence any current utterance."""

    @abstractmethod
    async def discard(self) -> None:
        """Force-drop the current delivery target so the next call recreates it."""

    @abstractmethod
    async def is_speaking(self) -> bool:
        """Best-effort report of whether something is audible right now."""

    async def close(self) -> None:
        """Release everything the backend holds. Called on process shutdown."""
        await self.discard()

    def describe(self) -> Dict[str, Any]:
        return {"name": self.name}


__all__ = ["DeliveryBackend"]
