"""Reader orchestrator coordinating the channel client, delivery backend, and observers."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional

from .errors import DeliveryError
from .schemas.reader_settings import coerce_port
from .services.channel_client import ChannelClient, ConnectionState
from .services.delivery import DeliveryBackend
from .services.reader_settings import ReaderSettingsService
from .services.status_broadcaster import StatusBroadcaster

if TYPE_CHECKING:
    from .config import Settings

logger = logging.getLogger(__name__)

NO_TEXT_ERROR = "No text available"
DELIVERY_FAILED_ERROR = "Delivery failed"


@dataclass(frozen=True)
class PlayResult:
    success: bool
    error: Optional[str] = None

    def asdict(self) -> dict[str, Any]:
        payload = asdict(self)
        if self.error is None:
            payload.pop("error")
        return payload


class ReaderOrchestrator:
    """Routes channel commands to the delivery backend and owns recovery.

    A failed start/stop gets exactly one recovery cycle: the delivery target is
    discarded, recreated, given the settle delay, and the same call is issued
    once more. A second failure is logged and the command is dropped.
    """

    def __init__(
        self,
        settings_service: ReaderSettingsService,
        backend: DeliveryBackend,
        *,
        broadcaster: Optional[StatusBroadcaster] = None,
        channel: Optional[ChannelClient] = None,
        channel_host: str = "localhost",
        reconnect_delay: float = 5.0,
        open_timeout: float = 10.0,
        settle_delay: float = 0.05,
        recovery_delay: float = 0.1,
    ):
        self._settings_service = settings_service
        self._backend = backend
        self._broadcaster = broadcaster or StatusBroadcaster()
        self._channel = channel or ChannelClient(
            self,
            host=channel_host,
            port_provider=settings_service.get_port,
            reconnect_delay=reconnect_delay,
            open_timeout=open_timeout,
        )
        self._settle_delay = settle_delay
        self._recovery_delay = recovery_delay
        self._selected_text = ""

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        settings_service: ReaderSettingsService,
        backend: DeliveryBackend,
        broadcaster: Optional[StatusBroadcaster] = None,
    ) -> "ReaderOrchestrator":
        return cls(
            settings_service,
            backend,
            broadcaster=broadcaster,
            channel_host=settings.channel_host,
            reconnect_delay=settings.reconnect_delay_seconds,
            open_timeout=settings.connect_timeout_seconds,
            settle_delay=settings.settle_delay_seconds,
            recovery_delay=settings.recovery_delay_seconds,
        )

    @property
    def channel(self) -> ChannelClient:
        return self._channel

    @property
    def backend(self) -> DeliveryBackend:
        return self._backend

    @property
    def broadcaster(self) -> StatusBroadcaster:
        return self._broadcaster

    @property
    def selected_text(self) -> str:
        return self._selected_text

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Pre-provision the delivery target and dial the stored port."""
        try:
            await self._backend.ensure_ready()
        except DeliveryError as e:
            logger.warning(f"Delivery target not ready at start-up: {e}")
        port = self._settings_service.get_port()
        logger.info(f"Connecting to reader channel on port {port}")
        await self._channel.connect(port)

    async def shutdown(self) -> None:
        await self._channel.disconnect()
        await self._backend.close()

    # ------------------------------------------------------------------
    # Channel listener
    # ------------------------------------------------------------------

    async def handle_play(self, text: str) -> None:
        await self.on_play(text)

    def connection_status_changed(self, state: ConnectionState) -> None:
        try:
            self._settings_service.set_connected(state is ConnectionState.CONNECTED)
        except OSError as e:
            logger.warning(f"Could not persist connection status: {e}")
        self._broadcaster.connection_status_changed(state.value)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def on_play(self, text: str) -> bool:
        """Speak ``text`` with the voice settings currently on disk."""
        self._remember_text(text)
        voice_settings = self._settings_service.get_voice_settings()
        return await self._deliver(
            "playTTS", lambda: self._backend.start(text, voice_settings)
        )

    async def on_stop(self) -> bool:
        return await self._deliver("stopTTS", self._backend.stop)

    async def _prepare_target(self) -> None:
        if await self._backend.ensure_ready():
            await asyncio.sleep(self._settle_delay)

    async def _deliver(self, action: str, call: Callable[[], Awaitable[Any]]) -> bool:
        try:
            await self._prepare_target()
            await call()
            return True
        except DeliveryError as e:
            logger.warning(f"{action} failed ({e}); recreating delivery target and retrying once")

        try:
            await self._backend.discard()
            await asyncio.sleep(self._recovery_delay)
            await self._prepare_target()
            await call()
        except DeliveryError as e:
            logger.error(f"{action} dropped after recovery attempt: {e}")
            return False

        logger.info(f"{action} succeeded after recovery")
        return True

    # ------------------------------------------------------------------
    # Manual controls
    # ------------------------------------------------------------------

    async def connect(self, port: Any) -> int:
        """Persist ``port`` (defaulted when invalid) and reconnect to it."""
        resolved = coerce_port(port)
        self._settings_service.save_port(resolved)
        await self._channel.connect(resolved)
        return resolved

    async def disconnect(self) -> None:
        await self._channel.disconnect()

    async def get_status(self) -> dict[str, Any]:
        return {
            "connected": self._channel.connected,
            "speaking": await self._backend.is_speaking(),
        }

    async def play_selected_text(self, text: Optional[str] = None) -> PlayResult:
        chosen = text or self._selected_text
        if not chosen:
            return PlayResult(success=False, error=NO_TEXT_ERROR)
        if await self.on_play(chosen):
            return PlayResult(success=True)
        return PlayResult(success=False, error=DELIVERY_FAILED_ERROR)

    def text_selected(self, text: str) -> bool:
        """Record a selection from the sensor; blank selections are ignored."""
        trimmed = text.strip()
        if not trimmed:
            return False
        self._remember_text(trimmed)
        return True

    def _remember_text(self, text: str) -> None:
        self._selected_text = text
        self._broadcaster.text_selected(text)


__all__ = ["ReaderOrchestrator", "PlayResult", "NO_TEXT_ERROR", "DELIVERY_FAILED_ERROR"]
