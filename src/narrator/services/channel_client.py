"""
Reader channel client.

Keeps one websocket connection to the local producer alive for the lifetime
of the process:

    disconnected -> connecting -> connected -> disconnected -> (delay) -> connecting ...

The identify frame is the first thing written after the socket opens, and
outbound traffic is refused until it has been sent. When the socket closes or
fails, a single supervisor task waits a fixed delay and dials the stored port
again. There is no backoff and no retry cap, so an unreachable producer
produces a steady retry cadence until `disconnect()` is called.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from enum import Enum
from typing import Callable, Optional, Protocol

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from narrator.errors import ProtocolError
from narrator.schemas.protocol import (
    PlayMessage,
    decode_message,
    encode_message,
    identify_message,
)

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class ChannelListener(Protocol):
    async def handle_play(self, text: str) -> None: ...

    def connection_status_changed(self, state: ConnectionState) -> None: ...


class ChannelClient:
    """Websocket client for the reader protocol with automatic reconnection."""

    def __init__(
        self,
        listener: ChannelListener,
        *,
        host: str = "localhost",
        port_provider: Optional[Callable[[], int]] = None,
        reconnect_delay: float = 5.0,
        open_timeout: float = 10.0,
    ):
        self._listener = listener
        self._host = host
        self._port_provider = port_provider
        self._reconnect_delay = reconnect_delay
        self._open_timeout = open_timeout

        self._state = ConnectionState.DISCONNECTED
        self._port: Optional[int] = None
        self._ws: Optional[ClientConnection] = None
        self._supervisor: Optional[asyncio.Task[None]] = None
        # Held while the supervisor task is swapped or stopped
        self._lifecycle_lock = asyncio.Lock()

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def port(self) -> Optional[int]:
        return self._port

    @property
    def reconnect_delay(self) -> float:
        return self._reconnect_delay

    def uri_for(self, port: int) -> str:
        return f"ws://{self._host}:{port}"

    async def connect(self, port: int) -> None:
        """Tear down any existing connection and start dialing ``port``."""
        async with self._lifecycle_lock:
            await self._stop_supervisor()
            self._port = port
            self._supervisor = asyncio.create_task(
                self._supervise(port), name=f"reader-channel-{port}"
            )

    async def disconnect(self) -> None:
        """Close the connection and stop reconnecting."""
        async with self._lifecycle_lock:
            await self._stop_supervisor()
        self._set_state(ConnectionState.DISCONNECTED)

    async def send(self, message) -> bool:
        """Write a protocol message; a no-op when not connected."""
        ws = self._ws
        if ws is None or not self.connected:
            logger.warning(f"Not connected, dropping outbound {message.type!r} message")
            return False
        try:
            await ws.send(encode_message(message))
        except ConnectionClosed as e:
            logger.warning(f"Channel closed while sending {message.type!r}: {e}")
            return False
        return True

    async def _stop_supervisor(self) -> None:
        task, self._supervisor = self._supervisor, None
        if task is not None and not task.done():
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task

    async def _supervise(self, port: int) -> None:
        while True:
            await self._run_connection(port)
            logger.info(f"Reconnecting in {self._reconnect_delay:g}s")
            await asyncio.sleep(self._reconnect_delay)
            if self._port_provider is not None:
                port = self._port_provider()
                self._port = port

    async def _run_connection(self, port: int) -> None:
        uri = self.uri_for(port)
        self._set_state(ConnectionState.CONNECTING)
        try:
            async with connect(uri, open_timeout=self._open_timeout) as ws:
                logger.info(f"Channel connection opened: {uri}")
                await ws.send(encode_message(identify_message()))
                self._ws = ws
                self._set_state(ConnectionState.CONNECTED)
                async for frame in ws:
                    await self._handle_frame(frame)
                logger.info(f"Channel connection closed: {uri}")
        except (OSError, ValueError, asyncio.TimeoutError, WebSocketException) as e:
            logger.warning(f"Channel error on {uri}: {e}")
        finally:
            self._ws = None
            self._set_state(ConnectionState.DISCONNECTED)

    async def _handle_frame(self, frame: str | bytes) -> None:
        try:
            message = decode_message(frame)
        except ProtocolError as e:
            logger.warning(f"Dropping unparseable frame: {e}")
            return

        if not isinstance(message, PlayMessage):
            logger.debug(f"Ignoring {message.type!r} message")
            return

        logger.info(f"Play message received ({len(message.value)} chars)")
        try:
            await self._listener.handle_play(message.value)
        except Exception as e:
            logger.error(f"Play handler failed: {e}", exc_info=True)

    def _set_state(self, state: ConnectionState) -> None:
        if state is self._state:
            return
        self._state = state
        logger.debug(f"Channel state -> {state.value}")
        self._listener.connection_status_changed(state)


__all__ = ["ChannelClient", "ChannelListener", "ConnectionState"]
