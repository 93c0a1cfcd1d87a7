import asyncio
import logging
from typing import Any, Dict

logger = logging.getLogger(__name__)


class StatusBroadcaster:
    """Fans out status pushes to every subscribed control surface."""

    def __init__(self, max_pending: int = 100):
        self._max_pending = max_pending
        self._subscribers: set[asyncio.Queue[Dict[str, Any]]] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> "asyncio.Queue[Dict[str, Any]]":
        """Register a new observer and return its event queue."""
        queue: asyncio.Queue[Dict[str, Any]] = asyncio.Queue(maxsize=self._max_pending)
        self._subscribers.add(queue)
        logger.debug(f"Observer subscribed ({len(self._subscribers)} total)")
        return queue

    def unsubscribe(self, queue: "asyncio.Queue[Dict[str, Any]]") -> None:
        self._subscribers.discard(queue)
        logger.debug(f"Observer unsubscribed ({len(self._subscribers)} total)")

    def broadcast(self, message: Dict[str, Any]) -> None:
        """Push a message to all observers; a full queue drops its oldest entry."""
        for queue in list(self._subscribers):
            if queue.full():
                queue.get_nowait()
            queue.put_nowait(message)

    def connection_status_changed(self, status: str) -> None:
        self.broadcast({"action": "connectionStatusChanged", "status": status})

    def text_selected(self, text: str) -> None:
        self.broadcast({"action": "textSelected", "text": text})


__all__ = ["StatusBroadcaster"]
