"""WebSocket connection manager with event fanout.

Receives change events from the wiki engine and broadcasts them to all
connected WebSocket clients via per-client asyncio queues.
"""

import asyncio
import logging
from typing import Any

from miniwiki.core.models import WikiEvent

logger = logging.getLogger(__name__)


def _event_to_dict(event: WikiEvent) -> dict[str, Any]:
    """Convert a WikiEvent to a JSON-serializable dict."""
    d: dict[str, Any] = {"type": event.type}
    if event.page is not None:
        d["page"] = event.page
    return d


class ConnectionManager:
    """Manages WebSocket connections and fans out wiki events."""

    def __init__(self, queue_size: int = 256) -> None:
        self._clients: dict[int, asyncio.Queue[dict[str, Any]]] = {}
        self._next_id: int = 0
        self._queue_size = queue_size

    def connect(self) -> tuple[int, asyncio.Queue[dict[str, Any]]]:
        """Register a new client. Returns (client_id, queue)."""
        client_id = self._next_id
        self._next_id += 1
        queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=self._queue_size)
        self._clients[client_id] = queue
        logger.info(
            "WebSocket client %d connected (%d total)",
            client_id,
            len(self._clients),
        )
        return client_id, queue

    def disconnect(self, client_id: int) -> None:
        """Unregister a client."""
        self._clients.pop(client_id, None)
        logger.info(
            "WebSocket client %d disconnected (%d total)",
            client_id,
            len(self._clients),
        )

    @property
    def client_count(self) -> int:
        """Number of connected clients."""
        return len(self._clients)

    def publish(self, event: WikiEvent) -> None:
        """Queue an event for every connected client."""
        msg = _event_to_dict(event)
        for client_id, queue in list(self._clients.items()):
            try:
                queue.put_nowait(msg)
            except asyncio.QueueFull:
                logger.warning("Client %d queue full, dropping event", client_id)
