from __future__ import annotations

import asyncio
import logging
from typing import Set

from fastapi import WebSocket

logger = logging.getLogger(__name__)

# Sent after every block/unblock/delete; clients re-fetch the roster on receipt
ROSTER_CHANGED_EVENT = "usersUpdated"


class RosterBroadcaster:
    """Fan-out registry of connected WebSocket clients.

    One logical channel, no per-user filtering. Messages carry only an event
    name. Delivery is fire-and-forget: a socket whose send fails is dropped
    and nothing is queued or retried.
    """

    def __init__(self) -> None:
        self._connections: Set[WebSocket] = set()

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        self._connections.add(websocket)
        logger.info(f"Client connected ({self.connection_count} open)")

    def disconnect(self, websocket: WebSocket) -> None:
        if websocket in self._connections:
            self._connections.discard(websocket)
            logger.info(f"Client disconnected ({self.connection_count} open)")

    async def broadcast(self, event: str = ROSTER_CHANGED_EVENT) -> int:
        """Send the event to every open connection. Returns the number delivered."""
        targets = list(self._connections)
        if not targets:
            return 0

        message = {"event": event}
        results = await asyncio.gather(
            *(websocket.send_json(message) for websocket in targets),
            return_exceptions=True,
        )

        delivered = 0
        for websocket, result in zip(targets, results):
            if isinstance(result, Exception):
                logger.warning(f"Dropping client after failed send: {result!r}")
                self._connections.discard(websocket)
            else:
                delivered += 1

        logger.info(f"Broadcast '{event}' to {delivered}/{len(targets)} clients")
        return delivered
