"""WebSocket connection manager — per-user channels for live updates.

Channels are named ``user-{id}``. Emitting never raises for delivery
problems: dead sockets are dropped and the send count returned.
"""

import logging
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any

from fastapi import WebSocket

logger = logging.getLogger(__name__)


def user_channel(user_id: Any) -> str:
    return f"user-{user_id}"


class ConnectionManager:
    """Tracks open WebSockets by channel and pushes events to them."""

    def __init__(self) -> None:
        self.channels: dict[str, set[WebSocket]] = defaultdict(set)

    async def connect(self, websocket: WebSocket, channel: str) -> None:
        await websocket.accept()
        self.channels[channel].add(websocket)
        logger.info("WebSocket joined channel %s (%d open)", channel, len(self.channels[channel]))
        await websocket.send_json(
            {
                "type": "connection_established",
                "channel": channel,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }
        )

    def disconnect(self, websocket: WebSocket, channel: str) -> None:
        sockets = self.channels.get(channel)
        if sockets is None:
            return
        sockets.discard(websocket)
        if not sockets:
            del self.channels[channel]

    async def emit(self, channel: str, event: str, payload: dict[str, Any]) -> int:
        """Send ``event`` to every socket on ``channel``. Returns how many got it."""
        message = {
            "type": event,
            "data": payload,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        sent = 0
        dead: list[WebSocket] = []
        for websocket in list(self.channels.get(channel, ())):
            try:
                await websocket.send_json(message)
                sent += 1
            except Exception as e:
                logger.debug("Dropping WebSocket on %s: %s", channel, e)
                dead.append(websocket)
        for websocket in dead:
            self.disconnect(websocket, channel)
        return sent


manager = ConnectionManager()


def get_realtime() -> ConnectionManager:
    """FastAPI dependency for the process-wide connection manager."""
    return manager
