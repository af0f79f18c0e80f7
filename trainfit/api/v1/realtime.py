"""WebSocket endpoint for live payment updates."""

import json
import logging

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect, status
from sqlalchemy.ext.asyncio import AsyncSession

from trainfit.auth.dependencies import authenticate_token
from trainfit.database import get_db
from trainfit.realtime import ConnectionManager, get_realtime, user_channel

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["realtime"])


@router.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    token: str = Query(...),
    db: AsyncSession = Depends(get_db),
    manager: ConnectionManager = Depends(get_realtime),
):
    """Subscribe to the authenticated user's channel.

    Example::

        ws://localhost:8000/api/v1/ws?token=<access token>
    """
    user = await authenticate_token(db, token)
    if user is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    channel = user_channel(user.id)
    await manager.connect(websocket, channel)
    try:
        while True:
            data = await websocket.receive_text()
            try:
                message = json.loads(data)
            except json.JSONDecodeError:
                continue
            if isinstance(message, dict) and message.get("type") == "ping":
                await websocket.send_json({"type": "pong"})
    except WebSocketDisconnect:
        manager.disconnect(websocket, channel)
        logger.info("WebSocket left channel %s", channel)
