"""
WebSocket stream of live events for admin dashboards.
"""

from __future__ import annotations

import logging
from typing import Optional

import anyio
from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect, status

from bhss.auth import decode_access_token
from bhss.dependencies import get_live_feed
from bhss.errors import AppHTTPException
from bhss.live import LiveFeed

logger = logging.getLogger(__name__)

router = APIRouter(tags=["live"])


@router.websocket("/ws/live")
async def live_updates(
    websocket: WebSocket,
    token: Optional[str] = None,
    feed: LiveFeed = Depends(get_live_feed),
):
    """
    Admin-only. Each message is ``{"event": ..., "data": ...}``. Clients send
    nothing; the socket is read only to notice disconnects.
    """
    try:
        current = decode_access_token(token or "")
    except AppHTTPException:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    if not current.is_admin:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    async with feed.subscribe() as messages:
        await websocket.accept()
        logger.info("Live listener connected: %s", current.id)
        try:
            async with anyio.create_task_group() as tg:

                async def forward() -> None:
                    try:
                        async for message in messages:
                            await websocket.send_json(message)
                    except Exception as exc:
                        logger.warning("Live listener %s closed: %s", current.id, exc)
                    tg.cancel_scope.cancel()

                async def watch() -> None:
                    try:
                        while True:
                            await websocket.receive_text()
                    except WebSocketDisconnect:
                        pass
                    tg.cancel_scope.cancel()

                tg.start_soon(forward)
                tg.start_soon(watch)
        finally:
            logger.info("Live listener disconnected: %s", current.id)
