"""WebSocket broadcast of approval request updates."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from approval_engine.events import RequestUpdated

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])


class ConnectionManager:
    """Tracks open dashboard sockets and broadcasts to all of them.

    Subscribe ``broadcast_event`` to the event emitter; sockets that fail
    a send are dropped.
    """

    def __init__(self) -> None:
        self._connections: list[WebSocket] = []

    @property
    def count(self) -> int:
        return len(self._connections)

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        self._connections.append(websocket)
        await websocket.send_json(
            {
                "event": "connected",
                "payload": {"message": "Connected to approval updates"},
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }
        )
        logger.info("WebSocket client connected (%d open)", self.count)

    def disconnect(self, websocket: WebSocket) -> None:
        if websocket in self._connections:
            self._connections.remove(websocket)
            logger.info("WebSocket client disconnected (%d open)", self.count)

    async def broadcast(self, message: dict[str, Any]) -> int:
        """Send to every open socket; returns how many received it."""
        delivered = 0
        for websocket in list(self._connections):
            try:
                await websocket.send_json(message)
                delivered += 1
            except (WebSocketDisconnect, RuntimeError) as exc:
                logger.debug("Dropping dead socket: %s", exc)
                self.disconnect(websocket)
        return delivered

    async def broadcast_event(self, event: RequestUpdated) -> None:
        await self.broadcast(event.to_message())


@router.websocket("/ws")
async def updates_socket(websocket: WebSocket) -> None:
    """Push ``approval_request_updated`` events to the dashboard."""
    manager: ConnectionManager = websocket.app.state.connections
    await manager.connect(websocket)
    try:
        while True:
            text = await websocket.receive_text()
            if text.strip().lower() == "ping":
                await websocket.send_json({"event": "pong"})
    except WebSocketDisconnect:
        manager.disconnect(websocket)
