from __future__ import annotations

from typing import Any, Dict

import socketio
from fastapi import WebSocket
from loguru import logger
from starlette.websockets import WebSocketState


class LiveUpdateHub:
    """Broadcasts workflow events to WebSocket clients and socket.io rooms."""

    def __init__(self, sio_server: socketio.AsyncServer) -> None:
        self.sio = sio_server
        self.websockets: set[WebSocket] = set()

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        self.websockets.add(websocket)

    def disconnect(self, websocket: WebSocket) -> None:
        self.websockets.discard(websocket)

    async def notify(self, event: str, payload: Dict[str, Any]) -> None:
        message = {"event": event, "payload": payload}
        stale = []
        for connection in list(self.websockets):
            if connection.client_state != WebSocketState.CONNECTED:
                stale.append(connection)
                continue
            try:
                await connection.send_json(message)
            except (RuntimeError, OSError) as exc:
                logger.debug("Dropping websocket after send failure: {}", exc)
                stale.append(connection)
        for connection in stale:
            self.disconnect(connection)
        await self.sio.emit(event, payload)


sio = socketio.AsyncServer(async_mode="asgi", cors_allowed_origins="*")
hub = LiveUpdateHub(sio)
