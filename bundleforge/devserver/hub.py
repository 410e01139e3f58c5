"""Live reload connection hub."""

from __future__ import annotations

import json
from collections import deque
from typing import Any

from fastapi import WebSocket

from ..core.logging import get_logger

logger = get_logger(__name__)


class LiveReloadHub:
    """Manage live reload WebSocket connections."""

    def __init__(self, history_size: int = 50) -> None:
        self.active_connections: list[WebSocket] = []
        self.history: deque[dict[str, Any]] = deque(maxlen=history_size)

    async def connect(self, websocket: WebSocket) -> None:
        self.active_connections.append(websocket)
        await websocket.accept()
        logger.debug("Live reload client connected", clients=len(self.active_connections))

    def disconnect(self, websocket: WebSocket) -> None:
        if websocket in self.active_connections:
            self.active_connections.remove(websocket)

    async def broadcast(self, message: dict[str, Any]) -> int:
        """Send ``message`` to every client. Returns how many received it."""
        self.history.append(message)
        payload = json.dumps(message, default=str)
        delivered = 0
        for websocket in list(self.active_connections):
            try:
                await websocket.send_text(payload)
                delivered += 1
            except Exception:
                # the client went away between sends
                self.disconnect(websocket)
        return delivered

    async def notify_reload(self, cycle_id: str, scope: str) -> int:
        return await self.broadcast({"type": "reload", "cycle": cycle_id, "scope": scope})

    async def notify_error(self, cycle_id: str, stage: str, error: str) -> int:
        return await self.broadcast({"type": "error", "cycle": cycle_id, "stage": stage, "error": error})

    @property
    def last_message(self) -> dict[str, Any] | None:
        return self.history[-1] if self.history else None
