"""WebSocket connection manager for real-time run updates."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any

from fastapi import WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

logger = logging.getLogger(__name__)


def utc_now_iso() -> str:
    """Current UTC time as ISO 8601 with millisecond precision and a ``Z`` suffix."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class ConnectionManager:
    """Fans named events out to every connected observer.

    Live updates are best effort: an observer that is not connected is
    skipped and one whose send fails is dropped. The final state of every
    run is always recoverable from the run history.
    """

    def __init__(self) -> None:
        self._connections: set[WebSocket] = set()

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    async def connect(self, ws: WebSocket) -> None:
        await ws.accept()
        self._connections.add(ws)
        logger.info("ws: client connected (total %d)", len(self._connections))

    def disconnect(self, ws: WebSocket) -> None:
        self._connections.discard(ws)
        logger.info("ws: client disconnected (total %d)", len(self._connections))

    async def broadcast(self, event: str, data: dict[str, Any]) -> None:
        if not self._connections:
            return
        message = json.dumps({"event": event, "data": data, "timestamp": utc_now_iso()})
        dead: list[WebSocket] = []
        for ws in list(self._connections):
            if ws.client_state != WebSocketState.CONNECTED:
                continue
            try:
                await ws.send_text(message)
            except Exception:
                dead.append(ws)
        for ws in dead:
            self._connections.discard(ws)
        if dead:
            logger.debug("ws: dropped %d dead connection(s)", len(dead))


ws_manager = ConnectionManager()


async def ws_endpoint(ws: WebSocket, manager: ConnectionManager | None = None) -> None:
    """Accept the socket and keep it registered until the client disconnects."""
    manager = manager or ws_manager
    await manager.connect(ws)
    try:
        while True:
            # Observers only listen; incoming frames are ignored
            await ws.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        manager.disconnect(ws)
