"""
FlowGate API - task change feed.

Pushes ``{"msg": "task status change", "jobNo": ...}`` to every connected
client after each successful status write. Status writes happen on worker
threads, so the broadcaster hops onto the server's event loop before
sending.
"""

import asyncio
import threading
from typing import Any, Dict, Optional, Set

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from flowgate.utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter()


class TaskChangeBroadcaster:
    """Connected websocket clients of the task change feed."""

    def __init__(self):
        self._connections: Set[WebSocket] = set()
        self._lock = threading.Lock()
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def connection_count(self) -> int:
        with self._lock:
            return len(self._connections)

    def bind_loop(self, loop: Optional[asyncio.AbstractEventLoop]) -> None:
        self._loop = loop

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        with self._lock:
            self._connections.add(websocket)
        logger.debug(f"Task change listener connected ({self.connection_count} total)")

    def disconnect(self, websocket: WebSocket) -> None:
        with self._lock:
            self._connections.discard(websocket)

    async def broadcast(self, payload: Dict[str, Any]) -> None:
        with self._lock:
            connections = list(self._connections)
        for websocket in connections:
            try:
                await websocket.send_json(payload)
            except Exception as e:
                logger.debug(f"Dropping task change listener: {e}")
                self.disconnect(websocket)

    def __call__(self, payload: Dict[str, Any]) -> None:
        """Notifier subscriber entry point; safe to call from any thread."""
        loop = self._loop
        if loop is None or loop.is_closed():
            logger.debug("Task change not broadcast: no running event loop")
            return
        asyncio.run_coroutine_threadsafe(self.broadcast(payload), loop)


@router.websocket("/ws/task-change")
async def task_change_feed(websocket: WebSocket):
    broadcaster: TaskChangeBroadcaster = websocket.app.state.broadcaster
    await broadcaster.connect(websocket)
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        broadcaster.disconnect(websocket)
