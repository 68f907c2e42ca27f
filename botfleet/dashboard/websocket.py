"""WebSocket handling for the control surface."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Manage active WebSocket connections."""

    def __init__(self) -> None:
        self._active_connections: list[WebSocket] = []
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket) -> None:
        """Accept and register a new connection."""
        await websocket.accept()
        async with self._lock:
            self._active_connections.append(websocket)
        logger.info(
            "WebSocket connected. Total connections: %d", len(self._active_connections)
        )

    async def disconnect(self, websocket: WebSocket) -> None:
        """Remove a connection."""
        async with self._lock:
            if websocket in self._active_connections:
                self._active_connections.remove(websocket)
        logger.info(
            "WebSocket disconnected. Total connections: %d",
            len(self._active_connections),
        )

    async def broadcast(self, message: dict[str, Any]) -> None:
        """Send a message to all connected clients."""
        if not self._active_connections:
            return

        data = json.dumps(message)
        disconnected: list[WebSocket] = []

        async with self._lock:
            for connection in self._active_connections:
                try:
                    await connection.send_text(data)
                except Exception as e:
                    logger.debug("Failed to send to WebSocket: %s", e)
                    disconnected.append(connection)

            for conn in disconnected:
                if conn in self._active_connections:
                    self._active_connections.remove(conn)

    @property
    def connection_count(self) -> int:
        """Number of active connections."""
        return len(self._active_connections)


def frame(event: str, data: Any) -> dict[str, Any]:
    """Wire shape of every control-surface message."""
    return {"event": event, "data": data}


class ControlSurface:
    """Event sink that fans supervisor events out to every client.

    emit() is synchronous so units and the supervisor can call it from
    their callbacks; frames are queued and a sender task broadcasts them
    in order. Calls from other threads are handed to the loop.
    """

    def __init__(self, manager: ConnectionManager | None = None) -> None:
        self.manager = manager or ConnectionManager()
        self._queue: asyncio.Queue[dict[str, Any]] | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._sender: asyncio.Task[None] | None = None

    def start(self) -> None:
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        self._sender = asyncio.create_task(self._send_loop(), name="control-surface")

    async def stop(self) -> None:
        """Flush queued frames, then stop the sender."""
        if self._sender is None or self._queue is None:
            return
        await self._queue.join()
        self._sender.cancel()
        await asyncio.gather(self._sender, return_exceptions=True)
        self._sender = None
        self._queue = None
        self._loop = None

    @property
    def is_running(self) -> bool:
        return self._sender is not None and not self._sender.done()

    def emit(self, event: str, data: dict[str, Any]) -> None:
        queue = self._queue
        loop = self._loop
        if queue is None or loop is None:
            return
        message = frame(event, data)
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            queue.put_nowait(message)
        elif not loop.is_closed():
            loop.call_soon_threadsafe(queue.put_nowait, message)

    async def _send_loop(self) -> None:
        assert self._queue is not None
        queue = self._queue
        while True:
            message = await queue.get()
            try:
                await self.manager.broadcast(message)
            finally:
                queue.task_done()
