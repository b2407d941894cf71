from __future__ import annotations

"""
File: fleetsim/ws.py
Purpose: Live vehicle_update fan-out to WebSocket viewers.
Key responsibilities:
- Accept viewers and replay the current in-transit snapshot to newcomers.
- Push every vehicle event to all viewers, dropping sockets that fail.
"""

import asyncio
import json
import logging
from typing import Any, Iterable

from fastapi import WebSocket

logger = logging.getLogger("fleetsim.ws")


def encode_event(payload: dict[str, Any]) -> str:
    return json.dumps(payload, separators=(",", ":"))


class ViewerHub:
    """Connected map viewers."""
    def __init__(self) -> None:
        self.viewers: set[WebSocket] = set()
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket, snapshot: Iterable[dict[str, Any]] = ()) -> None:
        """Accept a viewer, send it the snapshot, then start broadcasting to it."""
        await websocket.accept()
        for payload in snapshot:
            await websocket.send_text(encode_event(payload))
        async with self._lock:
            self.viewers.add(websocket)
            count = len(self.viewers)
        logger.info("viewer connected viewers=%s", count)

    async def disconnect(self, websocket: WebSocket) -> None:
        async with self._lock:
            self.viewers.discard(websocket)
            count = len(self.viewers)
        logger.info("viewer disconnected viewers=%s", count)

    async def broadcast(self, payload: dict[str, Any]) -> int:
        """Send one event to every viewer; returns how many received it."""
        data = encode_event(payload)
        async with self._lock:
            viewers = list(self.viewers)
        delivered = 0
        stale: list[WebSocket] = []
        for viewer in viewers:
            try:
                await viewer.send_text(data)
                delivered += 1
            except Exception:  # noqa: BLE001
                stale.append(viewer)
        if stale:
            async with self._lock:
                self.viewers.difference_update(stale)
            logger.warning("dropped stale viewers count=%s", len(stale))
        return delivered
