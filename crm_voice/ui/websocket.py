from __future__ import annotations

import asyncio
from typing import Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from crm_voice.orchestrator.events import State
from crm_voice.telemetry.logging import get_logger


class SessionStateBridge:
    """Broadcasts session state transitions and interim transcripts to websocket clients."""

    def __init__(self, path: str = "/ws/state") -> None:
        self._clients: set[WebSocket] = set()
        self._router = APIRouter()
        self._router.add_api_websocket_route(path, self._websocket_handler)
        self._lock = asyncio.Lock()
        self._last_message: dict[str, Any] | None = None
        self._logger = get_logger(__name__)

    @property
    def router(self) -> APIRouter:
        return self._router

    @property
    def client_count(self) -> int:
        return len(self._clients)

    async def _websocket_handler(self, websocket: WebSocket) -> None:
        await websocket.accept()
        async with self._lock:
            self._clients.add(websocket)
            snapshot = self._last_message
        self._logger.info("ui.client.connected", count=len(self._clients))
        try:
            if snapshot is not None:
                await websocket.send_json(snapshot)
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            async with self._lock:
                self._clients.discard(websocket)
            self._logger.info("ui.client.disconnected", count=len(self._clients))

    async def publish_state(self, state: State, payload: dict[str, Any] | None = None) -> None:
        message = {"state": state, "payload": payload or {}}
        async with self._lock:
            self._last_message = message
            clients = list(self._clients)
        if not clients:
            return
        results = await asyncio.gather(*(client.send_json(message) for client in clients), return_exceptions=True)
        stale = [client for client, result in zip(clients, results) if isinstance(result, Exception)]
        if stale:
            async with self._lock:
                self._clients.difference_update(stale)
            self._logger.info("ui.client.dropped", count=len(stale))


__all__ = ["SessionStateBridge"]
