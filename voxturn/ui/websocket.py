from __future__ import annotations

import asyncio
from typing import Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from voxturn.orchestrator.events import UISnapshot
from voxturn.orchestrator.state_machine import TurnController
from voxturn.telemetry.logging import get_logger
from voxturn.ui.actions import apply_action


class FloatingUIBridge:
    """Pushes controller snapshots to UI clients and applies their actions."""

    def __init__(self) -> None:
        self._clients: set[WebSocket] = set()
        self._router = APIRouter()
        self._router.add_api_websocket_route("/ws/state", self._websocket_handler)
        self._lock = asyncio.Lock()
        self._controller: TurnController | None = None
        self._unsubscribe = None
        self._pending: set[asyncio.Task[None]] = set()
        self._logger = get_logger(__name__)

    @property
    def router(self) -> APIRouter:
        return self._router

    def attach(self, controller: TurnController) -> None:
        self.detach()
        self._controller = controller
        self._unsubscribe = controller.subscribe(self._on_snapshot)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
        self._unsubscribe = None
        self._controller = None

    def _on_snapshot(self, snapshot: UISnapshot) -> None:
        task = asyncio.get_running_loop().create_task(self.publish_state(snapshot))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _websocket_handler(self, websocket: WebSocket) -> None:
        await websocket.accept()
        async with self._lock:
            self._clients.add(websocket)
        self._logger.info("ui.client.connected", count=len(self._clients))
        if self._controller is not None:
            await websocket.send_json({"type": "state", "payload": self._controller.snapshot().to_dict()})
        try:
            while True:
                message = await websocket.receive_json()
                await websocket.send_json(self._handle_message(message))
        except WebSocketDisconnect:
            async with self._lock:
                self._clients.discard(websocket)
            self._logger.info("ui.client.disconnected", count=len(self._clients))

    def _handle_message(self, message: Any) -> dict[str, Any]:
        if not isinstance(message, dict) or not isinstance(message.get("action"), str):
            return {"type": "error", "detail": "expected {'action': <name>, ...}"}
        action = message["action"]
        if self._controller is None:
            return {"type": "error", "action": action, "detail": "controller not ready"}
        try:
            result = apply_action(self._controller, action, message)
        except ValueError as exc:
            self._logger.warning("ui.action.rejected", action=action, error=str(exc))
            return {"type": "error", "action": action, "detail": str(exc)}
        return {"type": "ack", "action": action, "result": result}

    async def publish_state(self, snapshot: UISnapshot) -> None:
        message = {"type": "state", "payload": snapshot.to_dict()}
        async with self._lock:
            send_tasks = [client.send_json(message) for client in self._clients]
        if send_tasks:
            await asyncio.gather(*send_tasks, return_exceptions=True)


__all__ = ["FloatingUIBridge"]
