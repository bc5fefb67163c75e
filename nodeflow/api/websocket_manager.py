"""WebSocket manager pushing debug events to connected clients."""

import asyncio
import uuid
from datetime import datetime
from typing import Any, Dict, Optional, Set

from fastapi import WebSocket

from ..core.logging import get_logger
from ..models.core import DebugEvent

logger = get_logger(__name__)

ALL_EXECUTIONS = "*"


class WebSocketConnection:
    """A WebSocket connection with the executions it follows."""

    def __init__(self, websocket: WebSocket, connection_id: str):
        self.websocket = websocket
        self.connection_id = connection_id
        self.connected_at = datetime.utcnow()
        self.subscribed_executions: Set[str] = set()
        self.is_active = True


class WebSocketManager:
    """Fan debug events out to WebSocket subscribers.

    Register :meth:`handle_debug_event` as an engine listener. Connections
    subscribe to an execution id, or to ``"*"`` for every execution.
    """

    def __init__(self):
        self._connections: Dict[str, WebSocketConnection] = {}
        self._subscribers: Dict[str, Set[str]] = {}
        self._pending: Set[asyncio.Task] = set()
        logger.info("WebSocketManager initialized")

    async def connect(self, websocket: WebSocket) -> str:
        await websocket.accept()

        connection_id = str(uuid.uuid4())
        self._connections[connection_id] = WebSocketConnection(websocket, connection_id)
        logger.info(f"WebSocket connection established: {connection_id}")

        await self.send_to_connection(connection_id, {
            "event_type": "connection_established",
            "connection_id": connection_id,
            "timestamp": datetime.utcnow().isoformat(),
        })
        return connection_id

    async def disconnect(self, connection_id: str) -> None:
        connection = self._connections.pop(connection_id, None)
        if connection is None:
            return
        connection.is_active = False
        for execution_id in list(connection.subscribed_executions):
            self._remove_subscriber(connection_id, execution_id)
        logger.info(f"WebSocket connection disconnected and cleaned up: {connection_id}")

    async def subscribe(self, connection_id: str, execution_id: str = ALL_EXECUTIONS) -> bool:
        connection = self._connections.get(connection_id)
        if connection is None or not connection.is_active:
            logger.warning(f"Attempted to subscribe unknown or inactive connection: {connection_id}")
            return False

        connection.subscribed_executions.add(execution_id)
        self._subscribers.setdefault(execution_id, set()).add(connection_id)
        logger.debug(f"Connection {connection_id} subscribed to {execution_id}")

        await self.send_to_connection(connection_id, {
            "event_type": "subscription_confirmed",
            "execution_id": execution_id,
            "timestamp": datetime.utcnow().isoformat(),
        })
        return True

    async def unsubscribe(self, connection_id: str, execution_id: str = ALL_EXECUTIONS) -> bool:
        if connection_id not in self._connections:
            return False
        self._remove_subscriber(connection_id, execution_id)
        await self.send_to_connection(connection_id, {
            "event_type": "unsubscribed",
            "execution_id": execution_id,
            "timestamp": datetime.utcnow().isoformat(),
        })
        return True

    def _remove_subscriber(self, connection_id: str, execution_id: str) -> None:
        connection = self._connections.get(connection_id)
        if connection is not None:
            connection.subscribed_executions.discard(execution_id)
        subscribers = self._subscribers.get(execution_id)
        if subscribers is not None:
            subscribers.discard(connection_id)
            if not subscribers:
                del self._subscribers[execution_id]

    def handle_debug_event(self, event: DebugEvent) -> None:
        """Engine listener: schedule a broadcast of the event on the running loop."""
        targets = self._targets(event.execution_id)
        if not targets:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop, dropping debug event broadcast")
            return
        task = loop.create_task(self.broadcast_event(event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def _targets(self, execution_id: Optional[str]) -> Set[str]:
        targets = set(self._subscribers.get(ALL_EXECUTIONS, set()))
        if execution_id is not None:
            targets |= self._subscribers.get(execution_id, set())
        return targets

    async def broadcast_event(self, event: DebugEvent) -> int:
        """Send an event to its subscribers. Returns the number of successful sends."""
        message = {"event_type": "debug_event", **event.model_dump(mode="json")}
        sent = 0
        for connection_id in self._targets(event.execution_id):
            if await self.send_to_connection(connection_id, message):
                sent += 1
        return sent

    async def send_to_connection(self, connection_id: str, message: Dict[str, Any]) -> bool:
        connection = self._connections.get(connection_id)
        if connection is None or not connection.is_active:
            return False
        try:
            await connection.websocket.send_json(message)
            return True
        except Exception as e:
            logger.warning(f"Failed to send to WebSocket connection {connection_id}: {str(e)}")
            await self.disconnect(connection_id)
            return False

    def get_connection_info(self) -> Dict[str, Any]:
        return {
            "total_connections": len(self._connections),
            "subscriptions": {key: len(value) for key, value in self._subscribers.items()},
        }

    async def shutdown(self) -> None:
        for connection_id in list(self._connections):
            connection = self._connections.get(connection_id)
            try:
                await connection.websocket.close()
            except Exception as e:
                logger.debug(f"Error closing WebSocket {connection_id}: {str(e)}")
            await self.disconnect(connection_id)
        logger.info("WebSocketManager shutdown completed")
