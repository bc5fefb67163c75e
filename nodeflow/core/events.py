"""Push-only stream of debug events."""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, List, Optional

from ..models.core import DebugEvent
from .logging import get_logger

logger = get_logger(__name__)

DebugListener = Callable[[DebugEvent], None]


class EventSubscription:
    """Queue-backed subscription, optionally filtered to one execution."""

    def __init__(self, execution_id: Optional[str] = None, max_size: int = 0):
        self.execution_id = execution_id
        self.queue: "asyncio.Queue[DebugEvent]" = asyncio.Queue(maxsize=max_size)
        self.dropped = 0

    def __call__(self, event: DebugEvent) -> None:
        if self.execution_id is not None and event.execution_id != self.execution_id:
            return
        try:
            self.queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1

    async def get(self, timeout: Optional[float] = None) -> DebugEvent:
        if timeout is None:
            return await self.queue.get()
        return await asyncio.wait_for(self.queue.get(), timeout)

    def drain(self) -> List[DebugEvent]:
        """Return every event queued so far without waiting."""
        events = []
        while not self.queue.empty():
            events.append(self.queue.get_nowait())
        return events


class DebugEventEmitter:
    """Fan debug events out to listeners in emission order.

    Events are not retained: a listener only sees events emitted while it is
    subscribed. A failing listener is logged and skipped.
    """

    def __init__(self):
        self._listeners: List[DebugListener] = []

    def subscribe(self, listener: DebugListener) -> DebugListener:
        if listener not in self._listeners:
            self._listeners.append(listener)
        return listener

    def unsubscribe(self, listener: DebugListener) -> bool:
        try:
            self._listeners.remove(listener)
            return True
        except ValueError:
            return False

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def emit(self, event: DebugEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Debug event listener failed on {event.type.value} event: {str(e)}")

        if event.message:
            logger.debug(
                f"{event.message} (type={event.type.value}, node_id={event.node_id}, "
                f"node_name={event.node_name}, execution_id={event.execution_id})"
            )

    @asynccontextmanager
    async def stream(self, execution_id: Optional[str] = None, max_size: int = 0) -> AsyncIterator[EventSubscription]:
        """Subscribe a queue for the duration of a ``async with`` block."""
        subscription = EventSubscription(execution_id=execution_id, max_size=max_size)
        self.subscribe(subscription)
        try:
            yield subscription
        finally:
            self.unsubscribe(subscription)
