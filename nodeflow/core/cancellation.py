"""Cooperative cancellation for workflow executions."""

import asyncio
from typing import Optional

from .exceptions import ExecutionCancelledError


class CancellationToken:
    """Cancellation signal owned by one execution.

    The engine checks the token between nodes; executors may check it inside
    long-running work or await :meth:`wait` alongside their own I/O.
    """

    def __init__(self, execution_id: Optional[str] = None):
        self.execution_id = execution_id
        self.reason: Optional[str] = None
        self._event = asyncio.Event()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "Execution canceled") -> bool:
        """Set the token. Returns False if it was already set."""
        if self._event.is_set():
            return False
        self.reason = reason
        self._event.set()
        return True

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise ExecutionCancelledError(
                self.reason or "Execution canceled",
                execution_id=self.execution_id
            )

    async def wait(self) -> None:
        await self._event.wait()
