"""Breakpoint and pause/resume control for debug-mode executions."""

import asyncio
from typing import Dict, Iterable, List, Optional, Set

from .cancellation import CancellationToken
from .logging import get_logger

logger = get_logger(__name__)


class DebugContext:
    """Pause state of a single execution."""

    def __init__(self, execution_id: str, breakpoints: Optional[Iterable[str]] = None):
        self.execution_id = execution_id
        self.breakpoints: Set[str] = set(breakpoints or [])
        self.paused_node_id: Optional[str] = None
        self._resume = asyncio.Event()

    @property
    def is_paused(self) -> bool:
        return self.paused_node_id is not None

    def mark_paused(self, node_id: str) -> None:
        self._resume.clear()
        self.paused_node_id = node_id

    def mark_resumed(self) -> None:
        self.paused_node_id = None

    async def wait_resumed(self) -> None:
        await self._resume.wait()

    def resume(self) -> bool:
        if not self.is_paused:
            return False
        self._resume.set()
        return True


class DebugController:
    """Owns the engine-wide breakpoint set and one DebugContext per live execution.

    Engine-wide breakpoints apply to every debug-mode run; breakpoints passed in
    a run's options only apply to that run. Resuming is scoped by execution id,
    so runs can be debugged independently.
    """

    def __init__(self):
        self._breakpoints: Set[str] = set()
        self._contexts: Dict[str, DebugContext] = {}

    # Breakpoints

    def set_breakpoint(self, node_id: str) -> None:
        self._breakpoints.add(node_id)
        logger.debug(f"Breakpoint set on node {node_id}")

    def remove_breakpoint(self, node_id: str) -> bool:
        if node_id in self._breakpoints:
            self._breakpoints.discard(node_id)
            logger.debug(f"Breakpoint removed from node {node_id}")
            return True
        return False

    def clear_breakpoints(self) -> None:
        self._breakpoints.clear()
        for context in self._contexts.values():
            context.breakpoints.clear()

    def get_breakpoints(self) -> List[str]:
        return sorted(self._breakpoints)

    # Contexts

    def create_context(self, execution_id: str, breakpoints: Optional[Iterable[str]] = None) -> DebugContext:
        context = DebugContext(execution_id, breakpoints)
        self._contexts[execution_id] = context
        return context

    def get_context(self, execution_id: str) -> Optional[DebugContext]:
        return self._contexts.get(execution_id)

    def release_context(self, execution_id: str) -> None:
        self._contexts.pop(execution_id, None)

    def should_pause(self, node_id: str, context: DebugContext) -> bool:
        return node_id in self._breakpoints or node_id in context.breakpoints

    async def pause(self, context: DebugContext, node_id: str, cancel_token: Optional[CancellationToken] = None) -> None:
        """
        Suspend until the execution is resumed or canceled.

        There is no timeout: a run paused at a breakpoint stays paused until
        :meth:`continue_from_breakpoint` or cancellation.

        Args:
            context: Debug context of the paused execution
            node_id: Node the execution is paused in front of
            cancel_token: Cancellation token that also ends the wait
        """
        context.mark_paused(node_id)
        logger.info(f"Execution {context.execution_id} paused at breakpoint on node {node_id}")

        waiters = [asyncio.ensure_future(context.wait_resumed())]
        if cancel_token is not None:
            waiters.append(asyncio.ensure_future(cancel_token.wait()))

        try:
            await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in waiters:
                if not waiter.done():
                    waiter.cancel()
            context.mark_resumed()

    def continue_from_breakpoint(self, execution_id: Optional[str] = None) -> bool:
        """
        Resume a paused execution.

        Args:
            execution_id: Execution to resume; every paused execution when omitted

        Returns:
            True if at least one execution was resumed
        """
        if execution_id is not None:
            context = self._contexts.get(execution_id)
            return context.resume() if context else False

        resumed = False
        for context in list(self._contexts.values()):
            resumed = context.resume() or resumed
        return resumed

    def step_over(self, execution_id: Optional[str] = None) -> bool:
        """Run the paused node and carry on; the same as a single continue."""
        return self.continue_from_breakpoint(execution_id)

    def is_paused_at_breakpoint(self, execution_id: Optional[str] = None) -> bool:
        if execution_id is not None:
            context = self._contexts.get(execution_id)
            return bool(context and context.is_paused)
        return any(context.is_paused for context in self._contexts.values())

    def paused_executions(self) -> Dict[str, str]:
        """Map of paused execution id to the node id it is waiting in front of."""
        return {
            execution_id: context.paused_node_id
            for execution_id, context in self._contexts.items()
            if context.is_paused
        }
