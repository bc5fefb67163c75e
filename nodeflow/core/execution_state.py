"""Per-run execution state and the tracker that owns it."""

import asyncio
import uuid
from collections import OrderedDict
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..models.core import (
    ExecutionData,
    ExecutionError,
    ExecutionMode,
    ExecutionRecord,
    ExecutionStatus,
    NodeExecutionResult,
)
from .cancellation import CancellationToken
from .debugger import DebugContext
from .exceptions import ExecutionNotFoundError
from .logging import get_logger

logger = get_logger(__name__)


class ExecutionState:
    """Mutable record of one run.

    Node results are keyed by node id and kept in the order they were written.
    Once the status is terminal (success, error, canceled) the state no longer
    changes.
    """

    def __init__(
        self,
        execution_id: str,
        workflow_id: str,
        global_data: Optional[Dict[str, Any]] = None,
        debug_mode: bool = False,
        mode: ExecutionMode = ExecutionMode.MANUAL,
        debug_context: Optional[DebugContext] = None
    ):
        self.execution_id = execution_id
        self.workflow_id = workflow_id
        self.mode = mode
        self.status = ExecutionStatus.NEW
        self.started_at = datetime.utcnow()
        self.stopped_at: Optional[datetime] = None
        self.current_node_id: Optional[str] = None
        self.node_results: "OrderedDict[str, NodeExecutionResult]" = OrderedDict()
        self.global_data: Dict[str, Any] = dict(global_data or {})
        self.debug_mode = debug_mode
        self.logs: List[str] = []
        self.error: Optional[ExecutionError] = None
        self.cancel_token = CancellationToken(execution_id)
        self.debug_context = debug_context
        self.current_task: Optional[asyncio.Task] = None

    @property
    def is_finished(self) -> bool:
        return self.status.is_terminal

    @property
    def execution_time_ms(self) -> Optional[float]:
        if self.stopped_at is None:
            return None
        return (self.stopped_at - self.started_at).total_seconds() * 1000

    def set_status(self, status: ExecutionStatus) -> bool:
        """Move to a new status. Returns False when the run already finished."""
        if self.is_finished:
            logger.debug(
                f"Ignoring status change {self.status.value} -> {status.value} "
                f"for finished execution {self.execution_id}"
            )
            return False
        self.status = status
        if status.is_terminal:
            self.stopped_at = datetime.utcnow()
        return True

    def fail(self, message: str, code: str, node_id: Optional[str] = None) -> bool:
        if self.is_finished:
            return False
        self.error = ExecutionError(message=message, code=code, node_id=node_id)
        return self.set_status(ExecutionStatus.ERROR)

    def record_result(self, result: NodeExecutionResult) -> bool:
        """Store a node result, replacing nothing: each node is recorded once per run."""
        if self.is_finished:
            return False
        self.node_results[result.node_id] = result
        return True

    def get_result(self, node_id: str) -> Optional[NodeExecutionResult]:
        return self.node_results.get(node_id)

    def append_log(self, message: str) -> str:
        line = f"[{datetime.utcnow().isoformat()}Z] {message}"
        self.logs.append(line)
        return line

    def to_record(self) -> ExecutionRecord:
        """Snapshot the state as a caller-facing record (paused is reported as running)."""
        status = ExecutionStatus.RUNNING if self.status == ExecutionStatus.PAUSED else self.status
        return ExecutionRecord(
            id=self.execution_id,
            workflow_id=self.workflow_id,
            status=status,
            mode=self.mode,
            started_at=self.started_at,
            stopped_at=self.stopped_at,
            execution_time_ms=self.execution_time_ms,
            data=ExecutionData(
                node_results=[result.model_copy() for result in self.node_results.values()],
                global_data=dict(self.global_data),
                logs=list(self.logs),
            ),
            error=self.error.model_copy() if self.error else None,
        )


class ExecutionStateTracker:
    """Keeps the states of live and recently finished executions in memory."""

    def __init__(self, max_finished: int = 1000):
        self._states: "OrderedDict[str, ExecutionState]" = OrderedDict()
        self._max_finished = max_finished

    def create_state(
        self,
        workflow_id: str,
        global_data: Optional[Dict[str, Any]] = None,
        debug_mode: bool = False,
        mode: ExecutionMode = ExecutionMode.MANUAL,
        debug_context_factory=None
    ) -> ExecutionState:
        execution_id = str(uuid.uuid4())
        debug_context = debug_context_factory(execution_id) if debug_context_factory else None
        state = ExecutionState(
            execution_id,
            workflow_id,
            global_data=global_data,
            debug_mode=debug_mode,
            mode=mode,
            debug_context=debug_context,
        )
        self._states[execution_id] = state
        self._prune()
        logger.debug(f"Created execution state {execution_id} for workflow {workflow_id}")
        return state

    def get_state(self, execution_id: str) -> Optional[ExecutionState]:
        return self._states.get(execution_id)

    def require_state(self, execution_id: str) -> ExecutionState:
        state = self._states.get(execution_id)
        if state is None:
            raise ExecutionNotFoundError(f"Execution {execution_id} not found", execution_id=execution_id)
        return state

    def forget(self, execution_id: str) -> bool:
        return self._states.pop(execution_id, None) is not None

    def list_states(self) -> List[ExecutionState]:
        return list(self._states.values())

    def active_states(self) -> List[ExecutionState]:
        return [state for state in self._states.values() if not state.is_finished]

    def _prune(self) -> None:
        finished = [state.execution_id for state in self._states.values() if state.is_finished]
        excess = len(finished) - self._max_finished
        for execution_id in finished[:max(excess, 0)]:
            del self._states[execution_id]
