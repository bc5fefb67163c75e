"""Execution engine: drives one workflow run end to end."""

import asyncio
import copy
import logging
import time
from typing import Any, Dict, List, Optional

import psutil

from ..config import AppConfig, get_config
from ..executors.base import ExecutorContext
from ..models.core import (
    DebugEvent,
    DebugEventType,
    ExecutionOptions,
    ExecutionRecord,
    ExecutionStatus,
    NodeDebugInfo,
    NodeExecutionResult,
    NodeResultStatus,
    NodeSpec,
    WorkflowGraph,
)
from .debugger import DebugController
from .events import DebugEventEmitter, DebugListener
from .exceptions import (
    ExecutionCancelledError,
    GraphValidationError,
    NodeExecutionError,
    NodeTimeoutError,
    NoTriggerNodeError,
    StorageError,
    UnsupportedNodeTypeError,
    WorkflowEngineError,
)
from .execution_state import ExecutionState, ExecutionStateTracker
from .logging import get_logger, log_with_context
from .navigator import count_incoming_edges, find_cycle, find_trigger_nodes, gather_inputs, outgoing_edges
from .registry import NodeExecutorRegistry, create_default_registry

logger = get_logger(__name__)

# Resolution of one incoming edge once its source node is done
ACTIVATED = "activated"
INACTIVE = "inactive"
BLOCKED = "blocked"


class ExecutionEngine:
    """Runs workflow graphs against an executor registry.

    Each node runs at most once per run, after every predecessor has resolved.
    Nodes are taken from a LIFO ready stack seeded with the trigger nodes in
    graph order, so traversal is depth-first and strictly sequential. Runs are
    independent: each owns its ExecutionState, cancellation token and debug
    context. The registry and the engine-wide breakpoint set are shared.
    """

    def __init__(
        self,
        registry: Optional[NodeExecutorRegistry] = None,
        config: Optional[AppConfig] = None,
        execution_store=None
    ):
        self.config = config or get_config()
        self.registry = registry or create_default_registry(self.config)
        self.execution_store = execution_store
        self.debugger = DebugController()
        self.events = DebugEventEmitter()
        self.tracker = ExecutionStateTracker(max_finished=self.config.max_retained_executions)
        self._tasks: Dict[str, asyncio.Task] = {}
        self._process = psutil.Process() if self.config.sample_memory else None

        logger.info(f"ExecutionEngine initialized with {len(self.registry)} node types")

    # Runs

    async def execute_workflow(self, graph: WorkflowGraph, options: Optional[ExecutionOptions] = None) -> ExecutionRecord:
        """
        Run a workflow to a terminal status (or until canceled).

        Args:
            graph: Workflow graph to run
            options: Execution options; defaults apply when omitted

        Returns:
            The normalized execution record
        """
        options = options or ExecutionOptions()
        state = self._create_state(graph, options)
        return await self._run(state, graph, options)

    def start_workflow(self, graph: WorkflowGraph, options: Optional[ExecutionOptions] = None) -> str:
        """
        Start a run in the background on the running event loop.

        Returns:
            The execution id; use :meth:`wait_for_completion` or
            :meth:`get_execution_state` to follow it
        """
        options = options or ExecutionOptions()
        state = self._create_state(graph, options)
        task = asyncio.ensure_future(self._run(state, graph, options))
        self._tasks[state.execution_id] = task
        task.add_done_callback(lambda _: self._tasks.pop(state.execution_id, None))
        return state.execution_id

    async def wait_for_completion(self, execution_id: str, timeout: Optional[float] = None) -> ExecutionRecord:
        """Wait for a background run to finish and return its record."""
        task = self._tasks.get(execution_id)
        if task is not None:
            return await asyncio.wait_for(asyncio.shield(task), timeout)
        return self.tracker.require_state(execution_id).to_record()

    def _create_state(self, graph: WorkflowGraph, options: ExecutionOptions) -> ExecutionState:
        state = self.tracker.create_state(
            workflow_id=graph.id or "unnamed",
            global_data=options.input_data,
            debug_mode=options.debug_mode,
            mode=options.mode,
            debug_context_factory=lambda execution_id: self.debugger.create_context(execution_id, options.breakpoints),
        )
        return state

    async def _run(self, state: ExecutionState, graph: WorkflowGraph, options: ExecutionOptions) -> ExecutionRecord:
        timeout_ms = options.timeout_ms or self.config.default_node_timeout_ms
        self._log(logging.INFO, state, f"Starting execution of workflow '{graph.name or state.workflow_id}'")

        try:
            state.cancel_token.raise_if_cancelled()

            triggers = find_trigger_nodes(graph)
            if not triggers:
                raise NoTriggerNodeError(
                    "Workflow has no trigger node: every node has an incoming connection",
                    workflow_id=state.workflow_id,
                )

            unsupported = self.registry.unsupported_nodes(graph)
            if unsupported:
                node = unsupported[0]
                raise UnsupportedNodeTypeError(
                    f"No executor registered for node type '{node.type}' (node '{node.name}')",
                    node_type=node.type,
                    node_id=node.id,
                ).add_details(unsupported_nodes=[n.id for n in unsupported])

            cycle = find_cycle(graph)
            if cycle:
                raise GraphValidationError(
                    f"Workflow contains a cycle: {' -> '.join(cycle)}",
                    validation_errors=[f"Cycle detected: {' -> '.join(cycle)}"],
                    workflow_id=state.workflow_id,
                )

            self._set_status(state, ExecutionStatus.RUNNING)
            await self._run_scheduler(graph, state, triggers, timeout_ms, options.mock_mode)

            if self._set_status(state, ExecutionStatus.SUCCESS):
                self._log(logging.INFO, state, f"Execution completed with {len(state.node_results)} node result(s)")

        except ExecutionCancelledError:
            self._log(logging.INFO, state, "Execution canceled")
        except WorkflowEngineError as e:
            self._fail(state, e.message, e.error_code, getattr(e, "node_id", None))
        except asyncio.CancelledError:
            self.cancel_execution(state.execution_id)
            raise
        except Exception as e:
            logger.exception(f"Unexpected failure in execution {state.execution_id}")
            self._fail(state, str(e) or type(e).__name__, "InternalError", state.current_node_id)
        finally:
            self.debugger.release_context(state.execution_id)
            state.current_node_id = None
            self._persist(state)

        return state.to_record()

    async def _run_scheduler(
        self,
        graph: WorkflowGraph,
        state: ExecutionState,
        triggers: List[NodeSpec],
        timeout_ms: Optional[int],
        mock_mode: bool
    ) -> None:
        pending = count_incoming_edges(graph)
        resolutions: Dict[str, List[str]] = {node.name: [] for node in graph.nodes}
        ready = list(reversed(triggers))

        while ready:
            state.cancel_token.raise_if_cancelled()
            node = ready.pop()
            incoming = resolutions[node.name]

            if BLOCKED in incoming:
                outcome, output_index = BLOCKED, None
                self._log(logging.DEBUG, state, f"Node '{node.name}' not run: an upstream node failed")
            elif incoming and ACTIVATED not in incoming:
                outcome, output_index = INACTIVE, None
                self._record_skipped(state, node)
            else:
                output_index = await self.execute_node(node, graph, state, timeout_ms=timeout_ms, mock_mode=mock_mode)
                outcome = ACTIVATED if output_index is not None else BLOCKED

            newly_ready = []
            for edge_index, target_name in outgoing_edges(node, graph):
                if outcome == ACTIVATED:
                    resolution = ACTIVATED if edge_index == output_index else INACTIVE
                else:
                    resolution = outcome
                resolutions[target_name].append(resolution)
                pending[target_name] -= 1
                if pending[target_name] == 0:
                    newly_ready.append(graph.get_node_by_name(target_name))

            ready.extend(reversed(newly_ready))

    async def execute_node(
        self,
        node: NodeSpec,
        graph: WorkflowGraph,
        state: ExecutionState,
        timeout_ms: Optional[int] = None,
        mock_mode: bool = False
    ) -> Optional[int]:
        """
        Execute one node of a run.

        Args:
            node: Node to execute
            graph: Workflow graph the node belongs to
            state: State of the run
            timeout_ms: Per-node timeout, None for no limit
            mock_mode: Ask the executor for its synthetic output

        Returns:
            The output index the node emitted on, or None when the node failed
            and its ``continue_on_fail`` flag kept the run going

        Raises:
            NodeExecutionError: The node failed without ``continue_on_fail``
            UnsupportedNodeTypeError: No executor for the node type
            ExecutionCancelledError: The run was canceled
        """
        context = state.debug_context
        if state.debug_mode and context is not None and self.debugger.should_pause(node.id, context):
            self._set_status(state, ExecutionStatus.PAUSED)
            self._emit(state, DebugEventType.BREAKPOINT, node, message=f"Paused at breakpoint on node '{node.name}'")
            await self.debugger.pause(context, node.id, state.cancel_token)
            state.cancel_token.raise_if_cancelled()
            self._set_status(state, ExecutionStatus.RUNNING)

        state.cancel_token.raise_if_cancelled()
        state.current_node_id = node.id
        self._emit(state, DebugEventType.NODE_START, node, message=f"Executing node '{node.name}'")

        inputs = gather_inputs(node, graph, state.node_results, state.global_data)
        try:
            executor = self.registry.get(node.type)
        except UnsupportedNodeTypeError as e:
            e.node_id = node.id
            raise e.add_context(node_id=node.id)

        executor_context = ExecutorContext(state.execution_id, state.cancel_token)
        input_snapshot = copy.deepcopy(inputs) if state.debug_mode else None
        started = time.perf_counter()

        try:
            data = await self._invoke(executor, node, inputs, state, mock_mode, executor_context, timeout_ms)
            output_index = executor.output_index(data) if hasattr(executor, "output_index") else 0
        except ExecutionCancelledError:
            raise
        except asyncio.CancelledError:
            if state.cancel_token.is_cancelled:
                raise ExecutionCancelledError(
                    state.cancel_token.reason or "Execution canceled", execution_id=state.execution_id
                )
            raise
        except Exception as e:
            elapsed_ms = (time.perf_counter() - started) * 1000
            error = self._as_node_error(e, node, state, elapsed_ms)
            self._flush_logs(state, node, executor_context)

            state.record_result(NodeExecutionResult(
                node_id=node.id,
                node_name=node.name,
                status=NodeResultStatus.ERROR,
                error=error.message,
                execution_time_ms=elapsed_ms,
                debug_info=self._debug_info(state, input_snapshot, None, executor_context),
            ))
            self._emit(state, DebugEventType.NODE_ERROR, node, data={"error": error.message, "code": error.error_code},
                       message=f"Node '{node.name}' failed: {error.message}")

            if node.continue_on_fail:
                state.append_log(f"Node '{node.name}' failed, continuing: {error.message}")
                self._log(logging.WARNING, state, f"Node '{node.name}' failed with continue_on_fail set: {error.message}")
                return None
            state.append_log(f"Node '{node.name}' failed: {error.message}")
            raise error

        elapsed_ms = (time.perf_counter() - started) * 1000
        self._flush_logs(state, node, executor_context)

        state.record_result(NodeExecutionResult(
            node_id=node.id,
            node_name=node.name,
            status=NodeResultStatus.SUCCESS,
            data=data,
            execution_time_ms=elapsed_ms,
            output_index=output_index,
            debug_info=self._debug_info(state, input_snapshot, data, executor_context),
        ))
        self._emit(state, DebugEventType.NODE_COMPLETE, node, data=data,
                   message=f"Node '{node.name}' completed in {elapsed_ms:.1f}ms")
        return output_index

    async def _invoke(self, executor, node, inputs, state, mock_mode, executor_context, timeout_ms):
        task = asyncio.ensure_future(
            executor.execute(node, inputs, state.global_data, mock_mode, executor_context)
        )
        state.current_task = task
        try:
            if timeout_ms:
                return await asyncio.wait_for(task, timeout_ms / 1000)
            return await task
        except asyncio.TimeoutError:
            if not timeout_ms or not task.cancelled():
                raise
            raise NodeTimeoutError(
                f"Node '{node.name}' timed out after {timeout_ms}ms",
                timeout_ms=timeout_ms,
                node_id=node.id,
                execution_id=state.execution_id,
            )
        finally:
            state.current_task = None

    @staticmethod
    def _as_node_error(error: Exception, node: NodeSpec, state: ExecutionState, elapsed_ms: float) -> NodeExecutionError:
        if isinstance(error, NodeExecutionError):
            if error.node_id is None:
                error.node_id = node.id
                error.add_context(node_id=node.id)
            return error
        return NodeExecutionError(
            str(error) or type(error).__name__,
            node_id=node.id,
            execution_id=state.execution_id,
            execution_time_ms=elapsed_ms,
        ).add_details(exception_type=type(error).__name__)

    def _record_skipped(self, state: ExecutionState, node: NodeSpec) -> None:
        state.record_result(NodeExecutionResult(
            node_id=node.id,
            node_name=node.name,
            status=NodeResultStatus.SKIPPED,
            output_index=-1,
        ))
        self._emit(state, DebugEventType.LOG, node, message=f"Node '{node.name}' skipped: no active input branch")

    def _debug_info(self, state, input_snapshot, output, executor_context) -> Optional[NodeDebugInfo]:
        if not state.debug_mode:
            return None
        return NodeDebugInfo(
            input_data=input_snapshot,
            output_data=output,
            logs=executor_context.get_logs(),
            memory_usage=self._memory_sample(),
        )

    def _memory_sample(self) -> Optional[int]:
        if self._process is None:
            return None
        try:
            return self._process.memory_info().rss
        except psutil.Error as e:
            logger.debug(f"Memory sample failed: {str(e)}")
            return None

    def _flush_logs(self, state: ExecutionState, node: NodeSpec, executor_context: ExecutorContext) -> None:
        for line in executor_context.get_logs():
            state.logs.append(line)
            self._emit(state, DebugEventType.LOG, node, message=line)

    # Status and events

    def _set_status(self, state: ExecutionState, status: ExecutionStatus) -> bool:
        previous = state.status
        if not state.set_status(status):
            return False
        self.events.emit(DebugEvent(
            type=DebugEventType.STATE_CHANGE,
            execution_id=state.execution_id,
            node_id=state.current_node_id,
            data={"status": status.value, "previous": previous.value},
            message=f"Execution {state.execution_id}: {previous.value} -> {status.value}",
        ))
        return True

    def _fail(self, state: ExecutionState, message: str, code: str, node_id: Optional[str]) -> None:
        previous = state.status
        if not state.fail(message, code, node_id):
            return
        state.append_log(f"Execution failed: {message}")
        self._log(logging.ERROR, state, f"Execution failed [{code}]: {message}")
        self.events.emit(DebugEvent(
            type=DebugEventType.STATE_CHANGE,
            execution_id=state.execution_id,
            node_id=node_id,
            data={"status": ExecutionStatus.ERROR.value, "previous": previous.value, "error": message, "code": code},
            message=f"Execution {state.execution_id}: {previous.value} -> error",
        ))

    def _emit(self, state: ExecutionState, event_type: DebugEventType, node: NodeSpec, data: Any = None,
              message: Optional[str] = None) -> None:
        self.events.emit(DebugEvent(
            type=event_type,
            execution_id=state.execution_id,
            node_id=node.id,
            node_name=node.name,
            data=data,
            message=message,
        ))

    @staticmethod
    def _log(level: int, state: ExecutionState, message: str) -> None:
        log_with_context(
            logger, level, message,
            execution_id=state.execution_id,
            workflow_id=state.workflow_id,
        )

    def _persist(self, state: ExecutionState) -> None:
        if self.execution_store is None or not state.is_finished:
            return
        try:
            self.execution_store.save_execution(state.to_record())
        except StorageError as e:
            logger.error(f"Failed to persist execution {state.execution_id}: {e.message}")

    def subscribe(self, listener: DebugListener) -> DebugListener:
        return self.events.subscribe(listener)

    def unsubscribe(self, listener: DebugListener) -> bool:
        return self.events.unsubscribe(listener)

    # Control surface

    def cancel_execution(self, execution_id: str) -> bool:
        """
        Cancel a live run.

        Sets the run's cancellation token, moves it to ``canceled``, releases a
        breakpoint wait and cancels the node currently executing.

        Returns:
            False for unknown or already finished executions
        """
        state = self.tracker.get_state(execution_id)
        if state is None or state.is_finished:
            return False

        state.cancel_token.cancel(f"Execution {execution_id} canceled")
        self._set_status(state, ExecutionStatus.CANCELED)
        state.append_log("Execution canceled")

        if state.debug_context is not None:
            state.debug_context.resume()
        if state.current_task is not None and not state.current_task.done():
            state.current_task.cancel()

        logger.info(f"Canceled execution {execution_id}")
        return True

    def get_execution_state(self, execution_id: str) -> Optional[ExecutionState]:
        return self.tracker.get_state(execution_id)

    def get_execution(self, execution_id: str) -> ExecutionRecord:
        """Record of an execution held in memory.

        Raises:
            ExecutionNotFoundError: Unknown or forgotten execution
        """
        return self.tracker.require_state(execution_id).to_record()

    def get_node_result(self, execution_id: str, node_id: str) -> Optional[NodeExecutionResult]:
        state = self.tracker.get_state(execution_id)
        if state is None:
            return None
        return state.get_result(node_id)

    def list_executions(self) -> List[ExecutionRecord]:
        return [state.to_record() for state in self.tracker.list_states()]

    def forget_execution(self, execution_id: str) -> bool:
        """Drop a finished execution from memory; live runs are kept."""
        state = self.tracker.get_state(execution_id)
        if state is None:
            return False
        if not state.is_finished:
            logger.warning(f"Refusing to forget live execution {execution_id}")
            return False
        return self.tracker.forget(execution_id)

    def register_node_executor(self, node_type: str, executor) -> None:
        self.registry.register(node_type, executor)

    def set_breakpoint(self, node_id: str) -> None:
        self.debugger.set_breakpoint(node_id)

    def remove_breakpoint(self, node_id: str) -> bool:
        return self.debugger.remove_breakpoint(node_id)

    def clear_breakpoints(self) -> None:
        self.debugger.clear_breakpoints()

    def get_breakpoints(self) -> List[str]:
        return self.debugger.get_breakpoints()

    def continue_from_breakpoint(self, execution_id: Optional[str] = None) -> bool:
        return self.debugger.continue_from_breakpoint(execution_id)

    def step_over(self, execution_id: Optional[str] = None) -> bool:
        return self.debugger.step_over(execution_id)

    def is_paused_at_breakpoint(self, execution_id: Optional[str] = None) -> bool:
        return self.debugger.is_paused_at_breakpoint(execution_id)

    def paused_executions(self) -> Dict[str, str]:
        return self.debugger.paused_executions()

    async def shutdown(self) -> None:
        """Cancel every live run and wait for background runs to finish."""
        for state in self.tracker.active_states():
            self.cancel_execution(state.execution_id)
        tasks = list(self._tasks.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("ExecutionEngine shutdown completed")
