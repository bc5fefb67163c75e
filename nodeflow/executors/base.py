"""Executor capability shared by all node types."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..core.cancellation import CancellationToken
from ..core.exceptions import NodeExecutionError
from ..models.core import NodeSpec
from .expressions import resolve_value


class ExecutorContext:
    """Per-invocation context handed to an executor.

    Carries the run's cancellation token and a log buffer scoped to this one
    node visit, so concurrent runs sharing an executor never mix their logs.
    """

    def __init__(self, execution_id: Optional[str] = None, cancel_token: Optional[CancellationToken] = None):
        self.execution_id = execution_id
        self.cancel_token = cancel_token or CancellationToken(execution_id)
        self._logs: List[str] = []

    def log(self, message: str) -> None:
        self._logs.append(f"[{datetime.utcnow().isoformat()}Z] {message}")

    def get_logs(self) -> List[str]:
        return list(self._logs)

    def clear_logs(self) -> None:
        self._logs = []

    def raise_if_cancelled(self) -> None:
        self.cancel_token.raise_if_cancelled()


class BaseNodeExecutor(ABC):
    """Base class for node executors.

    Subclasses implement :meth:`execute`. Branching node types also override
    :meth:`output_index` to tell the engine which output group to follow.
    Every executor must honour ``mock_mode`` by returning a deterministic payload
    without side effects.
    """

    description: str = ""

    @abstractmethod
    async def execute(
        self,
        node: NodeSpec,
        inputs: List[Any],
        global_data: Dict[str, Any],
        mock_mode: bool,
        context: ExecutorContext
    ) -> Any:
        """Run the node and return its output data."""

    def output_index(self, data: Any) -> int:
        """Output group the produced data leaves on."""
        return 0

    def get_parameter(
        self,
        node: NodeSpec,
        name: str,
        inputs: List[Any],
        global_data: Dict[str, Any],
        default: Any = None
    ) -> Any:
        value = node.parameters.get(name, default)
        return resolve_value(value, inputs, global_data)

    def require_parameter(
        self,
        node: NodeSpec,
        name: str,
        inputs: List[Any],
        global_data: Dict[str, Any],
        context: Optional[ExecutorContext] = None
    ) -> Any:
        value = self.get_parameter(node, name, inputs, global_data)
        if value is None or value == "" or value == [] or value == {}:
            raise NodeExecutionError(
                f"{node.type} node '{node.name}' requires the '{name}' parameter",
                node_id=node.id,
                execution_id=context.execution_id if context else None,
            )
        return value

    @staticmethod
    def first_input(inputs: List[Any], default: Any = None) -> Any:
        return inputs[0] if inputs else default
