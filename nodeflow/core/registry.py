"""Node executor registry: maps node type identifiers to executors."""

import inspect
from typing import Any, Dict, List, Union

from ..models.core import NodeSpec, NodeType, WorkflowGraph
from .exceptions import ExecutorRegistryError, UnsupportedNodeTypeError
from .logging import get_logger

logger = get_logger(__name__)


class NodeExecutorRegistry:
    """Registry of executors keyed by node type.

    Built once at startup and only read while runs are in flight.
    """

    def __init__(self):
        self._executors: Dict[str, Any] = {}

    @staticmethod
    def _normalize(node_type: Union[str, NodeType]) -> str:
        if isinstance(node_type, NodeType):
            return node_type.value
        if not node_type or not str(node_type).strip():
            raise ExecutorRegistryError("Node type cannot be empty")
        return str(node_type).strip()

    def register(self, node_type: Union[str, NodeType], executor, replace: bool = True) -> None:
        """Register an executor for a node type.

        Args:
            node_type: Node type identifier
            executor: Object with an async ``execute(node, inputs, global_data, mock_mode, context)``
            replace: Allow replacing an existing registration

        Raises:
            ExecutorRegistryError: If the executor is invalid or the type is taken and ``replace`` is False
        """
        node_type = self._normalize(node_type)

        execute = getattr(executor, "execute", None)
        if execute is None or not inspect.iscoroutinefunction(execute):
            raise ExecutorRegistryError(
                f"Executor for '{node_type}' must define an async execute() method",
                node_type=node_type,
                operation="register",
            )

        if node_type in self._executors and not replace:
            raise ExecutorRegistryError(
                f"Node type '{node_type}' is already registered",
                node_type=node_type,
                operation="register",
            )

        self._executors[node_type] = executor
        logger.debug(f"Registered executor {type(executor).__name__} for node type '{node_type}'")

    def get(self, node_type: Union[str, NodeType]):
        """Return the executor for a node type.

        Raises:
            UnsupportedNodeTypeError: If no executor is registered
        """
        key = node_type.value if isinstance(node_type, NodeType) else node_type
        executor = self._executors.get(key)
        if executor is None:
            raise UnsupportedNodeTypeError(
                f"No executor registered for node type '{key}'",
                node_type=key,
            )
        return executor

    def exists(self, node_type: Union[str, NodeType]) -> bool:
        key = node_type.value if isinstance(node_type, NodeType) else node_type
        return key in self._executors

    def unregister(self, node_type: Union[str, NodeType]) -> bool:
        key = node_type.value if isinstance(node_type, NodeType) else node_type
        if self._executors.pop(key, None) is None:
            return False
        logger.info(f"Unregistered executor for node type '{key}'")
        return True

    def list_types(self) -> Dict[str, str]:
        """Registered node types with their executor descriptions."""
        return {
            node_type: getattr(executor, "description", "") or type(executor).__name__
            for node_type, executor in sorted(self._executors.items())
        }

    def unsupported_nodes(self, graph: WorkflowGraph) -> List[NodeSpec]:
        """Nodes of a graph whose type has no registered executor, in graph order."""
        return [node for node in graph.nodes if node.type not in self._executors]

    def __len__(self) -> int:
        return len(self._executors)

    def __contains__(self, node_type) -> bool:
        return self.exists(node_type)


def create_default_registry(config=None) -> NodeExecutorRegistry:
    """
    Build a registry with every built-in executor.

    Args:
        config: Optional AppConfig supplying timeouts and API credentials

    Returns:
        Populated NodeExecutorRegistry
    """
    from ..executors import (
        CodeExecutor,
        HttpRequestExecutor,
        IfExecutor,
        ManualTriggerExecutor,
        NoOpExecutor,
        OpenAIExecutor,
        RespondToWebhookExecutor,
        ScheduleTriggerExecutor,
        SwitchExecutor,
        TelegramExecutor,
        WebhookTriggerExecutor,
    )

    if config is None:
        from ..config import get_config
        config = get_config()

    schedule = ScheduleTriggerExecutor()
    registry = NodeExecutorRegistry()
    registry.register(NodeType.WEBHOOK, WebhookTriggerExecutor())
    registry.register(NodeType.MANUAL_TRIGGER, ManualTriggerExecutor())
    registry.register(NodeType.SCHEDULE_TRIGGER, schedule)
    registry.register(NodeType.CRON, schedule)
    registry.register(NodeType.EMAIL_TRIGGER, ManualTriggerExecutor())
    registry.register(NodeType.HTTP_REQUEST, HttpRequestExecutor(timeout=config.http_request_timeout))
    registry.register(NodeType.CODE, CodeExecutor())
    registry.register(NodeType.IF, IfExecutor())
    registry.register(NodeType.SWITCH, SwitchExecutor())
    registry.register(NodeType.OPENAI, OpenAIExecutor(
        api_key=config.openai_api_key,
        base_url=config.openai_base_url,
        model=config.openai_model,
        timeout=config.http_request_timeout,
    ))
    registry.register(NodeType.TELEGRAM, TelegramExecutor(
        bot_token=config.telegram_bot_token,
        api_url=config.telegram_api_url,
        timeout=config.http_request_timeout,
    ))
    registry.register(NodeType.RESPOND_TO_WEBHOOK, RespondToWebhookExecutor())
    registry.register(NodeType.NO_OP, NoOpExecutor())

    logger.info(f"Executor registry initialized with {len(registry)} node types")
    return registry
