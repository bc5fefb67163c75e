"""Core Pydantic models for the workflow execution engine.

Workflow documents use the n8n wire format (camelCase keys such as
``continueOnFail`` and ``connections.main``); the models accept both that
spelling and the snake_case field names.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


MAIN_CHANNEL = "main"


class NodeType(str, Enum):
    """Node type identifiers with a built-in executor."""
    WEBHOOK = "n8n-nodes-base.webhook"
    MANUAL_TRIGGER = "n8n-nodes-base.manualTrigger"
    SCHEDULE_TRIGGER = "n8n-nodes-base.scheduleTrigger"
    CRON = "n8n-nodes-base.cron"
    EMAIL_TRIGGER = "n8n-nodes-base.emailTrigger"
    HTTP_REQUEST = "n8n-nodes-base.httpRequest"
    CODE = "n8n-nodes-base.code"
    IF = "n8n-nodes-base.if"
    SWITCH = "n8n-nodes-base.switch"
    OPENAI = "n8n-nodes-base.openAi"
    TELEGRAM = "n8n-nodes-base.telegram"
    RESPOND_TO_WEBHOOK = "n8n-nodes-base.respondToWebhook"
    NO_OP = "n8n-nodes-base.noOp"


TRIGGER_NODE_TYPES = frozenset({
    NodeType.WEBHOOK.value,
    NodeType.CRON.value,
    NodeType.SCHEDULE_TRIGGER.value,
    NodeType.MANUAL_TRIGGER.value,
    NodeType.EMAIL_TRIGGER.value,
})


class ExecutionStatus(str, Enum):
    """Lifecycle status of one execution."""
    NEW = "new"
    RUNNING = "running"
    PAUSED = "paused"
    SUCCESS = "success"
    ERROR = "error"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self in (ExecutionStatus.SUCCESS, ExecutionStatus.ERROR, ExecutionStatus.CANCELED)


class NodeResultStatus(str, Enum):
    """Outcome of a single node visit."""
    SUCCESS = "success"
    ERROR = "error"
    SKIPPED = "skipped"


class ExecutionMode(str, Enum):
    """How an execution was started."""
    MANUAL = "manual"
    TRIGGER = "trigger"
    WEBHOOK = "webhook"
    RETRY = "retry"


class DebugEventType(str, Enum):
    """Kinds of events pushed to debug subscribers."""
    NODE_START = "node-start"
    NODE_COMPLETE = "node-complete"
    NODE_ERROR = "node-error"
    BREAKPOINT = "breakpoint"
    LOG = "log"
    STATE_CHANGE = "state-change"


class ValidationResult(BaseModel):
    """Result of graph validation."""
    is_valid: bool = Field(..., description="Whether the graph is valid")
    errors: List[str] = Field(default_factory=list, description="List of validation errors")
    warnings: List[str] = Field(default_factory=list, description="List of validation warnings")


class NodeSpec(BaseModel):
    """Definition of a workflow node."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field(..., description="Unique identifier for the node")
    name: str = Field(..., description="Display name, used as the join key for connections")
    type: str = Field(..., description="Node type identifier, e.g. n8n-nodes-base.httpRequest")
    parameters: Dict[str, Any] = Field(default_factory=dict, description="Free-form node parameters")
    continue_on_fail: bool = Field(
        False, alias="continueOnFail",
        description="Keep the run going when this node fails (its own branch stops)"
    )
    type_version: Optional[float] = Field(None, alias="typeVersion", description="Node type version")
    position: Optional[List[float]] = Field(None, description="Editor canvas position")
    notes: Optional[str] = Field(None, description="Free-text notes")

    @field_validator('id', 'name', 'type')
    @classmethod
    def validate_not_empty(cls, value):
        """Ensure identifying fields are not blank."""
        if not value or not value.strip():
            raise ValueError("Node id, name and type cannot be empty")
        return value

    @field_validator('parameters', mode='before')
    @classmethod
    def default_parameters(cls, value):
        return value or {}


class ConnectionTarget(BaseModel):
    """One edge from a source node's output group to a target node."""
    model_config = ConfigDict(populate_by_name=True)

    node: str = Field(..., description="Name of the target node")
    type: str = Field(MAIN_CHANNEL, description="Channel of the connection")
    index: int = Field(0, description="Input index on the target node")


class WorkflowGraph(BaseModel):
    """A workflow: ordered nodes plus connections keyed by source node name.

    ``connections[source_name][channel]`` is a list of output groups; group ``i``
    holds the edges leaving the source's output ``i``.
    """
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: Optional[str] = Field(None, description="Workflow identifier")
    name: str = Field("", description="Workflow name")
    nodes: List[NodeSpec] = Field(default_factory=list, description="Nodes in definition order")
    connections: Dict[str, Dict[str, List[List[ConnectionTarget]]]] = Field(
        default_factory=dict, description="Connections keyed by source node name"
    )

    @field_validator('connections', mode='before')
    @classmethod
    def normalize_connections(cls, connections):
        """Replace null output groups (as exported by n8n) with empty lists."""
        if not connections:
            return {}
        normalized = {}
        for source_name, channels in connections.items():
            normalized[source_name] = {
                channel: [group or [] for group in (groups or [])]
                for channel, groups in (channels or {}).items()
            }
        return normalized

    @model_validator(mode='after')
    def validate_graph_structure(self):
        """Validate name/id uniqueness and connection references."""
        names = [node.name for node in self.nodes]
        if len(names) != len(set(names)):
            raise ValueError("All node names must be unique")

        ids = [node.id for node in self.nodes]
        if len(ids) != len(set(ids)):
            raise ValueError("All node IDs must be unique")

        known = set(names)
        for source_name, channels in self.connections.items():
            if source_name not in known:
                raise ValueError(f"Connection references non-existent source node: {source_name}")
            for groups in channels.values():
                for group in groups:
                    for target in group:
                        if target.node not in known:
                            raise ValueError(
                                f"Connection from '{source_name}' references non-existent target node: {target.node}"
                            )
        return self

    def get_node_by_name(self, name: str) -> Optional[NodeSpec]:
        for node in self.nodes:
            if node.name == name:
                return node
        return None

    def get_node_by_id(self, node_id: str) -> Optional[NodeSpec]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None


class ExecutionOptions(BaseModel):
    """Caller-supplied options for one execution."""
    model_config = ConfigDict(populate_by_name=True)

    mode: ExecutionMode = Field(ExecutionMode.MANUAL, description="How the execution was started")
    input_data: Dict[str, Any] = Field(default_factory=dict, alias="inputData", description="Seed for global data")
    debug_mode: bool = Field(False, alias="debugMode", description="Collect debug bundles and honour breakpoints")
    breakpoints: List[str] = Field(default_factory=list, description="Node ids to pause at")
    timeout_ms: Optional[int] = Field(None, alias="timeoutMs", description="Per-node timeout in milliseconds")
    mock_mode: bool = Field(False, alias="mockMode", description="Executors return synthetic output")

    @field_validator('timeout_ms')
    @classmethod
    def validate_timeout(cls, timeout_ms):
        """Ensure timeout is positive if specified."""
        if timeout_ms is not None and timeout_ms <= 0:
            raise ValueError("Timeout must be a positive number of milliseconds")
        return timeout_ms


class NodeDebugInfo(BaseModel):
    """Debug bundle captured for a node when the run is in debug mode."""
    input_data: Any = None
    output_data: Any = None
    logs: List[str] = Field(default_factory=list)
    memory_usage: Optional[int] = Field(None, description="Resident set size in bytes")


class NodeExecutionResult(BaseModel):
    """Result of one node visit."""
    node_id: str
    node_name: str
    status: NodeResultStatus
    data: Any = None
    error: Optional[str] = None
    execution_time_ms: float = 0.0
    output_index: int = 0
    debug_info: Optional[NodeDebugInfo] = None


class DebugEvent(BaseModel):
    """Event pushed to debug subscribers while a run progresses."""
    type: DebugEventType
    execution_id: Optional[str] = None
    node_id: Optional[str] = None
    node_name: Optional[str] = None
    data: Any = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    message: Optional[str] = None


class ExecutionError(BaseModel):
    """Error summary of a failed execution."""
    message: str
    code: str
    node_id: Optional[str] = None


class ExecutionData(BaseModel):
    """Per-node results, global data and log lines of an execution."""
    node_results: List[NodeExecutionResult] = Field(default_factory=list)
    global_data: Dict[str, Any] = Field(default_factory=dict)
    logs: List[str] = Field(default_factory=list)


class ExecutionRecord(BaseModel):
    """Normalized, caller-facing record of one execution."""
    id: str
    workflow_id: str
    status: ExecutionStatus
    mode: ExecutionMode = ExecutionMode.MANUAL
    started_at: datetime
    stopped_at: Optional[datetime] = None
    execution_time_ms: Optional[float] = None
    data: ExecutionData = Field(default_factory=ExecutionData)
    error: Optional[ExecutionError] = None

    def get_node_result(self, node_id: str) -> Optional[NodeExecutionResult]:
        for result in self.data.node_results:
            if result.node_id == node_id:
                return result
        return None
