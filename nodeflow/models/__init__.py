"""Data models for the workflow execution engine."""

from .core import (
    MAIN_CHANNEL,
    TRIGGER_NODE_TYPES,
    NodeType,
    ExecutionStatus,
    NodeResultStatus,
    ExecutionMode,
    DebugEventType,
    ValidationResult,
    NodeSpec,
    ConnectionTarget,
    WorkflowGraph,
    ExecutionOptions,
    NodeDebugInfo,
    NodeExecutionResult,
    DebugEvent,
    ExecutionError,
    ExecutionData,
    ExecutionRecord,
)

__all__ = [
    "MAIN_CHANNEL",
    "TRIGGER_NODE_TYPES",
    "NodeType",
    "ExecutionStatus",
    "NodeResultStatus",
    "ExecutionMode",
    "DebugEventType",
    "ValidationResult",
    "NodeSpec",
    "ConnectionTarget",
    "WorkflowGraph",
    "ExecutionOptions",
    "NodeDebugInfo",
    "NodeExecutionResult",
    "DebugEvent",
    "ExecutionError",
    "ExecutionData",
    "ExecutionRecord",
]
