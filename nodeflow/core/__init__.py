"""Core workflow engine components."""

from .exceptions import (
    WorkflowEngineError,
    GraphValidationError,
    NoTriggerNodeError,
    UnsupportedNodeTypeError,
    NodeExecutionError,
    NodeTimeoutError,
    ExecutionCancelledError,
    ExecutionNotFoundError,
    ExecutorRegistryError,
    StorageError,
    ConfigurationError,
)
from .logging import setup_logging, get_logger

__all__ = [
    "WorkflowEngineError",
    "GraphValidationError",
    "NoTriggerNodeError",
    "UnsupportedNodeTypeError",
    "NodeExecutionError",
    "NodeTimeoutError",
    "ExecutionCancelledError",
    "ExecutionNotFoundError",
    "ExecutorRegistryError",
    "StorageError",
    "ConfigurationError",
    "setup_logging",
    "get_logger",
]
