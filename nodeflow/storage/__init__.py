"""Persistence of workflow definitions and execution records."""

from .database import Base, create_database_engine, get_database_engine, create_tables, drop_tables
from .models import WorkflowModel, ExecutionModel
from .repository import ExecutionStore

__all__ = [
    "Base",
    "create_database_engine",
    "get_database_engine",
    "create_tables",
    "drop_tables",
    "WorkflowModel",
    "ExecutionModel",
    "ExecutionStore",
]
