"""Pytest configuration and fixtures."""

import asyncio
import os
import tempfile
from typing import Any, Dict, List, Optional, Tuple

import pytest
from sqlalchemy.orm import sessionmaker

from nodeflow.config import get_testing_config
from nodeflow.core.execution_engine import ExecutionEngine
from nodeflow.core.registry import create_default_registry
from nodeflow.executors.base import BaseNodeExecutor
from nodeflow.models.core import WorkflowGraph
from nodeflow.storage.database import create_database_engine, create_tables
from nodeflow.storage.repository import ExecutionStore

MANUAL = "n8n-nodes-base.manualTrigger"
NO_OP = "n8n-nodes-base.noOp"
FAIL = "test.fail"
SLOW = "test.slow"
ECHO = "test.echo"


class FailingExecutor(BaseNodeExecutor):
    """Always raises."""

    async def execute(self, node, inputs, global_data, mock_mode, context):
        context.log(f"About to fail in {node.name}")
        raise RuntimeError(node.parameters.get("message", "boom"))


class SlowExecutor(BaseNodeExecutor):
    """Sleeps for ``seconds`` and records whether it finished."""

    def __init__(self):
        self.started = 0
        self.finished = 0

    async def execute(self, node, inputs, global_data, mock_mode, context):
        self.started += 1
        await asyncio.sleep(node.parameters.get("seconds", 5))
        self.finished += 1
        return {"slept": True}


class EchoExecutor(BaseNodeExecutor):
    """Returns its inputs and the node name."""

    def __init__(self):
        self.calls: List[str] = []

    async def execute(self, node, inputs, global_data, mock_mode, context):
        self.calls.append(node.name)
        return {"node": node.name, "inputs": inputs}


@pytest.fixture
def config():
    return get_testing_config()


@pytest.fixture
def registry(config):
    registry = create_default_registry(config)
    registry.register(FAIL, FailingExecutor())
    registry.register(SLOW, SlowExecutor())
    registry.register(ECHO, EchoExecutor())
    return registry


@pytest.fixture
def engine(registry, config):
    return ExecutionEngine(registry=registry, config=config)


@pytest.fixture
def temp_db():
    """Create a temporary SQLite database file."""
    db_fd, db_path = tempfile.mkstemp(suffix=".db")
    os.close(db_fd)

    db_engine = create_database_engine(f"sqlite:///{db_path}")
    create_tables(db_engine)

    yield db_engine

    db_engine.dispose()
    try:
        os.unlink(db_path)
    except OSError:
        pass


@pytest.fixture
def store(temp_db):
    return ExecutionStore(sessionmaker(autocommit=False, autoflush=False, bind=temp_db))


@pytest.fixture
def build_graph():
    """Build a graph from ``(id, type[, parameters[, continue_on_fail]])`` tuples and edges.

    Node names equal node ids. Edges are ``(source, target)`` or
    ``(source, target, output_index)``.
    """

    def _build(
        nodes: List[Tuple],
        edges: Optional[List[Tuple]] = None,
        graph_id: str = "wf-test"
    ) -> WorkflowGraph:
        node_specs = []
        for entry in nodes:
            node_id, node_type = entry[0], entry[1]
            parameters = entry[2] if len(entry) > 2 else {}
            continue_on_fail = entry[3] if len(entry) > 3 else False
            node_specs.append({
                "id": node_id,
                "name": node_id,
                "type": node_type,
                "parameters": parameters,
                "continueOnFail": continue_on_fail,
            })

        connections: Dict[str, Dict[str, List[List[Dict[str, Any]]]]] = {}
        for edge in edges or []:
            source, target = edge[0], edge[1]
            output_index = edge[2] if len(edge) > 2 else 0
            groups = connections.setdefault(source, {"main": []})["main"]
            while len(groups) <= output_index:
                groups.append([])
            groups[output_index].append({"node": target, "type": "main", "index": 0})

        return WorkflowGraph.model_validate({
            "id": graph_id,
            "name": "Test workflow",
            "nodes": node_specs,
            "connections": connections,
        })

    return _build


async def wait_until(predicate, timeout: float = 2.0, interval: float = 0.01):
    """Poll ``predicate`` on the event loop until it holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("Condition not met before timeout")
        await asyncio.sleep(interval)


@pytest.fixture
def until():
    return wait_until
