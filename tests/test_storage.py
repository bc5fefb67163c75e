"""Tests for the SQLAlchemy-backed execution store."""

from datetime import datetime, timedelta

import pytest
from sqlalchemy import inspect

from nodeflow.core.exceptions import StorageError
from nodeflow.models.core import (
    ExecutionData,
    ExecutionError,
    ExecutionRecord,
    ExecutionStatus,
    NodeExecutionResult,
    NodeResultStatus,
)
from nodeflow.storage.database import create_tables, drop_tables, get_database_engine, reset_database_engine

from conftest import MANUAL, NO_OP


def _record(execution_id, workflow_id="wf-1", status=ExecutionStatus.SUCCESS, started_at=None):
    started_at = started_at or datetime(2024, 1, 1, 12, 0, 0)
    return ExecutionRecord(
        id=execution_id,
        workflow_id=workflow_id,
        status=status,
        started_at=started_at,
        stopped_at=started_at + timedelta(milliseconds=25),
        execution_time_ms=25.0,
        data=ExecutionData(
            node_results=[NodeExecutionResult(
                node_id="start", node_name="Start", status=NodeResultStatus.SUCCESS, data={"x": 1}
            )],
            global_data={"x": 1},
            logs=["[2024-01-01T12:00:00Z] started"],
        ),
        error=ExecutionError(message="boom", code="NodeExecutionFailure", node_id="a")
        if status == ExecutionStatus.ERROR else None,
    )


class TestWorkflowStorage:

    def test_save_and_load_workflow(self, store, build_graph):
        graph = build_graph([("start", MANUAL), ("a", NO_OP, {"k": "v"}, True)], [("start", "a")], graph_id="wf-1")

        store.save_workflow(graph)
        loaded = store.load_workflow("wf-1")

        assert loaded == graph
        assert loaded.get_node_by_id("a").continue_on_fail is True

    def test_save_replaces_existing_definition(self, store, build_graph):
        store.save_workflow(build_graph([("start", MANUAL)], graph_id="wf-1"))
        store.save_workflow(build_graph([("start", MANUAL), ("a", NO_OP)], [("start", "a")], graph_id="wf-1"))

        assert [node.id for node in store.load_workflow("wf-1").nodes] == ["start", "a"]
        assert len(store.list_workflows()) == 1

    def test_workflow_without_id_is_rejected(self, store, build_graph):
        with pytest.raises(StorageError):
            store.save_workflow(build_graph([("start", MANUAL)], graph_id=None))

    def test_delete_workflow(self, store, build_graph):
        store.save_workflow(build_graph([("start", MANUAL)], graph_id="wf-1"))

        assert store.delete_workflow("wf-1") is True
        assert store.delete_workflow("wf-1") is False
        assert store.load_workflow("wf-1") is None


class TestExecutionStorage:

    def test_save_and_get_execution(self, store):
        store.save_execution(_record("run-1", status=ExecutionStatus.ERROR))
        loaded = store.get_execution("run-1")

        assert loaded.status == ExecutionStatus.ERROR
        assert loaded.error.code == "NodeExecutionFailure"
        assert loaded.get_node_result("start").data == {"x": 1}
        assert loaded.data.logs == ["[2024-01-01T12:00:00Z] started"]

    def test_save_execution_is_an_upsert(self, store):
        store.save_execution(_record("run-1", status=ExecutionStatus.RUNNING))
        store.save_execution(_record("run-1", status=ExecutionStatus.SUCCESS))

        assert store.get_execution("run-1").status == ExecutionStatus.SUCCESS
        assert len(store.list_executions()) == 1

    def test_missing_execution(self, store):
        assert store.get_execution("missing") is None

    def test_list_filters_and_orders_newest_first(self, store):
        base = datetime(2024, 1, 1)
        store.save_execution(_record("old", started_at=base))
        store.save_execution(_record("new", started_at=base + timedelta(hours=1)))
        store.save_execution(_record("failed", status=ExecutionStatus.ERROR, started_at=base + timedelta(hours=2)))
        store.save_execution(_record("other", workflow_id="wf-2", started_at=base + timedelta(hours=3)))

        assert [r.id for r in store.list_executions(workflow_id="wf-1")] == ["failed", "new", "old"]
        assert [r.id for r in store.list_executions(status=ExecutionStatus.ERROR)] == ["failed"]
        assert [r.id for r in store.list_executions(limit=2)] == ["other", "failed"]


class TestGlobalEngine:

    def test_engine_from_environment(self, monkeypatch):
        monkeypatch.setenv("NODEFLOW_DATABASE_URL", "sqlite:///:memory:")
        reset_database_engine()
        try:
            engine = get_database_engine()
            assert get_database_engine() is engine

            create_tables()
            assert set(inspect(engine).get_table_names()) == {"workflows", "executions"}

            drop_tables()
            assert inspect(engine).get_table_names() == []
        finally:
            reset_database_engine()
