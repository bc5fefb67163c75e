"""Load/save collaborator for workflow definitions and execution records."""

from datetime import datetime
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ..core.exceptions import StorageError
from ..core.logging import get_logger
from ..models.core import ExecutionRecord, ExecutionStatus, WorkflowGraph
from .models import ExecutionModel, WorkflowModel

logger = get_logger(__name__)


class ExecutionStore:
    """Persists workflow graphs and finished execution records.

    The engine never reads from the store; callers load a graph before a run
    and the engine saves the record once the run has finished.
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def _session(self) -> Session:
        return self._session_factory()

    # Workflows

    def save_workflow(self, graph: WorkflowGraph) -> WorkflowGraph:
        """Insert or replace a workflow definition.

        Raises:
            StorageError: If the graph has no id or the write fails
        """
        if not graph.id:
            raise StorageError("Workflow must have an id to be stored", operation="save_workflow", table="workflows")

        definition = graph.model_dump(mode="json", by_alias=True)
        with self._session() as session:
            try:
                model = session.get(WorkflowModel, graph.id)
                if model is None:
                    session.add(WorkflowModel(id=graph.id, name=graph.name, definition=definition))
                else:
                    model.name = graph.name
                    model.definition = definition
                    model.updated_at = datetime.utcnow()
                session.commit()
            except SQLAlchemyError as e:
                session.rollback()
                raise StorageError(f"Failed to save workflow {graph.id}: {str(e)}",
                                   operation="save_workflow", table="workflows") from e

        logger.info(f"Saved workflow {graph.id}")
        return graph

    def load_workflow(self, workflow_id: str) -> Optional[WorkflowGraph]:
        with self._session() as session:
            try:
                model = session.get(WorkflowModel, workflow_id)
            except SQLAlchemyError as e:
                raise StorageError(f"Failed to load workflow {workflow_id}: {str(e)}",
                                   operation="load_workflow", table="workflows") from e
            if model is None:
                return None
            return WorkflowGraph.model_validate(model.definition)

    def list_workflows(self) -> List[WorkflowGraph]:
        with self._session() as session:
            try:
                models = session.scalars(select(WorkflowModel).order_by(WorkflowModel.created_at)).all()
            except SQLAlchemyError as e:
                raise StorageError(f"Failed to list workflows: {str(e)}",
                                   operation="list_workflows", table="workflows") from e
            return [WorkflowGraph.model_validate(model.definition) for model in models]

    def delete_workflow(self, workflow_id: str) -> bool:
        with self._session() as session:
            try:
                model = session.get(WorkflowModel, workflow_id)
                if model is None:
                    return False
                session.delete(model)
                session.commit()
            except SQLAlchemyError as e:
                session.rollback()
                raise StorageError(f"Failed to delete workflow {workflow_id}: {str(e)}",
                                   operation="delete_workflow", table="workflows") from e
        logger.info(f"Deleted workflow {workflow_id}")
        return True

    # Executions

    def save_execution(self, record: ExecutionRecord) -> None:
        """Insert or replace an execution record."""
        payload = record.model_dump(mode="json")
        with self._session() as session:
            try:
                model = session.get(ExecutionModel, record.id)
                if model is None:
                    model = ExecutionModel(id=record.id)
                    session.add(model)
                model.workflow_id = record.workflow_id
                model.status = record.status.value
                model.mode = record.mode.value
                model.started_at = record.started_at
                model.stopped_at = record.stopped_at
                model.execution_time_ms = record.execution_time_ms
                model.data = payload["data"]
                model.error = payload["error"]
                session.commit()
            except SQLAlchemyError as e:
                session.rollback()
                raise StorageError(f"Failed to save execution {record.id}: {str(e)}",
                                   operation="save_execution", table="executions") from e
        logger.debug(f"Saved execution {record.id} with status {record.status.value}")

    def get_execution(self, execution_id: str) -> Optional[ExecutionRecord]:
        with self._session() as session:
            try:
                model = session.get(ExecutionModel, execution_id)
            except SQLAlchemyError as e:
                raise StorageError(f"Failed to load execution {execution_id}: {str(e)}",
                                   operation="get_execution", table="executions") from e
            return self._to_record(model) if model else None

    def list_executions(
        self,
        workflow_id: Optional[str] = None,
        status: Optional[ExecutionStatus] = None,
        limit: int = 100
    ) -> List[ExecutionRecord]:
        """Most recent executions first, optionally filtered by workflow and status."""
        query = select(ExecutionModel).order_by(ExecutionModel.started_at.desc()).limit(limit)
        if workflow_id is not None:
            query = query.where(ExecutionModel.workflow_id == workflow_id)
        if status is not None:
            query = query.where(ExecutionModel.status == ExecutionStatus(status).value)

        with self._session() as session:
            try:
                models = session.scalars(query).all()
            except SQLAlchemyError as e:
                raise StorageError(f"Failed to list executions: {str(e)}",
                                   operation="list_executions", table="executions") from e
            return [self._to_record(model) for model in models]

    @staticmethod
    def _to_record(model: ExecutionModel) -> ExecutionRecord:
        return ExecutionRecord(
            id=model.id,
            workflow_id=model.workflow_id,
            status=model.status,
            mode=model.mode,
            started_at=model.started_at,
            stopped_at=model.stopped_at,
            execution_time_ms=model.execution_time_ms,
            data=model.data or {},
            error=model.error,
        )
