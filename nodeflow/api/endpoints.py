"""FastAPI REST and WebSocket endpoints for the execution engine."""

import json
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, WebSocket, WebSocketDisconnect, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, model_validator

from ..core.exceptions import (
    ExecutionNotFoundError,
    GraphValidationError,
    StorageError,
    UnsupportedNodeTypeError,
    WorkflowEngineError,
    create_error_response,
)
from ..core.execution_engine import ExecutionEngine
from ..core.logging import get_logger
from ..core.navigator import validate_graph
from ..models.core import (
    ExecutionOptions,
    ExecutionRecord,
    ExecutionStatus,
    NodeExecutionResult,
    ValidationResult,
    WorkflowGraph,
)
from ..storage.repository import ExecutionStore
from .websocket_manager import ALL_EXECUTIONS, WebSocketManager

logger = get_logger(__name__)

router = APIRouter(prefix="/api/v1", tags=["workflow"])
ws_router = APIRouter(tags=["debug"])

# Global instances (initialized in main.py)
_execution_engine: Optional[ExecutionEngine] = None
_execution_store: Optional[ExecutionStore] = None
_websocket_manager: Optional[WebSocketManager] = None


def init_dependencies(
    execution_engine: ExecutionEngine,
    execution_store: Optional[ExecutionStore] = None,
    websocket_manager: Optional[WebSocketManager] = None
):
    """Initialize the global dependencies."""
    global _execution_engine, _execution_store, _websocket_manager
    _execution_engine = execution_engine
    _execution_store = execution_store
    _websocket_manager = websocket_manager


def get_execution_engine() -> ExecutionEngine:
    if _execution_engine is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Execution engine not initialized"
        )
    return _execution_engine


def get_execution_store() -> ExecutionStore:
    if _execution_store is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Execution store not configured"
        )
    return _execution_store


def _http_error(error: WorkflowEngineError) -> HTTPException:
    """Map an engine error to an HTTP error with the standard payload."""
    if isinstance(error, ExecutionNotFoundError):
        status_code = status.HTTP_404_NOT_FOUND
    elif isinstance(error, (GraphValidationError, UnsupportedNodeTypeError)):
        status_code = status.HTTP_400_BAD_REQUEST
    else:
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    return HTTPException(status_code=status_code, detail=create_error_response(error))


def _not_found(kind: str, identifier: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail={
            "error": f"{kind}NotFound",
            "message": f"{kind} '{identifier}' not found",
            "details": {"id": identifier},
        }
    )


# Request/Response models

class SaveWorkflowResponse(BaseModel):
    workflow_id: str
    message: str
    validation: ValidationResult


class ExecuteRequest(BaseModel):
    """Run an inline graph or a stored workflow."""
    graph: Optional[WorkflowGraph] = Field(None, description="Inline workflow graph")
    workflow_id: Optional[str] = Field(None, description="Id of a stored workflow")
    options: ExecutionOptions = Field(default_factory=ExecutionOptions)
    wait: bool = Field(True, description="Return the finished record instead of starting in the background")

    @model_validator(mode='after')
    def require_graph_source(self):
        if (self.graph is None) == (self.workflow_id is None):
            raise ValueError("Provide exactly one of 'graph' or 'workflow_id'")
        return self


class ExecutionStarted(BaseModel):
    execution_id: str
    status: ExecutionStatus
    message: str


class DebugControlRequest(BaseModel):
    execution_id: Optional[str] = Field(None, description="Execution to resume; all paused runs when omitted")


# Workflows

@router.post(
    "/workflows",
    response_model=SaveWorkflowResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Save a workflow definition"
)
async def save_workflow(
    graph: WorkflowGraph,
    engine: ExecutionEngine = Depends(get_execution_engine),
    store: ExecutionStore = Depends(get_execution_store)
) -> SaveWorkflowResponse:
    if not graph.id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "ValidationError", "message": "Workflow must have an id to be saved"}
        )

    try:
        validation = validate_graph(graph, engine.registry)
        store.save_workflow(graph)
    except StorageError as e:
        logger.error(f"Failed to save workflow: {e.message}")
        raise _http_error(e)

    return SaveWorkflowResponse(
        workflow_id=graph.id,
        message=f"Workflow '{graph.name or graph.id}' saved",
        validation=validation,
    )


@router.get("/workflows/{workflow_id}", response_model=WorkflowGraph, response_model_by_alias=True)
async def get_workflow(workflow_id: str, store: ExecutionStore = Depends(get_execution_store)) -> WorkflowGraph:
    try:
        graph = store.load_workflow(workflow_id)
    except StorageError as e:
        raise _http_error(e)
    if graph is None:
        raise _not_found("Workflow", workflow_id)
    return graph


@router.post("/workflows/validate", response_model=ValidationResult)
async def validate_workflow(
    graph: WorkflowGraph,
    engine: ExecutionEngine = Depends(get_execution_engine)
) -> ValidationResult:
    return validate_graph(graph, engine.registry)


# Executions

@router.post(
    "/executions",
    response_model=ExecutionRecord,
    responses={202: {"model": ExecutionStarted}},
    summary="Execute a workflow"
)
async def execute_workflow(
    request: ExecuteRequest,
    engine: ExecutionEngine = Depends(get_execution_engine)
):
    """
    Execute an inline graph or a stored workflow.

    With ``wait`` (the default) the finished execution record is returned;
    otherwise the run starts in the background and 202 carries its id.
    """
    graph = request.graph
    if graph is None:
        store = get_execution_store()
        try:
            graph = store.load_workflow(request.workflow_id)
        except StorageError as e:
            raise _http_error(e)
        if graph is None:
            raise _not_found("Workflow", request.workflow_id)

    logger.info(f"Executing workflow {graph.id or graph.name!r} (wait={request.wait})")

    if request.wait:
        return await engine.execute_workflow(graph, request.options)

    execution_id = engine.start_workflow(graph, request.options)
    started = ExecutionStarted(
        execution_id=execution_id,
        status=ExecutionStatus.NEW,
        message="Execution started",
    )
    return JSONResponse(status_code=status.HTTP_202_ACCEPTED, content=started.model_dump(mode="json"))


@router.get("/executions", response_model=List[ExecutionRecord])
async def list_executions(
    workflow_id: Optional[str] = None,
    status_filter: Optional[ExecutionStatus] = Query(None, alias="status"),
    limit: int = 100,
    engine: ExecutionEngine = Depends(get_execution_engine)
) -> List[ExecutionRecord]:
    """Executions held in memory, or in the store when one is configured."""
    if _execution_store is not None:
        try:
            return _execution_store.list_executions(workflow_id=workflow_id, status=status_filter, limit=limit)
        except StorageError as e:
            raise _http_error(e)

    records = engine.list_executions()
    if workflow_id is not None:
        records = [record for record in records if record.workflow_id == workflow_id]
    if status_filter is not None:
        records = [record for record in records if record.status == status_filter]
    return records[-limit:]


@router.get("/executions/{execution_id}", response_model=ExecutionRecord)
async def get_execution(
    execution_id: str,
    engine: ExecutionEngine = Depends(get_execution_engine)
) -> ExecutionRecord:
    """Live executions come from the engine; finished ones fall back to the store."""
    state = engine.get_execution_state(execution_id)
    if state is not None:
        return state.to_record()

    if _execution_store is not None:
        try:
            record = _execution_store.get_execution(execution_id)
        except StorageError as e:
            raise _http_error(e)
        if record is not None:
            return record

    raise _http_error(ExecutionNotFoundError(f"Execution {execution_id} not found", execution_id=execution_id))


@router.get("/executions/{execution_id}/nodes/{node_id}", response_model=NodeExecutionResult)
async def get_node_result(
    execution_id: str,
    node_id: str,
    engine: ExecutionEngine = Depends(get_execution_engine)
) -> NodeExecutionResult:
    result = engine.get_node_result(execution_id, node_id)
    if result is None and _execution_store is not None and engine.get_execution_state(execution_id) is None:
        try:
            record = _execution_store.get_execution(execution_id)
        except StorageError as e:
            raise _http_error(e)
        result = record.get_node_result(node_id) if record else None
    if result is None:
        raise _not_found("NodeResult", f"{execution_id}/{node_id}")
    return result


@router.post("/executions/{execution_id}/cancel")
async def cancel_execution(
    execution_id: str,
    engine: ExecutionEngine = Depends(get_execution_engine)
) -> Dict[str, Any]:
    state = engine.get_execution_state(execution_id)
    if state is None:
        raise _http_error(ExecutionNotFoundError(f"Execution {execution_id} not found", execution_id=execution_id))

    canceled = engine.cancel_execution(execution_id)
    return {
        "execution_id": execution_id,
        "canceled": canceled,
        "status": state.status.value,
        "message": "Execution canceled" if canceled else f"Execution already {state.status.value}",
    }


# Debug control

@router.get("/debug/breakpoints")
async def get_breakpoints(engine: ExecutionEngine = Depends(get_execution_engine)) -> Dict[str, Any]:
    return {"breakpoints": engine.get_breakpoints()}


@router.post("/debug/breakpoints/{node_id}", status_code=status.HTTP_201_CREATED)
async def set_breakpoint(node_id: str, engine: ExecutionEngine = Depends(get_execution_engine)) -> Dict[str, Any]:
    engine.set_breakpoint(node_id)
    return {"node_id": node_id, "breakpoints": engine.get_breakpoints()}


@router.delete("/debug/breakpoints/{node_id}")
async def remove_breakpoint(node_id: str, engine: ExecutionEngine = Depends(get_execution_engine)) -> Dict[str, Any]:
    if not engine.remove_breakpoint(node_id):
        raise _not_found("Breakpoint", node_id)
    return {"node_id": node_id, "breakpoints": engine.get_breakpoints()}


@router.delete("/debug/breakpoints")
async def clear_breakpoints(engine: ExecutionEngine = Depends(get_execution_engine)) -> Dict[str, Any]:
    engine.clear_breakpoints()
    return {"breakpoints": []}


@router.post("/debug/continue")
async def continue_from_breakpoint(
    request: Optional[DebugControlRequest] = None,
    engine: ExecutionEngine = Depends(get_execution_engine)
) -> Dict[str, Any]:
    execution_id = request.execution_id if request else None
    return {"resumed": engine.continue_from_breakpoint(execution_id), "execution_id": execution_id}


@router.post("/debug/step")
async def step_over(
    request: Optional[DebugControlRequest] = None,
    engine: ExecutionEngine = Depends(get_execution_engine)
) -> Dict[str, Any]:
    execution_id = request.execution_id if request else None
    return {"resumed": engine.step_over(execution_id), "execution_id": execution_id}


@router.get("/debug/paused")
async def get_paused_executions(engine: ExecutionEngine = Depends(get_execution_engine)) -> Dict[str, Any]:
    paused = engine.paused_executions()
    return {"paused": bool(paused), "executions": paused}


@router.get("/node-types")
async def list_node_types(engine: ExecutionEngine = Depends(get_execution_engine)) -> Dict[str, str]:
    return engine.registry.list_types()


@router.get("/health")
async def health_check() -> Dict[str, Any]:
    healthy = _execution_engine is not None
    return {
        "status": "healthy" if healthy else "starting",
        "timestamp": datetime.utcnow().isoformat(),
        "components": {
            "execution_engine": _execution_engine is not None,
            "execution_store": _execution_store is not None,
            "websocket_manager": _websocket_manager is not None,
        },
        "active_executions": len(_execution_engine.tracker.active_states()) if healthy else 0,
        "websocket": _websocket_manager.get_connection_info() if _websocket_manager else None,
    }


# WebSocket

@ws_router.websocket("/ws/debug")
async def websocket_debug(websocket: WebSocket):
    """
    Stream debug events to a client.

    Client messages: ``{"action": "subscribe" | "unsubscribe" | "ping", "execution_id": "..."}``;
    without an execution id a subscription covers every execution.
    """
    if _websocket_manager is None:
        await websocket.close(code=1011, reason="Debug streaming not available")
        return

    connection_id = None
    try:
        connection_id = await _websocket_manager.connect(websocket)

        while True:
            data = await websocket.receive_text()
            try:
                message = json.loads(data)
            except json.JSONDecodeError:
                await _websocket_manager.send_to_connection(connection_id, {
                    "event_type": "error",
                    "message": "Invalid JSON message format",
                    "timestamp": datetime.utcnow().isoformat()
                })
                continue

            if not isinstance(message, dict):
                await _websocket_manager.send_to_connection(connection_id, {
                    "event_type": "error",
                    "message": "Message must be a JSON object",
                    "timestamp": datetime.utcnow().isoformat()
                })
                continue

            action = message.get("action")
            execution_id = message.get("execution_id") or ALL_EXECUTIONS

            if action == "subscribe":
                await _websocket_manager.subscribe(connection_id, execution_id)
            elif action == "unsubscribe":
                await _websocket_manager.unsubscribe(connection_id, execution_id)
            elif action == "ping":
                await _websocket_manager.send_to_connection(connection_id, {
                    "event_type": "pong",
                    "timestamp": datetime.utcnow().isoformat()
                })
            else:
                await _websocket_manager.send_to_connection(connection_id, {
                    "event_type": "error",
                    "message": f"Unknown action: {action}",
                    "timestamp": datetime.utcnow().isoformat()
                })

    except WebSocketDisconnect:
        logger.info(f"WebSocket client disconnected: {connection_id}")
    finally:
        if connection_id:
            await _websocket_manager.disconnect(connection_id)
