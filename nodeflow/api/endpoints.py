"""FastAPI REST endpoints for the workflow engine.

Handlers that run workflows are plain `def` functions so FastAPI executes
them in its worker thread pool; each request gets its own run.
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from ..core.execution_engine import ExecutionEngine
from ..core.execution_recorder import ExecutionRecorder
from ..core.workflow_manager import WorkflowManager
from ..core.exceptions import WorkflowEngineError, create_error_response
from ..core.middleware import status_code_for_error
from ..core.logging import get_logger
from ..models.core import (
    Edge,
    Node,
    NodeExecutionRecord,
    StoredWorkflow,
    ValidationResult,
    WorkflowDefinition,
    WorkflowExecution,
    WorkflowGraph,
    WorkflowSummary,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/api/v1", tags=["workflow"])

# Set by the application factory during startup
_workflow_manager: Optional[WorkflowManager] = None
_execution_engine: Optional[ExecutionEngine] = None
_execution_recorder: Optional[ExecutionRecorder] = None


def init_dependencies(
    workflow_manager: WorkflowManager,
    execution_engine: ExecutionEngine,
    execution_recorder: Optional[ExecutionRecorder] = None
):
    """Initialize the global dependencies."""
    global _workflow_manager, _execution_engine, _execution_recorder
    _workflow_manager = workflow_manager
    _execution_engine = execution_engine
    _execution_recorder = execution_recorder


def get_workflow_manager() -> WorkflowManager:
    """Dependency to get the workflow manager."""
    if _workflow_manager is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Workflow manager not initialized"
        )
    return _workflow_manager


def get_execution_engine() -> ExecutionEngine:
    """Dependency to get the execution engine."""
    if _execution_engine is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Execution engine not initialized"
        )
    return _execution_engine


def get_execution_recorder() -> ExecutionRecorder:
    """Dependency to get the execution recorder."""
    if _execution_recorder is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Execution recorder not initialized"
        )
    return _execution_recorder


def _raise_http(error: WorkflowEngineError):
    raise HTTPException(status_code=status_code_for_error(error), detail=create_error_response(error))


# Request/Response models
class ExecuteGraphRequest(BaseModel):
    """Ad hoc graph to run."""
    model_config = ConfigDict(populate_by_name=True)

    nodes: List[Node] = Field(default_factory=list)
    edges: List[Edge] = Field(default_factory=list)
    initial_input: Any = Field(None, alias="initialInput")
    execution_id: Optional[str] = Field(None, alias="executionId")


class ExecuteWorkflowRequest(BaseModel):
    """Input for running a stored workflow."""
    model_config = ConfigDict(populate_by_name=True)

    input_data: Any = Field(None, alias="inputData")
    execution_id: Optional[str] = Field(None, alias="executionId")


class ValidateGraphRequest(BaseModel):
    nodes: List[Node] = Field(default_factory=list)
    edges: List[Edge] = Field(default_factory=list)


class CreateWorkflowResponse(BaseModel):
    """Response model for workflow creation."""
    model_config = ConfigDict(populate_by_name=True)

    workflow: StoredWorkflow
    message: str
    validation_warnings: List[str] = Field(default_factory=list, alias="validationWarnings")


# Endpoints

@router.post(
    "/workflows/execute",
    summary="Execute an ad hoc workflow graph",
    description="Run the posted graph synchronously. Failures are reported in the body with success=false."
)
def execute_graph(
    request: ExecuteGraphRequest,
    execution_engine: ExecutionEngine = Depends(get_execution_engine)
) -> JSONResponse:
    """
    Execute a workflow graph sent with the request.

    Args:
        request: Nodes, edges and optional initial input
        execution_engine: Execution engine dependency

    Returns:
        The ExecutionResult body, always with HTTP 200
    """
    logger.info(f"Executing ad hoc workflow: {len(request.nodes)} nodes, {len(request.edges)} edges")

    result = execution_engine.execute(
        WorkflowGraph(nodes=request.nodes, edges=request.edges),
        initial_input=request.initial_input,
        execution_id=request.execution_id
    )
    return JSONResponse(content=result.to_response())


@router.post(
    "/workflows/validate",
    response_model=ValidationResult,
    summary="Validate a workflow graph"
)
def validate_workflow(
    request: ValidateGraphRequest,
    workflow_manager: WorkflowManager = Depends(get_workflow_manager)
) -> ValidationResult:
    return workflow_manager.validate_graph(WorkflowGraph(nodes=request.nodes, edges=request.edges))


@router.post(
    "/workflows",
    response_model=CreateWorkflowResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a workflow definition"
)
def create_workflow(
    definition: WorkflowDefinition,
    workflow_manager: WorkflowManager = Depends(get_workflow_manager)
) -> CreateWorkflowResponse:
    """
    Validate and store a workflow definition.

    Raises:
        HTTPException: 400 if graph validation fails, 500 on storage errors
    """
    try:
        validation = workflow_manager.validate_graph(definition.graph())
        stored = workflow_manager.create_workflow(definition)
    except WorkflowEngineError as e:
        logger.warning(f"Workflow engine error during workflow creation: {e.message}")
        _raise_http(e)

    return CreateWorkflowResponse(
        workflow=stored,
        message=f"Workflow '{stored.name}' created successfully",
        validation_warnings=validation.warnings
    )


@router.get(
    "/workflows",
    response_model=List[WorkflowSummary],
    summary="List workflows"
)
def list_workflows(
    user_id: Optional[str] = Query(None, description="Only this user's workflows plus public ones"),
    workflow_manager: WorkflowManager = Depends(get_workflow_manager)
) -> List[WorkflowSummary]:
    try:
        return workflow_manager.list_workflows(user_id)
    except WorkflowEngineError as e:
        _raise_http(e)


@router.get(
    "/workflows/{workflow_id}",
    response_model=StoredWorkflow,
    summary="Get a workflow definition"
)
def get_workflow(
    workflow_id: str,
    workflow_manager: WorkflowManager = Depends(get_workflow_manager)
) -> StoredWorkflow:
    try:
        return workflow_manager.get_workflow(workflow_id)
    except WorkflowEngineError as e:
        _raise_http(e)


@router.delete(
    "/workflows/{workflow_id}",
    summary="Delete a workflow definition"
)
def delete_workflow(
    workflow_id: str,
    workflow_manager: WorkflowManager = Depends(get_workflow_manager)
) -> Dict[str, Any]:
    try:
        deleted = workflow_manager.delete_workflow(workflow_id)
    except WorkflowEngineError as e:
        _raise_http(e)

    if not deleted:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={
                "error": "WorkflowNotFound",
                "message": f"Workflow with ID '{workflow_id}' not found",
                "details": {"workflow_id": workflow_id}
            }
        )
    return {"success": True, "message": f"Workflow '{workflow_id}' deleted"}


@router.post(
    "/workflows/{workflow_id}/execute",
    summary="Execute a stored workflow"
)
def execute_workflow(
    workflow_id: str,
    request: Optional[ExecuteWorkflowRequest] = None,
    workflow_manager: WorkflowManager = Depends(get_workflow_manager),
    execution_engine: ExecutionEngine = Depends(get_execution_engine)
) -> JSONResponse:
    """
    Execute a stored workflow with optional input data.

    Raises:
        HTTPException: 404 if the workflow does not exist
    """
    request = request or ExecuteWorkflowRequest()
    try:
        workflow = workflow_manager.get_workflow(workflow_id)
    except WorkflowEngineError as e:
        logger.warning(f"Cannot execute workflow {workflow_id}: {e.message}")
        _raise_http(e)

    result = execution_engine.execute(
        workflow.graph(),
        initial_input=request.input_data,
        execution_id=request.execution_id,
        workflow_id=workflow_id
    )
    return JSONResponse(content=result.to_response())


@router.get(
    "/executions/{execution_id}",
    response_model=WorkflowExecution,
    summary="Get run status"
)
def get_execution(
    execution_id: str,
    recorder: ExecutionRecorder = Depends(get_execution_recorder)
) -> WorkflowExecution:
    try:
        return recorder.get_execution(execution_id)
    except WorkflowEngineError as e:
        _raise_http(e)


@router.get(
    "/executions/{execution_id}/nodes",
    response_model=List[NodeExecutionRecord],
    summary="Get node execution records of a run"
)
def get_execution_nodes(
    execution_id: str,
    recorder: ExecutionRecorder = Depends(get_execution_recorder)
) -> List[NodeExecutionRecord]:
    """
    Node execution records in start order.

    Raises:
        HTTPException: 404 if the run does not exist
    """
    try:
        recorder.get_execution(execution_id)
        return recorder.get_node_records(execution_id)
    except WorkflowEngineError as e:
        _raise_http(e)
