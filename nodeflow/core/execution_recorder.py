"""Persistence of workflow executions and node execution records."""

import json
from contextlib import contextmanager
from datetime import datetime
from typing import Any, List, Optional

from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError

from ..models.core import (
    ExecutionResult,
    ExecutionStatusEnum,
    NodeExecutionRecord,
    WorkflowExecution,
)
from ..storage import database
from ..storage.models import NodeExecutionModel, WorkflowExecutionModel
from .error_recovery import RetryConfig, with_retry
from .exceptions import NotFoundError, StorageError, TransientError
from .logging import get_logger

logger = get_logger(__name__)

_WRITE_RETRY = RetryConfig(max_attempts=3, retryable_exceptions=[StorageError, TransientError])


def to_jsonable(value: Any) -> Any:
    """Copy of `value` that a JSON column accepts."""
    if value is None:
        return None
    return json.loads(json.dumps(value, default=str))


class ExecutionRecorder:
    """Writes run-level rows and per-node records.

    Node records are upserted by record id: the pending row written before
    dispatch is replaced by the completed or failed row written after it.
    """

    def __init__(self, db_session: Optional[Session] = None, record_node_executions: bool = True):
        self._db_session = db_session
        self.record_node_executions = record_node_executions

    @contextmanager
    def _session(self):
        db = self._db_session if self._db_session is not None else database.SessionLocal()
        try:
            yield db
        except SQLAlchemyError:
            db.rollback()
            raise
        finally:
            if self._db_session is None:
                db.close()

    @with_retry(_WRITE_RETRY)
    def start_execution(self, execution_id: str, workflow_id: Optional[str], input_data: Any) -> None:
        """Create (or reset) the run row with status running."""
        try:
            with self._session() as db:
                db.merge(WorkflowExecutionModel(
                    id=execution_id,
                    workflow_id=workflow_id,
                    status=ExecutionStatusEnum.RUNNING.value,
                    input_data=to_jsonable(input_data),
                    started_at=datetime.utcnow()
                ))
                db.commit()
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to record execution start: {str(e)}",
                               operation="start_execution", table="workflow_executions")

    @with_retry(_WRITE_RETRY)
    def record_node(self, record: NodeExecutionRecord) -> None:
        """Insert or update one node execution record."""
        if not self.record_node_executions:
            return
        try:
            with self._session() as db:
                db.merge(NodeExecutionModel(
                    id=record.record_id,
                    execution_id=record.execution_id,
                    node_id=record.node_id,
                    node_type=record.node_type,
                    status=record.status.value,
                    input_data=to_jsonable(record.input_data),
                    output_data=to_jsonable(record.output_data),
                    execution_time_ms=record.elapsed_ms,
                    error_message=record.error_message,
                    started_at=record.started_at,
                    completed_at=record.completed_at
                ))
                db.commit()
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to record node {record.node_id}: {str(e)}",
                               operation="record_node", table="node_executions")

    @with_retry(_WRITE_RETRY)
    def finish_execution(self, execution_id: str, result: ExecutionResult) -> None:
        """Store the final status and output of a run."""
        try:
            with self._session() as db:
                model = db.query(WorkflowExecutionModel).filter(
                    WorkflowExecutionModel.id == execution_id
                ).first()
                if model is None:
                    model = WorkflowExecutionModel(id=execution_id, started_at=datetime.utcnow())
                    db.add(model)

                model.status = (ExecutionStatusEnum.COMPLETED if result.success
                                else ExecutionStatusEnum.FAILED).value
                model.output_data = to_jsonable(result.to_response())
                model.strategy = result.strategy.value if result.strategy else None
                model.executed_nodes = result.executed_nodes
                model.error_message = result.details if not result.success else None
                model.completed_at = datetime.utcnow()
                db.commit()
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to record execution result: {str(e)}",
                               operation="finish_execution", table="workflow_executions")

    def get_execution(self, execution_id: str) -> WorkflowExecution:
        """
        Retrieve run-level status.

        Raises:
            NotFoundError: If the execution does not exist
            StorageError: If storage operation fails
        """
        try:
            with self._session() as db:
                model = db.query(WorkflowExecutionModel).filter(
                    WorkflowExecutionModel.id == execution_id
                ).first()
                if model is None:
                    raise NotFoundError(f"Execution with ID '{execution_id}' not found",
                                        table="workflow_executions")
                return WorkflowExecution(
                    id=model.id,
                    workflow_id=model.workflow_id,
                    status=ExecutionStatusEnum(model.status),
                    input_data=model.input_data,
                    output_data=model.output_data,
                    strategy=model.strategy,
                    executed_nodes=model.executed_nodes or 0,
                    started_at=model.started_at,
                    completed_at=model.completed_at,
                    error_message=model.error_message
                )
        except SQLAlchemyError as e:
            logger.error(f"Database error while retrieving execution: {str(e)}")
            raise StorageError(f"Failed to retrieve execution: {str(e)}",
                               operation="get_execution", table="workflow_executions")

    def get_node_records(self, execution_id: str) -> List[NodeExecutionRecord]:
        """Node execution records of a run in start order."""
        try:
            with self._session() as db:
                models = db.query(NodeExecutionModel).filter(
                    NodeExecutionModel.execution_id == execution_id
                ).order_by(NodeExecutionModel.started_at.asc()).all()
                return [
                    NodeExecutionRecord(
                        record_id=model.id,
                        execution_id=model.execution_id,
                        node_id=model.node_id,
                        node_type=model.node_type,
                        status=model.status,
                        input_data=model.input_data,
                        output_data=model.output_data,
                        elapsed_ms=model.execution_time_ms,
                        error_message=model.error_message,
                        started_at=model.started_at,
                        completed_at=model.completed_at
                    )
                    for model in models
                ]
        except SQLAlchemyError as e:
            logger.error(f"Database error while retrieving node records: {str(e)}")
            raise StorageError(f"Failed to retrieve node records: {str(e)}",
                               operation="get_node_records", table="node_executions")
