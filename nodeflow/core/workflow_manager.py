"""Workflow definition storage and graph validation."""

import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Dict, List, Optional, Set

from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError

from ..models.core import (
    NodeType,
    StoredWorkflow,
    ValidationResult,
    WorkflowDefinition,
    WorkflowGraph,
    WorkflowSummary,
)
from ..storage import database
from ..storage.models import WorkflowModel
from .exceptions import GraphValidationError, NotFoundError, StorageError
from .logging import get_logger

logger = get_logger(__name__)


def validate_graph(graph: WorkflowGraph) -> ValidationResult:
    """
    Check a graph for problems that make it unusable (errors) or surprising (warnings).

    Errors: duplicate node ids, edges that reference unknown nodes.
    Warnings: cycles, re-converging paths when logic nodes are present, logic
    nodes with ambiguous or unlabeled outgoing edges, isolated nodes, unknown
    node types. An empty graph is valid.

    Args:
        graph: The graph to validate

    Returns:
        ValidationResult: Validation results with errors and warnings
    """
    errors: List[str] = []
    warnings: List[str] = []

    _validate_unique_ids(graph, errors, warnings)
    _validate_edge_references(graph, errors, warnings)
    _validate_node_types(graph, errors, warnings)
    _validate_cycles(graph, errors, warnings)
    _validate_logic_branches(graph, errors, warnings)
    _validate_isolated_nodes(graph, errors, warnings)

    return ValidationResult(is_valid=len(errors) == 0, errors=errors, warnings=warnings)


def _validate_unique_ids(graph: WorkflowGraph, errors: List[str], warnings: List[str]):
    seen: Set[str] = set()
    duplicates: List[str] = []
    for node in graph.nodes:
        if node.id in seen and node.id not in duplicates:
            duplicates.append(node.id)
        seen.add(node.id)
    if duplicates:
        errors.append(f"Duplicate node IDs: {', '.join(duplicates)}")


def _validate_edge_references(graph: WorkflowGraph, errors: List[str], warnings: List[str]):
    node_ids = {node.id for node in graph.nodes}
    for edge in graph.edges:
        if edge.source not in node_ids:
            errors.append(f"Edge '{edge.id}' references non-existent source node: '{edge.source}'")
        if edge.target not in node_ids:
            errors.append(f"Edge '{edge.id}' references non-existent target node: '{edge.target}'")


def _validate_node_types(graph: WorkflowGraph, errors: List[str], warnings: List[str]):
    for node in graph.nodes:
        if node.node_type is None:
            warnings.append(f"Node '{node.id}' has unknown type '{node.type}'")


def has_cycle(graph: WorkflowGraph) -> bool:
    """Iterative three-colour depth-first search."""
    adjacency: Dict[str, List[str]] = {node.id: [] for node in graph.nodes}
    for edge in graph.edges:
        if edge.source in adjacency and edge.target in adjacency:
            adjacency[edge.source].append(edge.target)

    state: Dict[str, int] = {}  # 1 on stack, 2 finished
    for root in adjacency:
        if root in state:
            continue
        state[root] = 1
        stack = [(root, iter(adjacency[root]))]
        while stack:
            node_id, children = stack[-1]
            advanced = False
            for child in children:
                if state.get(child) == 1:
                    return True
                if child not in state:
                    state[child] = 1
                    stack.append((child, iter(adjacency[child])))
                    advanced = True
                    break
            if not advanced:
                state[node_id] = 2
                stack.pop()
    return False


def _validate_cycles(graph: WorkflowGraph, errors: List[str], warnings: List[str]):
    if has_cycle(graph):
        warnings.append(
            "Graph contains cycles. Nodes on a cycle run at most once and the cycle is not followed."
        )


def _validate_logic_branches(graph: WorkflowGraph, errors: List[str], warnings: List[str]):
    if not graph.has_logic_nodes():
        return

    incoming: Dict[str, int] = {}
    for edge in graph.edges:
        incoming[edge.target] = incoming.get(edge.target, 0) + 1
    for node in graph.nodes:
        if incoming.get(node.id, 0) > 1:
            warnings.append(
                f"Node '{node.id}' has {incoming[node.id]} incoming edges; "
                "branching execution runs it only on the first path that reaches it"
            )

    for node in graph.nodes:
        if node.node_type != NodeType.LOGIC:
            continue
        labels: Dict[str, int] = {}
        for edge in graph.outgoing_edges(node.id):
            if edge.branch_label is None:
                warnings.append(f"Logic node '{node.id}' has an unlabeled outgoing edge '{edge.id}' that is never followed")
                continue
            labels[edge.branch_label] = labels.get(edge.branch_label, 0) + 1
        for label, count in labels.items():
            if count > 1:
                warnings.append(
                    f"Logic node '{node.id}' has {count} edges labeled '{label}'; only the first is followed"
                )


def _validate_isolated_nodes(graph: WorkflowGraph, errors: List[str], warnings: List[str]):
    if len(graph.nodes) < 2:
        return
    connected = set()
    for edge in graph.edges:
        connected.add(edge.source)
        connected.add(edge.target)
    isolated = [node.id for node in graph.nodes if node.id not in connected]
    if isolated:
        warnings.append(f"Isolated nodes detected: {', '.join(isolated)}")


class WorkflowManager:
    """Manages workflow definitions, validation, and storage."""

    def __init__(self, db_session: Optional[Session] = None):
        """Initialize WorkflowManager with optional database session."""
        self._db_session = db_session

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

    def validate_graph(self, graph: WorkflowGraph) -> ValidationResult:
        result = validate_graph(graph)
        logger.debug(f"Graph validation completed. Valid: {result.is_valid}, "
                     f"Errors: {len(result.errors)}, Warnings: {len(result.warnings)}")
        return result

    def create_workflow(self, definition: WorkflowDefinition) -> StoredWorkflow:
        """
        Validate and store a new workflow definition.

        Args:
            definition: The workflow definition to create

        Returns:
            StoredWorkflow: The stored workflow with its generated id

        Raises:
            GraphValidationError: If graph validation fails
            StorageError: If storage operation fails
        """
        logger.info(f"Creating new workflow: {definition.name}")

        validation = self.validate_graph(definition.graph())
        if not validation.is_valid:
            error_msg = f"Workflow validation failed: {'; '.join(validation.errors)}"
            logger.error(error_msg)
            raise GraphValidationError(error_msg, validation_errors=validation.errors,
                                       workflow_name=definition.name)

        if validation.warnings:
            logger.warning(f"Workflow validation warnings: {'; '.join(validation.warnings)}")

        workflow_id = str(uuid.uuid4())
        now = datetime.utcnow()

        try:
            with self._session() as db:
                model = WorkflowModel(
                    id=workflow_id,
                    user_id=definition.user_id,
                    name=definition.name,
                    description=definition.description,
                    nodes=[node.model_dump() for node in definition.nodes],
                    edges=[edge.model_dump(by_alias=True) for edge in definition.edges],
                    is_public=definition.is_public,
                    created_at=now,
                    updated_at=now
                )
                db.add(model)
                db.commit()
                stored = self._to_stored(model)

            logger.info(f"Successfully created workflow '{definition.name}' with ID: {workflow_id}")
            return stored

        except SQLAlchemyError as e:
            logger.error(f"Database error while creating workflow: {str(e)}")
            raise StorageError(f"Failed to store workflow: {str(e)}", operation="create", table="workflows")

    def get_workflow(self, workflow_id: str) -> StoredWorkflow:
        """
        Retrieve a workflow by its ID.

        Raises:
            NotFoundError: If the workflow does not exist
            StorageError: If storage operation fails
        """
        logger.debug(f"Retrieving workflow with ID: {workflow_id}")

        try:
            with self._session() as db:
                model = db.query(WorkflowModel).filter(WorkflowModel.id == workflow_id).first()
                if not model:
                    raise NotFoundError(f"Workflow with ID '{workflow_id}' not found", table="workflows")
                return self._to_stored(model)

        except SQLAlchemyError as e:
            logger.error(f"Database error while retrieving workflow: {str(e)}")
            raise StorageError(f"Failed to retrieve workflow: {str(e)}", operation="get", table="workflows")

    def list_workflows(self, user_id: Optional[str] = None) -> List[WorkflowSummary]:
        """
        List workflows, newest first. With `user_id`, only that user's and public ones.

        Raises:
            StorageError: If storage operation fails
        """
        try:
            with self._session() as db:
                query = db.query(WorkflowModel)
                if user_id is not None:
                    query = query.filter(
                        (WorkflowModel.user_id == user_id) | (WorkflowModel.is_public.is_(True))
                    )
                models = query.order_by(WorkflowModel.created_at.desc()).all()

                return [
                    WorkflowSummary(
                        id=model.id,
                        name=model.name,
                        description=model.description or "",
                        node_count=len(model.nodes or []),
                        edge_count=len(model.edges or []),
                        is_public=bool(model.is_public),
                        created_at=model.created_at
                    )
                    for model in models
                ]

        except SQLAlchemyError as e:
            logger.error(f"Database error while listing workflows: {str(e)}")
            raise StorageError(f"Failed to list workflows: {str(e)}", operation="list", table="workflows")

    def delete_workflow(self, workflow_id: str) -> bool:
        """
        Delete a workflow and its executions.

        Returns:
            bool: True if the workflow was deleted, False if not found

        Raises:
            StorageError: If storage operation fails
        """
        logger.info(f"Deleting workflow with ID: {workflow_id}")

        try:
            with self._session() as db:
                model = db.query(WorkflowModel).filter(WorkflowModel.id == workflow_id).first()
                if not model:
                    logger.warning(f"Workflow with ID '{workflow_id}' not found for deletion")
                    return False

                db.delete(model)
                db.commit()

            logger.info(f"Successfully deleted workflow with ID: {workflow_id}")
            return True

        except SQLAlchemyError as e:
            logger.error(f"Database error while deleting workflow: {str(e)}")
            raise StorageError(f"Failed to delete workflow: {str(e)}", operation="delete", table="workflows")

    @staticmethod
    def _to_stored(model: WorkflowModel) -> StoredWorkflow:
        return StoredWorkflow(
            id=model.id,
            name=model.name,
            description=model.description or "",
            nodes=model.nodes or [],
            edges=model.edges or [],
            user_id=model.user_id,
            is_public=bool(model.is_public),
            created_at=model.created_at,
            updated_at=model.updated_at
        )
