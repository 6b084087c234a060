"""Graph traversal engine for workflow runs."""

import time
import uuid
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .context import ExecutionContext
from .dispatcher import NodeDispatcher
from .exceptions import (
    GraphValidationError, NodeExecutionError, StartNodeNotFoundError, WorkflowEngineError
)
from .logging import get_logger, set_logging_context, remove_logging_context
from .workflow_manager import validate_graph
from ..models.core import (
    Edge, ExecutionResult, Node, NodeExecutionRecord, NodeExecutionStatus,
    NodeType, OutcomeKind, TraversalStrategy, WorkflowGraph
)

logger = get_logger(__name__)

FAILURE_MESSAGE = "Workflow execution failed"


class _GraphIndex:
    """Adjacency lookups for one graph, built once per run."""

    def __init__(self, graph: WorkflowGraph):
        self.graph = graph
        self.nodes: Dict[str, Node] = graph.node_map()
        self.incoming: Dict[str, List[Edge]] = {node_id: [] for node_id in self.nodes}
        self.outgoing: Dict[str, List[Edge]] = {node_id: [] for node_id in self.nodes}
        for edge in graph.edges:
            self.incoming.setdefault(edge.target, []).append(edge)
            self.outgoing.setdefault(edge.source, []).append(edge)

    def predecessors(self, node_id: str) -> List[str]:
        return [edge.source for edge in self.incoming.get(node_id, [])]


class ExecutionEngine:
    """Runs workflow graphs with either the dependency-aware or the branching strategy.

    The engine holds no per-run state; every call to `execute` builds its own
    ExecutionContext, so one engine can serve concurrent runs.
    """

    def __init__(
        self,
        dispatcher: NodeDispatcher,
        recorder=None,
        abort_on_capability_error: Optional[Iterable[str]] = None
    ):
        """Initialize the execution engine.

        Args:
            dispatcher: Node dispatcher used for every node action
            recorder: Optional ExecutionRecorder for run and node records
            abort_on_capability_error: Node types whose capability errors fail the run
        """
        self.dispatcher = dispatcher
        self.recorder = recorder
        self.abort_on_capability_error = set(abort_on_capability_error or [])

    @staticmethod
    def select_strategy(graph: WorkflowGraph) -> TraversalStrategy:
        if graph.has_logic_nodes():
            return TraversalStrategy.BRANCHING
        return TraversalStrategy.DEPENDENCY_AWARE

    @staticmethod
    def find_starting_node(graph: WorkflowGraph) -> Node:
        """
        Pick the node the branching strategy starts from.

        Raises:
            StartNodeNotFoundError: If no input, dataEntry or orphaned node exists
        """
        for node_type in (NodeType.INPUT, NodeType.DATA_ENTRY):
            for node in graph.nodes:
                if node.node_type == node_type:
                    return node

        targets = {edge.target for edge in graph.edges}
        for node in graph.nodes:
            if node.id not in targets:
                return node

        raise StartNodeNotFoundError()

    def execute(
        self,
        graph: WorkflowGraph,
        initial_input: Any = None,
        execution_id: Optional[str] = None,
        workflow_id: Optional[str] = None
    ) -> ExecutionResult:
        """
        Execute a workflow graph.

        Args:
            graph: Graph to run
            initial_input: Value handed to root nodes
            execution_id: Identifier for the run (generated when omitted)
            workflow_id: Stored workflow the graph came from, if any

        Returns:
            ExecutionResult; failures are reported with success=False, never raised
        """
        execution_id = execution_id or str(uuid.uuid4())
        context = ExecutionContext(execution_id, initial_input)
        strategy: Optional[TraversalStrategy] = None

        set_logging_context(execution_id=execution_id)
        self._notify("start_execution", execution_id, workflow_id, initial_input)

        try:
            validation = validate_graph(graph)
            for warning in validation.warnings:
                logger.warning(f"Graph warning: {warning}")
            if not validation.is_valid:
                raise GraphValidationError(
                    f"Invalid workflow graph: {'; '.join(validation.errors)}",
                    validation_errors=validation.errors
                )

            index = _GraphIndex(graph)
            strategy = self.select_strategy(graph)
            logger.info(
                f"Executing workflow {workflow_id or '(ad hoc)'} with {strategy.value} strategy: "
                f"{len(graph.nodes)} nodes, {len(graph.edges)} edges"
            )

            if strategy == TraversalStrategy.BRANCHING:
                start_node = self.find_starting_node(graph)
                logger.info(f"Starting branching execution from node {start_node.id}")
                self._execute_branching(index, start_node.id, context)
            else:
                self._execute_dependency_aware(index, context)

            result = ExecutionResult(
                success=True,
                result=context.snapshot(),
                executed_nodes=context.executed_count,
                execution_order=list(context.execution_order),
                total_edges=len(graph.edges),
                strategy=strategy,
                execution_id=execution_id
            )
            logger.info(f"Workflow execution completed: {context.executed_count} nodes executed")

        except WorkflowEngineError as e:
            logger.error(f"Workflow execution failed: {e.message}")
            result = self._failure(e.message, graph, context, strategy, execution_id)

        except Exception as e:
            logger.exception(f"Unexpected error during workflow execution: {e}")
            result = self._failure(str(e) or type(e).__name__, graph, context, strategy, execution_id)

        finally:
            remove_logging_context("execution_id")

        self._notify("finish_execution", execution_id, result)
        return result

    @staticmethod
    def _failure(message: str, graph: WorkflowGraph, context: ExecutionContext,
                 strategy: Optional[TraversalStrategy], execution_id: str) -> ExecutionResult:
        return ExecutionResult(
            success=False,
            error=FAILURE_MESSAGE,
            details=message,
            executed_nodes=context.executed_count,
            execution_order=list(context.execution_order),
            total_edges=len(graph.edges),
            strategy=strategy,
            execution_id=execution_id
        )

    def _execute_dependency_aware(self, index: _GraphIndex, context: ExecutionContext) -> None:
        """Run every node once, after all of its predecessors.

        Depth-first over predecessors with an explicit stack. A predecessor
        that is already executing closes a cycle and is skipped.
        """
        executed = set()
        executing = set()

        for root_id in index.nodes:
            if root_id in executed or root_id in executing:
                continue

            executing.add(root_id)
            stack = [(root_id, iter(index.predecessors(root_id)))]

            while stack:
                node_id, pending = stack[-1]

                descended = False
                for pred_id in pending:
                    if pred_id in executed or pred_id in executing or pred_id not in index.nodes:
                        continue
                    executing.add(pred_id)
                    stack.append((pred_id, iter(index.predecessors(pred_id))))
                    descended = True
                    break

                if descended:
                    continue

                stack.pop()
                self._run_node(index, index.nodes[node_id], context)
                executing.discard(node_id)
                executed.add(node_id)

    def _execute_branching(self, index: _GraphIndex, start_id: str, context: ExecutionContext) -> None:
        """Depth-first from the start node, following one branch out of each logic node.

        A global visited set means a node reachable by two paths runs only on
        the first one.
        """
        visited = set()
        stack = [start_id]

        while stack:
            node_id = stack.pop()
            if node_id in visited or node_id not in index.nodes:
                continue
            visited.add(node_id)

            node = index.nodes[node_id]
            output = self._run_node(index, node, context)
            edges = index.outgoing.get(node_id, [])

            if node.node_type == NodeType.LOGIC:
                branch = output.get("branch") if isinstance(output, dict) else None
                chosen = next((edge for edge in edges if edge.branch_label == branch), None)
                if chosen is None:
                    logger.info(f"Logic node {node_id} took branch '{branch}' with no matching edge; path ends")
                    continue
                logger.info(f"Logic node {node_id} took branch '{branch}' -> {chosen.target}")
                next_ids = [chosen.target]
            else:
                next_ids = [edge.target for edge in edges]

            # Reversed so the first declared edge is explored first.
            for target in reversed(next_ids):
                if target not in visited:
                    stack.append(target)

    def _node_input(self, index: _GraphIndex, node_id: str,
                    context: ExecutionContext) -> Tuple[Any, bool]:
        """Input for a node and whether any of it came from an executed predecessor.

        One incoming edge passes the predecessor output through. Several are
        combined into `{<predId>: output, input_<i>: output}` over the
        predecessors that have run. Without upstream data the run's initial
        input is used, which is None when the run was started without one.
        """
        fallback = context.initial_input
        incoming = index.incoming.get(node_id, [])

        if len(incoming) == 1:
            source = incoming[0].source
            if context.has_output(source):
                return context.get_output(source), True
            return fallback, False

        combined: Dict[str, Any] = {}
        for position, edge in enumerate(incoming):
            if not context.has_output(edge.source):
                continue
            output = context.get_output(edge.source)
            combined[f"input_{position}"] = output
            combined[edge.source] = output

        if combined:
            return combined, True
        return fallback, False

    def _run_node(self, index: _GraphIndex, node: Node, context: ExecutionContext) -> Any:
        """
        Dispatch one node and record it.

        Returns:
            The node output published to the context

        Raises:
            NodeExecutionError: If the node action raises, or a capability
                error occurs on a node type configured to abort the run
        """
        input_data, has_incoming = self._node_input(index, node.id, context)
        record_id = str(uuid.uuid4())
        started_at = datetime.utcnow()
        start = time.perf_counter()

        self._record(record_id, context, node, NodeExecutionStatus.PENDING, input_data, started_at)
        logger.info(f"Executing node {node.id} ({node.type})")

        try:
            outcome = self.dispatcher.execute(
                node, context, input_data,
                initial_input=context.initial_input,
                has_incoming=has_incoming
            )
        except Exception as e:
            elapsed_ms = int((time.perf_counter() - start) * 1000)
            message = str(e) or type(e).__name__
            logger.error(f"Node {node.id} ({node.type}) failed after {elapsed_ms}ms: {message}")
            self._record(record_id, context, node, NodeExecutionStatus.FAILED, input_data, started_at,
                         elapsed_ms=elapsed_ms, error_message=message)
            raise NodeExecutionError(
                message,
                node_id=node.id,
                node_type=node.type,
                execution_id=context.execution_id,
                elapsed_ms=elapsed_ms
            ) from e

        elapsed_ms = int((time.perf_counter() - start) * 1000)

        if (not outcome.ok and outcome.kind == OutcomeKind.CAPABILITY
                and node.type in self.abort_on_capability_error):
            logger.error(f"Node {node.id} ({node.type}) capability error aborts the run: {outcome.message}")
            self._record(record_id, context, node, NodeExecutionStatus.FAILED, input_data, started_at,
                         output_data=outcome.output, elapsed_ms=elapsed_ms, error_message=outcome.message)
            raise NodeExecutionError(
                outcome.message,
                node_id=node.id,
                node_type=node.type,
                execution_id=context.execution_id,
                elapsed_ms=elapsed_ms
            )

        if not outcome.ok:
            logger.warning(f"Node {node.id} ({node.type}) degraded: {outcome.message}")

        context.set_node_output(node.id, outcome.output)
        self._record(record_id, context, node, NodeExecutionStatus.COMPLETED, input_data, started_at,
                     output_data=outcome.output, elapsed_ms=elapsed_ms,
                     error_message=None if outcome.ok else outcome.message)
        logger.info(f"Completed node {node.id} in {elapsed_ms}ms")
        return outcome.output

    def _record(self, record_id: str, context: ExecutionContext, node: Node,
                status: NodeExecutionStatus, input_data: Any, started_at: datetime,
                output_data: Any = None, elapsed_ms: Optional[int] = None,
                error_message: Optional[str] = None) -> None:
        record = NodeExecutionRecord(
            record_id=record_id,
            execution_id=context.execution_id,
            node_id=node.id,
            node_type=node.type,
            status=status,
            input_data=input_data,
            output_data=output_data,
            elapsed_ms=elapsed_ms,
            error_message=error_message,
            started_at=started_at,
            completed_at=None if status == NodeExecutionStatus.PENDING else datetime.utcnow()
        )
        self._notify("record_node", record)

    def _notify(self, method: str, *args) -> None:
        """Call the recorder. Storage problems are logged and never fail a node."""
        if self.recorder is None:
            return
        try:
            getattr(self.recorder, method)(*args)
        except Exception as e:
            logger.error(f"Failed to persist execution event ({method}): {str(e)}")
