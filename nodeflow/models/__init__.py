"""Data models for the workflow engine."""

from .core import (
    NodeType,
    ExecutionStatusEnum,
    NodeExecutionStatus,
    TraversalStrategy,
    ComparisonOperator,
    InputNodeConfig,
    PromptNodeConfig,
    ApiNodeConfig,
    LogicNodeConfig,
    FileNodeConfig,
    OutputNodeConfig,
    Node,
    Edge,
    WorkflowGraph,
    ValidationResult,
    OutcomeKind,
    NodeOutcome,
    CompletionResult,
    FileExtractionResult,
    NodeExecutionRecord,
    ContextSnapshot,
    ExecutionResult,
    WorkflowDefinition,
    StoredWorkflow,
    WorkflowSummary,
    WorkflowExecution,
)

__all__ = [
    "NodeType",
    "ExecutionStatusEnum",
    "NodeExecutionStatus",
    "TraversalStrategy",
    "ComparisonOperator",
    "InputNodeConfig",
    "PromptNodeConfig",
    "ApiNodeConfig",
    "LogicNodeConfig",
    "FileNodeConfig",
    "OutputNodeConfig",
    "Node",
    "Edge",
    "WorkflowGraph",
    "ValidationResult",
    "OutcomeKind",
    "NodeOutcome",
    "CompletionResult",
    "FileExtractionResult",
    "NodeExecutionRecord",
    "ContextSnapshot",
    "ExecutionResult",
    "WorkflowDefinition",
    "StoredWorkflow",
    "WorkflowSummary",
    "WorkflowExecution",
]
