"""Exception hierarchy for the workflow engine.

Each class fixes its severity, category and recoverability; instances carry
`details` (what went wrong) and `context` (where it happened) for logs and
API error bodies.
"""

from datetime import datetime
from typing import Optional, Dict, Any, List
from enum import Enum


class ErrorSeverity(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    VALIDATION = "validation"
    EXECUTION = "execution"
    STORAGE = "storage"
    NETWORK = "network"
    CONFIGURATION = "configuration"
    CAPABILITY = "capability"


class WorkflowEngineError(Exception):
    """Base exception for all workflow engine errors."""

    severity = ErrorSeverity.MEDIUM
    category = ErrorCategory.EXECUTION
    recoverable = False
    retry_after: Optional[int] = None

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or type(self).__name__
        self.details = dict(details or {})
        self.context = dict(context or {})
        self.timestamp = datetime.utcnow()

    def add_context(self, **fields) -> "WorkflowEngineError":
        """Record where the error happened; None values are skipped."""
        self.context.update({key: value for key, value in fields.items() if value is not None})
        return self

    def add_details(self, **fields) -> "WorkflowEngineError":
        self.details.update({key: value for key, value in fields.items() if value is not None})
        return self

    def to_dict(self) -> Dict[str, Any]:
        """Flat representation for structured logs."""
        return {
            "error_code": self.error_code,
            "exception_type": type(self).__name__,
            "message": self.message,
            "severity": self.severity.value,
            "category": self.category.value,
            "recoverable": self.recoverable,
            "retry_after": self.retry_after,
            "details": self.details,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
        }


class GraphValidationError(WorkflowEngineError):
    """The graph is structurally unusable (duplicate ids, dangling edges)."""

    category = ErrorCategory.VALIDATION

    def __init__(self, message: str, validation_errors: Optional[List[str]] = None,
                 workflow_name: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.validation_errors = list(validation_errors or [])
        self.add_context(workflow_name=workflow_name)
        if self.validation_errors:
            self.add_details(validation_errors=self.validation_errors)


class StartNodeNotFoundError(GraphValidationError):
    """Branching execution found nothing to start from."""

    def __init__(self, message: str = "No starting node found (input, dataEntry, or orphaned node)", **kwargs):
        super().__init__(message, **kwargs)


class NodeExecutionError(WorkflowEngineError):
    """A node action failed unexpectedly or aborted the run."""

    severity = ErrorSeverity.HIGH

    def __init__(self, message: str, node_id: Optional[str] = None, node_type: Optional[str] = None,
                 execution_id: Optional[str] = None, elapsed_ms: Optional[int] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.node_id = node_id
        self.add_context(node_id=node_id, node_type=node_type, execution_id=execution_id)
        self.add_details(elapsed_ms=elapsed_ms)


class CapabilityError(WorkflowEngineError):
    """An external capability (AI completion, file extraction, HTTP) failed."""

    category = ErrorCategory.CAPABILITY
    recoverable = True

    def __init__(self, message: str, capability: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.add_context(capability=capability)


class ExecutionEngineError(WorkflowEngineError):
    """The engine itself could not run a workflow."""

    severity = ErrorSeverity.HIGH

    def __init__(self, message: str, execution_id: Optional[str] = None,
                 workflow_id: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.add_context(execution_id=execution_id, workflow_id=workflow_id)


class StorageError(WorkflowEngineError):
    """A database read or write failed."""

    severity = ErrorSeverity.HIGH
    category = ErrorCategory.STORAGE
    recoverable = True
    retry_after = 3

    def __init__(self, message: str, operation: Optional[str] = None, table: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.add_context(operation=operation, table=table)


class NotFoundError(StorageError):
    """A stored workflow or execution does not exist."""

    severity = ErrorSeverity.LOW
    recoverable = False
    retry_after = None


class TransientError(WorkflowEngineError):
    """A temporary failure worth retrying."""

    category = ErrorCategory.NETWORK
    recoverable = True
    retry_after = 5


class ConfigurationError(WorkflowEngineError):
    """Configuration is invalid or missing."""

    severity = ErrorSeverity.HIGH
    category = ErrorCategory.CONFIGURATION

    def __init__(self, message: str, config_key: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.add_context(config_key=config_key)


def create_error_response(error: WorkflowEngineError) -> Dict[str, Any]:
    """API error body: `{error, message, details, context}`."""
    return {
        "error": error.error_code,
        "message": error.message,
        "details": {
            **error.details,
            "severity": error.severity.value,
            "category": error.category.value,
            "recoverable": error.recoverable,
            "retry_after": error.retry_after,
            "timestamp": error.timestamp.isoformat(),
        },
        "context": error.context,
    }
