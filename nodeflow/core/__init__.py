"""Core workflow engine components."""

from .exceptions import (
    WorkflowEngineError,
    GraphValidationError,
    StartNodeNotFoundError,
    NodeExecutionError,
    CapabilityError,
    ExecutionEngineError,
    StorageError,
    NotFoundError,
    TransientError,
    ConfigurationError,
)
from .logging import setup_logging, get_logger

__all__ = [
    "WorkflowEngineError",
    "GraphValidationError",
    "StartNodeNotFoundError",
    "NodeExecutionError",
    "CapabilityError",
    "ExecutionEngineError",
    "StorageError",
    "NotFoundError",
    "TransientError",
    "ConfigurationError",
    "setup_logging",
    "get_logger",
]
