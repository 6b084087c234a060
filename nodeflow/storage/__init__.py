"""Database models and storage layer."""

from .database import Base, create_tables, drop_tables, configure_database
from .models import WorkflowModel, WorkflowExecutionModel, NodeExecutionModel

__all__ = [
    "Base",
    "create_tables",
    "drop_tables",
    "configure_database",
    "WorkflowModel",
    "WorkflowExecutionModel",
    "NodeExecutionModel",
]
