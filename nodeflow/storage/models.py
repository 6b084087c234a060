"""SQLAlchemy database models for the workflow engine."""

from datetime import datetime
from sqlalchemy import Column, String, DateTime, Text, JSON, Integer, Boolean, ForeignKey
from sqlalchemy.orm import relationship
from .database import Base


class WorkflowModel(Base):
    """Saved workflow definition."""
    __tablename__ = "workflows"

    id = Column(String, primary_key=True)
    user_id = Column(String, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    nodes = Column(JSON, nullable=False, default=list)
    edges = Column(JSON, nullable=False, default=list)
    is_public = Column(Boolean, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    executions = relationship(
        "WorkflowExecutionModel",
        back_populates="workflow",
        cascade="all, delete-orphan"
    )


class WorkflowExecutionModel(Base):
    """One run of a workflow graph."""
    __tablename__ = "workflow_executions"

    id = Column(String, primary_key=True)
    # Ad-hoc graph runs have no saved workflow.
    workflow_id = Column(String, ForeignKey("workflows.id", ondelete="CASCADE"), nullable=True)
    status = Column(String(50), nullable=False, default="pending")  # pending, running, completed, failed
    input_data = Column(JSON)
    output_data = Column(JSON)
    strategy = Column(String(50))
    executed_nodes = Column(Integer, default=0)
    error_message = Column(Text)
    started_at = Column(DateTime, default=datetime.utcnow)
    completed_at = Column(DateTime)

    workflow = relationship("WorkflowModel", back_populates="executions")
    node_executions = relationship(
        "NodeExecutionModel",
        back_populates="execution",
        cascade="all, delete-orphan"
    )


class NodeExecutionModel(Base):
    """Per-node record written around each dispatch."""
    __tablename__ = "node_executions"

    id = Column(String, primary_key=True)
    execution_id = Column(String, ForeignKey("workflow_executions.id", ondelete="CASCADE"), nullable=False)
    node_id = Column(String(255), nullable=False)
    node_type = Column(String(100), nullable=False)
    status = Column(String(50), nullable=False, default="pending")  # pending, completed, failed
    input_data = Column(JSON)
    output_data = Column(JSON)
    execution_time_ms = Column(Integer)
    error_message = Column(Text)
    started_at = Column(DateTime, default=datetime.utcnow)
    completed_at = Column(DateTime)

    execution = relationship("WorkflowExecutionModel", back_populates="node_executions")
