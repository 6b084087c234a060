"""Pytest configuration and fixtures."""

import os
import tempfile

import pytest

from nodeflow.core.dispatcher import NodeDispatcher
from nodeflow.core.execution_engine import ExecutionEngine
from nodeflow.core.execution_recorder import ExecutionRecorder
from nodeflow.core.templates import TemplateResolver
from nodeflow.models.core import CompletionResult, Edge, Node, WorkflowGraph
from nodeflow.services.file_extraction import LocalFileExtractor
from nodeflow.storage import database


class FakeCompletionClient:
    """Stands in for the Gemini client and remembers every prompt it was sent."""

    def __init__(self, reply=None, error=None, raises=None):
        self.reply = reply
        self.error = error
        self.raises = raises
        self.calls = []

    def complete(self, prompt, model):
        self.calls.append((prompt, model))
        if self.raises is not None:
            raise self.raises
        if self.error is not None:
            return CompletionResult(success=False, text=f"Error calling Gemini API: {self.error}", error=self.error)
        text = self.reply if self.reply is not None else f"Echo: {prompt}"
        return CompletionResult(success=True, text=text)


def make_node(node_id, node_type, **config):
    return Node(id=node_id, type=node_type, config=config)


def make_edge(source, target, label=None):
    return Edge(source=source, target=target, branchLabel=label)


def make_graph(nodes, edges=()):
    return WorkflowGraph(nodes=list(nodes), edges=list(edges))


@pytest.fixture
def temp_db():
    """Point the storage layer at a temporary SQLite file."""
    db_fd, db_path = tempfile.mkstemp(suffix=".db")
    os.close(db_fd)

    database.configure_database(f"sqlite:///{db_path}")
    database.create_tables()

    yield db_path

    database.engine.dispose()
    try:
        os.unlink(db_path)
    except OSError:
        pass


@pytest.fixture
def completion_client():
    return FakeCompletionClient()


@pytest.fixture
def dispatcher(completion_client, tmp_path):
    return NodeDispatcher(
        completion_client=completion_client,
        file_extractor=LocalFileExtractor(str(tmp_path)),
        resolver=TemplateResolver()
    )


@pytest.fixture
def engine(dispatcher):
    """Engine without persistence."""
    return ExecutionEngine(dispatcher)


@pytest.fixture
def recorder(temp_db):
    return ExecutionRecorder()


@pytest.fixture
def recording_engine(dispatcher, recorder):
    return ExecutionEngine(dispatcher, recorder=recorder)
