"""Tests for graph traversal: strategies, node input, failure handling."""

import pytest

from nodeflow.core.dispatcher import NodeDispatcher
from nodeflow.core.execution_engine import FAILURE_MESSAGE, ExecutionEngine
from nodeflow.core.exceptions import StartNodeNotFoundError
from nodeflow.models.core import TraversalStrategy

from conftest import FakeCompletionClient, make_edge, make_graph, make_node


class ExplodingDispatcher(NodeDispatcher):
    """Raises for one node id, dispatches everything else normally."""

    def __init__(self, fail_on, **kwargs):
        super().__init__(FakeCompletionClient(), **kwargs)
        self.fail_on = fail_on

    def execute(self, node, context, input_data, initial_input=None, has_incoming=False):
        if node.id == self.fail_on:
            raise ValueError(f"boom in {node.id}")
        return super().execute(node, context, input_data, initial_input, has_incoming)


class RecordingStub:
    """In-memory recorder capturing every notification."""

    def __init__(self, fail=False):
        self.fail = fail
        self.started = []
        self.records = []
        self.finished = []

    def start_execution(self, execution_id, workflow_id, input_data):
        if self.fail:
            raise RuntimeError("database is locked")
        self.started.append((execution_id, workflow_id, input_data))

    def record_node(self, record):
        if self.fail:
            raise RuntimeError("database is locked")
        self.records.append(record)

    def finish_execution(self, execution_id, result):
        if self.fail:
            raise RuntimeError("database is locked")
        self.finished.append((execution_id, result))


class TestScenarios:
    """End-to-end scenarios over small graphs."""

    def test_input_to_text_output(self, engine):
        graph = make_graph(
            [make_node("in", "input", textValue="hello"), make_node("out", "output", format="text")],
            [make_edge("in", "out")]
        )
        result = engine.execute(graph)

        assert result.success
        assert result.strategy == TraversalStrategy.DEPENDENCY_AWARE
        assert result.result.node_outputs["out"]["data"] == "hello"
        assert result.executed_nodes == 2
        assert result.total_edges == 1

    def test_logic_follows_only_true_branch(self, engine):
        graph = make_graph(
            [
                make_node("in", "input", textValue="10"),
                make_node("check", "logic", condition="{{in.output}}", compareValue="5", operator="greaterThan"),
                make_node("out1", "output", format="text"),
                make_node("out2", "output", format="text"),
            ],
            [
                make_edge("in", "check"),
                make_edge("check", "out1", "true"),
                make_edge("check", "out2", "false"),
            ]
        )
        result = engine.execute(graph)

        assert result.success
        assert result.strategy == TraversalStrategy.BRANCHING
        outputs = result.result.node_outputs
        assert outputs["check"]["result"] is True
        assert "out1" in outputs
        assert "out2" not in outputs
        assert result.execution_order == ["in", "check", "out1"]

    def test_prompt_receives_interpolated_text(self, completion_client, engine):
        graph = make_graph(
            [make_node("in", "input", textValue="hello"),
             make_node("ai", "prompt", prompt="Analyze: {{in.output}}")],
            [make_edge("in", "ai")]
        )
        result = engine.execute(graph)

        assert completion_client.calls[0][0] == "Analyze: hello"
        assert result.result.node_outputs["ai"]["output"] == "Echo: Analyze: hello"

    def test_two_predecessors_are_combined(self, engine):
        graph = make_graph(
            [
                make_node("A", "input", textValue="alpha"),
                make_node("B", "input", textValue="beta"),
                make_node("merge", "api"),
            ],
            [make_edge("A", "merge"), make_edge("B", "merge")]
        )
        result = engine.execute(graph)

        received = result.result.node_outputs["merge"]["data"]["processed_input"]
        assert received["A"]["output"] == "alpha"
        assert received["B"]["output"] == "beta"
        assert received["input_0"] == received["A"]
        assert received["input_1"] == received["B"]


class TestDependencyAwareStrategy:
    """Test cases for runs without logic nodes."""

    def test_every_node_runs_once_after_predecessors(self, engine):
        graph = make_graph(
            [
                make_node("out", "output"),
                make_node("mid", "api"),
                make_node("a", "input", textValue="a"),
                make_node("b", "input", textValue="b"),
            ],
            [make_edge("a", "mid"), make_edge("b", "mid"), make_edge("mid", "out"), make_edge("a", "out")]
        )
        result = engine.execute(graph)

        order = result.execution_order
        assert sorted(order) == ["a", "b", "mid", "out"]
        assert len(order) == len(set(order))
        assert order.index("mid") > order.index("a")
        assert order.index("mid") > order.index("b")
        assert order.index("out") > order.index("mid")
        assert set(result.result.node_outputs) == {"a", "b", "mid", "out"}

    def test_long_chain_does_not_recurse(self, engine):
        count = 3000
        nodes = [make_node("n0", "input", textValue="start")]
        nodes += [make_node(f"n{i}", "input") for i in range(1, count)]
        edges = [make_edge(f"n{i - 1}", f"n{i}") for i in range(1, count)]
        # Declared last-first so every root descends through the whole chain.
        result = engine.execute(make_graph(reversed(nodes), edges))

        assert result.success
        assert result.executed_nodes == count
        assert result.execution_order[0] == "n0"
        assert result.execution_order[-1] == f"n{count - 1}"
        assert result.result.node_outputs[f"n{count - 1}"]["output"] == "start"

    def test_cycle_runs_each_node_once(self, engine):
        graph = make_graph(
            [make_node("a", "api"), make_node("b", "api")],
            [make_edge("a", "b"), make_edge("b", "a")]
        )
        result = engine.execute(graph)

        assert result.success
        assert sorted(result.execution_order) == ["a", "b"]

    def test_root_without_upstream_gets_initial_input(self, engine):
        graph = make_graph([make_node("api", "api")])
        result = engine.execute(graph, initial_input={"q": 1})
        assert result.result.node_outputs["api"]["data"]["processed_input"] == {"q": 1}

        empty = engine.execute(graph)
        assert empty.result.node_outputs["api"]["data"]["processed_input"] is None

    def test_root_prompt_without_input_keeps_input_token(self, completion_client, engine):
        graph = make_graph([make_node("ai", "prompt", prompt="Summarize {{input}}")])
        result = engine.execute(graph)

        assert result.success
        assert completion_client.calls[0][0] == "Summarize {{input}}"

        engine.execute(graph, initial_input="the report")
        assert completion_client.calls[1][0] == "Summarize the report"


class TestBranchingStrategy:
    """Test cases for runs with logic nodes."""

    def test_start_node_priority(self):
        graph = make_graph(
            [make_node("x", "api"), make_node("d", "dataEntry"), make_node("i", "input")],
            [make_edge("x", "d")]
        )
        assert ExecutionEngine.find_starting_node(graph).id == "i"

        graph = make_graph([make_node("x", "api"), make_node("d", "dataEntry")], [make_edge("x", "d")])
        assert ExecutionEngine.find_starting_node(graph).id == "d"

        graph = make_graph([make_node("x", "api"), make_node("y", "api")], [make_edge("y", "x")])
        assert ExecutionEngine.find_starting_node(graph).id == "y"

    def test_no_start_node_fails_run(self, engine):
        graph = make_graph(
            [make_node("l", "logic"), make_node("x", "api")],
            [make_edge("l", "x", "true"), make_edge("x", "l")]
        )
        with pytest.raises(StartNodeNotFoundError):
            ExecutionEngine.find_starting_node(graph)

        result = engine.execute(graph)
        assert not result.success
        assert result.error == FAILURE_MESSAGE
        assert result.details == "No starting node found (input, dataEntry, or orphaned node)"
        assert result.executed_nodes == 0

    def test_false_branch_and_missing_edge(self, engine):
        graph = make_graph(
            [
                make_node("in", "input", textValue="abc"),
                make_node("check", "logic", condition="{{input}}", compareValue="5", operator="greaterThan"),
                make_node("yes", "output"),
            ],
            [make_edge("in", "check"), make_edge("check", "yes", "true")]
        )
        result = engine.execute(graph)

        assert result.success
        assert result.result.node_outputs["check"]["branch"] == "false"
        assert result.execution_order == ["in", "check"]

    def test_first_declared_edge_explored_first(self, engine):
        graph = make_graph(
            [
                make_node("in", "input", textValue="go"),
                make_node("first", "api"),
                make_node("second", "api"),
                make_node("gate", "logic"),
                make_node("after", "output"),
            ],
            [
                make_edge("in", "first"),
                make_edge("in", "second"),
                make_edge("first", "gate"),
                make_edge("gate", "after", "true"),
            ]
        )
        result = engine.execute(graph)
        assert result.execution_order == ["in", "first", "gate", "after", "second"]

    def test_diamond_merge_runs_on_first_path_only(self, engine):
        graph = make_graph(
            [
                make_node("in", "input", textValue="x"),
                make_node("gate", "logic"),
                make_node("left", "api"),
                make_node("right", "api"),
                make_node("merge", "output"),
            ],
            [
                make_edge("in", "gate"),
                make_edge("gate", "left", "true"),
                make_edge("in", "right"),
                make_edge("left", "merge"),
                make_edge("right", "merge"),
            ]
        )
        result = engine.execute(graph)

        assert result.execution_order.count("merge") == 1
        assert result.execution_order == ["in", "gate", "left", "merge", "right"]
        # Only "left" had run when merge executed.
        merged = result.result.node_outputs["merge"]["final_output"]
        assert set(merged) == {"input_0", "left"}

    def test_cycle_is_not_followed(self, engine):
        graph = make_graph(
            [make_node("in", "input", textValue="x"), make_node("gate", "logic")],
            [make_edge("in", "gate"), make_edge("gate", "in", "true")]
        )
        result = engine.execute(graph)
        assert result.execution_order == ["in", "gate"]


class TestFailureHandling:
    """Test cases for node failures and the abort policy."""

    def test_unexpected_error_fails_run_with_partial_count(self):
        engine = ExecutionEngine(ExplodingDispatcher("b"))
        graph = make_graph(
            [make_node("a", "input", textValue="x"), make_node("b", "api"), make_node("c", "output")],
            [make_edge("a", "b"), make_edge("b", "c")]
        )
        result = engine.execute(graph)

        assert not result.success
        assert result.error == FAILURE_MESSAGE
        assert result.details == "boom in b"
        assert result.executed_nodes == 1
        assert result.execution_order == ["a"]
        assert "result" not in result.to_response()

    def test_unexpected_error_fails_branching_run(self):
        engine = ExecutionEngine(ExplodingDispatcher("yes"))
        graph = make_graph(
            [make_node("in", "input"), make_node("gate", "logic"), make_node("yes", "api")],
            [make_edge("in", "gate"), make_edge("gate", "yes", "true")]
        )
        result = engine.execute(graph)

        assert not result.success
        assert result.details == "boom in yes"
        assert result.executed_nodes == 2

    def test_capability_error_is_embedded_by_default(self):
        engine = ExecutionEngine(NodeDispatcher(FakeCompletionClient(error="quota")))
        graph = make_graph(
            [make_node("ai", "prompt", prompt="hi"), make_node("out", "output", format="text")],
            [make_edge("ai", "out")]
        )
        result = engine.execute(graph)

        assert result.success
        assert result.result.node_outputs["out"]["data"] == "Error from Gemini API: quota"

    def test_capability_error_aborts_when_configured(self):
        stub = RecordingStub()
        engine = ExecutionEngine(
            NodeDispatcher(FakeCompletionClient(error="quota")),
            recorder=stub,
            abort_on_capability_error=["prompt"]
        )
        graph = make_graph(
            [make_node("ai", "prompt", prompt="hi"), make_node("out", "output")],
            [make_edge("ai", "out")]
        )
        result = engine.execute(graph)

        assert not result.success
        assert result.details == "quota"
        assert result.executed_nodes == 0
        assert [record.status.value for record in stub.records] == ["pending", "failed"]

    def test_configuration_errors_never_abort(self):
        engine = ExecutionEngine(NodeDispatcher(FakeCompletionClient()),
                                 abort_on_capability_error=["dataEntry", "fileToText"])
        graph = make_graph([make_node("d", "dataEntry"), make_node("f", "fileToText")], [make_edge("d", "f")])
        result = engine.execute(graph)

        assert result.success
        assert result.result.node_outputs["f"]["success"] is False

    def test_mistyped_config_does_not_abort(self, engine, completion_client):
        graph = make_graph(
            [
                make_node("in", "input", textValue="hello"),
                make_node("ai", "prompt", prompt=42),
                make_node("api", "api", headers="not-a-mapping"),
                make_node("f", "fileToText", files="missing.txt"),
                make_node("out", "output", format=1),
            ],
            [make_edge("in", "ai"), make_edge("ai", "api"), make_edge("api", "f"), make_edge("f", "out")]
        )
        result = engine.execute(graph)

        assert result.success
        assert result.execution_order == ["in", "ai", "api", "f", "out"]
        assert completion_client.calls[0][0] == "42"
        outputs = result.result.node_outputs
        assert outputs["api"]["status"] == 200
        assert outputs["f"]["processedFiles"] == 1

    def test_unknown_type_does_not_abort(self, engine):
        graph = make_graph(
            [make_node("in", "input", textValue="x"), make_node("odd", "mystery")],
            [make_edge("in", "odd")]
        )
        result = engine.execute(graph)

        assert result.success
        assert result.result.node_outputs["odd"]["message"] == "Unknown node type"

    def test_invalid_graph_is_a_structural_failure(self, engine):
        graph = make_graph([make_node("a", "input")], [make_edge("a", "ghost")])
        result = engine.execute(graph)

        assert not result.success
        assert "non-existent target node" in result.details

    def test_empty_graph_succeeds(self, engine):
        result = engine.execute(make_graph([]))
        assert result.success
        assert result.executed_nodes == 0


class TestRecorderNotifications:
    """Test cases for the engine to recorder boundary."""

    def test_pending_then_completed_records(self, dispatcher):
        stub = RecordingStub()
        engine = ExecutionEngine(dispatcher, recorder=stub)
        graph = make_graph([make_node("in", "input", textValue="x"), make_node("out", "output")],
                           [make_edge("in", "out")])
        result = engine.execute(graph, execution_id="run-42", workflow_id="wf-1")

        assert result.execution_id == "run-42"
        assert stub.started == [("run-42", "wf-1", None)]
        statuses = [(record.node_id, record.status.value) for record in stub.records]
        assert statuses == [("in", "pending"), ("in", "completed"), ("out", "pending"), ("out", "completed")]
        assert stub.records[0].record_id == stub.records[1].record_id
        assert stub.records[1].elapsed_ms is not None
        assert stub.finished[0][1] is result

    def test_degraded_node_records_error_message(self):
        stub = RecordingStub()
        engine = ExecutionEngine(NodeDispatcher(FakeCompletionClient(error="quota")), recorder=stub)
        engine.execute(make_graph([make_node("ai", "prompt")]))

        completed = stub.records[-1]
        assert completed.status.value == "completed"
        assert completed.error_message == "quota"

    def test_storage_failures_never_abort(self, dispatcher):
        engine = ExecutionEngine(dispatcher, recorder=RecordingStub(fail=True))
        graph = make_graph([make_node("in", "input", textValue="x"), make_node("out", "output")],
                           [make_edge("in", "out")])
        result = engine.execute(graph)

        assert result.success
        assert result.executed_nodes == 2


class TestConcurrentRuns:
    """Runs on one engine never share a context."""

    def test_parallel_runs_are_isolated(self, engine):
        from concurrent.futures import ThreadPoolExecutor

        def run(value):
            graph = make_graph(
                [make_node("in", "input"), make_node("out", "output", format="text")],
                [make_edge("in", "out")]
            )
            return engine.execute(graph, initial_input=value)

        values = [f"value-{i}" for i in range(20)]
        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(run, values))

        for value, result in zip(values, results):
            assert result.result.node_outputs["out"]["data"] == value
