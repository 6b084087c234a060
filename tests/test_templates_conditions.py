"""Tests for template resolution, condition evaluation and the execution context."""

import math

import pytest

from nodeflow.core.conditions import evaluate_condition, strict_equals, to_number
from nodeflow.core.context import ExecutionContext
from nodeflow.core.templates import TemplateResolver, primary_value, stringify


@pytest.fixture
def resolver():
    return TemplateResolver()


class TestStringify:
    """Test cases for template value rendering."""

    def test_primitives(self):
        assert stringify("hello") == "hello"
        assert stringify(None) == "null"
        assert stringify(True) == "true"
        assert stringify(False) == "false"
        assert stringify(42) == "42"
        assert stringify(10.0) == "10"
        assert stringify(2.5) == "2.5"

    def test_special_floats(self):
        assert stringify(float("nan")) == "NaN"
        assert stringify(float("inf")) == "Infinity"
        assert stringify(float("-inf")) == "-Infinity"

    def test_containers_are_compact_json(self):
        assert stringify({"a": 1, "b": [1, 2]}) == '{"a":1,"b":[1,2]}'
        assert stringify(["x", "ü"]) == '["x","ü"]'

    def test_primary_value(self):
        assert primary_value({"output": "x", "data": "y"}) == "x"
        assert primary_value({"data": "y"}) == {"data": "y"}
        assert primary_value("plain") == "plain"


class TestTemplateResolver:
    """Test cases for TemplateResolver."""

    def test_exact_key(self, resolver):
        variables = {"a": "hello", "n": 3, "obj": {"k": "v"}}
        assert resolver.resolve("{{a}}", variables) == "hello"
        assert resolver.resolve("n={{ n }}", variables) == "n=3"
        assert resolver.resolve("{{obj}}", variables) == '{"k":"v"}'

    def test_unresolved_token_is_kept_verbatim(self, resolver):
        variables = {"a": "hello"}
        once = resolver.resolve("x {{missing}} y {{a.b}}", variables)
        assert once == "x {{missing}} y {{a.b}}"
        assert resolver.resolve(once, variables) == once

    def test_head_property(self, resolver):
        variables = {"n1": {"response": "hi", "data": {"deep": [10, 20]}}}
        assert resolver.resolve("{{n1.response}}", variables) == "hi"
        assert resolver.resolve("{{n1.data.deep.1}}", variables) == "20"

    def test_output_falls_back_to_whole_value(self, resolver):
        variables = {"n1": {"response": "hi"}}
        assert resolver.resolve("{{n1.output}}", variables) == '{"response":"hi"}'

    def test_published_output_key_descends(self, resolver):
        context = ExecutionContext("run")
        context.set_node_output("n1", {"output": {"name": "Ada"}, "data": "ignored"})
        assert resolver.resolve("{{n1.output.name}}", context.variables) == "Ada"

    def test_scenario_c_prompt_interpolation(self, resolver):
        context = ExecutionContext("run")
        context.set_node_output("in1", {"output": "hello", "data": "hello"})
        assert resolver.resolve("Analyze: {{in1.output}}", context.variables) == "Analyze: hello"

    def test_no_recursive_expansion(self, resolver):
        variables = {"a": "{{b}}", "b": "nope"}
        assert resolver.resolve("{{a}}", variables) == "{{b}}"

    def test_non_string_passes_through(self, resolver):
        payload = {"k": "{{a}}"}
        assert resolver.resolve(payload, {"a": 1}) is payload
        assert resolver.resolve(None, {}) is None

    def test_aliases(self):
        resolver = TemplateResolver({"oldNode": "newNode", "legacy.value": "newNode.output"})
        variables = {"newNode": {"output": "v", "extra": "e"}, "newNode.output": "v"}
        assert resolver.resolve("{{oldNode.extra}}", variables) == "e"
        assert resolver.resolve("{{legacy.value}}", variables) == "v"
        assert resolver.resolve("{{oldNode}}", variables) == '{"output":"v","extra":"e"}'


class TestConditions:
    """Test cases for evaluate_condition."""

    def test_numeric_comparisons(self):
        assert evaluate_condition("10", "5", "greaterThan") is True
        assert evaluate_condition("10", "5", "lessThan") is False
        assert evaluate_condition("5", "5", "greaterThanOrEqual") is True
        assert evaluate_condition("4", "5", "lessThanOrEqual") is True
        assert evaluate_condition(" 1e2 ", "99", "greaterThan") is True
        assert evaluate_condition("0x10", "15", "greaterThan") is True

    def test_nan_comparisons_are_false(self):
        assert evaluate_condition("abc", "5", "greaterThan") is False
        assert evaluate_condition("abc", "5", "lessThanOrEqual") is False
        assert evaluate_condition("5", "abc", "lessThan") is False

    def test_contains(self):
        assert evaluate_condition("hello world", "world", "contains") is True
        assert evaluate_condition("hello", "world", "contains") is False
        assert evaluate_condition({"a": 1}, '"a"', "contains") is True

    def test_strict_equality(self):
        assert evaluate_condition("true", "true", "equals") is True
        assert evaluate_condition("5", 5, "equals") is False
        assert evaluate_condition(True, 1, "equals") is False
        assert evaluate_condition("a", "b", "notEquals") is True
        assert strict_equals(1, 1.0) is True

    def test_unknown_operator_is_false(self):
        assert evaluate_condition("a", "a", "matches") is False
        assert evaluate_condition("1", "1", "") is False

    def test_to_number(self):
        assert to_number("") == 0
        assert to_number(None) == 0
        assert to_number(True) == 1
        assert to_number("-Infinity") == -math.inf
        assert to_number("0b101") == 5
        assert math.isnan(to_number("12px"))
        assert math.isnan(to_number({"a": 1}))


class TestExecutionContext:
    """Test cases for ExecutionContext."""

    def test_publishes_three_variables(self):
        context = ExecutionContext("run-1", initial_input="start")
        context.set_node_output("a", {"output": "A", "data": "A"})
        context.set_node_output("b", "B")

        assert context.variables["a"] == {"output": "A", "data": "A"}
        assert context.variables["a.output"] == "A"
        assert context.variables["b.output"] == "B"
        assert context.variables["input"] == "B"
        assert context.execution_order == ["a", "b"]
        assert context.executed_count == 2

    def test_scoped_input_shadows_global_input(self):
        context = ExecutionContext("run-1")
        context.set_node_output("a", {"output": "A"})
        scoped = context.scoped_variables({"output": "mine"})

        assert scoped["input"] == "mine"
        assert scoped["a.output"] == "A"
        assert context.variables["input"] == "A"

    def test_missing_input_is_not_shadowed(self):
        context = ExecutionContext("run-1")
        assert "input" not in context.scoped_variables(None)

        context.set_node_output("a", {"output": "A"})
        assert context.scoped_variables(None)["input"] == "A"

    def test_snapshot_is_a_copy(self):
        context = ExecutionContext("run-1")
        context.set_node_output("a", {"output": ["x"]})
        snapshot = context.snapshot()
        context.node_outputs["a"]["output"].append("y")

        assert snapshot.node_outputs["a"]["output"] == ["x"]
