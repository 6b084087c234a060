"""Per-run store of node outputs and template variables."""

import copy
from collections import ChainMap
from typing import Any, Dict, List, Mapping, Optional

from .templates import primary_value
from ..models.core import ContextSnapshot


class ExecutionContext:
    """Mutable state owned by exactly one run.

    For every executed node three variables are published: `<id>` holds the
    whole output, `<id>.output` its primary value and `input` the primary
    value of the most recent node.
    """

    def __init__(self, execution_id: str, initial_input: Any = None):
        self.execution_id = execution_id
        self.initial_input = initial_input
        self.node_outputs: Dict[str, Any] = {}
        self.variables: Dict[str, Any] = {}
        self.global_data: Dict[str, Any] = {}
        self.execution_order: List[str] = []

    def set_node_output(self, node_id: str, output: Any) -> None:
        value = primary_value(output)
        self.node_outputs[node_id] = output
        self.variables[node_id] = output
        self.variables[f"{node_id}.output"] = value
        self.variables["input"] = value
        self.execution_order.append(node_id)

    def has_output(self, node_id: str) -> bool:
        return node_id in self.node_outputs

    def get_output(self, node_id: str, default: Any = None) -> Any:
        return self.node_outputs.get(node_id, default)

    def scoped_variables(self, node_input: Any) -> Mapping[str, Any]:
        """Variables as one node sees them: `input` is that node's own input.

        A node with no input (a root in a run started without initial input)
        sees the shared variables unchanged, so `{{input}}` stays unresolved
        until some node has published a value.
        """
        if node_input is None:
            return self.variables
        return ChainMap({"input": primary_value(node_input)}, self.variables)

    @property
    def executed_count(self) -> int:
        return len(self.execution_order)

    def snapshot(self) -> ContextSnapshot:
        return ContextSnapshot(
            node_outputs=copy.deepcopy(self.node_outputs),
            variables=copy.deepcopy(self.variables),
            global_data=copy.deepcopy(self.global_data),
        )

    def outputs_snapshot(self, exclude: Optional[str] = None) -> Dict[str, Any]:
        """Shallow copy of node outputs for audit fields."""
        return {key: value for key, value in self.node_outputs.items() if key != exclude}
