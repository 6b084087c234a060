"""Flat comparisons used by logic nodes."""

import math
import re
from typing import Any

from .templates import stringify
from ..models.core import ComparisonOperator


_DECIMAL = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?$")
_INFINITY = re.compile(r"^[+-]?Infinity$")
_RADIX = re.compile(r"^0([xXoObB])([0-9a-fA-F]+)$")
_RADIX_BASES = {"x": 16, "o": 8, "b": 2}


def to_number(value: Any) -> float:
    """Numeric coercion with JavaScript `Number()` semantics. NaN when not numeric."""
    if value is None:
        return 0.0
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, (list, tuple)):
        if len(value) == 0:
            return 0.0
        if len(value) == 1:
            return to_number("" if value[0] is None else stringify(value[0]))
        return math.nan
    if not isinstance(value, str):
        return math.nan

    text = value.strip()
    if text == "":
        return 0.0
    if _DECIMAL.match(text):
        return float(text)
    if _INFINITY.match(text):
        return -math.inf if text.startswith("-") else math.inf
    radix = _RADIX.match(text)
    if radix:
        try:
            return float(int(radix.group(2), _RADIX_BASES[radix.group(1).lower()]))
        except ValueError:
            return math.nan
    return math.nan


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def strict_equals(left: Any, right: Any) -> bool:
    """Equality without type coercion: "5" != 5 and True != 1."""
    if _is_number(left) and _is_number(right):
        return left == right
    if isinstance(left, bool) and isinstance(right, bool):
        return left == right
    if isinstance(left, str) and isinstance(right, str):
        return left == right
    if left is None and right is None:
        return True
    # Containers compare by identity.
    return left is right and not _is_number(left)


def evaluate_condition(left: Any, right: Any, operator: str) -> bool:
    """Apply `operator` to the two values. Unknown operators evaluate to False."""
    try:
        op = ComparisonOperator(operator)
    except ValueError:
        return False

    if op == ComparisonOperator.EQUALS:
        return strict_equals(left, right)
    if op == ComparisonOperator.NOT_EQUALS:
        return not strict_equals(left, right)
    if op == ComparisonOperator.CONTAINS:
        return stringify(right) in stringify(left)

    a, b = to_number(left), to_number(right)
    if math.isnan(a) or math.isnan(b):
        return False
    if op == ComparisonOperator.GREATER_THAN:
        return a > b
    if op == ComparisonOperator.LESS_THAN:
        return a < b
    if op == ComparisonOperator.GREATER_THAN_OR_EQUAL:
        return a >= b
    return a <= b
