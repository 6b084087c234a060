"""Resolution of `{{path}}` placeholders against run-time variables."""

import json
import math
import re
from typing import Any, Dict, Mapping, Optional, Tuple

from .logging import get_logger


logger = get_logger(__name__)

TEMPLATE_PATTERN = re.compile(r"\{\{([^}]+)\}\}")

_MISSING = object()


def stringify(value: Any) -> str:
    """Render a variable value the way it is substituted into a template."""
    if isinstance(value, str):
        return value
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        if math.isnan(value):
            return "NaN"
        if math.isinf(value):
            return "Infinity" if value > 0 else "-Infinity"
        if value.is_integer():
            return str(int(value))
        return repr(value)
    if isinstance(value, int):
        return str(value)
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, separators=(",", ":"), ensure_ascii=False, default=str)
    return str(value)


def primary_value(output: Any) -> Any:
    """The value downstream nodes see as `<id>.output`."""
    if isinstance(output, Mapping) and "output" in output:
        return output["output"]
    return output


def _walk(value: Any, segments) -> Any:
    current = value
    for segment in segments:
        if isinstance(current, Mapping) and segment in current:
            current = current[segment]
        elif isinstance(current, (list, tuple)) and segment.isdigit() and int(segment) < len(current):
            current = current[int(segment)]
        else:
            return _MISSING
    return current


class TemplateResolver:
    """Pure resolver: substitutes known paths and leaves unknown ones as literal text.

    An optional alias table maps old variable paths to their canonical form so
    saved templates survive node renames. An exact alias wins over an alias on
    the head segment.
    """

    def __init__(self, aliases: Optional[Dict[str, str]] = None):
        self.aliases = dict(aliases or {})

    def apply_alias(self, path: str) -> str:
        if path in self.aliases:
            return self.aliases[path]
        head, sep, rest = path.partition(".")
        if sep and head in self.aliases:
            return f"{self.aliases[head]}.{rest}"
        if not sep and head in self.aliases:
            return self.aliases[head]
        return path

    def lookup(self, path: str, variables: Mapping[str, Any]) -> Tuple[bool, Any]:
        """Find `path` in `variables`. Returns (found, value)."""
        if path in variables:
            return True, variables[path]

        if "." not in path:
            return False, None

        head, rest = path.split(".", 1)
        head_value = variables.get(head, _MISSING)

        if isinstance(head_value, Mapping) and rest in head_value:
            return True, head_value[rest]

        # Longest known dotted prefix first, so "<id>.output.field" can
        # descend from the stored primary value.
        segments = path.split(".")
        for split_at in range(len(segments) - 1, 0, -1):
            prefix = ".".join(segments[:split_at])
            if prefix not in variables:
                continue
            value = _walk(variables[prefix], segments[split_at:])
            if value is not _MISSING:
                return True, value

        if rest == "output" and head_value is not _MISSING:
            return True, head_value

        return False, None

    def resolve(self, template: Any, variables: Mapping[str, Any]) -> Any:
        """Replace every `{{path}}` in `template`. Non-string templates pass through."""
        if not isinstance(template, str):
            return template

        def substitute(match: re.Match) -> str:
            path = self.apply_alias(match.group(1).strip())
            found, value = self.lookup(path, variables)
            if not found:
                logger.debug(f"Unresolved template variable: {path}")
                return match.group(0)
            return stringify(value)

        return TEMPLATE_PATTERN.sub(substitute, template)
