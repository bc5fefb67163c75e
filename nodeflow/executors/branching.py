"""Boolean and multi-way branch executors.

Both return ``{"branch": ..., "input": ...}`` and report the decided branch as
their output index so the engine follows only that output group.
"""

import re
from datetime import datetime
from typing import Any, Dict, List

from ..core.exceptions import NodeExecutionError
from ..core.logging import get_logger
from .base import BaseNodeExecutor
from .expressions import resolve_value

logger = get_logger(__name__)

TRUE_OUTPUT = 0
FALSE_OUTPUT = 1


def to_number(value: Any):
    if value is None:
        return 0
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        if value.strip() == "":
            return 0
        try:
            return int(value)
        except ValueError:
            try:
                return float(value)
            except ValueError:
                return 0
    return 0


def to_boolean(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.lower() in ("true", "1", "yes", "on")
    if isinstance(value, (int, float)):
        return value != 0
    return bool(value)


def to_timestamp(value: Any) -> float:
    if value is None:
        return 0
    if isinstance(value, datetime):
        return value.timestamp()
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            if "T" in value:
                return datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp()
            return datetime.strptime(value, "%Y-%m-%d").timestamp()
        except ValueError:
            return 0
    return 0


def is_empty(value: Any) -> bool:
    """Empty in the n8n sense: None, blank string, empty list or dict. Zero is not empty."""
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (list, dict)):
        return len(value) == 0
    return False


def regex_match(value: Any, pattern: Any) -> bool:
    """Match against a plain pattern or a ``/pattern/flags`` literal."""
    pattern = str(pattern or "")
    if not pattern:
        return False
    literal = re.match(r"^/(.*?)/([gimusy]*)$", pattern)
    flags = 0
    if literal:
        pattern = literal.group(1)
        if "i" in literal.group(2):
            flags |= re.IGNORECASE
        if "m" in literal.group(2):
            flags |= re.MULTILINE
        if "s" in literal.group(2):
            flags |= re.DOTALL
    try:
        return bool(re.search(pattern, str(value if value is not None else ""), flags))
    except re.error as e:
        logger.warning(f"Invalid regex {pattern!r}: {str(e)}")
        return False


OPERATIONS = {
    "equal": lambda a, b: a == b,
    "notEqual": lambda a, b: a != b,
    "larger": lambda a, b: (a or 0) > (b or 0),
    "largerEqual": lambda a, b: (a or 0) >= (b or 0),
    "smaller": lambda a, b: (a or 0) < (b or 0),
    "smallerEqual": lambda a, b: (a or 0) <= (b or 0),
    "after": lambda a, b: (a or 0) > (b or 0),
    "before": lambda a, b: (a or 0) < (b or 0),
    "contains": lambda a, b: str(b or "") in str(a or ""),
    "notContains": lambda a, b: str(b or "") not in str(a or ""),
    "startsWith": lambda a, b: str(a or "").startswith(str(b or "")),
    "notStartsWith": lambda a, b: not str(a or "").startswith(str(b or "")),
    "endsWith": lambda a, b: str(a or "").endswith(str(b or "")),
    "notEndsWith": lambda a, b: not str(a or "").endswith(str(b or "")),
    "isEmpty": lambda a, b: is_empty(a),
    "isNotEmpty": lambda a, b: not is_empty(a),
    "regex": regex_match,
    "notRegex": lambda a, b: not regex_match(a, b),
}


def evaluate_condition(condition: Dict[str, Any]) -> bool:
    """
    Evaluate one already-resolved condition.

    Args:
        condition: ``{"value1", "value2", "operation", "dataType"}``; dataType is
            string (default), number, boolean or dateTime

    Returns:
        Outcome of the comparison

    Raises:
        ValueError: Unknown operation
    """
    operation = condition.get("operation", "equal")
    if operation not in OPERATIONS:
        raise ValueError(f"Unknown operation '{operation}'")

    data_type = condition.get("dataType", "string")
    value1 = condition.get("value1")
    value2 = condition.get("value2")

    if operation in ("isEmpty", "isNotEmpty"):
        return OPERATIONS[operation](value1, value2)

    if data_type == "number":
        value1, value2 = to_number(value1), to_number(value2)
    elif data_type == "boolean":
        value1, value2 = to_boolean(value1), to_boolean(value2)
    elif data_type == "dateTime":
        value1, value2 = to_timestamp(value1), to_timestamp(value2)
    elif operation not in ("regex", "notRegex"):
        value1 = "" if value1 is None else str(value1)
        value2 = "" if value2 is None else str(value2)

    return OPERATIONS[operation](value1, value2)


def evaluate_conditions(conditions: List[Dict[str, Any]], combine: str = "all") -> bool:
    results = [evaluate_condition(condition) for condition in conditions]
    if not results:
        return False
    return any(results) if combine == "any" else all(results)


class IfExecutor(BaseNodeExecutor):
    """Two-way branch: output 0 when the conditions hold, output 1 otherwise."""

    description = "Routes to the true or false output"

    async def execute(self, node, inputs, global_data, mock_mode, context):
        context.log(f"Executing IF node: {node.name}")

        conditions = self.require_parameter(node, "conditions", inputs, global_data, context)
        if isinstance(conditions, dict):
            conditions = [conditions]
        combine = node.parameters.get("combineOperation", "all")

        try:
            passed = evaluate_conditions(conditions, combine)
        except ValueError as e:
            raise NodeExecutionError(
                f"IF node '{node.name}': {str(e)}", node_id=node.id, execution_id=context.execution_id
            ) from e

        context.log(f"Conditions evaluated to {passed}")
        return {"branch": "true" if passed else "false", "input": self.first_input(inputs)}

    def output_index(self, data):
        if isinstance(data, dict) and data.get("branch") == "false":
            return FALSE_OUTPUT
        return TRUE_OUTPUT


class SwitchExecutor(BaseNodeExecutor):
    """Multi-way branch over ordered ``rules``.

    Each rule holds ``conditions`` (or is itself a single condition) and an
    optional ``output``; the first matching rule decides the branch, defaulting
    to its position. With no match the ``fallbackOutput`` parameter is used; a
    fallback of ``None`` or ``-1`` follows no output.
    """

    description = "Routes to the first matching rule's output"

    async def execute(self, node, inputs, global_data, mock_mode, context):
        context.log(f"Executing Switch node: {node.name}")

        rules = node.parameters.get("rules")
        if isinstance(rules, dict):
            rules = rules.get("rules") or rules.get("values")
        if not rules:
            raise NodeExecutionError(
                f"Switch node '{node.name}' requires the 'rules' parameter",
                node_id=node.id,
                execution_id=context.execution_id,
            )

        branch = None
        try:
            for position, rule in enumerate(rules):
                resolved = resolve_value(rule, inputs, global_data)
                conditions = resolved.get("conditions", [resolved])
                if evaluate_conditions(conditions, resolved.get("combineOperation", "all")):
                    branch = int(resolved.get("output", position))
                    break
        except ValueError as e:
            raise NodeExecutionError(
                f"Switch node '{node.name}': {str(e)}", node_id=node.id, execution_id=context.execution_id
            ) from e

        if branch is None:
            fallback = node.parameters.get("fallbackOutput")
            branch = -1 if fallback is None else int(fallback)
            context.log(f"No rule matched, using fallback output {branch}")
        else:
            context.log(f"Matched output {branch}")

        return {"branch": branch, "input": self.first_input(inputs)}

    def output_index(self, data):
        if isinstance(data, dict) and isinstance(data.get("branch"), int):
            return data["branch"]
        return 0
