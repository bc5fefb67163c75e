"""Code node executor running trusted Python snippets."""

import copy

from ..core.exceptions import NodeExecutionError
from .base import BaseNodeExecutor


class CodeExecutor(BaseNodeExecutor):
    """Run the ``pythonCode`` parameter.

    The snippet sees ``items`` (deep copy of the inputs), ``json`` (the first
    item), ``global_data`` (the run's global data, writable) and ``log``. It
    returns data by assigning ``result``; without one the first item passes
    through. Node bodies are trusted: there is no sandbox.
    """

    description = "Runs a Python snippet over the input items"

    async def execute(self, node, inputs, global_data, mock_mode, context):
        context.log(f"Executing code node: {node.name}")

        code = node.parameters.get("pythonCode")
        if not code:
            raise NodeExecutionError(
                f"Code node '{node.name}' requires the 'pythonCode' parameter",
                node_id=node.id,
                execution_id=context.execution_id,
            )

        if mock_mode:
            return {"executed": True, "mock": True, "nodeId": node.id}

        items = copy.deepcopy(inputs)
        namespace = {
            "items": items,
            "json": items[0] if items else {},
            "global_data": global_data,
            "log": context.log,
        }

        context.log(f"Running code with {len(items)} input item(s)")
        try:
            exec(compile(code, f"<code node {node.name}>", "exec"), namespace)
        except Exception as e:
            raise NodeExecutionError(
                f"Code node '{node.name}' raised {type(e).__name__}: {str(e)}",
                node_id=node.id,
                execution_id=context.execution_id,
            ) from e

        if "result" in namespace:
            return namespace["result"]
        return items[0] if items else {}
