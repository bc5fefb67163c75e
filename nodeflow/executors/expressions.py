"""Resolution of ``{{ $json.path }}`` and ``{{ $global.path }}`` references in node parameters."""

import re
from typing import Any, Dict, List, Optional

EXPRESSION_PATTERN = re.compile(r"\{\{\s*\$(json|global)((?:\.[\w-]+|\[\d+\])*)\s*\}\}")
_PATH_TOKEN = re.compile(r"\.([\w-]+)|\[(\d+)\]")


def lookup_path(data: Any, path: str) -> Any:
    """Walk a dotted/indexed path (``.a.b[0]``) through dicts and lists; missing keys give None."""
    current = data
    for key, index in _PATH_TOKEN.findall(path):
        if current is None:
            return None
        if index:
            if not isinstance(current, (list, tuple)):
                return None
            position = int(index)
            current = current[position] if position < len(current) else None
        elif isinstance(current, dict):
            current = current.get(key)
        elif isinstance(current, (list, tuple)) and key.isdigit():
            position = int(key)
            current = current[position] if position < len(current) else None
        else:
            return None
    return current


def resolve_value(value: Any, inputs: Optional[List[Any]], global_data: Optional[Dict[str, Any]]) -> Any:
    """
    Resolve expressions inside a parameter value.

    A string that is exactly one expression resolves to the referenced value
    unchanged (so numbers and objects keep their type). Expressions embedded in
    longer strings are substituted as text. Dicts and lists are resolved
    recursively.

    Args:
        value: Parameter value
        inputs: Node input items; ``$json`` refers to the first one
        global_data: The run's global data, referenced as ``$global``

    Returns:
        The resolved value
    """
    if isinstance(value, dict):
        return {key: resolve_value(item, inputs, global_data) for key, item in value.items()}
    if isinstance(value, list):
        return [resolve_value(item, inputs, global_data) for item in value]
    if not isinstance(value, str) or "{{" not in value:
        return value

    roots = {
        "json": inputs[0] if inputs else None,
        "global": global_data or {},
    }

    whole = EXPRESSION_PATTERN.fullmatch(value.strip())
    if whole:
        return lookup_path(roots[whole.group(1)], whole.group(2))

    def substitute(match):
        resolved = lookup_path(roots[match.group(1)], match.group(2))
        return "" if resolved is None else str(resolved)

    return EXPRESSION_PATTERN.sub(substitute, value)
