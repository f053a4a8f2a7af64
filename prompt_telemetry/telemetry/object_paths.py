"""
Flatten nested variable payloads into searchable ``(path, value)`` pairs.

Rules:
    - object keys extend the path with ``.key``; empty objects emit nothing
    - lists are not descended into; the whole list is emitted as JSON text
    - None and primitive leaves are emitted as-is

Example: ``{"a": {"b": 1}, "tags": ["x"]}`` -> ``[("a.b", 1), ("tags", '["x"]')]``
"""

import json
from typing import Any, Dict, List, NamedTuple


class PathValue(NamedTuple):
    path: str
    value: Any


def flatten_to_paths(obj: Dict[str, Any], prefix: str = "") -> List[PathValue]:
    results: List[PathValue] = []

    for key, value in obj.items():
        current_path = f"{prefix}.{key}" if prefix else str(key)

        if isinstance(value, dict):
            if value:
                results.extend(flatten_to_paths(value, current_path))
        elif isinstance(value, (list, tuple)):
            results.append(PathValue(current_path, json.dumps(value)))
        else:
            results.append(PathValue(current_path, value))

    return results


def format_for_search(value: Any) -> str:
    """Render a flattened leaf as the text stored in the search index."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, (bool, int, float)):
        return json.dumps(value)
    return str(value)
