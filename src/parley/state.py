"""Shared key/value state mirrored between the server and the client.

Tools change the state through :class:`StateOperation` lists; the same
operations travel in ``STATE_DELTA`` events and are applied on the client
with :func:`apply_operations`, so both sides stay identical.

Example:
    doc = {"title": "", "content": ""}
    ops = [StateOperation(path="/title", value="Grants v2")]
    doc = apply_operations(doc, ops)
"""

from __future__ import annotations

import copy
from typing import Any, Literal

from pydantic import BaseModel


class StateOperation(BaseModel):
    """One path-addressed change (a subset of RFC 6902)."""

    op: Literal["replace", "add", "remove"] = "replace"
    path: str
    value: Any = None

    model_config = {"frozen": True}


def _split_pointer(path: str) -> list[str]:
    if path == "":
        return []
    if not path.startswith("/"):
        raise ValueError(f"Invalid JSON pointer: {path!r}")
    return [
        part.replace("~1", "/").replace("~0", "~")
        for part in path[1:].split("/")
    ]


def _index(part: str, items: list, path: str, end: bool = False) -> int:
    limit = len(items) if end else len(items) - 1
    if not part.isdigit() or int(part) > limit:
        raise ValueError(f"Invalid list index {part!r} in {path!r}")
    return int(part)


def _apply_one(document: dict, operation: StateOperation) -> dict:
    parts = _split_pointer(operation.path)
    if not parts:
        if operation.op == "remove":
            return {}
        if not isinstance(operation.value, dict):
            raise ValueError("The root of the shared state must be an object")
        return copy.deepcopy(operation.value)

    target: Any = document
    for part in parts[:-1]:
        if isinstance(target, list):
            target = target[_index(part, target, operation.path)]
        elif isinstance(target, dict):
            target = target.setdefault(part, {})
        else:
            raise ValueError(
                f"Cannot resolve {operation.path!r}: {part!r} is inside a "
                f"{type(target).__name__} value"
            )

    key = parts[-1]
    if isinstance(target, list):
        if key == "-" and operation.op != "remove":
            target.append(operation.value)
        elif operation.op == "add":
            target.insert(_index(key, target, operation.path, end=True), operation.value)
        elif operation.op == "remove":
            del target[_index(key, target, operation.path)]
        else:
            target[_index(key, target, operation.path)] = operation.value
    elif isinstance(target, dict):
        if operation.op == "remove":
            target.pop(key, None)
        else:
            target[key] = operation.value
    else:
        raise ValueError(
            f"Cannot resolve {operation.path!r}: parent is a {type(target).__name__} value"
        )
    return document


def apply_operations(
    document: dict[str, Any], operations: list[StateOperation],
) -> dict[str, Any]:
    """Return a new document with *operations* applied in order.

    The input document is never mutated.
    """
    result = copy.deepcopy(document)
    for operation in operations:
        result = _apply_one(result, operation)
    return result
