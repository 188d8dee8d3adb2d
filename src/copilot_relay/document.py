"""Mutable JSON request document addressed by dotted paths.

Paths are dot separated; a segment that parses as an integer indexes into a list
(negative indexes count from the end), any other segment is an object key::

    doc.get("messages.-1.content")
    doc.set("model", "deepseek-coder")
    doc.delete("intent")
"""

from __future__ import annotations

import json
from typing import Any, Dict, List, Tuple

_MISSING = object()


class DocumentError(ValueError):
    """Raised for unparsable documents and unresolvable paths."""


def _split(path: str) -> List[str]:
    if not path:
        raise DocumentError("empty path")
    return path.split(".")


def _index(segment: str) -> int | None:
    try:
        return int(segment)
    except ValueError:
        return None


def _step(node: Any, segment: str) -> Any:
    """Return the child of *node* named by *segment*, or ``_MISSING``."""
    if isinstance(node, dict):
        return node.get(segment, _MISSING)
    if isinstance(node, list):
        idx = _index(segment)
        if idx is None or not -len(node) <= idx < len(node):
            return _MISSING
        return node[idx]
    return _MISSING


class JsonDocument:
    """An ordered JSON object with path based accessors."""

    def __init__(self, data: Dict[str, Any] | None = None) -> None:
        self._data: Dict[str, Any] = data if data is not None else {}

    @classmethod
    def loads(cls, raw: bytes | str) -> "JsonDocument":
        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise DocumentError(f"request body is not valid JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise DocumentError("request body must be a JSON object")
        return cls(data)

    def dumps(self) -> bytes:
        return json.dumps(self._data, ensure_ascii=False, separators=(",", ":")).encode("utf-8")

    def to_dict(self) -> Dict[str, Any]:
        return self._data

    def _lookup(self, path: str) -> Any:
        node: Any = self._data
        for segment in _split(path):
            node = _step(node, segment)
            if node is _MISSING:
                break
        return node

    def exists(self, path: str) -> bool:
        return self._lookup(path) is not _MISSING

    def get(self, path: str, default: Any = None) -> Any:
        value = self._lookup(path)
        return default if value is _MISSING else value

    def _parent(self, path: str, create: bool) -> Tuple[Any, str]:
        segments = _split(path)
        node: Any = self._data
        for segment in segments[:-1]:
            child = _step(node, segment)
            if child is _MISSING:
                if not create or not isinstance(node, dict):
                    return _MISSING, segments[-1]
                child = node[segment] = {}
            node = child
        return node, segments[-1]

    def set(self, path: str, value: Any) -> None:
        """Assign *value* at *path*, creating intermediate objects as needed."""
        parent, last = self._parent(path, create=True)
        if isinstance(parent, dict):
            parent[last] = value
            return
        if isinstance(parent, list):
            idx = _index(last)
            if idx is not None and -len(parent) <= idx < len(parent):
                parent[idx] = value
                return
        raise DocumentError(f"cannot set '{path}'")

    def delete(self, path: str) -> None:
        """Remove *path*; a missing path is left alone."""
        parent, last = self._parent(path, create=False)
        if isinstance(parent, dict):
            parent.pop(last, None)
        elif isinstance(parent, list):
            idx = _index(last)
            if idx is not None and -len(parent) <= idx < len(parent):
                del parent[idx]
