"""
Path expressions for pulling values out of inbound webhook payloads.

Syntax: dot-separated segments, each optionally carrying one or more array
indexes (``items[0]``, ``grid[1][2]``). A leading ``$`` or ``$.`` is
accepted for compatibility with older rule configurations; an empty path
or ``$`` alone refers to the whole payload.

Resolution never raises for a missing value. Absence is reported with the
``MISSING`` sentinel so that an explicit JSON ``null`` in the payload can
still be told apart from a key that is not there.
"""

from __future__ import annotations

import re
from typing import Any

_SEGMENT_RE = re.compile(r"^(?P<name>[^\[\]]*)(?P<indexes>(?:\[\d+\])*)$")
_INDEX_RE = re.compile(r"\[(\d+)\]")


class _Missing:
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Any = _Missing()


def normalize_path(path: str | None) -> str:
    raw = (path or "").strip()
    if raw.startswith("$."):
        return raw[2:]
    if raw.startswith("$"):
        return raw[1:]
    return raw


def _split(path: str) -> list[tuple[str, list[int]]] | None:
    parts: list[tuple[str, list[int]]] = []
    for segment in path.split("."):
        match = _SEGMENT_RE.match(segment)
        if not match:
            return None
        indexes = [int(i) for i in _INDEX_RE.findall(match.group("indexes"))]
        if not match.group("name") and not indexes:
            return None
        parts.append((match.group("name"), indexes))
    return parts


def resolve_path(payload: Any, path: str | None) -> Any:
    """Return the value at ``path`` inside ``payload``, or ``MISSING``."""
    normalized = normalize_path(path)
    if not normalized:
        return payload
    segments = _split(normalized)
    if segments is None:
        return MISSING

    current = payload
    for name, indexes in segments:
        if current is None:
            return MISSING
        if name:
            if not isinstance(current, dict) or name not in current:
                return MISSING
            current = current[name]
        for idx in indexes:
            if not isinstance(current, list) or idx >= len(current):
                return MISSING
            current = current[idx]
    return current


def is_present(value: Any) -> bool:
    """True unless the value is absent or JSON null."""
    return value is not MISSING and value is not None
