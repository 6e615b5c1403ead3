"""
Dotted-path access over mixed record graphs.

A record may be a mapping (plain dicts from the in-memory source), an ORM
instance (attribute access, relationships included) or a sequence; every
segment is resolved against whichever capability the current node offers.
"""
from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

_MISSING = object()


def _step(node: Any, segment: str) -> Any:
    if isinstance(node, Mapping):
        return node.get(segment, _MISSING)
    if isinstance(node, Sequence) and not isinstance(node, (str, bytes)):
        if segment.lstrip("-").isdigit():
            try:
                return node[int(segment)]
            except IndexError:
                return _MISSING
        return _MISSING
    return getattr(node, segment, _MISSING)


def resolve_path(root: Any, path: str, default: Any = "") -> Any:
    """Return the value at *path* (``"a.b.c"``) or *default* when any hop is missing.

    ``None`` anywhere along the path, the final value included, also yields
    *default*.
    """
    node = root
    for segment in path.split("."):
        if node is None:
            return default
        node = _step(node, segment)
        if node is _MISSING:
            return default
    return default if node is None else node


def get_attribute(root: Any, name: str) -> Any:
    """Single-hop lookup (no dot splitting); ``None`` when absent."""
    if root is None:
        return None
    value = _step(root, name)
    return None if value is _MISSING else value
