"""Helpers to read candidate graph items that may be raw mappings or models."""

from __future__ import annotations

from typing import Any, Dict, Iterable, Iterator, Tuple

from pydantic import BaseModel


def as_mapping(item: Any) -> Dict[str, Any]:
    if isinstance(item, BaseModel):
        return item.model_dump()
    if isinstance(item, dict):
        return item
    return {}


def connection_endpoints(connections: Iterable[Any]) -> Iterator[Tuple[Any, Any]]:
    for conn in connections:
        data = as_mapping(conn)
        yield data.get("source"), data.get("target")


def graph_parts(data: Any) -> Tuple[list, list]:
    """Split a graph mapping or :class:`Graph` into step and connection lists."""
    mapping = as_mapping(data)
    return mapping.get("steps", []), mapping.get("connections", [])
