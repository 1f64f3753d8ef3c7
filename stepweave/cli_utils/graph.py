"""Helpers for reading workflow graph files from disk."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict

import yaml


def read_graph_file(path: Path) -> Dict[str, Any]:
    """Read a JSON or YAML graph document.

    Files ending in ``.yaml``/``.yml`` are parsed as YAML, everything else as
    JSON. The document must be a mapping.
    """
    text = Path(path).read_text()
    if Path(path).suffix.lower() in (".yaml", ".yml"):
        data = yaml.safe_load(text)
    else:
        data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError(f"{path} does not contain a workflow mapping")
    return data


def parse_input(raw: str | None) -> Any:
    """Decode the ``--input`` option. Anything that is not JSON stays a string."""
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        return raw


def format_duration(ms: float | None) -> str:
    return "-" if ms is None else f"{ms:.1f}ms"
