"""Scripted transform capability.

The step's ``script`` is the body of a Python function. It sees ``data`` (the
step input), ``parameters`` (from the step config) and ``utils`` (a few
aggregation helpers) and returns the transformed value::

    return [row for row in data["rows"] if row["total_spent"] > 1000]
"""

from __future__ import annotations

import ast
import asyncio
import builtins
import functools
import json
import logging
import textwrap
import time
from types import SimpleNamespace
from typing import Any, Callable, Dict, Iterable, Optional

from ..config import TransformConfig
from ..contracts import CapabilityError
from ..persistence.models import utcnow
from ..validation.configs import TRANSFORM_OPERATIONS

logger = logging.getLogger(__name__)

UNSAFE_NAMES = frozenset(
    {
        "open", "eval", "exec", "compile", "globals", "locals", "vars",
        "getattr", "setattr", "delattr", "input", "breakpoint", "__import__",
    }
)

# frame, code and traceback attributes of generators, coroutines and exceptions
UNSAFE_ATTRIBUTE_PREFIXES = ("_", "gi_", "f_", "co_", "tb_", "cr_", "ag_")

UNSAFE_ATTRIBUTES = frozenset({"format", "format_map", "mro"})

SAFE_BUILTINS = {
    name: getattr(builtins, name)
    for name in (
        "abs", "all", "any", "bool", "dict", "enumerate", "filter", "float",
        "int", "isinstance", "len", "list", "map", "max", "min", "range",
        "reversed", "round", "set", "sorted", "str", "sum", "tuple", "zip",
        "Exception", "KeyError", "ValueError", "TypeError",
    )
}


def _field(item: Any, key: Any) -> Any:
    if callable(key):
        return key(item)
    if key is None:
        return item
    return item.get(key) if isinstance(item, dict) else None


def group_by(items: Iterable[Any], key: Any) -> Dict[Any, list]:
    groups: Dict[Any, list] = {}
    for item in items:
        groups.setdefault(_field(item, key), []).append(item)
    return groups


def total(items: Iterable[Any], field: Optional[str] = None) -> float:
    result = 0.0
    for item in items:
        try:
            result += float(_field(item, field) or 0)
        except (TypeError, ValueError):
            continue
    return result


def average(items: Iterable[Any], field: Optional[str] = None) -> float:
    items = list(items)
    return total(items, field) / len(items) if items else 0.0


def unique(items: Iterable[Any], field: Optional[str] = None) -> list:
    seen: list = []
    for item in items:
        value = _field(item, field)
        if value not in seen:
            seen.append(value)
    return seen


def sort_by(items: Iterable[Any], field: Any, descending: bool = False) -> list:
    return sorted(items, key=lambda item: _field(item, field), reverse=descending)


UTILS = SimpleNamespace(
    group_by=group_by, total=total, average=average, unique=unique, sort_by=sort_by
)


def _parse(script: str) -> ast.Module:
    source = "def _transform(data, parameters, utils):\n" + textwrap.indent(
        textwrap.dedent(script), "    "
    )
    try:
        return ast.parse(source, "<transform>")
    except SyntaxError as e:
        raise CapabilityError(f"Invalid transform script: {e.msg} (line {e.lineno})") from e


def _unsafe_node(node: ast.AST) -> Optional[str]:
    if isinstance(node, (ast.Import, ast.ImportFrom)):
        return "import"
    if isinstance(node, ast.Attribute):
        if node.attr.startswith(UNSAFE_ATTRIBUTE_PREFIXES) or node.attr in UNSAFE_ATTRIBUTES:
            return f".{node.attr}"
    if isinstance(node, ast.Name):
        if node.id.startswith("__") or node.id in UNSAFE_NAMES:
            return node.id
    return None


def check_script(script: str, max_length: int) -> ast.Module:
    """Reject scripts that are too long or use unsafe constructs.

    The script is parsed and every node is checked, so an unsafe name or
    attribute is rejected wherever it appears, not just when called.

    Returns:
        The parsed script wrapped in its ``_transform`` function.

    Raises:
        CapabilityError: If the script is rejected.
    """
    if not script or not script.strip():
        raise CapabilityError("Transform script is required")
    if len(script) > max_length:
        raise CapabilityError(f"Script is too long (maximum {max_length:,} characters)")
    tree = _parse(script)
    for node in ast.walk(tree):
        found = _unsafe_node(node)
        if found:
            raise CapabilityError(f"Script contains potentially unsafe pattern: {found}")
    return tree


def compile_script(tree: ast.Module) -> Callable[[Any, Dict[str, Any]], Any]:
    """Compile a checked script into a callable taking ``(data, parameters)``."""
    namespace: Dict[str, Any] = {"__builtins__": SAFE_BUILTINS}
    exec(compile(tree, "<transform>", "exec"), namespace)
    # partial adds no Python frame, so the script's callers are stdlib frames only
    return functools.partial(namespace["_transform"], utils=UTILS)


def _size(value: Any) -> int:
    if value is None:
        return 0
    try:
        return len(json.dumps(value, default=str))
    except (TypeError, ValueError):
        return len(str(value))


class TransformCapability:
    """Runs the step's script against its input in a worker thread."""

    def __init__(self, config: Optional[TransformConfig] = None) -> None:
        self._config = config or TransformConfig()

    async def execute(self, config: Dict[str, Any], input_data: Any) -> Any:
        operation = config.get("operation")
        if operation not in TRANSFORM_OPERATIONS:
            raise CapabilityError(
                f"Invalid operation: {operation}. "
                f"Must be one of: {', '.join(TRANSFORM_OPERATIONS)}"
            )
        script = config.get("script") or ""
        tree = check_script(script, self._config.max_script_length)
        transform = compile_script(tree)
        parameters = dict(config.get("parameters") or {})

        start = time.perf_counter()
        try:
            # the worker thread cannot be interrupted; on timeout its result is dropped
            result = await asyncio.wait_for(
                asyncio.to_thread(transform, input_data, parameters),
                timeout=self._config.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise asyncio.TimeoutError(
                f"Script execution timed out after {self._config.timeout_seconds}s"
            ) from e
        except CapabilityError:
            raise
        except Exception as e:
            raise CapabilityError(
                f"Transform operation failed: {type(e).__name__}: {e}"
            ) from e

        duration_ms = (time.perf_counter() - start) * 1000
        logger.debug(f"Transform {operation} finished in {duration_ms:.1f}ms")
        return {
            "result": result,
            "metadata": {
                "operation": operation,
                "execution_time_ms": duration_ms,
                "input_size": _size(input_data),
                "output_size": _size(result),
                "executed_at": utcnow().isoformat(),
            },
        }
