"""Structural validation of candidate workflow graphs."""

from __future__ import annotations

from numbers import Real
from typing import Any, Iterable, List, Optional, Sequence

from pydantic import BaseModel, Field

from ..contracts import StepKind
from ._normalize import as_mapping, graph_parts
from .configs import check_step_config
from .cycles import detect_cycles


class ValidationResult(BaseModel):
    """Errors and warnings collected while checking a graph."""

    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def merge(self, other: "ValidationResult") -> "ValidationResult":
        return ValidationResult(
            errors=self.errors + other.errors,
            warnings=self.warnings + other.warnings,
        )


def _has_numeric_position(position: Any) -> bool:
    position = as_mapping(position)
    return all(
        isinstance(position.get(axis), Real) and not isinstance(position.get(axis), bool)
        for axis in ("x", "y")
    )


def validate_steps(steps: Sequence[Any]) -> ValidationResult:
    """Check ids, kinds, configuration and positions of every step.

    All findings are accumulated; duplicate ids are reported once each after
    every step has been seen.
    """
    if not isinstance(steps, list):
        return ValidationResult(errors=["Steps must be a list"])

    errors: List[str] = []
    warnings: List[str] = []
    seen_ids: set[str] = set()
    duplicate_ids: List[str] = []

    for index, raw in enumerate(steps):
        step = as_mapping(raw)
        step_id = step.get("id")
        ref = step_id or index

        if not step_id:
            errors.append(f"Step at index {index} is missing required 'id' field")
        elif not isinstance(step_id, str):
            errors.append(f"Step at index {index} has a non-string 'id' field")
            ref = index
        else:
            if step_id in seen_ids and step_id not in duplicate_ids:
                duplicate_ids.append(step_id)
            seen_ids.add(step_id)

        kind: Optional[StepKind] = None
        raw_kind = step.get("kind")
        if not raw_kind:
            errors.append(f"Step {ref} is missing required 'kind' field")
        else:
            try:
                kind = StepKind(raw_kind)
            except (TypeError, ValueError):
                errors.append(f"Step {ref} has invalid kind: {raw_kind}")

        label = step.get("label")
        if not label:
            warnings.append(f"Step {ref} is missing a label")
        elif not isinstance(label, str):
            errors.append(f"Step {ref} label must be a string")

        config = step.get("config")
        if not config:
            warnings.append(f"Step {ref} has no configuration")
        elif not isinstance(config, dict):
            errors.append(f"Step {ref} configuration must be a mapping")
        if kind is not None:
            check_step_config(
                str(ref),
                kind,
                config if isinstance(config, dict) else {},
                errors,
                warnings,
            )

        if not _has_numeric_position(step.get("position")):
            errors.append(f"Step {ref} has invalid position data")

    for step_id in duplicate_ids:
        errors.append(f"Duplicate step ID found: {step_id}")

    return ValidationResult(errors=errors, warnings=warnings)


def validate_connections(
    connections: Sequence[Any],
    step_ids: Iterable[str],
    strict_cycles: bool = False,
) -> ValidationResult:
    """Check connection ids and endpoints against the known ``step_ids``.

    Steps without any incident connection produce a warning. Cycles produce a
    warning, or an error when ``strict_cycles`` is set.
    """
    if not isinstance(connections, list):
        return ValidationResult(errors=["Connections must be a list"])

    step_ids = [step_id for step_id in step_ids if step_id and isinstance(step_id, str)]
    known = set(step_ids)
    errors: List[str] = []
    warnings: List[str] = []
    connection_ids: set[str] = set()
    connected: set[str] = set()

    for index, raw in enumerate(connections):
        conn = as_mapping(raw)
        conn_id = conn.get("id")
        ref = conn_id or index
        source = conn.get("source")
        target = conn.get("target")

        if not conn_id:
            errors.append(f"Connection at index {index} is missing required 'id' field")
        elif not isinstance(conn_id, str):
            errors.append(f"Connection at index {index} has a non-string 'id' field")
            ref = index
        elif conn_id in connection_ids:
            errors.append(f"Duplicate connection ID found: {conn_id}")
        else:
            connection_ids.add(conn_id)

        if not source:
            errors.append(f"Connection {ref} is missing required 'source' field")
        elif not isinstance(source, str):
            errors.append(f"Connection {ref} has a non-string 'source' field")
            source = None
        elif source not in known:
            errors.append(
                f"Connection {ref} references non-existent source step: {source}"
            )

        if not target:
            errors.append(f"Connection {ref} is missing required 'target' field")
        elif not isinstance(target, str):
            errors.append(f"Connection {ref} has a non-string 'target' field")
            target = None
        elif target not in known:
            errors.append(
                f"Connection {ref} references non-existent target step: {target}"
            )

        if source and source == target:
            errors.append(
                f"Connection {ref} is self-referencing (source and target are the same)"
            )

        connected.update(endpoint for endpoint in (source, target) if endpoint)

    if len(step_ids) > 1:
        for step_id in step_ids:
            if step_id not in connected:
                warnings.append(f"Step {step_id} is not connected to any other steps")

    cycles = detect_cycles(step_ids, connections)
    if cycles:
        rendered = ", ".join(" -> ".join(cycle) for cycle in cycles)
        message = f"Workflow contains {len(cycles)} cycle(s): {rendered}"
        if strict_cycles:
            errors.append(message)
        else:
            warnings.append(
                f"{message}. The workflow cannot be executed until they are removed."
            )

    return ValidationResult(errors=errors, warnings=warnings)


def validate_graph(data: Any, strict_cycles: bool = False) -> ValidationResult:
    """Validate a full graph mapping (``steps`` and ``connections``)."""
    steps, connections = graph_parts(data)
    result = validate_steps(steps)
    step_ids = [as_mapping(step).get("id") for step in steps] if isinstance(steps, list) else []
    return result.merge(
        validate_connections(connections, step_ids, strict_cycles=strict_cycles)
    )
