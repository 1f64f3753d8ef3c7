"""Per-kind configuration checks for workflow steps."""

from __future__ import annotations

from numbers import Real
from typing import Any, Dict, List
from urllib.parse import urlparse

from ..contracts import StepKind

DATA_SOURCE_BACKENDS = ("postgresql", "mock")
TRANSFORM_OPERATIONS = ("filter", "map", "aggregate", "join")
DELIVERY_DESTINATIONS = ("webhook", "email", "chat")
WEBHOOK_METHODS = ("POST", "PUT", "PATCH")


def _is_number(value: Any) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool)


def is_http_url(value: Any) -> bool:
    """Return ``True`` when ``value`` looks like an absolute http(s) URL."""
    if not isinstance(value, str) or not value:
        return False
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


class ConfigChecker:
    """Checks one step kind's configuration payload.

    Subclasses list ``required`` fields (missing -> error) and ``recommended``
    fields (missing -> warning) and may add kind-specific rules in
    :meth:`check_extra`.
    """

    kind: StepKind
    noun: str = "Step"
    required: Dict[str, str] = {}
    recommended: Dict[str, str] = {}

    def check(
        self,
        step_id: str,
        config: Dict[str, Any],
        errors: List[str],
        warnings: List[str],
    ) -> None:
        for field, description in self.required.items():
            if not config.get(field):
                errors.append(f"{self.noun} step {step_id} is missing {description}")
        for field, description in self.recommended.items():
            if not config.get(field):
                warnings.append(f"{self.noun} step {step_id} is missing {description}")
        self.check_extra(step_id, config, errors, warnings)

    def check_extra(
        self,
        step_id: str,
        config: Dict[str, Any],
        errors: List[str],
        warnings: List[str],
    ) -> None:
        pass


class DataSourceChecker(ConfigChecker):
    kind = StepKind.DATA_SOURCE
    noun = "Data source"
    required = {"backend": "backend type", "host": "host"}
    recommended = {
        "database": "database name",
        "username": "username",
        "password": "password",
    }

    def check_extra(self, step_id, config, errors, warnings):
        backend = config.get("backend")
        if backend and backend not in DATA_SOURCE_BACKENDS:
            errors.append(
                f"Data source step {step_id} has unsupported backend: {backend}"
            )


class AIProcessorChecker(ConfigChecker):
    kind = StepKind.AI_PROCESSOR
    noun = "AI"
    required = {"model": "model specification", "prompt": "prompt"}

    def check_extra(self, step_id, config, errors, warnings):
        temperature = config.get("temperature")
        if temperature is not None and (
            not _is_number(temperature) or not 0 <= temperature <= 1
        ):
            errors.append(
                f"AI step {step_id} has invalid temperature (must be between 0 and 1)"
            )
        max_tokens = config.get("max_tokens")
        if max_tokens is not None and (
            not isinstance(max_tokens, int)
            or isinstance(max_tokens, bool)
            or max_tokens < 1
        ):
            errors.append(
                f"AI step {step_id} has invalid max_tokens (must be positive)"
            )


class TransformChecker(ConfigChecker):
    kind = StepKind.TRANSFORM
    noun = "Transform"
    required = {"operation": "operation type", "script": "script"}

    def check_extra(self, step_id, config, errors, warnings):
        operation = config.get("operation")
        if operation and operation not in TRANSFORM_OPERATIONS:
            errors.append(
                f"Transform step {step_id} has invalid operation: {operation} "
                f"(must be one of {', '.join(TRANSFORM_OPERATIONS)})"
            )


class DeliveryChecker(ConfigChecker):
    kind = StepKind.DELIVERY
    noun = "Delivery"
    required = {"destination": "destination type"}

    def _section(self, step_id, config, destination, errors):
        """Return the destination's sub-config, or ``None`` if it is not a mapping."""
        section = config.get(destination)
        if section is None:
            return {}
        if not isinstance(section, dict):
            errors.append(
                f"Delivery step {step_id} {destination} configuration must be a mapping"
            )
            return None
        return section

    def check_extra(self, step_id, config, errors, warnings):
        destination = config.get("destination")
        if not destination:
            return
        if not isinstance(destination, str) or destination not in DELIVERY_DESTINATIONS:
            errors.append(
                f"Delivery step {step_id} has invalid destination: {destination}"
            )
            return

        section = self._section(step_id, config, destination, errors)
        if section is None:
            return

        if destination == "webhook":
            url = section.get("url")
            if not url:
                errors.append(f"Delivery step {step_id} webhook is missing URL")
            elif not is_http_url(url):
                errors.append(
                    f"Delivery step {step_id} webhook URL is not a valid http(s) URL"
                )
            method = section.get("method")
            if method and str(method).upper() not in WEBHOOK_METHODS:
                errors.append(
                    f"Delivery step {step_id} webhook has invalid method: {method} "
                    "(must be POST, PUT, or PATCH)"
                )
        elif destination == "email":
            if not section.get("to"):
                errors.append(f"Delivery step {step_id} email is missing recipients")
        else:
            if not section.get("webhook"):
                errors.append(f"Delivery step {step_id} chat is missing webhook URL")
            elif not is_http_url(section["webhook"]):
                errors.append(
                    f"Delivery step {step_id} chat webhook is not a valid http(s) URL"
                )


CONFIG_CHECKERS: Dict[StepKind, ConfigChecker] = {
    checker.kind: checker
    for checker in (
        DataSourceChecker(),
        AIProcessorChecker(),
        TransformChecker(),
        DeliveryChecker(),
    )
}


def check_step_config(
    step_id: str,
    kind: StepKind,
    config: Dict[str, Any],
    errors: List[str],
    warnings: List[str],
) -> None:
    """Run the checker registered for ``kind`` against ``config``."""
    CONFIG_CHECKERS[kind].check(step_id, config, errors, warnings)
