"""AI processor capability backed by pydantic-ai agents."""

from __future__ import annotations

import json
import logging
import os
import time
from typing import Any, Callable, Dict, Optional

from pydantic_ai import Agent

from ..config import AIConfig
from ..contracts import CapabilityError
from ..persistence.models import utcnow

logger = logging.getLogger(__name__)


def build_prompt(base_prompt: str, input_data: Any) -> str:
    """Append a readable rendering of ``input_data`` to ``base_prompt``."""
    if input_data is None:
        return base_prompt

    prompt = base_prompt + "\n\n"
    if isinstance(input_data, str):
        return prompt + input_data

    if isinstance(input_data, list):
        if not input_data:
            return prompt + "No data provided for analysis."
        if isinstance(input_data[0], dict):
            return prompt + "Data to analyze:\n" + json.dumps(input_data, indent=2, default=str)
        return prompt + "Data to analyze:\n" + "\n".join(str(item) for item in input_data)

    if isinstance(input_data, dict):
        if isinstance(input_data.get("rows"), list):
            count = input_data.get("row_count", len(input_data["rows"]))
            return (
                prompt
                + f"Database Query Results ({count} rows):\n"
                + json.dumps(input_data["rows"], indent=2, default=str)
            )
        if "result" in input_data:
            previous = input_data["result"]
            rendered = previous if isinstance(previous, str) else json.dumps(previous, indent=2, default=str)
            return prompt + "Previous Analysis Result:\n" + rendered
        return prompt + "Data to analyze:\n" + json.dumps(input_data, indent=2, default=str)

    return prompt + str(input_data)


def _parse_result(text: str) -> Any:
    try:
        return json.loads(text)
    except (TypeError, ValueError):
        return {"analysis": text, "type": "text", "generated_at": utcnow().isoformat()}


class AIProcessorCapability:
    """Sends the step prompt plus its input to a language model."""

    def __init__(
        self,
        config: Optional[AIConfig] = None,
        agent_factory: Optional[Callable[[str], Agent]] = None,
    ) -> None:
        self._config = config or AIConfig()
        self._agent_factory = agent_factory or (lambda model: Agent(model))
        self._agents: Dict[str, Agent] = {}

    @property
    def mock_mode(self) -> bool:
        if self._config.mock_mode is not None:
            return self._config.mock_mode
        return not os.getenv(self._config.api_key_env)

    def _agent_for(self, model: str) -> Agent:
        agent = self._agents.get(model)
        if agent is None:
            agent = self._agent_factory(model)
            self._agents[model] = agent
        return agent

    async def execute(self, config: Dict[str, Any], input_data: Any) -> Any:
        model = config.get("model")
        if not model or not config.get("prompt"):
            raise CapabilityError("AI processing failed: model and prompt are required")

        temperature = config.get("temperature", self._config.default_temperature)
        max_tokens = config.get("max_tokens", self._config.default_max_tokens)
        prompt = build_prompt(config["prompt"], input_data)
        start = time.perf_counter()

        if self.mock_mode:
            logger.debug(f"AI step using mock response for model {model}")
            result: Any = self._mock_result(prompt, input_data)
            tokens_used = 0
        else:
            try:
                run_result = await self._agent_for(model).run(
                    prompt,
                    model_settings={"temperature": temperature, "max_tokens": max_tokens},
                )
            except Exception as e:
                logger.error(f"AI request to {model} failed: {e}")
                raise CapabilityError(f"AI processing failed: {e}") from e
            output = run_result.output
            result = _parse_result(output) if isinstance(output, str) else output
            tokens_used = run_result.usage().total_tokens or 0

        duration_ms = (time.perf_counter() - start) * 1000
        logger.info(
            f"AI request model={model} prompt_length={len(prompt)} "
            f"tokens={tokens_used} duration={duration_ms:.1f}ms"
        )
        return {
            "result": result,
            "metadata": {
                "model": model,
                "tokens_used": tokens_used,
                "processing_time_ms": duration_ms,
                "prompt": {
                    "length": len(prompt),
                    "temperature": temperature,
                    "max_tokens": max_tokens,
                },
                "mock": self.mock_mode,
                "executed_at": utcnow().isoformat(),
            },
        }

    @staticmethod
    def _mock_result(prompt: str, input_data: Any) -> Dict[str, Any]:
        record_count = None
        if isinstance(input_data, list):
            record_count = len(input_data)
        elif isinstance(input_data, dict) and isinstance(input_data.get("rows"), list):
            record_count = len(input_data["rows"])
        summary = (
            f"Analyzed {record_count} records." if record_count is not None
            else "Analyzed the provided input."
        )
        return {
            "analysis": f"{summary} (mock response, no AI provider configured)",
            "type": "text",
            "record_count": record_count,
            "prompt_length": len(prompt),
        }
