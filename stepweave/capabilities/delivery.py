"""Delivery capability: webhooks, chat messages and (simulated) email."""

from __future__ import annotations

import json
import logging
import time
import uuid
from typing import Any, Dict, Optional

import httpx

from ..config import DeliveryConfig
from ..contracts import CapabilityError
from ..persistence.models import utcnow
from ..validation.configs import DELIVERY_DESTINATIONS, WEBHOOK_METHODS

logger = logging.getLogger(__name__)


def _render(data: Any) -> str:
    if isinstance(data, str):
        return data
    if isinstance(data, dict) and "result" in data:
        data = data["result"]
        if isinstance(data, str):
            return data
    return json.dumps(data, indent=2, default=str)


def _response_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


class DeliveryCapability:
    """Sends the step input to the configured destination.

    ``transport`` is handed to :class:`httpx.AsyncClient`, which lets tests
    plug in :class:`httpx.MockTransport`.
    """

    def __init__(
        self,
        config: Optional[DeliveryConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._config = config or DeliveryConfig()
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            transport=self._transport,
            timeout=self._config.timeout_seconds,
            headers={"User-Agent": self._config.user_agent},
        )

    async def execute(self, config: Dict[str, Any], input_data: Any) -> Any:
        destination = config.get("destination")
        if destination not in DELIVERY_DESTINATIONS:
            raise CapabilityError(f"Unsupported delivery destination: {destination}")

        start = time.perf_counter()
        try:
            if destination == "webhook":
                result = await self._send_webhook(config.get("webhook") or {}, input_data)
            elif destination == "chat":
                result = await self._send_chat(config.get("chat") or {}, input_data)
            else:
                result = self._send_email(config.get("email") or {}, input_data)
        except httpx.HTTPStatusError as e:
            raise CapabilityError(
                f"Delivery failed: {destination} returned HTTP {e.response.status_code}"
            ) from e
        except httpx.RequestError as e:
            raise CapabilityError(f"Delivery failed: {type(e).__name__}: {e}") from e

        duration_ms = (time.perf_counter() - start) * 1000
        logger.info(f"Delivered to {destination} in {duration_ms:.1f}ms")
        return {
            "result": result,
            "metadata": {
                "destination": destination,
                "delivery_time_ms": duration_ms,
                "delivered_at": utcnow().isoformat(),
            },
        }

    async def _send_webhook(self, webhook: Dict[str, Any], input_data: Any) -> Dict[str, Any]:
        url = webhook.get("url")
        if not url:
            raise CapabilityError("Webhook URL is required")
        method = str(webhook.get("method") or "POST").upper()
        if method not in WEBHOOK_METHODS:
            raise CapabilityError(f"Unsupported webhook method: {method}")
        headers = {"Content-Type": "application/json", **(webhook.get("headers") or {})}
        payload = {
            "data": input_data,
            "timestamp": utcnow().isoformat(),
            "source": "stepweave",
        }

        async with self._client() as client:
            response = await client.request(
                method, url, content=json.dumps(payload, default=str), headers=headers
            )
            response.raise_for_status()
        return {
            "status_code": response.status_code,
            "url": url,
            "method": method,
            "response": _response_body(response),
        }

    async def _send_chat(self, chat: Dict[str, Any], input_data: Any) -> Dict[str, Any]:
        webhook_url = chat.get("webhook")
        if not webhook_url:
            raise CapabilityError("Chat webhook URL is required")
        channel = chat.get("channel")
        if channel and not channel.startswith("#"):
            channel = f"#{channel}"

        message: Dict[str, Any] = {"text": _render(input_data)}
        if channel:
            message["channel"] = channel
        if chat.get("username"):
            message["username"] = chat["username"]

        async with self._client() as client:
            response = await client.post(webhook_url, json=message)
            response.raise_for_status()
        return {"status_code": response.status_code, "channel": channel}

    def _send_email(self, email: Dict[str, Any], input_data: Any) -> Dict[str, Any]:
        recipients = email.get("to") or []
        if isinstance(recipients, str):
            recipients = [recipients]
        if not recipients:
            raise CapabilityError("Email recipients are required")
        subject = email.get("subject") or "Workflow results"
        body = _render(input_data)
        message_id = f"<{uuid.uuid4()}@stepweave>"
        # no mail transport is configured; the send is simulated
        logger.info(
            f"Email {message_id} to {', '.join(recipients)} subject={subject!r} "
            f"body_length={len(body)}"
        )
        return {"message_id": message_id, "recipients": recipients, "subject": subject}
