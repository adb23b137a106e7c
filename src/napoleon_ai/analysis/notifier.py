"""Completion events for stored analyses.

Publishing is best-effort: the Notifier bounds every publish with a
timeout and logs failures instead of raising, so a broken event bus
never invalidates an analysis that is already stored.
"""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import json
from collections import defaultdict
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

import httpx

from napoleon_ai.analysis.models import AnalysisResult, MessageProcessedEvent
from napoleon_ai.constants import MESSAGE_PROCESSED_TOPIC
from napoleon_ai.logging import get_logger

log = get_logger("napoleon_ai.analysis.notifier")

EventHandler = Callable[[dict[str, Any]], Awaitable[None]]

SIGNATURE_HEADER = "X-Napoleon-Signature"


class EventPublisher(Protocol):
    async def publish(self, topic: str, payload: dict[str, Any]) -> None: ...


class InMemoryEventBus:
    """In-process pub/sub; keeps a record of everything published."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = defaultdict(list)
        self.published: list[tuple[str, dict[str, Any]]] = []

    def subscribe(self, topic: str, handler: EventHandler) -> None:
        self._handlers[topic].append(handler)

    async def publish(self, topic: str, payload: dict[str, Any]) -> None:
        self.published.append((topic, payload))
        for handler in list(self._handlers.get(topic, [])):
            await handler(payload)


class WebhookEventPublisher:
    """POSTs events as JSON to a webhook, signed with HMAC-SHA256 when a secret is set."""

    def __init__(
        self,
        url: str,
        *,
        secret: str | None = None,
        timeout: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = url
        self._secret = secret
        self._client = client or httpx.AsyncClient(timeout=timeout)

    @staticmethod
    def sign(secret: str, body: bytes) -> str:
        return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()

    async def publish(self, topic: str, payload: dict[str, Any]) -> None:
        body = json.dumps({"topic": topic, "payload": payload}, separators=(",", ":")).encode()
        headers = {"Content-Type": "application/json"}
        if self._secret:
            headers[SIGNATURE_HEADER] = self.sign(self._secret, body)

        response = await self._client.post(self._url, content=body, headers=headers)
        response.raise_for_status()

    async def close(self) -> None:
        await self._client.aclose()


class Notifier:
    """Emits ``message_processed`` after an analysis is durably stored."""

    def __init__(self, publisher: EventPublisher | None, timeout: float = 5.0) -> None:
        self._publisher = publisher
        self._timeout = timeout

    async def notify_processed(self, result: AnalysisResult) -> bool:
        """Publish the completion event; returns whether it was delivered."""
        if self._publisher is None:
            return False

        event = MessageProcessedEvent.from_result(result)
        try:
            await asyncio.wait_for(
                self._publisher.publish(MESSAGE_PROCESSED_TOPIC, event.to_dict()),
                timeout=self._timeout,
            )
        except Exception as exc:
            log.warning(
                "event_publish_failed",
                topic=MESSAGE_PROCESSED_TOPIC,
                message_id=result.message_id,
                error=str(exc) or type(exc).__name__,
            )
            return False

        log.debug("event_published", topic=MESSAGE_PROCESSED_TOPIC, message_id=result.message_id)
        return True
