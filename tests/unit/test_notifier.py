"""Unit tests for completion events."""

import asyncio
import hashlib
import hmac
import json
from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from napoleon_ai.analysis.models import ActionItem, AnalysisResult, PriorityResult
from napoleon_ai.analysis.notifier import (
    SIGNATURE_HEADER,
    InMemoryEventBus,
    Notifier,
    WebhookEventPublisher,
)


def _result() -> AnalysisResult:
    return AnalysisResult(
        message_id="m1",
        user_id="u1",
        summary="Board wants Q3 approval",
        priority=PriorityResult(score=92, reason="VIP sender", is_urgent=True, is_vip=True),
        action_items=[ActionItem(title="Approve budget"), ActionItem(title="Reply to CFO")],
        analyzed_at=datetime(2026, 3, 2, tzinfo=UTC),
    )


class TestInMemoryEventBus:
    """Tests for the in-process bus."""

    @pytest.mark.asyncio
    async def test_publish_records_and_dispatches(self):
        bus = InMemoryEventBus()
        received = []

        async def handler(payload):
            received.append(payload)

        bus.subscribe("message_processed", handler)
        await bus.publish("message_processed", {"messageId": "m1"})
        await bus.publish("other", {"x": 1})

        assert received == [{"messageId": "m1"}]
        assert [topic for topic, _ in bus.published] == ["message_processed", "other"]


class TestWebhookEventPublisher:
    """Tests for the webhook publisher."""

    @pytest.mark.asyncio
    async def test_signed_post(self):
        """Test that the body is signed with the shared secret."""
        client = AsyncMock()
        client.post.return_value = MagicMock()
        publisher = WebhookEventPublisher("https://hooks.example.com/e", secret="s3cret", client=client)

        await publisher.publish("message_processed", {"messageId": "m1"})

        url = client.post.call_args.args[0]
        body = client.post.call_args.kwargs["content"]
        headers = client.post.call_args.kwargs["headers"]
        expected = hmac.new(b"s3cret", body, hashlib.sha256).hexdigest()
        assert url == "https://hooks.example.com/e"
        assert json.loads(body) == {"topic": "message_processed", "payload": {"messageId": "m1"}}
        assert headers[SIGNATURE_HEADER] == expected

    @pytest.mark.asyncio
    async def test_unsigned_without_secret(self):
        client = AsyncMock()
        client.post.return_value = MagicMock()
        publisher = WebhookEventPublisher("https://hooks.example.com/e", client=client)

        await publisher.publish("t", {})

        assert SIGNATURE_HEADER not in client.post.call_args.kwargs["headers"]

    @pytest.mark.asyncio
    async def test_http_error_raises(self):
        client = AsyncMock()
        response = MagicMock()
        response.raise_for_status.side_effect = httpx.HTTPStatusError(
            "502", request=MagicMock(), response=MagicMock()
        )
        client.post.return_value = response
        publisher = WebhookEventPublisher("https://hooks.example.com/e", client=client)

        with pytest.raises(httpx.HTTPStatusError):
            await publisher.publish("t", {})

    @pytest.mark.asyncio
    async def test_close(self):
        client = AsyncMock()
        await WebhookEventPublisher("https://x.example.com", client=client).close()
        client.aclose.assert_awaited_once()


class TestNotifier:
    """Tests for best-effort notification."""

    @pytest.mark.asyncio
    async def test_publishes_processed_event(self):
        bus = InMemoryEventBus()
        delivered = await Notifier(bus).notify_processed(_result())

        assert delivered is True
        topic, payload = bus.published[0]
        assert topic == "message_processed"
        assert payload["messageId"] == "m1"
        assert payload["userId"] == "u1"
        assert payload["priorityScore"] == 92
        assert payload["isVip"] is True
        assert payload["actionItemsCount"] == 2

    @pytest.mark.asyncio
    async def test_without_publisher(self):
        assert await Notifier(None).notify_processed(_result()) is False

    @pytest.mark.asyncio
    async def test_failure_is_swallowed(self):
        """Test that a failing publisher never raises into the caller."""
        publisher = AsyncMock()
        publisher.publish.side_effect = httpx.ConnectError("refused")

        assert await Notifier(publisher).notify_processed(_result()) is False

    @pytest.mark.asyncio
    async def test_slow_publisher_times_out(self):
        async def slow(topic, payload):
            await asyncio.sleep(5)

        publisher = MagicMock()
        publisher.publish = slow

        assert await Notifier(publisher, timeout=0.01).notify_processed(_result()) is False
