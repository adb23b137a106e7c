"""Unit tests for the stdin/stdout entry point."""

import io
import json
import logging
import sys
from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from napoleon_ai.analysis.batch import BatchProcessor
from napoleon_ai.analysis.notifier import WebhookEventPublisher
from napoleon_ai.analysis.orchestrator import AnalysisOrchestrator
from napoleon_ai.analysis.store import InMemoryAnalysisStore
from napoleon_ai.config import Settings
from napoleon_ai.contacts.registry import ContactRegistry
from napoleon_ai.logging import setup_logging
from napoleon_ai.main import (
    Application,
    build_application,
    build_orchestrator,
    handle_line,
    serve,
)

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)


def _settings(**overrides) -> Settings:
    fields = {"_env_file": None, "postgres_dsn": None, "event_webhook_url": None}
    fields.update(overrides)
    return Settings(**fields)


def _orchestrator() -> AnalysisOrchestrator:
    return AnalysisOrchestrator(
        registry=ContactRegistry(), store=InMemoryAnalysisStore(), clock=lambda: NOW
    )


def _line(**overrides) -> str:
    request = {
        "userId": "u1",
        "sourcePlatform": "email",
        "message": {
            "id": "gmail-1",
            "from": "Dana <dana@example.com>",
            "subject": "Budget",
            "body": "Please review the budget deck.",
        },
    }
    request.update(overrides)
    return json.dumps(request)


class TestHandleLine:
    """Tests for handle_line."""

    @pytest.mark.asyncio
    async def test_valid_submission_returns_contract(self):
        reply = await handle_line(_orchestrator(), _line())

        assert reply["messageId"] == "gmail-1"
        assert set(reply["priority"]) == {"score", "reason", "isUrgent", "isVip"}
        assert "error" not in reply

    @pytest.mark.asyncio
    async def test_message_id_override(self):
        reply = await handle_line(_orchestrator(), _line(messageId="custom-9"))
        assert reply["messageId"] == "custom-9"

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        reply = await handle_line(_orchestrator(), "{not json")

        assert reply["error"]["type"] == "ValidationError"
        assert reply["error"]["field"] == "request"
        assert reply["error"]["retryable"] is False

    @pytest.mark.asyncio
    async def test_non_object(self):
        reply = await handle_line(_orchestrator(), "[1, 2]")
        assert reply["error"]["field"] == "request"

    @pytest.mark.asyncio
    async def test_empty_content(self):
        reply = await handle_line(
            _orchestrator(), _line(message={"id": "x", "from": "a@b.co", "body": "  "})
        )
        assert reply["error"]["field"] == "content"

    @pytest.mark.asyncio
    async def test_missing_user(self):
        reply = await handle_line(_orchestrator(), _line(userId=None))
        assert reply["error"]["field"] == "userId"

    @pytest.mark.asyncio
    async def test_missing_message(self):
        reply = await handle_line(_orchestrator(), _line(message=None))
        assert reply["error"]["field"] == "rawMessage"


class TestServe:
    """Tests for serve."""

    @pytest.mark.asyncio
    async def test_one_reply_per_non_blank_line(self):
        app = MagicMock()
        app.orchestrator = _orchestrator()
        stdin = io.StringIO(_line() + "\n\n   \n" + "oops\n")
        stdout = io.StringIO()

        handled = await serve(app, stdin, stdout)

        replies = [json.loads(line) for line in stdout.getvalue().splitlines()]
        assert handled == 2
        assert replies[0]["messageId"] == "gmail-1"
        assert "error" in replies[1]

    @pytest.mark.asyncio
    async def test_stdout_carries_only_replies(self, capsys):
        """Test that log records never interleave with replies on stdout."""
        settings = MagicMock()
        settings.log_level = "DEBUG"
        settings.log_to_file = False
        settings.is_development = False
        original_handlers = logging.root.handlers[:]
        original_level = logging.root.level
        app = MagicMock()
        app.orchestrator = _orchestrator()
        try:
            with patch("napoleon_ai.logging.get_settings", return_value=settings):
                setup_logging()
            await serve(app, io.StringIO(_line() + "\n" + "oops\n"), sys.stdout)
        finally:
            for handler in logging.root.handlers:
                if handler not in original_handlers:
                    handler.close()
            logging.root.handlers[:] = original_handlers
            logging.root.setLevel(original_level)

        lines = capsys.readouterr().out.splitlines()
        assert len(lines) == 2
        assert json.loads(lines[0])["messageId"] == "gmail-1"
        assert "error" in json.loads(lines[1])


class TestBuildOrchestrator:
    def test_uses_settings(self):
        settings = _settings(urgent_threshold=75, summary_max_length=120)
        orchestrator = build_orchestrator(
            settings, registry=ContactRegistry(), store=InMemoryAnalysisStore()
        )

        assert orchestrator._scorer.weights.urgent_threshold == 75
        assert orchestrator._summary_max_length == 120
        assert orchestrator._claim_wait_timeout == settings.claim_wait_timeout
        assert orchestrator._model_classifier is None


class TestBuildApplication:
    """Tests for build_application."""

    @pytest.mark.asyncio
    async def test_in_memory(self):
        settings = _settings()
        with patch("napoleon_ai.main.get_analysis_provider", return_value=None) as mock_provider:
            app = await build_application(settings)

        mock_provider.assert_called_once_with(settings)
        assert isinstance(app.store, InMemoryAnalysisStore)
        assert isinstance(app.registry, ContactRegistry)
        assert isinstance(app.batch, BatchProcessor)
        assert app.pool is None
        assert app.publisher is None

    @pytest.mark.asyncio
    async def test_webhook_publisher(self):
        settings = _settings(
            event_webhook_url="http://hooks.example.com/events", event_webhook_secret="s3cret"
        )
        with patch("napoleon_ai.main.get_analysis_provider", return_value=None):
            app = await build_application(settings)

        assert isinstance(app.publisher, WebhookEventPublisher)
        await app.close()

    @pytest.mark.asyncio
    async def test_postgres(self):
        pool = MagicMock()
        contacts = MagicMock()
        contacts.initialize = AsyncMock()
        contacts.load_registry = AsyncMock(return_value=ContactRegistry())
        store = MagicMock()
        store.initialize = AsyncMock()

        with (
            patch("napoleon_ai.main.asyncpg.create_pool", AsyncMock(return_value=pool)),
            patch("napoleon_ai.main.ContactStorage", return_value=contacts),
            patch("napoleon_ai.main.PostgresAnalysisStore", return_value=store),
            patch("napoleon_ai.main.get_analysis_provider", return_value=None),
        ):
            app = await build_application(_settings(postgres_dsn="postgresql://u:p@db/napoleon"))

        contacts.initialize.assert_awaited_once_with(pool)
        store.initialize.assert_awaited_once_with(pool)
        assert app.store is store
        assert app.pool is pool

    @pytest.mark.asyncio
    async def test_postgres_unreachable(self):
        with (
            patch(
                "napoleon_ai.main.asyncpg.create_pool",
                AsyncMock(side_effect=OSError("connection refused")),
            ),
            pytest.raises(OSError),
        ):
            await build_application(_settings(postgres_dsn="postgresql://u:p@db/napoleon"))


class TestApplicationClose:
    @pytest.mark.asyncio
    async def test_closes_everything(self):
        orchestrator = MagicMock()
        orchestrator.drain_events = AsyncMock()
        provider = MagicMock()
        provider.close = AsyncMock()
        publisher = MagicMock()
        publisher.close = AsyncMock()
        pool = MagicMock()
        pool.close = AsyncMock()
        app = Application(
            orchestrator=orchestrator,
            batch=MagicMock(),
            registry=ContactRegistry(),
            store=InMemoryAnalysisStore(),
            provider=provider,
            publisher=publisher,
            pool=pool,
        )

        await app.close()

        orchestrator.drain_events.assert_awaited_once()
        provider.close.assert_awaited_once()
        publisher.close.assert_awaited_once()
        pool.close.assert_awaited_once()
