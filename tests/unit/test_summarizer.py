"""Unit tests for message summaries."""

from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import pytest

from napoleon_ai.analysis.models import CanonicalMessage
from napoleon_ai.analysis.summarizer import ModelSummarizer, summarize
from napoleon_ai.constants import FALLBACK_SUMMARY
from napoleon_ai.errors import UpstreamAnalysisError


def _message(content: str) -> CanonicalMessage:
    return CanonicalMessage(
        id="m1",
        user_id="u1",
        source_platform="email",
        content=content,
        timestamp=datetime(2026, 3, 2, tzinfo=UTC),
    )


class TestSummarize:
    """Tests for the heuristic summary."""

    def test_short_message_returned_whole(self):
        """Test that short content is returned with whitespace collapsed."""
        assert summarize(_message("Board call moved\n\n to   3pm.")) == "Board call moved to 3pm."

    def test_first_sentence_when_long(self):
        content = "Please approve the Q3 budget. " + "Background detail. " * 30
        assert summarize(_message(content), max_length=100) == "Please approve the Q3 budget."

    def test_truncated_on_word_boundary(self):
        content = "word " * 100
        summary = summarize(_message(content), max_length=50)
        assert len(summary) <= 50
        assert summary.endswith("...")
        assert "wor..." not in summary

    def test_long_first_sentence_truncated(self):
        content = "This opening sentence runs on " + "and on " * 40 + "until it ends. Next."
        summary = summarize(_message(content), max_length=60)
        assert len(summary) <= 60
        assert summary.endswith("...")

    def test_blank_content_uses_fallback(self):
        assert summarize(_message("   ")) == FALLBACK_SUMMARY

    def test_deterministic(self):
        message = _message("Quarterly numbers attached. " * 20)
        assert summarize(message) == summarize(message)


def _provider(reply: dict) -> MagicMock:
    provider = MagicMock()
    provider.name = "fake"
    provider.complete_json = AsyncMock(return_value=reply)
    return provider


class TestModelSummarizer:
    """Tests for the model-backed summarizer."""

    @pytest.mark.asyncio
    async def test_returns_summary(self):
        provider = _provider({"summary": "  The board wants   Q3 approval.  "})
        summary = await ModelSummarizer(provider).summarize(_message("x"))

        assert summary == "The board wants Q3 approval."
        assert provider.complete_json.call_args.kwargs["step"] == "summarize"

    @pytest.mark.asyncio
    async def test_bounds_length(self):
        provider = _provider({"summary": "long " * 100})
        summary = await ModelSummarizer(provider, max_length=60).summarize(_message("x"))
        assert len(summary) <= 60

    @pytest.mark.asyncio
    async def test_prompt_states_bound(self):
        provider = _provider({"summary": "ok"})
        await ModelSummarizer(provider, max_length=120).summarize(_message("x"))
        assert "at most 120 characters" in provider.complete_json.call_args.args[0]

    @pytest.mark.asyncio
    async def test_empty_summary_raises(self):
        with pytest.raises(UpstreamAnalysisError) as exc_info:
            await ModelSummarizer(_provider({"summary": ""})).summarize(_message("x"))
        assert exc_info.value.step == "summarize"
