"""Message summaries.

``summarize`` is the heuristic summary used on the heuristic backend and
whenever the model summary fails: short messages are returned as-is,
longer ones are cut to their first sentence or truncated.
"""

from __future__ import annotations

import re

from napoleon_ai.analysis.models import CanonicalMessage
from napoleon_ai.analysis.prompts import SUMMARY_PROMPT
from napoleon_ai.analysis.providers import AnalysisProvider
from napoleon_ai.constants import FALLBACK_SUMMARY
from napoleon_ai.errors import UpstreamAnalysisError

_WHITESPACE = re.compile(r"\s+")
_FIRST_SENTENCE = re.compile(r"^(.+?[.!?])(?:\s|$)")


def _truncate(text: str, max_length: int) -> str:
    if len(text) <= max_length:
        return text
    cut = text[: max_length - 3].rsplit(" ", 1)[0] or text[: max_length - 3]
    return cut.rstrip(",;:") + "..."


def summarize(message: CanonicalMessage, max_length: int = 200) -> str:
    """Heuristic summary bounded to ``max_length`` characters."""
    text = _WHITESPACE.sub(" ", message.content).strip()
    if not text:
        return FALLBACK_SUMMARY
    if len(text) <= max_length:
        return text

    match = _FIRST_SENTENCE.match(text)
    if match and len(match.group(1)) <= max_length:
        return match.group(1)
    return _truncate(text, max_length)


class ModelSummarizer:
    """Summarizes through an upstream model, enforcing the length bound locally."""

    def __init__(self, provider: AnalysisProvider, max_length: int = 200) -> None:
        self._provider = provider
        self._max_length = max_length

    async def summarize(self, message: CanonicalMessage) -> str:
        prompt = SUMMARY_PROMPT.format(
            max_length=self._max_length,
            subject=message.subject or "",
            sender=message.sender_name,
            content=message.content,
        )
        data = await self._provider.complete_json(prompt, step="summarize")
        summary = _WHITESPACE.sub(" ", str(data.get("summary") or "")).strip()
        if not summary:
            raise UpstreamAnalysisError("summarize", "model returned an empty summary")
        return _truncate(summary, self._max_length)
