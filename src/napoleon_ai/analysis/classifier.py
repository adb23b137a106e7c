"""Sentiment and topic classification.

The heuristic classifier is lexical: it counts urgent, negative and
positive cues and picks a label with precedence
urgent > negative > positive > neutral. ``urgent`` needs imperative or
deadline language; angry wording alone only makes a message negative.
"""

from __future__ import annotations

import re

from napoleon_ai.analysis.models import CanonicalMessage, Classification, Sentiment
from napoleon_ai.analysis.prompts import CLASSIFY_PROMPT
from napoleon_ai.analysis.providers import AnalysisProvider
from napoleon_ai.errors import UpstreamAnalysisError
from napoleon_ai.logging import get_logger

log = get_logger("napoleon_ai.analysis.classifier")

# ---------------------------------------------------------------------------
# Lexicons
# ---------------------------------------------------------------------------

_URGENT_PATTERNS = [
    re.compile(r"\b(?:urgent|urgently|asap|immediately|right away|emergency)\b", re.IGNORECASE),
    re.compile(
        r"\b(?:by|before)\s+(?:today|tonight|tomorrow|eod|cob|end of (?:day|week)|"
        r"monday|tuesday|wednesday|thursday|friday|saturday|sunday)\b",
        re.IGNORECASE,
    ),
    re.compile(r"\b(?:deadline|due (?:today|tomorrow)|time[- ]sensitive|action required)\b", re.IGNORECASE),
    re.compile(r"^\s*(?:please\s+)?(?:approve|sign|send|call|respond|reply|confirm)\b", re.IGNORECASE | re.MULTILINE),
]

_NEGATIVE_WORDS = frozenset(
    {
        "angry", "bad", "breach", "complaint", "concern", "concerned", "delay", "delayed",
        "disappointed", "escalation", "fail", "failed", "failure", "frustrated", "issue",
        "lawsuit", "loss", "missed", "outage", "poor", "problem", "risk", "unacceptable",
        "unhappy", "worried", "wrong",
    }
)

_POSITIVE_WORDS = frozenset(
    {
        "appreciate", "congratulations", "delighted", "excellent", "excited", "fantastic",
        "glad", "great", "happy", "impressive", "love", "pleased", "success", "successful",
        "thank", "thanks", "win", "wonderful",
    }
)

_WORD_PATTERN = re.compile(r"[a-z']+")

# Topic label -> trigger words/phrases
TOPIC_KEYWORDS: dict[str, tuple[str, ...]] = {
    "finance": ("budget", "revenue", "invoice", "forecast", "cash", "expense", "p&l", "financial", "quarterly results"),
    "board": ("board", "board meeting", "board deck", "directors"),
    "legal": ("contract", "legal", "lawsuit", "compliance", "nda", "counsel", "litigation"),
    "hiring": ("hire", "hiring", "candidate", "recruit", "offer letter", "interview"),
    "product": ("product", "roadmap", "launch", "feature", "release"),
    "sales": ("deal", "pipeline", "customer", "prospect", "quota", "renewal"),
    "meeting": ("meeting", "call", "schedule", "calendar", "agenda", "sync"),
    "investor-relations": ("investor", "fundraise", "funding", "term sheet", "valuation", "shareholder"),
    "operations": ("operations", "supply", "vendor", "logistics", "process", "outage"),
    "security": ("security", "breach", "vulnerability", "phishing", "incident"),
}

_TOPIC_PATTERNS: dict[str, re.Pattern[str]] = {
    topic: re.compile(
        r"(?<![\w&])(?:" + "|".join(re.escape(w) for w in words) + r")(?:s|es)?(?![\w&])",
        re.IGNORECASE,
    )
    for topic, words in TOPIC_KEYWORDS.items()
}


def detect_topics(text: str) -> frozenset[str]:
    """Return the topic labels whose trigger words appear in the text."""
    return frozenset(topic for topic, pattern in _TOPIC_PATTERNS.items() if pattern.search(text))


def _sentiment(text: str) -> Sentiment:
    if any(p.search(text) for p in _URGENT_PATTERNS):
        return Sentiment.URGENT

    words = _WORD_PATTERN.findall(text.lower())
    negative = sum(1 for w in words if w in _NEGATIVE_WORDS)
    positive = sum(1 for w in words if w in _POSITIVE_WORDS)
    if negative and negative >= positive:
        return Sentiment.NEGATIVE
    if positive:
        return Sentiment.POSITIVE
    return Sentiment.NEUTRAL


def classify(message: CanonicalMessage) -> Classification:
    """Heuristic sentiment and topic classification."""
    text = message.full_text
    return Classification(sentiment=_sentiment(text), topics=detect_topics(text))


class ModelClassifier:
    """Classifies through an upstream model.

    Unknown sentiment labels are reported as upstream failures rather
    than silently mapped, so the orchestrator records the degradation.
    """

    def __init__(self, provider: AnalysisProvider) -> None:
        self._provider = provider

    async def classify(self, message: CanonicalMessage) -> Classification:
        prompt = CLASSIFY_PROMPT.format(
            subject=message.subject or "",
            sender=message.sender_name,
            content=message.content,
        )
        data = await self._provider.complete_json(prompt, step="classify")

        try:
            sentiment = Sentiment(str(data.get("sentiment", "")).strip().lower())
        except ValueError as exc:
            raise UpstreamAnalysisError(
                "classify", f"unknown sentiment label: {data.get('sentiment')!r}"
            ) from exc

        raw_topics = data.get("topics") or []
        if not isinstance(raw_topics, list):
            raise UpstreamAnalysisError("classify", "topics must be a list")
        topics = frozenset(
            str(t).strip().lower() for t in raw_topics if isinstance(t, str) and t.strip()
        )

        log.debug(
            "message_classified",
            message_id=message.id,
            provider=self._provider.name,
            sentiment=sentiment.value,
            topics=len(topics),
        )
        return Classification(sentiment=sentiment, topics=topics)
