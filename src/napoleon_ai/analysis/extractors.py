"""Action item extraction.

Heuristic extraction works sentence by sentence: a sentence that asks
the recipient to do something yields one ActionItem whose category is
taken from the triggering language. The model extractor asks an
upstream model for the same structure.
"""

from __future__ import annotations

import re
from datetime import UTC, datetime, timedelta
from typing import Any

from dateutil import parser as date_parser

from napoleon_ai.analysis.adapters.base import parse_timestamp
from napoleon_ai.analysis.models import ActionCategory, ActionItem, ActionPriority, CanonicalMessage
from napoleon_ai.analysis.prompts import EXTRACT_PROMPT
from napoleon_ai.analysis.providers import AnalysisProvider
from napoleon_ai.errors import UpstreamAnalysisError
from napoleon_ai.logging import get_logger

log = get_logger("napoleon_ai.analysis.extractors")

MAX_ACTION_ITEMS = 10
MAX_TITLE_LENGTH = 80
END_OF_BUSINESS_HOUR = 17

# ---------------------------------------------------------------------------
# Category patterns, checked in order
# ---------------------------------------------------------------------------

_CATEGORY_PATTERNS: list[tuple[ActionCategory, re.Pattern[str]]] = [
    (
        ActionCategory.APPROVAL,
        re.compile(
            r"\b(?:approv\w*|sign[- ]?off|authori[sz]\w*|green[- ]?light|"
            r"(?:please\s+)?sign\b|your\s+signature|countersign)",
            re.IGNORECASE,
        ),
    ),
    (
        ActionCategory.MEETING,
        re.compile(
            r"\b(?:let'?s\s+(?:meet|sync|catch\s+up)|schedule\s+(?:a\s+)?(?:meeting|call|time)|"
            r"set\s+up\s+(?:a\s+)?(?:meeting|call)|calendar\s+invite|"
            r"are\s+you\s+(?:free|available)|your\s+availability|meet\s+(?:on|at|tomorrow|next))",
            re.IGNORECASE,
        ),
    ),
    (
        ActionCategory.DECISION,
        re.compile(
            r"\b(?:decide|decision|which\s+option|should\s+we|do\s+we\s+(?:go|proceed)|"
            r"would\s+you\s+prefer|go\s*/?\s*no[- ]go|your\s+call|choose\s+between)\b",
            re.IGNORECASE,
        ),
    ),
    (
        ActionCategory.REVIEW,
        re.compile(
            r"\b(?:review|take\s+a\s+look|look\s+over|feedback|comments\s+on|read\s+through|"
            r"check\s+(?:the|this|over))\b",
            re.IGNORECASE,
        ),
    ),
    (
        ActionCategory.RESPONSE,
        re.compile(
            r"\b(?:let\s+me\s+know|get\s+back\s+to\s+me|reply|respond|confirm|your\s+thoughts|"
            r"can\s+you|could\s+you|please\s+send|send\s+me)\b",
            re.IGNORECASE,
        ),
    ),
]

# A request with no recognisable category still produces a review item
_GENERIC_REQUEST = re.compile(
    r"\b(?:please|need\s+(?:you\s+to|your)|action\s+required|todo|to-do|must|required)\b",
    re.IGNORECASE,
)
_QUESTION_START = re.compile(r"^\s*(?:should|shall|do|does|can|will|would|is|are)\b", re.IGNORECASE)

_URGENT_LANGUAGE = re.compile(r"\b(?:urgent|asap|immediately|emergency|critical|right away)\b", re.IGNORECASE)
_LOW_PRIORITY_LANGUAGE = re.compile(
    r"\b(?:no\s+rush|when\s+you\s+(?:get|have)\s+a\s+(?:chance|moment)|fyi|low\s+priority)\b",
    re.IGNORECASE,
)

_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+|\n+")
_LEADING_MARKER = re.compile(
    r"^\s*(?:(?:urgent|asap|fyi|re|fw|fwd|action required|todo|task)\s*[:\-!]+\s*)+",
    re.IGNORECASE,
)

# ---------------------------------------------------------------------------
# Due dates
# ---------------------------------------------------------------------------

_WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")
_MONTHS = (
    r"(?:jan(?:uary)?|feb(?:ruary)?|mar(?:ch)?|apr(?:il)?|may|june?|july?|aug(?:ust)?|"
    r"sep(?:t(?:ember)?)?|oct(?:ober)?|nov(?:ember)?|dec(?:ember)?)\.?"
)

_ISO_DATE = re.compile(r"\b(\d{4}-\d{2}-\d{2})(?:[T ]\d{2}:\d{2}(?::\d{2})?)?\b")
_SLASH_DATE = re.compile(r"\b(\d{1,2})/(\d{1,2})(?:/(\d{2,4}))?\b")
_MONTH_NAME_DATE = re.compile(
    rf"\b(?:{_MONTHS}\s+\d{{1,2}}(?:st|nd|rd|th)?(?:,?\s+\d{{4}})?|"
    rf"\d{{1,2}}(?:st|nd|rd|th)?\s+(?:of\s+)?{_MONTHS}(?:,?\s+\d{{4}})?)\b",
    re.IGNORECASE,
)
_RELATIVE_DAY = re.compile(r"\b(today|tonight|tomorrow|eod|cob|end\s+of\s+(?:the\s+)?(?:day|week))\b", re.IGNORECASE)
_WEEKDAY = re.compile(r"\b(next\s+|this\s+)?(" + "|".join(_WEEKDAYS) + r")\b", re.IGNORECASE)


def _end_of_business(day: datetime) -> datetime:
    return day.replace(hour=END_OF_BUSINESS_HOUR, minute=0, second=0, microsecond=0)


def _roll_forward_year(candidate: datetime, now: datetime, explicit_year: bool) -> datetime | None:
    if explicit_year or candidate >= now - timedelta(days=1):
        return candidate
    try:
        return candidate.replace(year=candidate.year + 1)
    except ValueError:
        # Feb 29 has no counterpart next year
        return None


def parse_due_date(text: str, now: datetime | None = None) -> datetime | None:
    """Find the first explicit or relative date in ``text``.

    Dates without a time resolve to end of business (17:00 UTC). Anything
    that looks like a date but cannot be parsed returns None.
    """
    now = (now or datetime.now(UTC)).astimezone(UTC)

    match = _ISO_DATE.search(text)
    if match:
        parsed = parse_timestamp(match.group(0))
        if parsed is not None:
            return parsed if ("T" in match.group(0) or " " in match.group(0)) else _end_of_business(parsed)

    match = _SLASH_DATE.search(text)
    if match:
        month, day, year = match.group(1), match.group(2), match.group(3)
        if year and len(year) == 2:
            year = f"20{year}"
        try:
            candidate = _end_of_business(
                datetime(int(year) if year else now.year, int(month), int(day), tzinfo=UTC)
            )
        except ValueError:
            return None
        return _roll_forward_year(candidate, now, explicit_year=bool(year))

    match = _MONTH_NAME_DATE.search(text)
    if match:
        try:
            parsed = date_parser.parse(match.group(0), default=now.replace(tzinfo=None))
        except (ValueError, OverflowError):
            return None
        candidate = _end_of_business(parsed.replace(tzinfo=UTC))
        return _roll_forward_year(candidate, now, explicit_year=bool(re.search(r"\d{4}", match.group(0))))

    match = _RELATIVE_DAY.search(text)
    if match:
        word = " ".join(match.group(1).lower().split())
        if word in ("today", "eod", "cob", "end of day", "end of the day"):
            return _end_of_business(now)
        if word == "tonight":
            return now.replace(hour=21, minute=0, second=0, microsecond=0)
        if word == "tomorrow":
            return _end_of_business(now + timedelta(days=1))
        # end of (the) week: Friday of the current week
        days_ahead = (4 - now.weekday()) % 7
        return _end_of_business(now + timedelta(days=days_ahead))

    match = _WEEKDAY.search(text)
    if match:
        target = _WEEKDAYS.index(match.group(2).lower())
        days_ahead = (target - now.weekday()) % 7
        if match.group(1) and match.group(1).strip().lower() == "next" and days_ahead == 0:
            days_ahead = 7
        return _end_of_business(now + timedelta(days=days_ahead))

    return None


# ---------------------------------------------------------------------------
# Heuristic extraction
# ---------------------------------------------------------------------------


def _categorize(sentence: str) -> ActionCategory | None:
    for category, pattern in _CATEGORY_PATTERNS:
        if pattern.search(sentence):
            return category
    if sentence.rstrip().endswith("?") and _QUESTION_START.search(sentence):
        return ActionCategory.DECISION
    if _GENERIC_REQUEST.search(sentence):
        return ActionCategory.REVIEW
    return None


def _priority(sentence: str, message: CanonicalMessage, due: datetime | None, now: datetime) -> ActionPriority:
    urgent = bool(_URGENT_LANGUAGE.search(sentence) or _URGENT_LANGUAGE.search(message.subject or ""))
    hours_left = (due - now).total_seconds() / 3600 if due else None

    if urgent and hours_left is not None and hours_left <= 24:
        return ActionPriority.CRITICAL
    if urgent or (hours_left is not None and hours_left <= 48):
        return ActionPriority.HIGH
    if _LOW_PRIORITY_LANGUAGE.search(sentence):
        return ActionPriority.LOW
    return ActionPriority.MEDIUM


def _title(sentence: str) -> str:
    title = _LEADING_MARKER.sub("", sentence).strip().rstrip(".!?").strip()
    if not title:
        title = sentence.strip()
    title = title[0].upper() + title[1:]
    if len(title) > MAX_TITLE_LENGTH:
        title = title[: MAX_TITLE_LENGTH - 3].rstrip() + "..."
    return title


def extract(message: CanonicalMessage, *, now: datetime | None = None) -> list[ActionItem]:
    """Derive action items from the message body, in sentence order."""
    now = now or datetime.now(UTC)
    items: list[ActionItem] = []
    seen: set[str] = set()

    for sentence in _SENTENCE_SPLIT.split(message.content):
        sentence = sentence.strip()
        if len(sentence) < 4:
            continue
        category = _categorize(sentence)
        if category is None:
            continue

        title = _title(sentence)
        if title.lower() in seen:
            continue
        seen.add(title.lower())

        due = parse_due_date(sentence, now)
        items.append(
            ActionItem(
                title=title,
                description=sentence,
                category=category,
                priority=_priority(sentence, message, due, now),
                due_date=due,
            )
        )
        if len(items) >= MAX_ACTION_ITEMS:
            break

    return items


# ---------------------------------------------------------------------------
# Model-backed extraction
# ---------------------------------------------------------------------------


def _item_from_raw(raw: dict[str, Any]) -> ActionItem | None:
    title = str(raw.get("title") or "").strip()
    if not title:
        return None

    try:
        category = ActionCategory(str(raw.get("category", "")).strip().lower())
    except ValueError:
        category = ActionCategory.REVIEW
    try:
        priority = ActionPriority(str(raw.get("priority", "")).strip().lower())
    except ValueError:
        priority = ActionPriority.MEDIUM

    return ActionItem(
        title=title[:MAX_TITLE_LENGTH],
        description=str(raw.get("description") or ""),
        category=category,
        priority=priority,
        due_date=parse_timestamp(raw.get("due_date") or raw.get("dueDate")),
    )


class ModelExtractor:
    """Extracts action items through an upstream model."""

    def __init__(self, provider: AnalysisProvider) -> None:
        self._provider = provider

    async def extract(
        self, message: CanonicalMessage, *, now: datetime | None = None
    ) -> list[ActionItem]:
        today = (now or datetime.now(UTC)).date().isoformat()
        prompt = EXTRACT_PROMPT.format(
            today=today,
            subject=message.subject or "",
            sender=message.sender_name,
            content=message.content,
        )
        data = await self._provider.complete_json(prompt, step="extract")

        raw_items = data.get("action_items", data.get("actionItems", []))
        if not isinstance(raw_items, list):
            raise UpstreamAnalysisError("extract", "action_items must be a list")

        items = [
            item
            for item in (_item_from_raw(raw) for raw in raw_items if isinstance(raw, dict))
            if item is not None
        ][:MAX_ACTION_ITEMS]

        log.debug(
            "action_items_extracted",
            message_id=message.id,
            provider=self._provider.name,
            count=len(items),
        )
        return items
