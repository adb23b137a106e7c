"""Executive priority scoring.

``score`` is a pure function of the message, a VIP lookup and the
current time. The score is built from three parts:

    base_score + vip_points + urgency_points * recency_factor

clamped to [0, 100]. All weights live in ScoringWeights so they can be
tuned without touching the algorithm.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from types import MappingProxyType

from napoleon_ai.analysis.models import CanonicalMessage, PriorityResult
from napoleon_ai.constants import MAX_VIP_LEVEL, URGENT_THRESHOLD
from napoleon_ai.contacts.registry import VipLookup, VipMatch
from napoleon_ai.logging import get_logger

log = get_logger("napoleon_ai.analysis.scoring")

_DEFAULT_KEYWORD_WEIGHTS: Mapping[str, int] = MappingProxyType(
    {
        "urgent": 15,
        "asap": 15,
        "emergency": 15,
        "immediately": 12,
        "critical": 12,
        "action required": 12,
        "board": 10,
        "investor": 10,
        "deadline": 10,
    }
)

_DEADLINE_PATTERN = re.compile(
    r"\b(?:by|before|until|no later than)\s+"
    r"(?:today|tonight|tomorrow|eod|cob|end of (?:day|week|month)|"
    r"monday|tuesday|wednesday|thursday|friday|saturday|sunday|noon|\d{1,2}(?::\d{2})?\s*(?:am|pm)?|"
    r"\d{1,2}/\d{1,2}|jan\w*|feb\w*|mar\w*|apr\w*|may|jun\w*|jul\w*|aug\w*|sep\w*|oct\w*|nov\w*|dec\w*)\b"
    r"|\bdue\b|\beod\b|\bcob\b|\bend of (?:day|week)\b|\bthis (?:afternoon|morning|evening)\b",
    re.IGNORECASE,
)
_SUBJECT_MARKER_PATTERN = re.compile(r"\bURGENT\b|(?i:\baction required\b)")
_CAPS_URGENT_PATTERN = re.compile(r"\bURGENT\b")


@dataclass(frozen=True)
class ScoringWeights:
    """Tunable scoring constants.

    VIP level (0-10) maps linearly onto ``0..vip_weight`` points. Urgency
    signals are summed, capped at ``urgency_cap`` and multiplied by a
    recency factor once the message is older than ``recency_window_hours``.
    """

    base_score: int = 20
    vip_weight: int = 40
    keyword_weights: Mapping[str, int] = field(default_factory=lambda: _DEFAULT_KEYWORD_WEIGHTS)
    keyword_cap: int = 30
    deadline_weight: int = 12
    exclamation_weight: int = 3
    exclamation_cap: int = 9
    subject_marker_weight: int = 10
    urgency_cap: int = 45
    recency_window_hours: float = 24.0
    recency_half_life_hours: float = 48.0
    recency_floor: float = 0.5
    urgent_threshold: int = URGENT_THRESHOLD

    def vip_points(self, level: int) -> int:
        level = max(0, min(level, MAX_VIP_LEVEL))
        return round(level * self.vip_weight / MAX_VIP_LEVEL)


DEFAULT_WEIGHTS = ScoringWeights()


@dataclass(frozen=True)
class _Factor:
    label: str
    points: float
    is_vip: bool = False


def _keyword_points(text: str, weights: ScoringWeights) -> tuple[int, list[str]]:
    lowered = text.lower()
    hits = [
        keyword
        for keyword in weights.keyword_weights
        if re.search(rf"\b{re.escape(keyword)}\b", lowered)
    ]
    points = sum(weights.keyword_weights[k] for k in hits)
    return min(points, weights.keyword_cap), hits


def _subject_marker(message: CanonicalMessage) -> bool:
    if message.subject and _SUBJECT_MARKER_PATTERN.search(message.subject):
        return True
    first_line = message.content.splitlines()[0] if message.content else ""
    return bool(_CAPS_URGENT_PATTERN.search(first_line))


def recency_factor(message: CanonicalMessage, now: datetime, weights: ScoringWeights) -> float:
    """1.0 inside the recency window, then halving every half-life down to the floor."""
    age_hours = (now - message.timestamp).total_seconds() / 3600
    overdue = age_hours - weights.recency_window_hours
    if overdue <= 0:
        return 1.0
    decay = 0.5 ** (overdue / weights.recency_half_life_hours)
    return max(weights.recency_floor, decay)


def _reason(factors: list[_Factor], decayed: bool) -> str:
    contributing = [f for f in factors if f.points > 0]
    if not contributing:
        return "Routine message"
    # VIP wins ties
    ranked = sorted(contributing, key=lambda f: (-f.points, not f.is_vip))
    reason = " + ".join(f.label for f in ranked[:2])
    if decayed:
        reason += " (older message)"
    return reason


def score(
    message: CanonicalMessage,
    vip_lookup: VipLookup,
    *,
    weights: ScoringWeights = DEFAULT_WEIGHTS,
    now: datetime | None = None,
) -> PriorityResult:
    """Compute the 0-100 executive priority of a message.

    Args:
        message: The normalized message.
        vip_lookup: Anything exposing ``priority_for(user_id, email)``.
        weights: Scoring constants.
        now: Reference time for recency decay. Defaults to the current time.

    Returns:
        A PriorityResult whose ``is_vip`` mirrors the lookup.
    """
    now = now or datetime.now(UTC)
    match: VipMatch = (
        vip_lookup.priority_for(message.user_id, message.sender_email)
        if message.sender_email
        else VipMatch.none()
    )

    text = message.full_text
    keyword_points, keywords = _keyword_points(text, weights)
    deadline_points = weights.deadline_weight if _DEADLINE_PATTERN.search(text) else 0
    exclamation_points = min(text.count("!") * weights.exclamation_weight, weights.exclamation_cap)
    marker_points = weights.subject_marker_weight if _subject_marker(message) else 0

    raw_urgency = keyword_points + deadline_points + exclamation_points + marker_points
    factor = recency_factor(message, now, weights)
    urgency_points = min(raw_urgency, weights.urgency_cap) * factor
    vip_points = weights.vip_points(match.level) if match.is_vip else 0

    total = round(weights.base_score + vip_points + urgency_points)
    total = max(0, min(100, total))

    vip_label = (
        f"VIP sender ({match.relationship.value})"
        if match.is_vip and match.relationship is not None
        else "VIP sender"
    )
    factors = [
        _Factor(vip_label, vip_points, is_vip=True),
        _Factor(
            "urgency keywords" if len(keywords) != 1 else f"'{keywords[0]}' keyword",
            keyword_points * factor,
        ),
        _Factor("deadline language", deadline_points * factor),
        _Factor("explicit urgency marker", marker_points * factor),
        _Factor("exclamation density", exclamation_points * factor),
    ]

    return PriorityResult(
        score=total,
        reason=_reason(factors, decayed=factor < 1.0 and raw_urgency > 0),
        is_urgent=total >= weights.urgent_threshold,
        is_vip=match.is_vip,
    )


class PriorityScorer:
    """Binds weights and a clock to ``score``.

    The orchestrator hands each analysis a registry snapshot, so VIP
    status is fixed for the lifetime of that analysis.
    """

    def __init__(
        self,
        weights: ScoringWeights = DEFAULT_WEIGHTS,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.weights = weights
        self._clock = clock or (lambda: datetime.now(UTC))

    def score(self, message: CanonicalMessage, vip_lookup: VipLookup) -> PriorityResult:
        result = score(message, vip_lookup, weights=self.weights, now=self._clock())
        log.debug(
            "message_scored",
            message_id=message.id,
            score=result.score,
            is_vip=result.is_vip,
            is_urgent=result.is_urgent,
        )
        return result
