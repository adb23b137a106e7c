"""Daily executive digest over stored analyses."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

from napoleon_ai.analysis.models import ActionStatus, AnalysisResult
from napoleon_ai.constants import DIGEST_TOP_MESSAGES, DIGEST_WINDOW_HOURS, HIGH_PRIORITY_THRESHOLD


@dataclass
class DailyDigest:
    window_start: datetime
    window_end: datetime
    total_messages: int = 0
    high_priority_count: int = 0
    vip_count: int = 0
    urgent_count: int = 0
    pending_action_items: int = 0
    top_messages: list[AnalysisResult] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "windowStart": self.window_start.isoformat(),
            "windowEnd": self.window_end.isoformat(),
            "totalMessages": self.total_messages,
            "highPriorityCount": self.high_priority_count,
            "vipCount": self.vip_count,
            "urgentCount": self.urgent_count,
            "pendingActionItems": self.pending_action_items,
            "topMessages": [r.to_contract() for r in self.top_messages],
        }


def build_daily_digest(
    results: Iterable[AnalysisResult],
    now: datetime | None = None,
    *,
    window_hours: int = DIGEST_WINDOW_HOURS,
    top_n: int = DIGEST_TOP_MESSAGES,
) -> DailyDigest:
    """Summarize the analyses from the last ``window_hours``.

    Top messages are ordered by score, newest first on ties.
    """
    now = now or datetime.now(UTC)
    window_start = now - timedelta(hours=window_hours)
    recent = [r for r in results if window_start <= r.analyzed_at <= now]

    digest = DailyDigest(window_start=window_start, window_end=now)
    digest.total_messages = len(recent)
    digest.high_priority_count = sum(1 for r in recent if r.priority.score >= HIGH_PRIORITY_THRESHOLD)
    digest.vip_count = sum(1 for r in recent if r.priority.is_vip)
    digest.urgent_count = sum(1 for r in recent if r.priority.is_urgent)
    digest.pending_action_items = sum(
        1 for r in recent for item in r.action_items if item.status == ActionStatus.PENDING
    )
    digest.top_messages = sorted(
        recent, key=lambda r: (r.priority.score, r.analyzed_at), reverse=True
    )[:top_n]
    return digest
