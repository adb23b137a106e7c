"""Data models for the message analysis pipeline.

CanonicalMessage, PriorityResult and AnalysisResult are frozen once
built. ActionItem stays mutable because downstream workflow moves its
status forward after the analysis is stored.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class SourcePlatform(StrEnum):
    """Platforms a raw message can come from."""

    EMAIL = "email"
    SLACK = "slack"
    TEAMS = "teams"
    DISCORD = "discord"


class Sentiment(StrEnum):
    """Overall tone of a message; URGENT is reserved for deadline/imperative language."""

    POSITIVE = "positive"
    NEUTRAL = "neutral"
    NEGATIVE = "negative"
    URGENT = "urgent"


class ActionCategory(StrEnum):
    """What kind of response an action item asks for."""

    APPROVAL = "approval"
    REVIEW = "review"
    DECISION = "decision"
    MEETING = "meeting"
    RESPONSE = "response"


class ActionPriority(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ActionStatus(StrEnum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class AnalysisState(StrEnum):
    """Per-message lifecycle inside the orchestrator."""

    UNANALYZED = "unanalyzed"
    ANALYZING = "analyzing"
    ANALYZED = "analyzed"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# Canonical message
# ---------------------------------------------------------------------------


def _utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class CanonicalMessage(BaseModel):
    """Platform-agnostic representation of one inbound communication."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1, description="Unique within the user's message space")
    external_id: str | None = Field(default=None, description="Provider-native identifier")
    user_id: str = Field(min_length=1)
    source_platform: SourcePlatform
    sender_name: str = Field(default="")
    sender_email: str = Field(default="", description="Empty for non-addressable senders")
    subject: str | None = Field(default=None)
    content: str = Field(min_length=1)
    timestamp: datetime

    @field_validator("timestamp")
    @classmethod
    def ensure_utc(cls, v: datetime) -> datetime:
        return _utc(v)

    @property
    def idempotency_key(self) -> str | None:
        """Stable key for duplicate detection, or None when only a temp id exists."""
        if not self.external_id:
            return None
        return f"{self.user_id}:{self.source_platform.value}:{self.external_id}"

    @property
    def full_text(self) -> str:
        """Subject and body joined, used by the lexical analysers."""
        if self.subject:
            return f"{self.subject}\n{self.content}"
        return self.content


# ---------------------------------------------------------------------------
# Analysis output
# ---------------------------------------------------------------------------


class PriorityResult(BaseModel):
    """Executive priority of a message."""

    model_config = ConfigDict(frozen=True)

    score: int = Field(ge=0, le=100)
    reason: str
    is_urgent: bool
    is_vip: bool

    def to_contract(self) -> dict[str, Any]:
        return {
            "score": self.score,
            "reason": self.reason,
            "isUrgent": self.is_urgent,
            "isVip": self.is_vip,
        }


class ActionItem(BaseModel):
    """A discrete task derived from a message."""

    model_config = ConfigDict(validate_assignment=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    title: str = Field(min_length=1)
    description: str = Field(default="")
    category: ActionCategory = Field(default=ActionCategory.REVIEW)
    priority: ActionPriority = Field(default=ActionPriority.MEDIUM)
    due_date: datetime | None = Field(default=None)
    status: ActionStatus = Field(default=ActionStatus.PENDING)

    @field_validator("due_date")
    @classmethod
    def ensure_due_utc(cls, v: datetime | None) -> datetime | None:
        return _utc(v) if v is not None else None

    def to_contract(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "category": self.category.value,
            "priority": self.priority.value,
            "dueDate": self.due_date.isoformat() if self.due_date else None,
            "status": self.status.value,
        }


class AnalysisResult(BaseModel):
    """The merged, persisted output of analysing one message."""

    model_config = ConfigDict(frozen=True)

    message_id: str
    user_id: str
    summary: str
    priority: PriorityResult
    sentiment: Sentiment = Sentiment.NEUTRAL
    topics: list[str] = Field(default_factory=list)
    action_items: list[ActionItem] = Field(default_factory=list)
    degraded: bool = False
    degraded_reasons: list[str] = Field(default_factory=list)
    analyzed_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @field_validator("topics")
    @classmethod
    def dedupe_topics(cls, v: list[str]) -> list[str]:
        return sorted({t.strip().lower() for t in v if t and t.strip()})

    @property
    def is_complete(self) -> bool:
        """A stored result short-circuits reprocessing only if it has content."""
        return bool(self.summary)

    def to_contract(self) -> dict[str, Any]:
        """Render the stable camelCase JSON contract."""
        return {
            "messageId": self.message_id,
            "summary": self.summary,
            "priority": self.priority.to_contract(),
            "sentiment": self.sentiment.value,
            "topics": list(self.topics),
            "actionItems": [item.to_contract() for item in self.action_items],
            "degraded": self.degraded,
        }

    def to_db_row(self) -> dict[str, Any]:
        """Flatten for the message_analyses table (action items stored separately)."""
        return {
            "message_id": self.message_id,
            "user_id": self.user_id,
            "summary": self.summary,
            "priority_score": self.priority.score,
            "priority_reason": self.priority.reason,
            "is_urgent": self.priority.is_urgent,
            "is_vip": self.priority.is_vip,
            "sentiment": self.sentiment.value,
            "topics": list(self.topics),
            "degraded": self.degraded,
            "degraded_reasons": list(self.degraded_reasons),
            "analyzed_at": self.analyzed_at,
        }

    @classmethod
    def from_db_row(
        cls, row: dict[str, Any], action_rows: list[dict[str, Any]] | None = None
    ) -> AnalysisResult:
        """Rebuild from a message_analyses row plus its action_items rows."""
        try:
            sentiment = Sentiment(row.get("sentiment", "neutral"))
        except ValueError:
            sentiment = Sentiment.NEUTRAL

        items = [
            ActionItem(
                id=str(a["id"]),
                title=a["title"],
                description=a.get("description") or "",
                category=a.get("category", "review"),
                priority=a.get("priority", "medium"),
                due_date=a.get("due_date"),
                status=a.get("status", "pending"),
            )
            for a in sorted(action_rows or [], key=lambda a: a.get("position", 0))
        ]

        return cls(
            message_id=row["message_id"],
            user_id=row["user_id"],
            summary=row["summary"],
            priority=PriorityResult(
                score=row["priority_score"],
                reason=row.get("priority_reason") or "",
                is_urgent=row.get("is_urgent", False),
                is_vip=row.get("is_vip", False),
            ),
            sentiment=sentiment,
            topics=list(row.get("topics") or []),
            action_items=items,
            degraded=row.get("degraded", False),
            degraded_reasons=list(row.get("degraded_reasons") or []),
            analyzed_at=row.get("analyzed_at") or datetime.now(UTC),
        )


# ---------------------------------------------------------------------------
# Intermediate step outputs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Classification:
    """Output of the sentiment & topic classifier."""

    sentiment: Sentiment
    topics: frozenset[str] = field(default_factory=frozenset)


@dataclass
class MessageProcessedEvent:
    """Payload published once an analysis is durably stored."""

    message_id: str
    user_id: str
    summary: str
    priority_score: int
    is_vip: bool
    action_items_count: int
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def from_result(cls, result: AnalysisResult) -> MessageProcessedEvent:
        return cls(
            message_id=result.message_id,
            user_id=result.user_id,
            summary=result.summary,
            priority_score=result.priority.score,
            is_vip=result.priority.is_vip,
            action_items_count=len(result.action_items),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "messageId": self.message_id,
            "userId": self.user_id,
            "summary": self.summary,
            "priorityScore": self.priority_score,
            "isVip": self.is_vip,
            "actionItemsCount": self.action_items_count,
            "timestamp": self.timestamp.isoformat(),
        }
