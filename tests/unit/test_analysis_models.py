"""Unit tests for the analysis data models."""

from datetime import UTC, datetime, timedelta, timezone

import pytest
from pydantic import ValidationError as PydanticValidationError

from napoleon_ai.analysis.models import (
    ActionCategory,
    ActionItem,
    ActionPriority,
    ActionStatus,
    AnalysisResult,
    CanonicalMessage,
    MessageProcessedEvent,
    PriorityResult,
    Sentiment,
    SourcePlatform,
)

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)


def _message(**overrides) -> CanonicalMessage:
    fields = {
        "id": "m1",
        "external_id": "ext-1",
        "user_id": "u1",
        "source_platform": "slack",
        "content": "hello",
        "timestamp": NOW,
    }
    fields.update(overrides)
    return CanonicalMessage(**fields)


def _result(**overrides) -> AnalysisResult:
    fields = {
        "message_id": "m1",
        "user_id": "u1",
        "summary": "Short summary",
        "priority": PriorityResult(score=85, reason="VIP sender", is_urgent=True, is_vip=True),
        "sentiment": Sentiment.URGENT,
        "topics": ["Finance", "board", "finance", " "],
        "action_items": [
            ActionItem(
                id="a1",
                title="Approve budget",
                category=ActionCategory.APPROVAL,
                priority=ActionPriority.HIGH,
                due_date=datetime(2026, 3, 6, 17, 0, tzinfo=UTC),
            )
        ],
        "analyzed_at": NOW,
    }
    fields.update(overrides)
    return AnalysisResult(**fields)


class TestCanonicalMessage:
    """Tests for CanonicalMessage."""

    def test_frozen(self):
        message = _message()
        with pytest.raises(PydanticValidationError):
            message.content = "changed"

    def test_timestamp_normalized_to_utc(self):
        local = datetime(2026, 3, 2, 11, 0, tzinfo=timezone(timedelta(hours=2)))
        assert _message(timestamp=local).timestamp == NOW
        assert _message(timestamp=datetime(2026, 3, 2, 9, 0)).timestamp.tzinfo is UTC

    def test_empty_content_rejected(self):
        with pytest.raises(PydanticValidationError):
            _message(content="")

    def test_idempotency_key(self):
        assert _message().idempotency_key == "u1:slack:ext-1"
        assert _message(external_id=None).idempotency_key is None

    def test_full_text(self):
        assert _message(subject="Re: Q3").full_text == "Re: Q3\nhello"
        assert _message().full_text == "hello"

    def test_platform_enum(self):
        assert _message().source_platform is SourcePlatform.SLACK


class TestAnalysisResult:
    """Tests for AnalysisResult."""

    def test_topics_normalized(self):
        assert _result().topics == ["board", "finance"]

    def test_priority_bounds(self):
        with pytest.raises(PydanticValidationError):
            PriorityResult(score=101, reason="", is_urgent=True, is_vip=False)

    def test_contract_shape(self):
        """Test the camelCase output contract."""
        contract = _result().to_contract()

        assert set(contract) == {
            "messageId", "summary", "priority", "sentiment", "topics", "actionItems", "degraded"
        }
        assert contract["priority"] == {
            "score": 85, "reason": "VIP sender", "isUrgent": True, "isVip": True
        }
        assert contract["sentiment"] == "urgent"
        item = contract["actionItems"][0]
        assert item["category"] == "approval"
        assert item["dueDate"] == "2026-03-06T17:00:00+00:00"
        assert item["status"] == "pending"

    def test_is_complete(self):
        assert _result().is_complete is True
        assert _result(summary="").is_complete is False

    def test_db_row_round_trip(self):
        original = _result(degraded=True, degraded_reasons=["classify"])
        row = original.to_db_row()
        action_rows = [
            {**item.model_dump(), "category": item.category.value, "position": i}
            for i, item in enumerate(original.action_items)
        ]

        rebuilt = AnalysisResult.from_db_row(row, action_rows)

        assert rebuilt == original

    def test_unknown_sentiment_in_row_is_neutral(self):
        row = _result().to_db_row()
        row["sentiment"] = "mixed"
        assert AnalysisResult.from_db_row(row).sentiment is Sentiment.NEUTRAL


class TestActionItem:
    """Tests for ActionItem."""

    def test_defaults(self):
        item = ActionItem(title="Review deck")
        assert item.category is ActionCategory.REVIEW
        assert item.priority is ActionPriority.MEDIUM
        assert item.status is ActionStatus.PENDING
        assert item.id

    def test_status_assignment_validated(self):
        item = ActionItem(title="Review deck")
        item.status = "completed"
        assert item.status is ActionStatus.COMPLETED
        with pytest.raises(PydanticValidationError):
            item.status = "archived"

    def test_empty_title_rejected(self):
        with pytest.raises(PydanticValidationError):
            ActionItem(title="")


class TestMessageProcessedEvent:
    def test_from_result(self):
        event = MessageProcessedEvent.from_result(_result())
        data = event.to_dict()
        assert data["messageId"] == "m1"
        assert data["priorityScore"] == 85
        assert data["actionItemsCount"] == 1
