"""Message normalizer.

Turns a provider-specific payload into a CanonicalMessage. Platform
adapters only pull fields out of the payload; every rule that applies to
all platforms (defaults, validation, id generation, truncation) lives
here.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from typing import Any

from napoleon_ai.analysis.adapters.base import CoalescedMessage
from napoleon_ai.analysis.adapters.chat import coalesce_discord, coalesce_slack, coalesce_teams
from napoleon_ai.analysis.adapters.email import coalesce_email
from napoleon_ai.analysis.models import CanonicalMessage, SourcePlatform
from napoleon_ai.constants import (
    DEFAULT_SUBJECT,
    MAX_CONTENT_LENGTH,
    TEMP_ID_PREFIX,
    UNKNOWN_SENDER,
)
from napoleon_ai.contacts.registry import EMAIL_PATTERN
from napoleon_ai.errors import ValidationError
from napoleon_ai.logging import get_logger

log = get_logger("napoleon_ai.analysis.normalizer")

Adapter = Callable[[dict[str, Any]], CoalescedMessage]

_ADAPTERS: dict[SourcePlatform, Adapter] = {
    SourcePlatform.EMAIL: coalesce_email,
    SourcePlatform.SLACK: coalesce_slack,
    SourcePlatform.TEAMS: coalesce_teams,
    SourcePlatform.DISCORD: coalesce_discord,
}


def _parse_platform(source_platform: SourcePlatform | str) -> SourcePlatform:
    try:
        return SourcePlatform(str(source_platform).strip().lower())
    except ValueError:
        raise ValidationError(
            "sourcePlatform", f"unsupported source platform: {source_platform!r}"
        ) from None


class MessageNormalizer:
    """Normalizes raw payloads from every supported platform.

    Args:
        clock: Returns the current time; used for missing timestamps and
            synthetic ids.
        max_content_length: Content beyond this many characters is cut.
    """

    def __init__(
        self,
        clock: Callable[[], datetime] | None = None,
        max_content_length: int = MAX_CONTENT_LENGTH,
    ) -> None:
        self._clock = clock or (lambda: datetime.now(UTC))
        self._max_content_length = max_content_length

    def normalize(
        self,
        raw: Mapping[str, Any],
        source_platform: SourcePlatform | str,
        *,
        user_id: str,
        message_id: str | None = None,
    ) -> CanonicalMessage:
        """Build a CanonicalMessage from a raw provider payload.

        Raises:
            ValidationError: If the payload is not a mapping, the platform
                is unknown, the content is empty, or (for email) the
                sender address is malformed.
        """
        if not user_id or not str(user_id).strip():
            raise ValidationError("userId", "user_id is required")
        if not isinstance(raw, Mapping):
            raise ValidationError("rawMessage", "raw message must be a JSON object")

        platform = _parse_platform(source_platform)
        fields = _ADAPTERS[platform](dict(raw))

        content = fields.content.strip()
        if not content:
            raise ValidationError("content", "message content is empty")
        if len(content) > self._max_content_length:
            log.debug(
                "message_content_truncated",
                original_length=len(content),
                max_length=self._max_content_length,
            )
            content = content[: self._max_content_length]

        sender_email = self._sender_email(fields.sender_email, platform)
        sender_name = fields.sender_name or (
            sender_email.split("@", 1)[0] if sender_email else UNKNOWN_SENDER
        )

        now = self._clock()
        timestamp = fields.timestamp or now
        canonical_id = (
            (message_id or "").strip()
            or fields.external_id
            or f"{TEMP_ID_PREFIX}{int(now.timestamp() * 1000)}"
        )

        message = CanonicalMessage(
            id=canonical_id,
            external_id=fields.external_id,
            user_id=user_id,
            source_platform=platform,
            sender_name=sender_name,
            sender_email=sender_email,
            subject=fields.subject or DEFAULT_SUBJECT,
            content=content,
            timestamp=timestamp,
        )
        log.debug(
            "message_normalized",
            message_id=message.id,
            platform=platform.value,
            content_length=len(content),
            has_external_id=message.external_id is not None,
        )
        return message

    @staticmethod
    def _sender_email(value: str, platform: SourcePlatform) -> str:
        cleaned = value.strip()
        if not cleaned:
            return ""
        if EMAIL_PATTERN.match(cleaned):
            return cleaned.lower()
        if platform is SourcePlatform.EMAIL:
            raise ValidationError("senderEmail", f"malformed email address: {cleaned!r}")
        return ""


_default_normalizer = MessageNormalizer()


def normalize(
    raw: Mapping[str, Any],
    source_platform: SourcePlatform | str,
    *,
    user_id: str,
    message_id: str | None = None,
) -> CanonicalMessage:
    """Normalize with the process-wide default normalizer."""
    return _default_normalizer.normalize(
        raw, source_platform, user_id=user_id, message_id=message_id
    )
