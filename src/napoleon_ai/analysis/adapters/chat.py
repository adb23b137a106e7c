"""Chat source adapters: Slack, Microsoft Teams, Discord.

Chat platforms often have no addressable sender identity, so the sender
email is only filled when the payload carries one. System, bot and edit
events are rejected; they are not messages a person wrote.
"""

from __future__ import annotations

import html
import re
from typing import Any

from napoleon_ai.analysis.adapters.base import (
    EMAIL_PATTERN,
    CoalescedMessage,
    dig,
    first_non_empty,
    parse_timestamp,
)
from napoleon_ai.errors import ValidationError

_SKIPPED_SLACK_SUBTYPES = frozenset({"bot_message", "message_changed", "message_deleted"})

_SLACK_USER_MENTION = re.compile(r"<@([UW][A-Z0-9]+)>")
_SLACK_CHANNEL_MENTION = re.compile(r"<#C[A-Z0-9]+\|([^>]+)>")
_SLACK_LABELLED_LINK = re.compile(r"<([^>|]+)\|([^>]+)>")
_SLACK_LINK = re.compile(r"<([^>]+)>")

_HTML_BREAK = re.compile(r"<\s*(?:br|/p|/div|/li)\s*/?>", re.IGNORECASE)
_HTML_TAG = re.compile(r"<[^>]+>")
_BLANK_RUNS = re.compile(r"[ \t]+")


def clean_slack_formatting(text: str) -> str:
    """Replace Slack mrkdwn references with readable text."""
    text = _SLACK_USER_MENTION.sub("@user", text)
    text = _SLACK_CHANNEL_MENTION.sub(r"#\1", text)
    text = _SLACK_LABELLED_LINK.sub(r"\2", text)
    text = _SLACK_LINK.sub(r"\1", text)
    return html.unescape(text).strip()


def strip_html(text: str) -> str:
    """Flatten a Teams HTML body into plain text."""
    text = _HTML_BREAK.sub("\n", text)
    text = _HTML_TAG.sub("", text)
    text = html.unescape(text)
    lines = [_BLANK_RUNS.sub(" ", line).strip() for line in text.splitlines()]
    return "\n".join(line for line in lines if line)


def _text_from_blocks(blocks: list[Any]) -> str:
    parts: list[str] = []
    for block in blocks:
        if not isinstance(block, dict):
            continue
        text = block.get("text")
        if isinstance(text, dict):
            parts.append(first_non_empty(text.get("text")))
        elif isinstance(text, str):
            parts.append(text)
        for element in block.get("elements") or []:
            if isinstance(element, dict):
                parts.append(_text_from_blocks([element]))
    return "\n".join(p for p in parts if p)


def _address_or_empty(value: str) -> str:
    match = EMAIL_PATTERN.fullmatch(value.strip()) if value else None
    return match.group(0) if match else ""


def coalesce_slack(raw: dict[str, Any]) -> CoalescedMessage:
    """Reduce a Slack message event to its canonical fields."""
    subtype = raw.get("subtype")
    if subtype in _SKIPPED_SLACK_SUBTYPES:
        raise ValidationError("subtype", f"slack {subtype} events are not analysable")

    text = first_non_empty(raw.get("content"), raw.get("text"))
    if not text and raw.get("blocks"):
        text = _text_from_blocks(raw["blocks"])

    channel_name = first_non_empty(
        raw.get("channel_name"), dig(raw, "channel", "name"), raw.get("channelName")
    )
    subject = first_non_empty(raw.get("subject")) or (
        f"Message in {channel_name}" if channel_name else None
    )

    ts = first_non_empty(raw.get("ts"))
    return CoalescedMessage(
        external_id=first_non_empty(raw.get("externalId"), raw.get("client_msg_id"), ts)
        or None,
        sender_name=first_non_empty(
            dig(raw, "sender", "name"),
            raw.get("senderName"),
            dig(raw, "user_profile", "real_name"),
            dig(raw, "user_profile", "display_name"),
            raw.get("username"),
            raw.get("user"),
        ),
        sender_email=_address_or_empty(
            first_non_empty(
                dig(raw, "sender", "email"),
                raw.get("senderEmail"),
                dig(raw, "user_profile", "email"),
            )
        ),
        subject=subject,
        content=clean_slack_formatting(text) if text else "",
        timestamp=parse_timestamp(raw.get("timestamp") or ts or None),
    )


def coalesce_teams(raw: dict[str, Any]) -> CoalescedMessage:
    """Reduce a Microsoft Graph chat/channel message to its canonical fields."""
    message_type = raw.get("messageType", "message")
    if message_type != "message":
        raise ValidationError("messageType", f"teams {message_type} messages are not analysable")
    if raw.get("deletedDateTime"):
        raise ValidationError("deletedDateTime", "deleted teams messages are not analysable")

    body = raw.get("body")
    if isinstance(body, dict):
        content = first_non_empty(body.get("content"))
        if body.get("contentType", "html") == "html":
            content = strip_html(content)
    else:
        content = first_non_empty(raw.get("content"), body)

    user = dig(raw, "from", "user") or {}
    context_name = first_non_empty(raw.get("channelName"), raw.get("chatTopic"))
    subject = first_non_empty(raw.get("subject")) or (
        f"Message in {context_name}" if context_name else None
    )

    return CoalescedMessage(
        external_id=first_non_empty(raw.get("externalId"), raw.get("id")) or None,
        sender_name=first_non_empty(
            dig(raw, "sender", "name"), raw.get("senderName"), user.get("displayName")
        ),
        sender_email=_address_or_empty(
            first_non_empty(
                dig(raw, "sender", "email"),
                raw.get("senderEmail"),
                user.get("email"),
                user.get("userPrincipalName"),
            )
        ),
        subject=subject,
        content=content,
        timestamp=parse_timestamp(raw.get("createdDateTime") or raw.get("timestamp")),
    )


def coalesce_discord(raw: dict[str, Any]) -> CoalescedMessage:
    """Reduce a Discord message payload to its canonical fields."""
    if dig(raw, "author", "bot"):
        raise ValidationError("author", "discord bot messages are not analysable")

    return CoalescedMessage(
        external_id=first_non_empty(raw.get("externalId"), raw.get("id")) or None,
        sender_name=first_non_empty(
            dig(raw, "sender", "name"),
            raw.get("senderName"),
            dig(raw, "author", "global_name"),
            dig(raw, "author", "username"),
            dig(raw, "author", "name"),
        ),
        sender_email=_address_or_empty(
            first_non_empty(dig(raw, "sender", "email"), raw.get("senderEmail"))
        ),
        subject=first_non_empty(raw.get("subject")) or None,
        content=first_non_empty(raw.get("content"), raw.get("clean_content")),
        timestamp=parse_timestamp(raw.get("timestamp") or raw.get("created_at")),
    )
