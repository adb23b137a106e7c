"""Email source adapter.

Accepts the shapes produced by the mail integrations: Gmail-style
``from`` headers (``"Name <addr>"``), a nested ``sender`` object, or
flat ``senderName``/``senderEmail`` fields.
"""

from __future__ import annotations

from typing import Any

from napoleon_ai.analysis.adapters.base import (
    CoalescedMessage,
    dig,
    first_non_empty,
    parse_timestamp,
    split_name_address,
)


def _header(raw: dict[str, Any], name: str) -> str:
    """Look up a header from a Gmail ``payload.headers`` list."""
    headers = dig(raw, "payload", "headers") or raw.get("headers") or []
    if isinstance(headers, dict):
        return first_non_empty(headers.get(name), headers.get(name.lower()))
    for header in headers:
        if isinstance(header, dict) and str(header.get("name", "")).lower() == name.lower():
            return first_non_empty(header.get("value"))
    return ""


def coalesce_email(raw: dict[str, Any]) -> CoalescedMessage:
    """Reduce a raw email payload to its canonical fields."""
    sender = raw.get("sender")
    from_header = first_non_empty(
        raw.get("from"), raw.get("from_email"), _header(raw, "From")
    )
    header_name, header_email = split_name_address(from_header)

    if isinstance(sender, str):
        sender_str_name, sender_str_email = split_name_address(sender)
    else:
        sender_str_name, sender_str_email = "", ""

    sender_name = first_non_empty(
        dig(raw, "sender", "name"),
        raw.get("senderName"),
        raw.get("sender_name"),
        sender_str_name,
        header_name,
    )
    sender_email = first_non_empty(
        dig(raw, "sender", "email"),
        raw.get("senderEmail"),
        raw.get("sender_email"),
        sender_str_email,
        header_email,
    )

    subject = first_non_empty(raw.get("subject"), _header(raw, "Subject")) or None
    content = first_non_empty(
        raw.get("content"),
        raw.get("body"),
        raw.get("bodyText"),
        raw.get("body_text"),
        raw.get("snippet"),
    )

    return CoalescedMessage(
        external_id=first_non_empty(
            raw.get("externalId"), raw.get("external_id"), raw.get("gmail_id"), raw.get("id")
        )
        or None,
        sender_name=sender_name,
        sender_email=sender_email,
        subject=subject,
        content=content,
        timestamp=parse_timestamp(
            raw.get("timestamp")
            or raw.get("date")
            or raw.get("received_at")
            or raw.get("internalDate")
            or _header(raw, "Date")
            or None
        ),
    )
