"""Shared helpers for platform adapters.

Each adapter reduces a provider payload to a CoalescedMessage; the
normalizer then applies the platform-independent rules (defaults,
validation, id generation).
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from dateutil import parser as date_parser

# Regex to extract plain email from "Name <email>" format
EMAIL_PATTERN = re.compile(r"[\w.+'-]+@[\w-]+(?:\.[\w-]+)+")
_NAME_ADDR_PATTERN = re.compile(r'^\s*"?([^"<]*?)"?\s*<([^>]+)>\s*$')


@dataclass
class CoalescedMessage:
    """Fields pulled out of a raw payload, before validation."""

    external_id: str | None
    sender_name: str
    sender_email: str
    subject: str | None
    content: str
    timestamp: datetime | None


def first_non_empty(*values: Any) -> str:
    """Return the first value that is a non-blank string."""
    for value in values:
        if isinstance(value, str) and value.strip():
            return value.strip()
        if isinstance(value, int | float) and not isinstance(value, bool):
            return str(value)
    return ""


def dig(raw: dict[str, Any], *path: str) -> Any:
    """Walk nested dicts, returning None when any hop is missing."""
    current: Any = raw
    for key in path:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def split_name_address(value: str) -> tuple[str, str]:
    """Split ``"Jane Doe <jane@x.com>"`` into its parts.

    A bare address returns an empty name; a bare name returns an
    empty address.
    """
    if not value:
        return "", ""
    match = _NAME_ADDR_PATTERN.match(value)
    if match:
        return match.group(1).strip(), match.group(2).strip()
    found = EMAIL_PATTERN.search(value)
    if found and found.group(0) == value.strip():
        return "", found.group(0)
    return value.strip(), ""


def parse_timestamp(value: Any) -> datetime | None:
    """Parse epoch seconds/millis, ISO-8601 strings or datetimes into UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if isinstance(value, int | float) and not isinstance(value, bool):
        try:
            seconds = value / 1000 if value > 1e11 else value
            return datetime.fromtimestamp(seconds, tz=UTC)
        except (ValueError, OverflowError, OSError):
            # nan, inf and values beyond the platform's time_t
            return None
    if isinstance(value, str):
        text = value.strip()
        try:
            seconds = float(text)
        except ValueError:
            pass
        else:
            return parse_timestamp(seconds)
        try:
            parsed = date_parser.isoparse(text)
        except (ValueError, OverflowError):
            try:
                parsed = date_parser.parse(text)
            except (ValueError, OverflowError):
                return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
    return None
