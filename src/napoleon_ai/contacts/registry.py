"""In-memory VIP contact registry.

Contacts are keyed by ``(user_id, email)``; re-adding a contact merges
into the existing entry and recomputes its derived priority level. The
scorer only ever sees ``priority_for`` (or a frozen snapshot), never
the mutable registry itself.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Protocol

from pydantic import ValidationError as PydanticValidationError

from napoleon_ai.contacts.models import RelationshipType, VipContact
from napoleon_ai.errors import ValidationError
from napoleon_ai.logging import get_logger

log = get_logger("napoleon_ai.contacts.registry")

EMAIL_PATTERN = re.compile(r"^[A-Za-z0-9._%+'-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}$")

# Caller-supplied fields that are always recomputed server-side
_DERIVED_FIELDS = frozenset({"priority_level", "priorityLevel", "updated_at"})


@dataclass(frozen=True)
class VipMatch:
    """Result of a registry lookup."""

    is_vip: bool
    level: int
    relationship: RelationshipType | None = None

    @classmethod
    def none(cls) -> VipMatch:
        return cls(is_vip=False, level=0)


class VipLookup(Protocol):
    """Synchronous, side-effect-free VIP lookup consumed by the scorer."""

    def priority_for(self, user_id: str, email: str) -> VipMatch: ...


def validate_email(email: str | None, *, field: str = "email") -> str:
    """Return the lower-cased address or raise ValidationError."""
    if email is None or not email.strip():
        raise ValidationError(field, "email is required")
    cleaned = email.strip()
    if not EMAIL_PATTERN.match(cleaned):
        raise ValidationError(field, f"malformed email address: {cleaned!r}")
    return cleaned.lower()


class RegistrySnapshot:
    """Immutable view of the registry taken at analysis time."""

    def __init__(self, entries: Mapping[tuple[str, str], VipMatch]) -> None:
        self._entries = MappingProxyType(dict(entries))

    def priority_for(self, user_id: str, email: str) -> VipMatch:
        if not email:
            return VipMatch.none()
        return self._entries.get((user_id, email.strip().lower()), VipMatch.none())

    def __len__(self) -> int:
        return len(self._entries)


class ContactRegistry:
    """Keyed map of VIP contacts with upsert-by-natural-key semantics."""

    def __init__(self, contacts: Iterable[VipContact] | None = None) -> None:
        self._contacts: dict[tuple[str, str], VipContact] = {}
        for contact in contacts or ():
            self.upsert(contact)

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def upsert(self, contact: VipContact | Mapping[str, Any]) -> VipContact:
        """Insert or merge a contact keyed by ``(user_id, email)``.

        Any ``priority_level`` supplied by the caller is discarded; the
        level is recomputed from ``relationship_type`` (or an explicit
        ``priority_override``). Repeating an identical upsert leaves the
        registry unchanged.

        Raises:
            ValidationError: If the email is missing or malformed.
        """
        data = (
            contact.model_dump(exclude=set(_DERIVED_FIELDS))
            if isinstance(contact, VipContact)
            else {k: v for k, v in contact.items() if k not in _DERIVED_FIELDS}
        )
        if "relationshipType" in data and "relationship_type" not in data:
            data["relationship_type"] = data.pop("relationshipType")
        if "userId" in data and "user_id" not in data:
            data["user_id"] = data.pop("userId")

        user_id = data.get("user_id")
        if not user_id:
            raise ValidationError("user_id", "user_id is required")
        email = validate_email(data.get("email"))
        data["email"] = email

        key = (user_id, email)
        existing = self._contacts.get(key)
        if existing is not None:
            merged = existing.model_dump(exclude=set(_DERIVED_FIELDS))
            merged.update({k: v for k, v in data.items() if v is not None})
            updated = _build_contact(merged)
            if updated.model_dump(exclude={"updated_at"}) == existing.model_dump(
                exclude={"updated_at"}
            ):
                return existing
            self._contacts[key] = updated
            log.info(
                "vip_contact_updated",
                user_id=user_id,
                relationship=updated.relationship_type.value,
                priority_level=updated.priority_level,
            )
            return updated

        created = _build_contact(data)
        self._contacts[key] = created
        log.info(
            "vip_contact_added",
            user_id=user_id,
            relationship=created.relationship_type.value,
            priority_level=created.priority_level,
        )
        return created

    def remove(self, user_id: str, email: str) -> bool:
        """Remove a contact; returns whether anything was removed."""
        removed = self._contacts.pop((user_id, email.strip().lower()), None)
        if removed is not None:
            log.info("vip_contact_removed", user_id=user_id)
        return removed is not None

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def priority_for(self, user_id: str, email: str) -> VipMatch:
        """Case-insensitive, exact-match lookup. Unknown senders get level 0."""
        if not email:
            return VipMatch.none()
        contact = self._contacts.get((user_id, email.strip().lower()))
        if contact is None or not contact.is_active:
            return VipMatch.none()
        return VipMatch(
            is_vip=True,
            level=contact.priority_level,
            relationship=contact.relationship_type,
        )

    def get(self, user_id: str, email: str) -> VipContact | None:
        return self._contacts.get((user_id, email.strip().lower()))

    def list_contacts(self, user_id: str) -> list[VipContact]:
        """All contacts for a user, highest priority first."""
        contacts = [c for (uid, _), c in self._contacts.items() if uid == user_id]
        return sorted(contacts, key=lambda c: (-c.priority_level, c.email))

    def snapshot(self, user_id: str | None = None) -> RegistrySnapshot:
        """Freeze the current VIP matches, optionally for a single user."""
        entries = {
            key: VipMatch(True, c.priority_level, c.relationship_type)
            for key, c in self._contacts.items()
            if c.is_active and (user_id is None or key[0] == user_id)
        }
        return RegistrySnapshot(entries)

    def __len__(self) -> int:
        return len(self._contacts)


def _build_contact(data: dict[str, Any]) -> VipContact:
    try:
        return VipContact(**data)
    except PydanticValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ())) or "contact"
        raise ValidationError(field, first.get("msg", "invalid value")) from exc
