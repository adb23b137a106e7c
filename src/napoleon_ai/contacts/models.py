"""Pydantic models for VIP contacts.

A contact's priority level is derived from its relationship type and is
never taken from caller input; ``priority_override`` is the only way to
deviate from the mapping.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class RelationshipType(StrEnum):
    """How a VIP contact relates to the executive."""

    BOARD_MEMBER = "board-member"
    INVESTOR = "investor"
    EXECUTIVE = "executive"
    CLIENT = "client"
    PARTNER = "partner"
    VIP = "vip"
    OTHER = "other"

    @classmethod
    def parse(cls, value: str | RelationshipType | None) -> RelationshipType:
        """Accept onboarding spellings such as 'Board Member' or 'board_member'."""
        if isinstance(value, RelationshipType):
            return value
        if not value:
            return cls.OTHER
        key = value.strip().lower().replace("_", "-").replace(" ", "-")
        try:
            return cls(key)
        except ValueError:
            return cls.OTHER


RELATIONSHIP_PRIORITY: dict[RelationshipType, int] = {
    RelationshipType.BOARD_MEMBER: 10,
    RelationshipType.INVESTOR: 9,
    RelationshipType.EXECUTIVE: 8,
    RelationshipType.VIP: 8,
    RelationshipType.CLIENT: 7,
    RelationshipType.PARTNER: 6,
    RelationshipType.OTHER: 5,
}


def priority_level_for(relationship: RelationshipType | str | None) -> int:
    """Map a relationship type onto its 1-10 priority level."""
    return RELATIONSHIP_PRIORITY[RelationshipType.parse(relationship)]


# ---------------------------------------------------------------------------
# Contact
# ---------------------------------------------------------------------------


class VipContact(BaseModel):
    """A sender the user registered as deserving elevated priority."""

    model_config = ConfigDict(validate_assignment=True)

    user_id: str = Field(min_length=1, description="Owning user")
    email: str = Field(description="Contact email, stored lower-cased")
    name: str | None = Field(default=None, description="Display name")
    relationship_type: RelationshipType = Field(default=RelationshipType.OTHER)
    priority_level: int = Field(default=5, ge=1, le=10, description="Derived from relationship")
    priority_override: int | None = Field(
        default=None, ge=1, le=10, description="Explicit override of the derived level"
    )
    company: str | None = Field(default=None)
    source: str = Field(default="manual", description="onboarding, manual, import")
    is_active: bool = Field(default=True)
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        """Lookups are case-insensitive, so keys are stored lower-cased."""
        return v.strip().lower()

    @field_validator("relationship_type", mode="before")
    @classmethod
    def parse_relationship(cls, v: Any) -> RelationshipType:
        return RelationshipType.parse(v)

    @model_validator(mode="after")
    def derive_priority_level(self) -> VipContact:
        """Recompute priority_level from the relationship on every validation."""
        derived = (
            self.priority_override
            if self.priority_override is not None
            else RELATIONSHIP_PRIORITY[self.relationship_type]
        )
        # plain assignment would re-run validate_assignment
        object.__setattr__(self, "priority_level", derived)
        return self

    def to_db_row(self) -> dict[str, Any]:
        """Convert to a flat dict for PostgreSQL insertion."""
        return {
            "user_id": self.user_id,
            "email": self.email,
            "name": self.name,
            "relationship_type": self.relationship_type.value,
            "priority_level": self.priority_level,
            "priority_override": self.priority_override,
            "company": self.company,
            "source": self.source,
            "is_active": self.is_active,
        }

    @classmethod
    def from_db_row(cls, row: dict[str, Any]) -> VipContact:
        """Create from a PostgreSQL row dict."""
        return cls(
            user_id=row["user_id"],
            email=row["email"],
            name=row.get("name"),
            relationship_type=row.get("relationship_type", "other"),
            priority_override=row.get("priority_override"),
            company=row.get("company"),
            source=row.get("source", "manual"),
            is_active=row.get("is_active", True),
            updated_at=row.get("updated_at") or datetime.now(UTC),
        )
