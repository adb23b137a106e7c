"""PostgreSQL storage for VIP contacts.

Follows the asyncpg.Pool pattern used by the analysis store: initialise
with a pool, then use async methods for reads/writes. The registry the
scorer consults is hydrated from here with ``load_registry``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import asyncpg  # type: ignore[import-untyped]

from napoleon_ai.contacts.models import VipContact
from napoleon_ai.contacts.registry import ContactRegistry, validate_email
from napoleon_ai.errors import PersistenceError
from napoleon_ai.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Iterable

log = get_logger("napoleon_ai.contacts.storage")

# ------------------------------------------------------------------
# DDL
# ------------------------------------------------------------------

_CREATE_VIP_CONTACTS_TABLE = """
CREATE TABLE IF NOT EXISTS vip_contacts (
    id                BIGSERIAL PRIMARY KEY,
    user_id           TEXT NOT NULL,
    email             TEXT NOT NULL,
    name              TEXT,
    relationship_type TEXT NOT NULL DEFAULT 'other',
    priority_level    SMALLINT NOT NULL CHECK (priority_level BETWEEN 1 AND 10),
    priority_override SMALLINT CHECK (priority_override BETWEEN 1 AND 10),
    company           TEXT,
    source            TEXT NOT NULL DEFAULT 'manual',
    is_active         BOOLEAN NOT NULL DEFAULT TRUE,
    created_at        TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at        TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    UNIQUE (user_id, email)
);
"""


class ContactStorage:
    """asyncpg-backed persistence for the vip_contacts table."""

    def __init__(self) -> None:
        self._pool: asyncpg.Pool | None = None

    async def initialize(self, pool: asyncpg.Pool) -> None:
        """Create the table and store the connection pool."""
        self._pool = pool
        async with pool.acquire() as conn:
            await conn.execute(_CREATE_VIP_CONTACTS_TABLE)
        log.info("contact_storage_initialized")

    def _require_pool(self) -> asyncpg.Pool:
        if self._pool is None:
            raise PersistenceError("contact storage is not initialized")
        return self._pool

    async def upsert_contact(self, contact: VipContact) -> VipContact:
        """Insert or update a contact keyed by (user_id, email).

        The stored priority level is always the one the model derived;
        re-running the same upsert is a no-op apart from updated_at.
        """
        validate_email(contact.email)
        row = contact.to_db_row()
        pool = self._require_pool()
        try:
            async with pool.acquire() as conn:
                await conn.execute(
                    """
                    INSERT INTO vip_contacts
                        (user_id, email, name, relationship_type, priority_level,
                         priority_override, company, source, is_active)
                    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
                    ON CONFLICT (user_id, email) DO UPDATE SET
                        name = COALESCE(EXCLUDED.name, vip_contacts.name),
                        relationship_type = EXCLUDED.relationship_type,
                        priority_level = EXCLUDED.priority_level,
                        priority_override = EXCLUDED.priority_override,
                        company = COALESCE(EXCLUDED.company, vip_contacts.company),
                        source = EXCLUDED.source,
                        is_active = EXCLUDED.is_active,
                        updated_at = NOW()
                    """,
                    row["user_id"],
                    row["email"],
                    row["name"],
                    row["relationship_type"],
                    row["priority_level"],
                    row["priority_override"],
                    row["company"],
                    row["source"],
                    row["is_active"],
                )
        except (asyncpg.PostgresError, OSError) as exc:
            log.error("vip_contact_upsert_failed", user_id=contact.user_id, error=str(exc))
            raise PersistenceError(f"failed to upsert contact: {exc}") from exc
        return contact

    async def upsert_many(self, contacts: Iterable[VipContact]) -> int:
        """Upsert a batch of contacts (e.g. from onboarding)."""
        count = 0
        for contact in contacts:
            await self.upsert_contact(contact)
            count += 1
        log.info("vip_contacts_upserted", count=count)
        return count

    async def load_contacts(self, user_id: str | None = None) -> list[VipContact]:
        """Fetch active contacts, optionally for a single user."""
        pool = self._require_pool()
        try:
            async with pool.acquire() as conn:
                if user_id is None:
                    rows = await conn.fetch(
                        "SELECT * FROM vip_contacts WHERE is_active ORDER BY user_id, email"
                    )
                else:
                    rows = await conn.fetch(
                        """
                        SELECT * FROM vip_contacts
                        WHERE user_id = $1 AND is_active
                        ORDER BY priority_level DESC, email
                        """,
                        user_id,
                    )
        except (asyncpg.PostgresError, OSError) as exc:
            raise PersistenceError(f"failed to load contacts: {exc}") from exc
        return [VipContact.from_db_row(dict(r)) for r in rows]

    async def delete_contact(self, user_id: str, email: str) -> bool:
        """Remove a contact; returns whether a row was deleted."""
        pool = self._require_pool()
        try:
            async with pool.acquire() as conn:
                result = await conn.execute(
                    "DELETE FROM vip_contacts WHERE user_id = $1 AND email = $2",
                    user_id,
                    email.strip().lower(),
                )
        except (asyncpg.PostgresError, OSError) as exc:
            raise PersistenceError(f"failed to delete contact: {exc}") from exc
        return bool(result == "DELETE 1")

    async def load_registry(self, user_id: str | None = None) -> ContactRegistry:
        """Hydrate an in-memory registry from the table."""
        contacts = await self.load_contacts(user_id)
        registry = ContactRegistry(contacts)
        log.info("contact_registry_loaded", contacts=len(registry))
        return registry
