"""Persistence boundary for analysis results.

Results are keyed by the analysis key the orchestrator derives from the
message (see ``AnalysisOrchestrator.analysis_key``). ``claim`` is an
atomic compare-and-set that lets exactly one concurrent caller compute
a given key; ``save_analysis`` replaces the whole result in one write
and releases the claim.
"""

from __future__ import annotations

import asyncio
import json
from datetime import UTC, datetime, timedelta
from typing import Any, Protocol

import asyncpg  # type: ignore[import-untyped]

from napoleon_ai.analysis.models import ActionStatus, AnalysisResult
from napoleon_ai.errors import PersistenceConflict, PersistenceError
from napoleon_ai.logging import get_logger

log = get_logger("napoleon_ai.analysis.store")

# Claims older than this are treated as abandoned by a crashed worker
DEFAULT_CLAIM_TTL_SECONDS = 300


class AnalysisStore(Protocol):
    """Narrow persistence interface consumed by the orchestrator."""

    async def claim(self, key: str, user_id: str) -> bool:
        """Atomically take ownership of ``key``; True for exactly one caller."""
        ...

    async def release(self, key: str) -> None:
        """Drop a claim without writing anything."""
        ...

    async def load_analysis(self, key: str) -> AnalysisResult | None: ...

    async def save_analysis(self, key: str, result: AnalysisResult, user_id: str) -> None:
        """Insert or replace the result for ``key`` in a single atomic write."""
        ...

    async def list_analyses(
        self, user_id: str, since: datetime | None = None
    ) -> list[AnalysisResult]: ...

    async def update_action_item_status(self, item_id: str, status: ActionStatus) -> bool: ...


# ---------------------------------------------------------------------------
# In-memory store
# ---------------------------------------------------------------------------


class InMemoryAnalysisStore:
    """Process-local store; useful for tests and single-worker deployments."""

    def __init__(self) -> None:
        self._results: dict[str, AnalysisResult] = {}
        self._claims: dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def claim(self, key: str, user_id: str) -> bool:
        async with self._lock:
            if key in self._claims or key in self._results:
                return False
            self._claims[key] = user_id
            return True

    async def release(self, key: str) -> None:
        async with self._lock:
            self._claims.pop(key, None)

    async def load_analysis(self, key: str) -> AnalysisResult | None:
        return self._results.get(key)

    async def save_analysis(self, key: str, result: AnalysisResult, user_id: str) -> None:
        if result.user_id != user_id:
            raise PersistenceConflict(result.message_id)
        async with self._lock:
            self._results[key] = result
            self._claims.pop(key, None)

    async def list_analyses(
        self, user_id: str, since: datetime | None = None
    ) -> list[AnalysisResult]:
        results = [
            r
            for r in self._results.values()
            if r.user_id == user_id and (since is None or r.analyzed_at >= since)
        ]
        return sorted(results, key=lambda r: r.analyzed_at, reverse=True)

    async def update_action_item_status(self, item_id: str, status: ActionStatus) -> bool:
        async with self._lock:
            for key, result in self._results.items():
                for index, item in enumerate(result.action_items):
                    if item.id != item_id:
                        continue
                    items = list(result.action_items)
                    items[index] = item.model_copy(update={"status": status})
                    self._results[key] = result.model_copy(update={"action_items": items})
                    return True
        return False

    def __len__(self) -> int:
        return len(self._results)


# ---------------------------------------------------------------------------
# PostgreSQL store
# ---------------------------------------------------------------------------

_CREATE_ANALYSES_TABLE = """
CREATE TABLE IF NOT EXISTS message_analyses (
    analysis_key      TEXT PRIMARY KEY,
    message_id        TEXT NOT NULL,
    user_id           TEXT NOT NULL,
    summary           TEXT NOT NULL,
    priority_score    SMALLINT NOT NULL CHECK (priority_score BETWEEN 0 AND 100),
    priority_reason   TEXT NOT NULL DEFAULT '',
    is_urgent         BOOLEAN NOT NULL DEFAULT FALSE,
    is_vip            BOOLEAN NOT NULL DEFAULT FALSE,
    sentiment         TEXT NOT NULL DEFAULT 'neutral',
    topics            JSONB NOT NULL DEFAULT '[]'::jsonb,
    degraded          BOOLEAN NOT NULL DEFAULT FALSE,
    degraded_reasons  JSONB NOT NULL DEFAULT '[]'::jsonb,
    analyzed_at       TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS idx_message_analyses_user
    ON message_analyses (user_id, analyzed_at DESC);
"""

_CREATE_ACTION_ITEMS_TABLE = """
CREATE TABLE IF NOT EXISTS action_items (
    id            TEXT PRIMARY KEY,
    analysis_key  TEXT NOT NULL REFERENCES message_analyses(analysis_key) ON DELETE CASCADE,
    position      SMALLINT NOT NULL,
    title         TEXT NOT NULL,
    description   TEXT NOT NULL DEFAULT '',
    category      TEXT NOT NULL DEFAULT 'review'
                  CHECK (category IN ('approval', 'review', 'decision', 'meeting', 'response')),
    priority      TEXT NOT NULL DEFAULT 'medium'
                  CHECK (priority IN ('low', 'medium', 'high', 'critical')),
    due_date      TIMESTAMPTZ,
    status        TEXT NOT NULL DEFAULT 'pending'
                  CHECK (status IN ('pending', 'in_progress', 'completed')),
    updated_at    TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS idx_action_items_analysis
    ON action_items (analysis_key, position);
"""

_CREATE_CLAIMS_TABLE = """
CREATE TABLE IF NOT EXISTS analysis_claims (
    analysis_key  TEXT PRIMARY KEY,
    user_id       TEXT NOT NULL,
    claimed_at    TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
"""


class PostgresAnalysisStore:
    """asyncpg-backed store; one transaction per saved result."""

    def __init__(self, claim_ttl_seconds: int = DEFAULT_CLAIM_TTL_SECONDS) -> None:
        self._pool: asyncpg.Pool | None = None
        self._claim_ttl = timedelta(seconds=claim_ttl_seconds)

    async def initialize(self, pool: asyncpg.Pool) -> None:
        """Create tables and store the connection pool."""
        self._pool = pool
        async with pool.acquire() as conn:
            await conn.execute(_CREATE_ANALYSES_TABLE)
            await conn.execute(_CREATE_ACTION_ITEMS_TABLE)
            await conn.execute(_CREATE_CLAIMS_TABLE)
        log.info("analysis_store_initialized")

    def _require_pool(self) -> asyncpg.Pool:
        if self._pool is None:
            raise PersistenceError("analysis store is not initialized")
        return self._pool

    # ------------------------------------------------------------------
    # Claims
    # ------------------------------------------------------------------

    async def claim(self, key: str, user_id: str) -> bool:
        pool = self._require_pool()
        stale_before = datetime.now(UTC) - self._claim_ttl
        try:
            async with pool.acquire() as conn:
                done = await conn.fetchval(
                    "SELECT 1 FROM message_analyses WHERE analysis_key = $1", key
                )
                if done:
                    return False
                claimed = await conn.fetchval(
                    """
                    INSERT INTO analysis_claims (analysis_key, user_id)
                    VALUES ($1, $2)
                    ON CONFLICT (analysis_key) DO UPDATE SET
                        user_id = EXCLUDED.user_id,
                        claimed_at = NOW()
                    WHERE analysis_claims.claimed_at < $3
                    RETURNING analysis_key
                    """,
                    key,
                    user_id,
                    stale_before,
                )
        except (asyncpg.PostgresError, OSError) as exc:
            log.error("analysis_claim_failed", key=key, error=str(exc))
            raise PersistenceError(f"failed to claim analysis: {exc}") from exc
        return claimed is not None

    async def release(self, key: str) -> None:
        pool = self._require_pool()
        try:
            async with pool.acquire() as conn:
                await conn.execute("DELETE FROM analysis_claims WHERE analysis_key = $1", key)
        except (asyncpg.PostgresError, OSError) as exc:
            raise PersistenceError(f"failed to release claim: {exc}") from exc

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------

    async def load_analysis(self, key: str) -> AnalysisResult | None:
        pool = self._require_pool()
        try:
            async with pool.acquire() as conn:
                row = await conn.fetchrow(
                    "SELECT * FROM message_analyses WHERE analysis_key = $1", key
                )
                if row is None:
                    return None
                action_rows = await conn.fetch(
                    "SELECT * FROM action_items WHERE analysis_key = $1 ORDER BY position",
                    key,
                )
        except (asyncpg.PostgresError, OSError) as exc:
            raise PersistenceError(f"failed to load analysis: {exc}") from exc
        return _result_from_rows(dict(row), [dict(a) for a in action_rows])

    async def save_analysis(self, key: str, result: AnalysisResult, user_id: str) -> None:
        """Replace the result and its action items atomically, then drop the claim."""
        if result.user_id != user_id:
            raise PersistenceConflict(result.message_id)
        row = result.to_db_row()
        pool = self._require_pool()
        try:
            async with pool.acquire() as conn, conn.transaction():
                stored = await conn.fetchval(
                    """
                    INSERT INTO message_analyses
                        (analysis_key, message_id, user_id, summary, priority_score,
                         priority_reason, is_urgent, is_vip, sentiment, topics,
                         degraded, degraded_reasons, analyzed_at)
                    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10::jsonb,
                            $11, $12::jsonb, $13)
                    ON CONFLICT (analysis_key) DO UPDATE SET
                        message_id = EXCLUDED.message_id,
                        summary = EXCLUDED.summary,
                        priority_score = EXCLUDED.priority_score,
                        priority_reason = EXCLUDED.priority_reason,
                        is_urgent = EXCLUDED.is_urgent,
                        is_vip = EXCLUDED.is_vip,
                        sentiment = EXCLUDED.sentiment,
                        topics = EXCLUDED.topics,
                        degraded = EXCLUDED.degraded,
                        degraded_reasons = EXCLUDED.degraded_reasons,
                        analyzed_at = EXCLUDED.analyzed_at
                    WHERE message_analyses.user_id = EXCLUDED.user_id
                    RETURNING analysis_key
                    """,
                    key,
                    row["message_id"],
                    row["user_id"],
                    row["summary"],
                    row["priority_score"],
                    row["priority_reason"],
                    row["is_urgent"],
                    row["is_vip"],
                    row["sentiment"],
                    json.dumps(row["topics"]),
                    row["degraded"],
                    json.dumps(row["degraded_reasons"]),
                    row["analyzed_at"],
                )
                if stored is None:
                    # key belongs to another user; the transaction rolls back
                    raise PersistenceConflict(result.message_id)
                await conn.execute("DELETE FROM action_items WHERE analysis_key = $1", key)
                if result.action_items:
                    await conn.executemany(
                        """
                        INSERT INTO action_items
                            (id, analysis_key, position, title, description,
                             category, priority, due_date, status)
                        VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
                        """,
                        [
                            (
                                item.id,
                                key,
                                position,
                                item.title,
                                item.description,
                                item.category.value,
                                item.priority.value,
                                item.due_date,
                                item.status.value,
                            )
                            for position, item in enumerate(result.action_items)
                        ],
                    )
                await conn.execute("DELETE FROM analysis_claims WHERE analysis_key = $1", key)
        except asyncpg.UniqueViolationError as exc:
            log.warning("analysis_save_conflict", key=key, error=str(exc))
            raise PersistenceConflict(result.message_id) from exc
        except (asyncpg.PostgresError, OSError) as exc:
            log.error("analysis_save_failed", key=key, error=str(exc))
            raise PersistenceError(f"failed to save analysis: {exc}") from exc

        log.info(
            "analysis_saved",
            key=key,
            user_id=user_id,
            score=result.priority.score,
            action_items=len(result.action_items),
        )

    async def list_analyses(
        self, user_id: str, since: datetime | None = None
    ) -> list[AnalysisResult]:
        pool = self._require_pool()
        try:
            async with pool.acquire() as conn:
                rows = await conn.fetch(
                    """
                    SELECT * FROM message_analyses
                    WHERE user_id = $1 AND ($2::timestamptz IS NULL OR analyzed_at >= $2)
                    ORDER BY analyzed_at DESC
                    """,
                    user_id,
                    since,
                )
                keys = [r["analysis_key"] for r in rows]
                action_rows = (
                    await conn.fetch(
                        "SELECT * FROM action_items WHERE analysis_key = ANY($1::text[])"
                        " ORDER BY analysis_key, position",
                        keys,
                    )
                    if keys
                    else []
                )
        except (asyncpg.PostgresError, OSError) as exc:
            raise PersistenceError(f"failed to list analyses: {exc}") from exc

        by_key: dict[str, list[dict[str, Any]]] = {}
        for action in action_rows:
            by_key.setdefault(action["analysis_key"], []).append(dict(action))
        return [
            _result_from_rows(dict(r), by_key.get(r["analysis_key"], [])) for r in rows
        ]

    async def update_action_item_status(self, item_id: str, status: ActionStatus) -> bool:
        """Move an action item through its workflow; analysis content stays untouched."""
        pool = self._require_pool()
        try:
            async with pool.acquire() as conn:
                result = await conn.execute(
                    """
                    UPDATE action_items SET status = $2, updated_at = NOW()
                    WHERE id = $1
                    """,
                    item_id,
                    ActionStatus(status).value,
                )
        except (asyncpg.PostgresError, OSError) as exc:
            raise PersistenceError(f"failed to update action item: {exc}") from exc
        updated = result == "UPDATE 1"
        if updated:
            log.info("action_item_status_updated", item_id=item_id, status=str(status))
        return updated


def _result_from_rows(row: dict[str, Any], action_rows: list[dict[str, Any]]) -> AnalysisResult:
    for column in ("topics", "degraded_reasons"):
        if isinstance(row.get(column), str):
            row[column] = json.loads(row[column])
    return AnalysisResult.from_db_row(row, action_rows)
