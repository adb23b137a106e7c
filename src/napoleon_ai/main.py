"""Main entry point for Napoleon AI.

``run`` reads JSON submissions from stdin, one per line::

    {"userId": "u1", "sourcePlatform": "email", "message": {...}, "messageId": null}

and writes one JSON line per submission: either the analysis contract or
a typed error.
"""

from __future__ import annotations

import asyncio
import json
import sys
from dataclasses import dataclass
from typing import Any, TextIO

import asyncpg  # type: ignore[import-untyped]

from napoleon_ai.analysis.batch import BatchProcessor, SlidingWindowRateLimiter
from napoleon_ai.analysis.notifier import EventPublisher, Notifier, WebhookEventPublisher
from napoleon_ai.analysis.orchestrator import AnalysisOrchestrator, SnapshotSource
from napoleon_ai.analysis.providers import AnalysisProvider, get_analysis_provider
from napoleon_ai.analysis.scoring import PriorityScorer, ScoringWeights
from napoleon_ai.analysis.store import AnalysisStore, InMemoryAnalysisStore, PostgresAnalysisStore
from napoleon_ai.config import Settings, get_settings
from napoleon_ai.contacts.registry import ContactRegistry
from napoleon_ai.contacts.storage import ContactStorage
from napoleon_ai.errors import NapoleonError, ValidationError
from napoleon_ai.logging import get_logger, setup_logging

log = get_logger("napoleon_ai.main")


def build_orchestrator(
    settings: Settings,
    *,
    registry: SnapshotSource,
    store: AnalysisStore,
    provider: AnalysisProvider | None = None,
    publisher: EventPublisher | None = None,
) -> AnalysisOrchestrator:
    """Wire an orchestrator from settings and already-built collaborators."""
    weights = ScoringWeights(
        urgent_threshold=settings.urgent_threshold,
        recency_window_hours=settings.recency_window_hours,
    )
    return AnalysisOrchestrator(
        registry=registry,
        store=store,
        notifier=Notifier(publisher, timeout=settings.event_publish_timeout),
        provider=provider,
        scorer=PriorityScorer(weights),
        upstream_timeout=settings.upstream_timeout_seconds,
        claim_wait_timeout=settings.claim_wait_timeout,
        summary_max_length=settings.summary_max_length,
    )


@dataclass
class Application:
    """Everything ``run`` needs, plus the resources it must close."""

    orchestrator: AnalysisOrchestrator
    batch: BatchProcessor
    registry: ContactRegistry
    store: AnalysisStore
    provider: AnalysisProvider | None = None
    publisher: WebhookEventPublisher | None = None
    pool: asyncpg.Pool | None = None

    async def close(self) -> None:
        await self.orchestrator.drain_events()
        if self.provider is not None:
            await self.provider.close()
        if self.publisher is not None:
            await self.publisher.close()
        if self.pool is not None:
            await self.pool.close()
            log.info("postgres_pool_closed")


async def build_application(settings: Settings | None = None) -> Application:
    """Create stores, registry, provider and publisher from settings.

    Without ``postgres_dsn`` everything is kept in memory.
    """
    settings = settings or get_settings()

    pool: asyncpg.Pool | None = None
    store: AnalysisStore
    if settings.postgres_dsn:
        try:
            pool = await asyncpg.create_pool(
                dsn=settings.postgres_dsn,
                min_size=settings.postgres_pool_min_size,
                max_size=settings.postgres_pool_max_size,
            )
            log.info("postgres_pool_created", dsn=settings.postgres_dsn.split("@")[-1])
        except (asyncpg.PostgresError, OSError) as exc:
            log.error("postgres_pool_creation_failed", error=str(exc))
            raise

        contacts = ContactStorage()
        await contacts.initialize(pool)
        registry = await contacts.load_registry()

        postgres_store = PostgresAnalysisStore()
        await postgres_store.initialize(pool)
        store = postgres_store
    else:
        registry = ContactRegistry()
        store = InMemoryAnalysisStore()
        log.info("in_memory_stores_enabled")

    provider = get_analysis_provider(settings)
    publisher = (
        WebhookEventPublisher(
            settings.event_webhook_url,
            secret=(
                settings.event_webhook_secret.get_secret_value()
                if settings.event_webhook_secret
                else None
            ),
            timeout=settings.event_publish_timeout,
        )
        if settings.event_webhook_url
        else None
    )

    orchestrator = build_orchestrator(
        settings, registry=registry, store=store, provider=provider, publisher=publisher
    )
    batch = BatchProcessor(
        orchestrator,
        store,
        chunk_size=settings.batch_chunk_size,
        max_batch_size=settings.max_batch_size,
        rate_limiter=SlidingWindowRateLimiter(
            max_requests=settings.rate_limit_max_messages,
            window_seconds=settings.rate_limit_window_seconds,
        ),
        max_retries=settings.max_retries,
        retry_base_delay=settings.retry_base_delay,
    )
    return Application(
        orchestrator=orchestrator,
        batch=batch,
        registry=registry,
        store=store,
        provider=provider,
        publisher=publisher,
        pool=pool,
    )


def _error_line(exc: NapoleonError) -> dict[str, Any]:
    error: dict[str, Any] = {
        "type": type(exc).__name__,
        "message": exc.message,
        "retryable": exc.retryable,
    }
    if isinstance(exc, ValidationError):
        error["field"] = exc.field
    return {"error": error}


async def handle_line(orchestrator: AnalysisOrchestrator, line: str) -> dict[str, Any]:
    """Analyse one JSON submission line and return the reply object."""
    try:
        request = json.loads(line)
    except json.JSONDecodeError as exc:
        return _error_line(ValidationError("request", f"invalid JSON: {exc.msg}"))
    if not isinstance(request, dict):
        return _error_line(ValidationError("request", "request must be a JSON object"))

    try:
        result = await orchestrator.submit_for_analysis(
            str(request.get("userId") or ""),
            request.get("message"),
            str(request.get("sourcePlatform") or ""),
            message_id=request.get("messageId"),
        )
    except NapoleonError as exc:
        return _error_line(exc)
    return result.to_contract()


async def serve(app: Application, stdin: TextIO, stdout: TextIO) -> int:
    """Process every line of ``stdin``; returns the number of lines handled."""
    handled = 0
    for line in stdin:
        if not line.strip():
            continue
        reply = await handle_line(app.orchestrator, line)
        stdout.write(json.dumps(reply) + "\n")
        stdout.flush()
        handled += 1
    return handled


async def main() -> None:
    """Main application entry point."""
    setup_logging()
    settings = get_settings()
    log.info(
        "starting_napoleon_ai",
        environment=settings.environment,
        analysis_backend=settings.analysis_backend,
        persistent=settings.postgres_dsn is not None,
    )

    app = await build_application(settings)
    try:
        handled = await serve(app, sys.stdin, sys.stdout)
        log.info("submissions_handled", count=handled)
    finally:
        await app.close()
        log.info("napoleon_ai_stopped")


def run() -> None:
    """Run the application."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
