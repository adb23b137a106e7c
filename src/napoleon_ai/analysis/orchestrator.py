"""Analysis orchestrator.

Coordinates the full analysis flow for one message:
1. Return the stored result if this message was already analysed
2. Claim the message so concurrent duplicates collapse to one worker
3. Score (pure heuristic) and run classify / extract / summarize concurrently
4. Merge into one AnalysisResult, degrading failed model steps
5. Persist in a single write, then publish ``message_processed``
"""

from __future__ import annotations

import asyncio
import uuid
from collections import OrderedDict
from collections.abc import Awaitable, Callable, Mapping
from datetime import UTC, datetime
from typing import Any, Protocol

from napoleon_ai.analysis.classifier import ModelClassifier, classify
from napoleon_ai.analysis.extractors import ModelExtractor, extract
from napoleon_ai.analysis.models import (
    ActionItem,
    AnalysisResult,
    AnalysisState,
    CanonicalMessage,
    Classification,
    Sentiment,
    SourcePlatform,
)
from napoleon_ai.analysis.normalizer import MessageNormalizer
from napoleon_ai.analysis.notifier import Notifier
from napoleon_ai.analysis.providers import AnalysisProvider
from napoleon_ai.analysis.scoring import PriorityScorer
from napoleon_ai.analysis.store import AnalysisStore
from napoleon_ai.analysis.summarizer import ModelSummarizer, summarize
from napoleon_ai.constants import MAX_TRACKED_STATES, TEMP_ID_PREFIX
from napoleon_ai.contacts.registry import VipLookup
from napoleon_ai.errors import PersistenceConflict, PersistenceError, ValidationError
from napoleon_ai.logging import get_logger
from napoleon_ai.utils import timed_operation

log = get_logger("napoleon_ai.analysis.orchestrator")

CLASSIFY_STEP = "classify"
EXTRACT_STEP = "extract"
SUMMARIZE_STEP = "summarize"


class SnapshotSource(Protocol):
    """Anything that can freeze VIP matches for one user (e.g. ContactRegistry)."""

    def snapshot(self, user_id: str | None = None) -> VipLookup: ...


class AnalysisOrchestrator:
    """Turns canonical messages into stored AnalysisResults.

    With no provider every step is heuristic. With a provider, the
    classifier, extractor and summarizer call the model; a failed or
    timed-out model step never fails the analysis, it degrades it.

    ``message_processed`` events are published in the background once the
    result is stored; ``drain_events`` waits for the ones still in flight.
    """

    def __init__(
        self,
        *,
        registry: SnapshotSource,
        store: AnalysisStore,
        notifier: Notifier | None = None,
        provider: AnalysisProvider | None = None,
        scorer: PriorityScorer | None = None,
        normalizer: MessageNormalizer | None = None,
        upstream_timeout: float = 30.0,
        claim_wait_timeout: float = 60.0,
        claim_poll_interval: float = 0.05,
        summary_max_length: int = 200,
        max_tracked_states: int = MAX_TRACKED_STATES,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._registry = registry
        self._store = store
        self._notifier = notifier or Notifier(None)
        self._provider = provider
        self._clock = clock or (lambda: datetime.now(UTC))
        self._scorer = scorer or PriorityScorer(clock=self._clock)
        self._normalizer = normalizer or MessageNormalizer(clock=self._clock)
        self._upstream_timeout = upstream_timeout
        self._claim_wait_timeout = claim_wait_timeout
        self._claim_poll_interval = claim_poll_interval
        self._summary_max_length = summary_max_length
        self._max_tracked_states = max_tracked_states
        self._states: OrderedDict[str, AnalysisState] = OrderedDict()
        self._event_tasks: set[asyncio.Task[bool]] = set()

        self._model_classifier = ModelClassifier(provider) if provider else None
        self._model_extractor = ModelExtractor(provider) if provider else None
        self._model_summarizer = (
            ModelSummarizer(provider, max_length=summary_max_length) if provider else None
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @staticmethod
    def stable_key(message: CanonicalMessage) -> str | None:
        """Deduplication key, or None for messages that only have a ``temp_`` id."""
        if message.idempotency_key:
            return message.idempotency_key
        if not message.id.startswith(TEMP_ID_PREFIX):
            return f"{message.user_id}:{message.id}"
        return None

    @classmethod
    def analysis_key(cls, message: CanonicalMessage) -> str:
        """Key under which the result is claimed and stored.

        Provider ids give a stable key; a caller-supplied id is used as-is.
        Synthetic ``temp_`` ids are not stable, so those messages get a
        fresh key and are never deduplicated.
        """
        return cls.stable_key(message) or str(uuid.uuid4())

    def state(self, key: str) -> AnalysisState:
        """Lifecycle state of a recently seen key; older keys read as UNANALYZED."""
        return self._states.get(key, AnalysisState.UNANALYZED)

    async def drain_events(self) -> None:
        """Wait for background event publishes to finish."""
        while self._event_tasks:
            await asyncio.gather(*self._event_tasks, return_exceptions=True)

    async def submit_for_analysis(
        self,
        user_id: str,
        raw_message: Mapping[str, Any],
        source_platform: SourcePlatform | str,
        message_id: str | None = None,
    ) -> AnalysisResult:
        """Normalize a raw provider message and analyse it.

        Raises:
            ValidationError: If the raw message cannot be normalized.
            PersistenceError: If the store is unavailable.
        """
        message = self._normalizer.normalize(
            raw_message, source_platform, user_id=user_id, message_id=message_id
        )
        return await self.analyze(message, user_id)

    async def analyze(self, message: CanonicalMessage, user_id: str) -> AnalysisResult:
        """Analyse a message exactly once per analysis key.

        Returns the stored result when one exists, including when another
        caller won the claim for the same message.

        Raises:
            ValidationError: If ``user_id`` does not own the message.
            PersistenceError: If the store is unavailable or the winning
                caller never stored a result.
        """
        if message.user_id != user_id:
            raise ValidationError("userId", "message belongs to a different user")

        stable = self.stable_key(message)
        key = stable or str(uuid.uuid4())
        existing = await self._store.load_analysis(key)
        if existing is not None and existing.is_complete:
            log.info("analysis_reused", message_id=message.id, user_id=user_id)
            self._record(stable, AnalysisState.ANALYZED)
            return existing

        if not await self._store.claim(key, user_id):
            winner = await self._await_winner(key, user_id)
            if winner is not None:
                log.info("analysis_conflict_resolved", message_id=message.id, user_id=user_id)
                self._record(stable, AnalysisState.ANALYZED)
                return winner

        self._record(stable, AnalysisState.ANALYZING)
        try:
            async with timed_operation(
                "analysis_completed", log=log, message_id=message.id, user_id=user_id
            ) as timing:
                result = await self._compute(message)
                timing["score"] = result.priority.score
                timing["degraded"] = result.degraded
                await self._store.save_analysis(key, result, user_id)
        except PersistenceConflict as exc:
            self._record(stable, AnalysisState.FAILED)
            await self._release_quietly(key)
            stored = await self._store.load_analysis(key)
            if stored is None:
                raise PersistenceError(f"conflicting write for {message.id} left no result") from exc
            self._record(stable, AnalysisState.ANALYZED)
            return stored
        except BaseException:
            self._record(stable, AnalysisState.FAILED)
            await self._release_quietly(key)
            raise

        self._record(stable, AnalysisState.ANALYZED)
        self._publish_in_background(result)
        return result

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _record(self, key: str | None, state: AnalysisState) -> None:
        if key is None:
            return
        self._states[key] = state
        self._states.move_to_end(key)
        while len(self._states) > self._max_tracked_states:
            self._states.popitem(last=False)

    def _publish_in_background(self, result: AnalysisResult) -> None:
        task = asyncio.create_task(self._notifier.notify_processed(result))
        self._event_tasks.add(task)
        task.add_done_callback(self._event_tasks.discard)

    async def _await_winner(self, key: str, user_id: str) -> AnalysisResult | None:
        """Wait for the claim holder's result; None means we took over the claim."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._claim_wait_timeout
        while True:
            stored = await self._store.load_analysis(key)
            if stored is not None:
                return stored
            if await self._store.claim(key, user_id):
                return None
            if loop.time() >= deadline:
                log.error("analysis_claim_wait_timeout", key=key, user_id=user_id)
                raise PersistenceError(f"timed out waiting for analysis {key}")
            await asyncio.sleep(self._claim_poll_interval)

    async def _release_quietly(self, key: str) -> None:
        try:
            await self._store.release(key)
        except PersistenceError as exc:
            log.warning("analysis_claim_release_failed", key=key, error=str(exc))

    async def _compute(self, message: CanonicalMessage) -> AnalysisResult:
        now = self._clock()
        vip_lookup = self._registry.snapshot(message.user_id)
        priority = self._scorer.score(message, vip_lookup)

        steps: dict[str, Callable[[], Awaitable[Any]]] = {
            CLASSIFY_STEP: lambda: self._classify(message),
            EXTRACT_STEP: lambda: self._extract(message, now),
            SUMMARIZE_STEP: lambda: self._summarize(message),
        }
        outcomes = await asyncio.gather(
            *(asyncio.wait_for(step(), timeout=self._upstream_timeout) for step in steps.values()),
            return_exceptions=True,
        )

        failed: list[str] = []
        values: dict[str, Any] = {}
        for name, outcome in zip(steps, outcomes, strict=True):
            if isinstance(outcome, Exception):
                failed.append(name)
                log.warning(
                    "analysis_step_failed",
                    step=name,
                    message_id=message.id,
                    error=str(outcome) or type(outcome).__name__,
                )
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                values[name] = outcome

        classification: Classification = values.get(
            CLASSIFY_STEP, Classification(sentiment=Sentiment.NEUTRAL)
        )
        action_items: list[ActionItem] = values.get(EXTRACT_STEP, [])
        if CLASSIFY_STEP in failed or EXTRACT_STEP in failed:
            classification = Classification(sentiment=Sentiment.NEUTRAL)
            action_items = []
        summary: str = values.get(SUMMARIZE_STEP) or summarize(message, self._summary_max_length)

        if failed:
            log.warning(
                "analysis_degraded",
                message_id=message.id,
                user_id=message.user_id,
                reasons=failed,
            )

        return AnalysisResult(
            message_id=message.id,
            user_id=message.user_id,
            summary=summary,
            priority=priority,
            sentiment=classification.sentiment,
            topics=sorted(classification.topics),
            action_items=action_items,
            degraded=bool(failed),
            degraded_reasons=failed,
            analyzed_at=now,
        )

    async def _classify(self, message: CanonicalMessage) -> Classification:
        if self._model_classifier is not None:
            return await self._model_classifier.classify(message)
        return classify(message)

    async def _extract(self, message: CanonicalMessage, now: datetime) -> list[ActionItem]:
        if self._model_extractor is not None:
            return await self._model_extractor.extract(message, now=now)
        return extract(message, now=now)

    async def _summarize(self, message: CanonicalMessage) -> str:
        if self._model_summarizer is not None:
            return await self._model_summarizer.summarize(message)
        return summarize(message, self._summary_max_length)
