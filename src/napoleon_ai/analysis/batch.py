"""Batch analysis with per-user rate limiting and retries.

Submissions are processed in small concurrent chunks so upstream model
APIs are not flooded. Store outages (PersistenceError) are retried with
exponential backoff; validation failures are skipped, not retried.
"""

from __future__ import annotations

import asyncio
import time
from collections import defaultdict, deque
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from napoleon_ai.analysis.models import AnalysisResult, SourcePlatform
from napoleon_ai.analysis.orchestrator import AnalysisOrchestrator
from napoleon_ai.analysis.store import AnalysisStore
from napoleon_ai.errors import PersistenceError, RateLimitExceeded, ValidationError
from napoleon_ai.logging import get_logger

log = get_logger("napoleon_ai.analysis.batch")


@dataclass
class Submission:
    """One raw message awaiting analysis."""

    raw: Mapping[str, Any]
    source_platform: SourcePlatform | str
    message_id: str | None = None


@dataclass
class MessageOutcome:
    message_id: str | None
    success: bool
    skipped: bool = False
    attempts: int = 0
    result: AnalysisResult | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "messageId": self.result.message_id if self.result else self.message_id,
            "success": self.success,
            "skipped": self.skipped,
            "attempts": self.attempts,
            "error": self.error,
            "analysis": self.result.to_contract() if self.result else None,
        }


@dataclass
class BatchResult:
    processed: int = 0
    failed: int = 0
    skipped: int = 0
    outcomes: list[MessageOutcome] = field(default_factory=list)
    duration_ms: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "failed": self.failed,
            "skipped": self.skipped,
            "results": [o.to_dict() for o in self.outcomes],
            "duration": self.duration_ms,
        }


@dataclass
class ProcessingStats:
    total_messages: int
    processed_messages: int
    pending_messages: int
    last_processed_at: datetime | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalMessages": self.total_messages,
            "processedMessages": self.processed_messages,
            "pendingMessages": self.pending_messages,
            "lastProcessed": self.last_processed_at.isoformat() if self.last_processed_at else None,
        }


class SlidingWindowRateLimiter:
    """Allows at most ``max_requests`` per user within ``window_seconds``."""

    def __init__(
        self,
        max_requests: int = 100,
        window_seconds: float = 3600.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._max_requests = max_requests
        self._window = window_seconds
        self._clock = clock
        self._requests: dict[str, deque[float]] = defaultdict(deque)

    def _prune(self, user_id: str, now: float) -> deque[float]:
        requests = self._requests[user_id]
        while requests and now - requests[0] >= self._window:
            requests.popleft()
        return requests

    def acquire(self, user_id: str, count: int = 1) -> None:
        """Record ``count`` requests, or raise without recording any.

        Raises:
            RateLimitExceeded: If the window cannot fit ``count`` more requests.
        """
        now = self._clock()
        requests = self._prune(user_id, now)
        if len(requests) + count > self._max_requests:
            retry_after = self._window - (now - requests[0]) if requests else self._window
            log.warning(
                "rate_limit_exceeded",
                user_id=user_id,
                requested=count,
                in_window=len(requests),
            )
            raise RateLimitExceeded(user_id, retry_after=max(retry_after, 0.0))
        requests.extend([now] * count)

    def remaining(self, user_id: str) -> int:
        return max(self._max_requests - len(self._prune(user_id, self._clock())), 0)

    def cleanup(self) -> None:
        """Forget users with no requests left in the window."""
        now = self._clock()
        for user_id in list(self._requests):
            if not self._prune(user_id, now):
                del self._requests[user_id]


class BatchProcessor:
    """Runs many submissions for one user through the orchestrator."""

    def __init__(
        self,
        orchestrator: AnalysisOrchestrator,
        store: AnalysisStore,
        *,
        chunk_size: int = 3,
        max_batch_size: int = 10,
        rate_limiter: SlidingWindowRateLimiter | None = None,
        max_retries: int = 3,
        retry_base_delay: float = 1.0,
        chunk_delay: float = 0.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._orchestrator = orchestrator
        self._store = store
        self._chunk_size = max(chunk_size, 1)
        self._max_batch_size = max_batch_size
        self._rate_limiter = rate_limiter or SlidingWindowRateLimiter()
        self._max_retries = max(max_retries, 1)
        self._retry_base_delay = retry_base_delay
        self._chunk_delay = chunk_delay
        self._sleep = sleep

    async def process_batch(
        self, user_id: str, submissions: Sequence[Submission]
    ) -> BatchResult:
        """Analyse a batch of submissions, chunk by chunk.

        Raises:
            ValidationError: If the batch is larger than ``max_batch_size``.
            RateLimitExceeded: If the user has no room left in the window.
        """
        if len(submissions) > self._max_batch_size:
            raise ValidationError(
                "submissions",
                f"batch of {len(submissions)} exceeds the limit of {self._max_batch_size}",
            )
        self._rate_limiter.acquire(user_id, len(submissions))

        start = time.perf_counter()
        batch = BatchResult()
        for offset in range(0, len(submissions), self._chunk_size):
            chunk = submissions[offset : offset + self._chunk_size]
            outcomes = await asyncio.gather(
                *(self._process_one(user_id, submission) for submission in chunk)
            )
            for outcome in outcomes:
                batch.outcomes.append(outcome)
                if outcome.skipped:
                    batch.skipped += 1
                elif outcome.success:
                    batch.processed += 1
                else:
                    batch.failed += 1

            if self._chunk_delay and offset + self._chunk_size < len(submissions):
                await self._sleep(self._chunk_delay)

        batch.duration_ms = round((time.perf_counter() - start) * 1000, 2)
        log.info(
            "batch_processed",
            user_id=user_id,
            processed=batch.processed,
            failed=batch.failed,
            skipped=batch.skipped,
            duration_ms=batch.duration_ms,
        )
        return batch

    async def _process_one(self, user_id: str, submission: Submission) -> MessageOutcome:
        outcome = MessageOutcome(message_id=submission.message_id, success=False)
        for attempt in range(1, self._max_retries + 1):
            outcome.attempts = attempt
            try:
                outcome.result = await self._orchestrator.submit_for_analysis(
                    user_id,
                    submission.raw,
                    submission.source_platform,
                    message_id=submission.message_id,
                )
            except ValidationError as exc:
                outcome.skipped = True
                outcome.error = exc.message
                log.info("batch_message_skipped", user_id=user_id, field=exc.field)
                return outcome
            except PersistenceError as exc:
                outcome.error = exc.message
                log.warning(
                    "batch_message_attempt_failed",
                    user_id=user_id,
                    message_id=submission.message_id,
                    attempt=attempt,
                    error=exc.message,
                )
                if attempt < self._max_retries:
                    await self._sleep(self._retry_base_delay * 2 ** (attempt - 1))
                continue
            outcome.success = True
            outcome.error = None
            return outcome
        return outcome

    async def processing_stats(
        self, user_id: str, total_messages: int | None = None
    ) -> ProcessingStats:
        """Counts of analysed versus pending messages for a user.

        ``total_messages`` comes from the caller's message store; when it
        is omitted only analysed messages are known.
        """
        results = await self._store.list_analyses(user_id)
        processed = len(results)
        total = processed if total_messages is None else max(total_messages, processed)
        last = max((r.analyzed_at for r in results), default=None)
        return ProcessingStats(
            total_messages=total,
            processed_messages=processed,
            pending_messages=total - processed,
            last_processed_at=last,
        )
