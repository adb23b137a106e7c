"""Error taxonomy for the analysis core.

Callers receive either a complete AnalysisResult or one of these typed
failures. UpstreamAnalysisError and PersistenceConflict are recovered
inside the orchestrator and never reach callers of ``analyze``.
"""

from __future__ import annotations


class NapoleonError(Exception):
    """Base class for all analysis-core errors."""

    retryable: bool = False

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(NapoleonError):
    """Malformed input: missing content, malformed email, unsupported shape."""

    def __init__(self, field: str, message: str) -> None:
        super().__init__(f"{field}: {message}")
        self.field = field


class UpstreamAnalysisError(NapoleonError):
    """A classification, extraction or summary dependency failed or timed out."""

    retryable = True

    def __init__(self, step: str, message: str) -> None:
        super().__init__(f"{step} failed: {message}")
        self.step = step


class PersistenceConflict(NapoleonError):
    """Another writer already claimed or stored the analysis for this message."""

    def __init__(self, message_id: str) -> None:
        super().__init__(f"analysis for {message_id} is owned by another writer")
        self.message_id = message_id


class PersistenceError(NapoleonError):
    """The underlying store is unavailable; nothing was written."""

    retryable = True


class RateLimitExceeded(NapoleonError):
    """A user submitted more messages than the batch window allows."""

    retryable = True

    def __init__(self, user_id: str, retry_after: float) -> None:
        super().__init__(f"rate limit exceeded for user {user_id}")
        self.user_id = user_id
        self.retry_after = retry_after
