"""Upstream model providers for the analysis steps.

Default is the heuristic backend (no provider at all). Ollama gives
local, privacy-preserving model calls; OpenAI is the cloud option.
Providers only return parsed JSON objects; each analysis step turns
that into its own result type.
"""

from __future__ import annotations

import json
from typing import Any, Protocol

import httpx
import openai

from napoleon_ai.config import Settings, get_settings
from napoleon_ai.errors import UpstreamAnalysisError
from napoleon_ai.logging import get_logger

log = get_logger("napoleon_ai.analysis.providers")


class AnalysisProvider(Protocol):
    """A model that answers a prompt with a single JSON object."""

    name: str

    async def complete_json(self, prompt: str, *, step: str) -> dict[str, Any]:
        """Run the prompt and return the decoded JSON object.

        Raises:
            UpstreamAnalysisError: On transport errors, non-2xx replies
                or replies that are not a JSON object.
        """
        ...

    async def close(self) -> None: ...


def parse_json_reply(text: str, *, step: str) -> dict[str, Any]:
    """Decode a model reply, tolerating markdown code fences."""
    cleaned = text.strip()
    if cleaned.startswith("```"):
        cleaned = cleaned.split("```")[1]
        if cleaned.startswith("json"):
            cleaned = cleaned[4:]
    cleaned = cleaned.strip()

    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise UpstreamAnalysisError(step, f"reply is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise UpstreamAnalysisError(step, "reply is not a JSON object")
    return data


class OllamaAnalysisProvider:
    """Calls a local Ollama server through its generate API."""

    name = "ollama"

    def __init__(
        self, client: httpx.AsyncClient | None = None, settings: Settings | None = None
    ) -> None:
        settings = settings or get_settings()
        self._base_url = settings.ollama_url
        self._model = settings.ollama_analysis_model
        self._client = client or httpx.AsyncClient(timeout=settings.ollama_timeout)
        log.info("ollama_provider_initialized", url=self._base_url, model=self._model)

    async def complete_json(self, prompt: str, *, step: str) -> dict[str, Any]:
        try:
            response = await self._client.post(
                f"{self._base_url}/api/generate",
                json={
                    "model": self._model,
                    "prompt": prompt,
                    "format": "json",
                    "stream": False,
                    "options": {"temperature": 0.1},
                },
            )
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPError as exc:
            log.warning("ollama_request_failed", step=step, error=str(exc))
            raise UpstreamAnalysisError(step, f"ollama request failed: {exc}") from exc
        except ValueError as exc:
            raise UpstreamAnalysisError(step, "ollama returned a non-JSON body") from exc

        return parse_json_reply(str(body.get("response", "")), step=step)

    async def close(self) -> None:
        await self._client.aclose()


class OpenAIAnalysisProvider:
    """Calls the OpenAI chat completions API in JSON mode."""

    name = "openai"

    def __init__(
        self, client: openai.AsyncOpenAI | None = None, settings: Settings | None = None
    ) -> None:
        settings = settings or get_settings()
        if client is None:
            if not settings.openai_api_key:
                raise ValueError("OpenAI API key required for the openai analysis backend")
            client = openai.AsyncOpenAI(
                api_key=settings.openai_api_key.get_secret_value(),
                timeout=settings.upstream_timeout_seconds,
            )
        self._client = client
        self._model = settings.openai_model
        log.info("openai_provider_initialized", model=self._model)

    async def complete_json(self, prompt: str, *, step: str) -> dict[str, Any]:
        try:
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=[{"role": "user", "content": prompt}],
                response_format={"type": "json_object"},
                temperature=0.1,
            )
        except openai.OpenAIError as exc:
            log.warning("openai_request_failed", step=step, error=str(exc))
            raise UpstreamAnalysisError(step, f"openai request failed: {exc}") from exc

        if not response.choices:
            raise UpstreamAnalysisError(step, "openai returned no choices")
        content = response.choices[0].message.content or ""
        return parse_json_reply(content, step=step)

    async def close(self) -> None:
        await self._client.close()


def get_analysis_provider(settings: Settings | None = None) -> AnalysisProvider | None:
    """Factory for the configured backend; None means heuristics only."""
    settings = settings or get_settings()

    if settings.analysis_backend == "ollama":
        return OllamaAnalysisProvider(settings=settings)
    if settings.analysis_backend == "openai":
        return OpenAIAnalysisProvider(settings=settings)
    return None
