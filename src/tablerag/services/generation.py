"""Generation backends for TableRAG."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, AsyncIterator, Protocol

import httpx
from openai import AsyncOpenAI, OpenAIError

LOGGER = logging.getLogger(__name__)


class GenerationBackendError(RuntimeError):
    """Raised when the generation backend fails a completion or a stream."""


@dataclass(frozen=True)
class GenerationConfig:
    """Configuration for answer generation."""

    model: str = "llama-3.3-70b-versatile"
    base_url: str = "https://api.groq.com/openai/v1"
    api_key: str | None = None
    timeout_seconds: float = 120.0


class GenerationBackend(Protocol):
    """Protocol describing chat-style generation behaviour."""

    async def complete(self, system_prompt: str, user_message: str, *, max_tokens: int, temperature: float) -> str:
        """Return the full answer text."""

    def stream(
        self, system_prompt: str, user_message: str, *, max_tokens: int, temperature: float
    ) -> AsyncIterator[str]:
        """Yield answer fragments as the backend produces them."""


def _messages(system_prompt: str, user_message: str) -> list[dict[str, str]]:
    return [
        {"role": "system", "content": system_prompt},
        {"role": "user", "content": user_message},
    ]


class OpenAICompatibleGenerator:
    """Chat-completions generator for OpenAI-compatible APIs (Groq by default).

    Failures are not retried; they surface as :class:`GenerationBackendError`.
    """

    def __init__(self, config: GenerationConfig | None = None, *, client: Any | None = None) -> None:
        self._config = config or GenerationConfig()
        self._client = client or AsyncOpenAI(
            api_key=self._config.api_key,
            base_url=self._config.base_url,
            timeout=self._config.timeout_seconds,
        )

    async def complete(self, system_prompt: str, user_message: str, *, max_tokens: int, temperature: float) -> str:
        try:
            completion = await self._client.chat.completions.create(
                model=self._config.model,
                messages=_messages(system_prompt, user_message),
                temperature=temperature,
                max_tokens=max_tokens,
                stream=False,
            )
        except (OpenAIError, httpx.HTTPError) as exc:
            LOGGER.error("Generation request failed for model %s: %s", self._config.model, exc)
            raise GenerationBackendError(f"Generation request failed: {exc}") from exc
        if not completion.choices:
            return ""
        return completion.choices[0].message.content or ""

    async def stream(
        self, system_prompt: str, user_message: str, *, max_tokens: int, temperature: float
    ) -> AsyncIterator[str]:
        try:
            upstream = await self._client.chat.completions.create(
                model=self._config.model,
                messages=_messages(system_prompt, user_message),
                temperature=temperature,
                max_tokens=max_tokens,
                stream=True,
            )
        except (OpenAIError, httpx.HTTPError) as exc:
            LOGGER.error("Generation stream failed to start for model %s: %s", self._config.model, exc)
            raise GenerationBackendError(f"Generation stream failed: {exc}") from exc
        try:
            async for chunk in upstream:
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta
                content = getattr(delta, "content", None) if delta is not None else None
                if content:
                    yield content
        except (OpenAIError, httpx.HTTPError) as exc:
            LOGGER.error("Generation stream interrupted for model %s: %s", self._config.model, exc)
            raise GenerationBackendError(f"Generation stream interrupted: {exc}") from exc
        finally:
            await upstream.close()


_FRAGMENT = re.compile(r"\S+\s*|\s+")


class TemplateGenerator:
    """Simple deterministic generator used for tests and offline environments."""

    async def complete(self, system_prompt: str, user_message: str, *, max_tokens: int, temperature: float) -> str:
        context = system_prompt.rsplit("Context:\n", 1)[-1].strip()
        first_record = context.split("\n\n", 1)[0]
        answer = f"Question: {user_message}\nClosest record: {first_record}"
        words = _FRAGMENT.findall(answer)
        return "".join(words[: max(max_tokens, 0)])

    async def stream(
        self, system_prompt: str, user_message: str, *, max_tokens: int, temperature: float
    ) -> AsyncIterator[str]:
        answer = await self.complete(system_prompt, user_message, max_tokens=max_tokens, temperature=temperature)
        for fragment in _FRAGMENT.findall(answer):
            yield fragment
