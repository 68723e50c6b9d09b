"""Embedding backends for TableRAG."""

from __future__ import annotations

import asyncio
import hashlib
import logging
import math
from dataclasses import dataclass
from typing import List, Protocol, Sequence

import httpx

from tablerag.metrics.observability import PipelineMetrics

LOGGER = logging.getLogger(__name__)

Vector = List[float]


class EmbeddingBackendError(RuntimeError):
    """Raised when a text could not be embedded after exhausting retries."""

    def __init__(self, message: str, *, attempts: int = 0) -> None:
        super().__init__(message)
        self.attempts = attempts


@dataclass(frozen=True)
class EmbeddingConfig:
    """Configuration for embedding backends."""

    model: str = "nomic-embed-text"
    base_url: str = "http://localhost:11434"
    timeout_seconds: float = 30.0
    max_retries: int = 3
    retry_base_delay: float = 1.0
    concurrency: int = 32
    dim: int = 768
    normalize: bool = True


class EmbeddingBackend(Protocol):
    """Protocol describing embedding behaviour."""

    async def embed(self, text: str) -> Vector:
        """Return the embedding vector for a single text."""

    async def embed_batch(self, texts: Sequence[str]) -> List[Vector]:
        """Return one vector per text, in input order."""


class HashEmbeddingBackend:
    """Deterministic lightweight embedding backend used for tests and offline runs."""

    def __init__(self, config: EmbeddingConfig | None = None) -> None:
        self._config = config or EmbeddingConfig()

    def _hash_to_vector(self, text: str) -> Vector:
        digest = hashlib.sha256(text.encode("utf-8")).digest()
        repeat = (self._config.dim + len(digest) - 1) // len(digest)
        raw = (digest * repeat)[: self._config.dim]
        vector = [byte / 255.0 for byte in raw]
        if self._config.normalize:
            norm = math.sqrt(sum(value * value for value in vector)) or 1.0
            vector = [value / norm for value in vector]
        return vector

    async def embed(self, text: str) -> Vector:
        return self._hash_to_vector(text)

    async def embed_batch(self, texts: Sequence[str]) -> List[Vector]:
        return [self._hash_to_vector(text) for text in texts]


class OllamaEmbeddingClient:
    """Embedding client for the Ollama ``/api/embeddings`` endpoint.

    Each text is retried independently: attempt ``n`` that fails is followed by
    a ``retry_base_delay * n`` second pause, and the last failure raises
    :class:`EmbeddingBackendError`. :meth:`embed_batch` fans out one request
    per text, capped at ``concurrency`` in-flight requests, and returns vectors
    in input order. A single unrecoverable text fails the whole batch.
    """

    def __init__(
        self,
        config: EmbeddingConfig | None = None,
        *,
        client: httpx.AsyncClient | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config or EmbeddingConfig()
        if self._config.max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=self._config.base_url,
            timeout=self._config.timeout_seconds,
            transport=transport,
        )
        self._semaphore = asyncio.Semaphore(max(1, self._config.concurrency))

    @property
    def config(self) -> EmbeddingConfig:
        return self._config

    async def __aenter__(self) -> "OllamaEmbeddingClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def embed(self, text: str) -> Vector:
        retries = self._config.max_retries
        last_error = "unknown error"
        for attempt in range(1, retries + 1):
            try:
                return await self._request_embedding(text)
            except (httpx.HTTPError, ValueError) as exc:
                last_error = str(exc) or exc.__class__.__name__
                if attempt == retries:
                    break
                PipelineMetrics.embedding_retries.inc()
                LOGGER.warning("Embedding attempt %d failed, retrying... (%s)", attempt, last_error)
                await asyncio.sleep(self._config.retry_base_delay * attempt)
        PipelineMetrics.embedding_failures.inc()
        raise EmbeddingBackendError(
            f"Error generating embedding after {retries} attempts: {last_error}",
            attempts=retries,
        )

    async def embed_batch(self, texts: Sequence[str]) -> List[Vector]:
        if not texts:
            return []
        return list(await asyncio.gather(*(self._embed_bounded(text) for text in texts)))

    async def _embed_bounded(self, text: str) -> Vector:
        async with self._semaphore:
            return await self.embed(text)

    async def _request_embedding(self, text: str) -> Vector:
        response = await self._client.post(
            "/api/embeddings",
            json={"model": self._config.model, "prompt": text},
        )
        response.raise_for_status()
        payload = response.json()
        embedding = payload.get("embedding") if isinstance(payload, dict) else None
        if not embedding:
            raise ValueError("Empty embedding returned by backend")
        if not isinstance(embedding, list) or not all(
            isinstance(value, (int, float)) and not isinstance(value, bool) for value in embedding
        ):
            raise ValueError("Malformed embedding returned by backend")
        return [float(value) for value in embedding]
