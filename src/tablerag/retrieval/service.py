"""Retrieval built on top of the embedding client and vector store."""

from __future__ import annotations

import time
from typing import Sequence

from tablerag.embeddings.service import EmbeddingBackend
from tablerag.embeddings.store import VectorStore
from tablerag.metrics.observability import PipelineMetrics, get_logger
from tablerag.models import RetrievalContext, RetrievedRow

NO_CONTEXT_PLACEHOLDER = "No relevant data found."
CONTEXT_SEPARATOR = "\n\n"


class Retriever:
    """Embeds a question and fetches its nearest stored rows."""

    def __init__(self, embedder: EmbeddingBackend, store: VectorStore, *, default_top_k: int = 5) -> None:
        self._embedder = embedder
        self._store = store
        self._default_top_k = default_top_k
        self._logger = get_logger("retrieval")

    async def similar(self, query: str, n_results: int | None = None) -> Sequence[RetrievedRow]:
        vector = await self._embedder.embed(query)
        return await self._store.query(vector, n_results or self._default_top_k)

    async def retrieve(self, question: str, top_k: int | None = None) -> RetrievalContext:
        start = time.perf_counter()
        limit = top_k or self._default_top_k
        rows = list(await self.similar(question, limit))
        context_text = CONTEXT_SEPARATOR.join(row.text for row in rows) if rows else NO_CONTEXT_PLACEHOLDER
        duration = time.perf_counter() - start
        PipelineMetrics.observe_retrieval(duration, len(rows))
        self._logger.info(
            "retrieval.complete",
            row_count=len(rows),
            top_k=limit,
            duration_seconds=duration,
        )
        return RetrievalContext(rows=rows, context_text=context_text)
