"""Ingestion orchestration: rows -> documents -> embeddings -> vector store."""

from __future__ import annotations

import time
from typing import List, Sequence

from tablerag.embeddings.service import EmbeddingBackend
from tablerag.embeddings.store import VectorStore
from tablerag.ingestion.extractor import DocumentExtractor, ExtractionPolicy
from tablerag.metrics.observability import PipelineMetrics, TimedSection, get_logger
from tablerag.models import IngestionResult, IngestionRun, RawRecord, RowDocument


class IngestionError(RuntimeError):
    """Raised when an ingestion run cannot complete."""


class IngestionAbortedError(IngestionError):
    """Raised when a batch fails; carries what is needed to resume the run.

    ``resume_skip_rows`` is the absolute row offset of the first document in
    the failed batch. Passing it as ``skip_rows`` on the next call re-embeds
    only that batch and everything after it.
    """

    def __init__(
        self,
        message: str,
        *,
        total_embedded: int,
        batch_number: int,
        total_batches: int,
        resume_skip_rows: int,
    ) -> None:
        super().__init__(message)
        self.total_embedded = total_embedded
        self.batch_number = batch_number
        self.total_batches = total_batches
        self.resume_skip_rows = resume_skip_rows

    @property
    def cause(self) -> BaseException | None:
        return self.__cause__


def split_batches(documents: Sequence[RowDocument], batch_size: int) -> List[Sequence[RowDocument]]:
    return [documents[start : start + batch_size] for start in range(0, len(documents), batch_size)]


class IngestionOrchestrator:
    """Drives extraction, batching, embedding and storage for one dataset.

    Stateless across calls: resumption depends on the caller passing the
    right ``skip_rows``. Two concurrent runs against one collection may
    overwrite each other's ids.
    """

    def __init__(
        self,
        embedder: EmbeddingBackend,
        store: VectorStore,
        extractor: DocumentExtractor | None = None,
    ) -> None:
        self._embedder = embedder
        self._store = store
        self._extractor = extractor or DocumentExtractor()
        self._logger = get_logger("ingestion")

    async def ingest(
        self,
        records: Sequence[RawRecord],
        policy: ExtractionPolicy | None = None,
        *,
        batch_size: int = 1000,
        skip_rows: int = 0,
        clear_existing: bool = False,
    ) -> IngestionResult:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if skip_rows < 0:
            raise ValueError("skip_rows must not be negative")

        started = time.perf_counter()
        if clear_existing:
            await self._store.clear()

        remaining = records[skip_rows:]
        self._logger.info(
            "ingestion.start",
            total_rows=len(records),
            skip_rows=skip_rows,
            rows_to_process=len(remaining),
        )
        documents = self._extractor.extract(remaining, policy, offset=skip_rows)
        self._logger.info("ingestion.extracted", documents=len(documents))

        batches = split_batches(documents, batch_size)
        run = IngestionRun(
            total_documents=len(documents),
            total_batches=len(batches),
            skip_rows=skip_rows,
            started_at=started,
        )
        for batch_number, batch in enumerate(batches, start=1):
            try:
                await self._process_batch(run, batch_number, batch)
            except Exception as exc:
                self._logger.error(
                    "ingestion.batch.failed",
                    batch=batch_number,
                    total_batches=run.total_batches,
                    total_embedded=run.total_embedded,
                    elapsed_seconds=round(run.elapsed_seconds, 1),
                    error=str(exc),
                )
                raise IngestionAbortedError(
                    f"Error at batch {batch_number}/{run.total_batches}: {exc}. "
                    f"Successfully embedded {run.total_embedded} documents before error",
                    total_embedded=run.total_embedded,
                    batch_number=batch_number,
                    total_batches=run.total_batches,
                    resume_skip_rows=batch[0].row_number,
                ) from exc

        result = IngestionResult(
            total_embedded=run.total_embedded,
            total_batches=run.total_batches,
            duration_seconds=run.elapsed_seconds,
        )
        self._logger.info(
            "ingestion.complete",
            total_embedded=result.total_embedded,
            total_batches=result.total_batches,
            duration_seconds=round(result.duration_seconds, 2),
            average_per_document_ms=round(result.duration_seconds / max(result.total_embedded, 1) * 1000),
        )
        return result

    async def _process_batch(self, run: IngestionRun, batch_number: int, batch: Sequence[RowDocument]) -> None:
        batch_started = time.perf_counter()
        texts = [document.text for document in batch]

        with TimedSection() as embed_timer:
            vectors = await self._embedder.embed_batch(texts)
        if batch_number == 1:
            self._logger.debug("ingestion.sample_metadata", metadata=dict(batch[0].metadata))

        with TimedSection() as store_timer:
            await self._store.add(
                [document.id for document in batch],
                vectors,
                texts,
                [document.metadata for document in batch],
            )

        batch_seconds = time.perf_counter() - batch_started
        run.record_batch(len(batch), batch_seconds)
        PipelineMetrics.observe_ingestion_batch(batch_seconds, len(batch))
        self._logger.info(
            "ingestion.batch.complete",
            batch=batch_number,
            total_batches=run.total_batches,
            size=len(batch),
            embed_seconds=round(embed_timer.duration, 2),
            store_seconds=round(store_timer.duration, 2),
            batch_seconds=round(batch_seconds, 2),
            average_batch_seconds=round(run.average_batch_time, 2),
            progress=f"{run.total_embedded}/{run.total_documents}",
            percent_complete=round(run.percent_complete, 1),
            elapsed_seconds=round(run.elapsed_seconds, 1),
            estimated_remaining_seconds=round(run.estimated_remaining_seconds(batch_number), 1),
        )

