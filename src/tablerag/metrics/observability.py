"""Observability helpers for TableRAG."""

from __future__ import annotations

import logging
import time

import structlog
from prometheus_client import Counter, Histogram

_logger_configured = False


def configure_logging(level: int | str = logging.INFO) -> None:
    global _logger_configured  # noqa: PLW0603 - module-level guard
    if _logger_configured:
        return
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    logging.basicConfig(level=level, format="%(message)s")
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    _logger_configured = True


def bind_correlation_id(correlation_id: str) -> None:
    structlog.contextvars.bind_contextvars(correlation_id=correlation_id)


def clear_correlation_id() -> None:
    structlog.contextvars.clear_contextvars()


def get_logger(name: str = "tablerag") -> structlog.BoundLogger:
    configure_logging()
    return structlog.get_logger(name)


class PipelineMetrics:
    """Prometheus metrics for pipeline stages."""

    ingestion_batch_latency = Histogram(
        "tablerag_ingestion_batch_duration_seconds",
        "Time spent embedding and storing one ingestion batch.",
        buckets=(0.5, 1.0, 5.0, 15.0, 30.0, 60.0, 120.0, 300.0),
    )
    ingestion_batch_size = Histogram(
        "tablerag_ingestion_batch_size",
        "Documents per ingestion batch.",
        buckets=(1, 10, 50, 100, 250, 500, 1000, 2500),
    )
    documents_embedded = Counter(
        "tablerag_documents_embedded_total",
        "Documents embedded and stored.",
    )
    embedding_retries = Counter(
        "tablerag_embedding_retries_total",
        "Embedding attempts that failed and were retried.",
    )
    embedding_failures = Counter(
        "tablerag_embedding_failures_total",
        "Texts that could not be embedded after exhausting retries.",
    )
    retrieval_latency = Histogram(
        "tablerag_retrieval_duration_seconds",
        "Time spent embedding a question and querying the vector store.",
        buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 2.0, 5.0),
    )
    retrieved_row_count = Histogram(
        "tablerag_retrieved_row_count",
        "Number of rows returned by retrieval.",
        buckets=(0, 1, 2, 3, 5, 8, 13, 21),
    )
    generation_latency = Histogram(
        "tablerag_generation_duration_seconds",
        "Time spent generating answers, streamed or buffered.",
        buckets=(0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0),
    )
    streamed_fragments = Histogram(
        "tablerag_streamed_fragment_count",
        "Fragments emitted per completed stream.",
        buckets=(0, 10, 50, 100, 250, 500, 1000),
    )

    @classmethod
    def observe_ingestion_batch(cls, duration_seconds: float, size: int) -> None:
        cls.ingestion_batch_latency.observe(duration_seconds)
        cls.ingestion_batch_size.observe(size)
        cls.documents_embedded.inc(size)

    @classmethod
    def observe_retrieval(cls, duration_seconds: float, row_count: int) -> None:
        cls.retrieval_latency.observe(duration_seconds)
        cls.retrieved_row_count.observe(row_count)

    @classmethod
    def observe_generation(cls, duration_seconds: float, fragment_count: int | None = None) -> None:
        cls.generation_latency.observe(duration_seconds)
        if fragment_count is not None:
            cls.streamed_fragments.observe(fragment_count)


class TimedSection:
    """Context manager capturing elapsed time for metrics."""

    def __init__(self, callback=None) -> None:
        self._callback = callback
        self._start = 0.0
        self.duration = 0.0

    def __enter__(self) -> "TimedSection":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # noqa: D401
        self.duration = time.perf_counter() - self._start
        if self._callback is not None and exc_type is None:
            self._callback(self.duration)


__all__ = [
    "PipelineMetrics",
    "TimedSection",
    "bind_correlation_id",
    "clear_correlation_id",
    "configure_logging",
    "get_logger",
]
