"""Shared domain models used across the TableRAG pipelines."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Mapping, Sequence, Union

RawRecord = Mapping[str, object]
MetadataValue = Union[str, int, float, bool]


@dataclass(frozen=True)
class RowDocument:
    """Embeddable text derived from one source row."""

    id: str
    text: str
    metadata: Mapping[str, MetadataValue] = field(default_factory=dict)

    @property
    def row_number(self) -> int:
        """Absolute row offset encoded in the id (``row_<n>``)."""
        return int(self.id.rsplit("_", 1)[-1])


@dataclass(frozen=True)
class RetrievedRow:
    """Document returned from the vector store for a query vector."""

    id: str
    text: str
    metadata: Mapping[str, MetadataValue]
    distance: float | None = None


@dataclass(frozen=True)
class RetrievalContext:
    """Retrieved rows for one question and the context block built from them."""

    rows: Sequence[RetrievedRow]
    context_text: str

    @property
    def contexts_used(self) -> int:
        return len(self.rows)

    @property
    def texts(self) -> list[str]:
        return [row.text for row in self.rows]

    @property
    def distances(self) -> list[float | None]:
        return [row.distance for row in self.rows]


@dataclass
class IngestionRun:
    """Progress of a single ingestion call; discarded once the call returns."""

    total_documents: int
    total_batches: int
    skip_rows: int = 0
    total_embedded: int = 0
    batch_times: list[float] = field(default_factory=list)
    started_at: float = field(default_factory=time.perf_counter)

    def record_batch(self, size: int, duration_seconds: float) -> None:
        self.total_embedded += size
        self.batch_times.append(duration_seconds)

    @property
    def average_batch_time(self) -> float:
        if not self.batch_times:
            return 0.0
        return sum(self.batch_times) / len(self.batch_times)

    @property
    def percent_complete(self) -> float:
        if not self.total_documents:
            return 0.0
        return self.total_embedded / self.total_documents * 100

    @property
    def elapsed_seconds(self) -> float:
        return time.perf_counter() - self.started_at

    def estimated_remaining_seconds(self, batch_number: int) -> float:
        return self.average_batch_time * (self.total_batches - batch_number)


@dataclass(frozen=True)
class IngestionResult:
    """Outcome of a completed ingestion call."""

    total_embedded: int
    total_batches: int
    duration_seconds: float

    @property
    def message(self) -> str:
        return (
            f"Successfully embedded {self.total_embedded} documents "
            f"in {self.total_batches} batches ({self.duration_seconds:.1f}s)"
        )


@dataclass(frozen=True)
class ChatAnswer:
    """Buffered answer for a single chat exchange."""

    response: str
    contexts_used: int
    response_time_ms: float


@dataclass(frozen=True)
class StreamSummary:
    """Completion accounting reported once a fragment stream is exhausted."""

    response_time_ms: float
    fragment_count: int
    contexts_used: int

    def to_dict(self) -> dict[str, object]:
        return {
            "done": True,
            "responseTime": round(self.response_time_ms),
            "tokenCount": self.fragment_count,
            "contextsUsed": self.contexts_used,
        }
