"""Tabular ingestion pipeline."""

from .extractor import (
    TRADE_RECORD_FIELDS,
    DocumentExtractor,
    ExtractionError,
    ExtractionPolicy,
    FieldSpec,
    NoDocumentsExtractedError,
    sanitize_metadata,
    sanitize_metadata_key,
)
from .reader import read_csv_records
from .service import IngestionAbortedError, IngestionError, IngestionOrchestrator

__all__ = [
    "DocumentExtractor",
    "ExtractionError",
    "ExtractionPolicy",
    "FieldSpec",
    "IngestionAbortedError",
    "IngestionError",
    "IngestionOrchestrator",
    "NoDocumentsExtractedError",
    "TRADE_RECORD_FIELDS",
    "read_csv_records",
    "sanitize_metadata",
    "sanitize_metadata_key",
]
