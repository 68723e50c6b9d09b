"""Row-to-document extraction."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Dict, List, Sequence

from tablerag.models import MetadataValue, RawRecord, RowDocument

MAX_METADATA_KEY_LENGTH = 50
DEFAULT_TEXT_FIELD = "Item Description"
ROW_INDEX_KEY = "rowIndex"

_INVALID_KEY_CHARS = re.compile(r"[^a-zA-Z0-9_]")
_REPEATED_UNDERSCORES = re.compile(r"_+")


class ExtractionError(RuntimeError):
    """Raised when rows cannot be turned into documents."""


class NoDocumentsExtractedError(ExtractionError):
    """Raised when extraction yields zero documents."""


@dataclass(frozen=True)
class FieldSpec:
    """One labelled column of the full-record text."""

    label: str
    column: str
    default: str = "N/A"
    unit_column: str | None = None
    unit: str = ""

    def render(self, record: RawRecord) -> str:
        value = _text_or_none(record.get(self.column))
        parts = [f"{self.label}: {value if value is not None else self.default}"]
        if self.unit_column is not None:
            parts.append(_text_or_none(record.get(self.unit_column)) or "")
        if self.unit:
            parts.append(self.unit)
        return " ".join(parts).rstrip()


TRADE_RECORD_FIELDS: tuple[FieldSpec, ...] = (
    FieldSpec("HS Code", "HS Code"),
    FieldSpec("Item", "Item Description"),
    FieldSpec("Importer", "Importer "),
    FieldSpec("Supplier", "Supplier Name"),
    FieldSpec("Origin", "origin"),
    FieldSpec("Port", "Port of Shipment"),
    FieldSpec("Quantity", "Quantity", default="0", unit_column="UOM"),
    FieldSpec("Value", "Import Value in PKR", default="0", unit="PKR"),
)


@dataclass(frozen=True)
class ExtractionPolicy:
    """Selects how document text is built from a row.

    Full-record mode concatenates the labelled fields; otherwise a single
    column is used and rows where it is empty are skipped.
    """

    use_full_record: bool = True
    field: str | None = None

    @property
    def text_field(self) -> str:
        return self.field or DEFAULT_TEXT_FIELD


def sanitize_metadata_key(key: str) -> str:
    """Return a store-safe metadata key, or ``""`` when nothing usable remains."""

    cleaned = _REPEATED_UNDERSCORES.sub("_", _INVALID_KEY_CHARS.sub("_", key)).strip("_")
    return cleaned[:MAX_METADATA_KEY_LENGTH].strip("_")


def sanitize_metadata_value(value: object) -> MetadataValue | None:
    if value is None or value == "":
        return None
    if isinstance(value, (str, bool, int, float)):
        return value
    return str(value)


def sanitize_metadata(record: RawRecord, row_index: int) -> Dict[str, MetadataValue]:
    metadata: Dict[str, MetadataValue] = {}
    for key, value in record.items():
        if not isinstance(key, str) or not key.strip():
            continue
        clean_key = sanitize_metadata_key(key)
        if not clean_key:
            continue
        clean_value = sanitize_metadata_value(value)
        if clean_value is not None:
            metadata[clean_key] = clean_value
    metadata[ROW_INDEX_KEY] = row_index
    return metadata


class DocumentExtractor:
    """Converts raw rows into :class:`RowDocument` values."""

    def __init__(self, fields: Sequence[FieldSpec] = TRADE_RECORD_FIELDS) -> None:
        self._fields = tuple(fields)

    def extract(
        self,
        records: Sequence[RawRecord],
        policy: ExtractionPolicy | None = None,
        *,
        offset: int = 0,
    ) -> List[RowDocument]:
        policy = policy or ExtractionPolicy()
        documents: List[RowDocument] = []
        for position, record in enumerate(records):
            text = self.record_text(record, policy)
            if text is None:
                continue
            documents.append(
                RowDocument(
                    id=f"row_{offset + position}",
                    text=text,
                    metadata=sanitize_metadata(record, position),
                ),
            )
        if not documents:
            raise NoDocumentsExtractedError(
                f"No valid documents found to embed. Total rows: {len(records)}. "
                "Check if CSV columns match expected structure.",
            )
        return documents

    def record_text(self, record: RawRecord, policy: ExtractionPolicy) -> str | None:
        if policy.use_full_record:
            return ", ".join(field.render(record) for field in self._fields)
        value = record.get(policy.text_field)
        if value is None or value == "":
            return None
        return value if isinstance(value, str) else json.dumps(value, default=str)


def _text_or_none(value: object) -> str | None:
    if value is None or value == "":
        return None
    return value if isinstance(value, str) else str(value)
