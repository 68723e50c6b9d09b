"""Minimal CSV row reader for the source dataset."""

from __future__ import annotations

import csv
import re
from pathlib import Path
from typing import Dict, List

from tablerag.metrics.observability import get_logger

_SPREADSHEET_SUFFIX = re.compile(r"\.xlsx?$", re.IGNORECASE)


def resolve_csv_path(path: Path) -> Path:
    """Spreadsheets are expected to have been exported next to the original as ``.csv``."""
    return Path(_SPREADSHEET_SUFFIX.sub(".csv", str(path)))


def read_csv_records(path: Path, *, encoding: str = "utf-8-sig") -> List[Dict[str, str]]:
    csv_path = resolve_csv_path(path)
    if not csv_path.exists():
        raise FileNotFoundError(f"CSV file not found: {csv_path}")
    size_mb = csv_path.stat().st_size / 1024 / 1024
    with csv_path.open("r", encoding=encoding, newline="") as handle:
        # Ragged rows: missing cells come back as None, extras under the None key.
        rows = [
            {key: value for key, value in row.items() if key is not None}
            for row in csv.DictReader(handle)
        ]
    get_logger("reader").info("reader.parsed", path=str(csv_path), rows=len(rows), size_mb=round(size_mb, 2))
    return rows
