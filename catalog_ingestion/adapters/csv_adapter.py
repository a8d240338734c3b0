"""
CSV source adapter for catalog files.

Uses csv.DictReader. Configurable: delimiter, encoding, skip_rows. Handles
BOM via utf-8-sig when encoding is utf-8. Streams rows from a path; uploaded
content (bytes or text) is read from memory via ``read_text``.

Values are trimmed; a short row yields None for its missing trailing columns
and extra cells beyond the header are dropped.
"""

from __future__ import annotations

import csv
import io
from pathlib import Path
from typing import IO, Any, Iterator

from catalog_ingestion.adapters.base import SourceSummary

SAMPLE_SIZE = 5


def _get_encoding(options: dict[str, Any]) -> str:
    enc = options.get("encoding", "utf-8")
    if enc.lower() == "utf-8":
        return "utf-8-sig"  # Strip BOM if present
    return enc


def _clean_row(row: dict[str | None, Any]) -> dict[str, Any]:
    cleaned: dict[str, Any] = {}
    for key, value in row.items():
        if key is None:
            continue
        cleaned[key.strip()] = value.strip() if isinstance(value, str) else value
    return cleaned


def _iter_rows(f: IO[str], options: dict[str, Any]) -> Iterator[dict[str, Any]]:
    for _ in range(int(options.get("skip_rows", 0))):
        next(f, None)
    reader = csv.DictReader(f, delimiter=options.get("delimiter", ","))
    for row in reader:
        cleaned = _clean_row(row)
        if any(v not in (None, "") for v in cleaned.values()):
            yield cleaned


class CsvSourceAdapter:
    """Read catalog CSV files as one dict per row. Streams; does not load entire file."""

    def read(self, source_path: Path, options: dict[str, Any]) -> Iterator[dict[str, Any]]:
        with Path(source_path).open("r", encoding=_get_encoding(options), newline="") as f:
            yield from _iter_rows(f, options)

    def read_text(
        self, content: str | bytes, options: dict[str, Any] | None = None
    ) -> Iterator[dict[str, Any]]:
        """Rows from in-memory content (e.g. an uploaded file body)."""
        options = options or {}
        if isinstance(content, bytes):
            content = content.decode(_get_encoding(options))
        yield from _iter_rows(io.StringIO(content, newline=""), options)

    def columns(self, source_path: Path, options: dict[str, Any]) -> tuple[str, ...]:
        with Path(source_path).open("r", encoding=_get_encoding(options), newline="") as f:
            for _ in range(int(options.get("skip_rows", 0))):
                next(f, None)
            reader = csv.DictReader(f, delimiter=options.get("delimiter", ","))
            return tuple(c.strip() for c in (reader.fieldnames or ()))

    def inspect(self, source_path: Path, options: dict[str, Any]) -> SourceSummary:
        sample: list[dict[str, Any]] = []
        count = 0
        for row in self.read(source_path, options):
            if len(sample) < SAMPLE_SIZE:
                sample.append(row)
            count += 1

        return SourceSummary(
            row_count=count,
            columns=self.columns(source_path, options),
            sample_rows=tuple(sample),
            encoding=_get_encoding(options),
            detected_delimiter=options.get("delimiter", ","),
        )
