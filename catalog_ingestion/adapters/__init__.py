"""Source adapters for catalog ingestion (file I/O only, no DB)."""

from catalog_ingestion.adapters.base import SourceAdapter, SourceSummary
from catalog_ingestion.adapters.csv_adapter import CsvSourceAdapter

__all__ = ["SourceAdapter", "SourceSummary", "CsvSourceAdapter"]
