"""Catalog ingestion services (execute operations, run import jobs)."""

from catalog_ingestion.services.import_service import ImportService, JobReport
from catalog_ingestion.services.upsert_executor import UpsertExecutor

__all__ = ["ImportService", "JobReport", "UpsertExecutor"]
