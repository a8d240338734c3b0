"""
catalog_ingestion -- Catalog CSV ingestion.

Provides the static field map, the row transformer, whole-file CSV
validation, the CSV source adapter, the catalog ORM tables, the storage
upsert executor and the import service that drives them through a job.

Architecture:
    catalog_ingestion/ is a top-level package.  Nothing in catalog_kernel
    imports from it.  The import service uses catalog_jobs' store and
    tracker; catalog_jobs' sync processor uses this package's transformer
    and executor.
"""
