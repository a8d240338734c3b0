"""
catalog_jobs -- Job processing engine.

Provides the job/item store, the in-memory progress tracker with
pause/resume/cancel control, the priority queue dequeuer for ERP change
events, the failure classifier, and the sync queue processor.

Architecture:
    catalog_jobs/ is a top-level package.  catalog_kernel never imports
    from it.  The sync processor drives catalog_ingestion's transformer and
    executor; the import service in catalog_ingestion drives this package's
    store and tracker.
"""
