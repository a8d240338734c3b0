"""ORM models for jobs, job items and the sync queue."""

from catalog_jobs.models.job import JobItemModel, JobModel
from catalog_jobs.models.queue import SyncQueueModel

__all__ = ["JobItemModel", "JobModel", "SyncQueueModel"]
