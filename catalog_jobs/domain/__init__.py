"""catalog_jobs.domain -- Pure types and retry policy.  ZERO I/O."""
