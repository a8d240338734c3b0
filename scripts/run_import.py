#!/usr/bin/env python3
"""
Run a catalog CSV import: validate the file, create a job, process it.

Settings come from catalog_config.load_settings (YAML file named by
--config or $CATALOG_SYNC_CONFIG, then CATALOG_SYNC_* environment
variables).  Each batch is committed as it finishes, so an interrupted run
can be picked up again with --resume.

Usage:
    python3 scripts/run_import.py --file <path> [options]

Examples:
    # Validate only (no job created)
    python3 scripts/run_import.py --file catalog.csv --validate-only

    # Inspect source file (row count, columns, sample) without touching the DB
    python3 scripts/run_import.py --file catalog.csv --inspect-only

    # Full import
    python3 scripts/run_import.py --file catalog.csv

    # Continue an interrupted or paused job
    python3 scripts/run_import.py --resume <job-uuid>

    # Re-attempt the retryable failures of a stopped job
    python3 scripts/run_import.py --retry-failed <job-uuid>
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from uuid import UUID

# Project root on sys.path
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Run a catalog import: validate -> create job -> process.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument(
        "--file",
        type=Path,
        help="Path to the catalog CSV file.",
    )
    target.add_argument(
        "--resume",
        type=UUID,
        metavar="JOB_UUID",
        help="Resume a paused or interrupted job.",
    )
    target.add_argument(
        "--retry-failed",
        type=UUID,
        metavar="JOB_UUID",
        help="Reset retryable failures of a stopped job and run it again.",
    )
    parser.add_argument(
        "--validate-only",
        action="store_true",
        help="Validate the file and exit. No DB writes.",
    )
    parser.add_argument(
        "--inspect-only",
        action="store_true",
        help="Inspect the file (row count, columns, sample rows) and exit. No DB writes.",
    )
    parser.add_argument(
        "--actor-id",
        type=UUID,
        default=None,
        help="UUID recorded as the job's creator.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Engine settings YAML (default: $CATALOG_SYNC_CONFIG).",
    )
    parser.add_argument(
        "--db-url",
        default=None,
        help="Database URL (overrides the configured database_url).",
    )
    parser.add_argument(
        "--create-tables",
        action="store_true",
        help="Create missing tables before running.",
    )
    return parser.parse_args()


def _print_report(report) -> None:
    job = report.job
    print(f"Job {job.job_uuid}: {job.status.value}")
    print(
        f"  Total: {job.total_items}, Succeeded: {job.succeeded_items}, "
        f"Failed: {job.failed_items}"
    )
    errors = report.errors
    for row, message in errors[:10]:
        print(f"  Row {row}: {message}")
    if len(errors) > 10:
        print(f"  ... and {len(errors) - 10} more failed rows.")


def main() -> int:
    args = _parse_args()

    # Lazy imports so we fail fast on args first
    from catalog_config import load_settings
    from catalog_ingestion.adapters.csv_adapter import CsvSourceAdapter
    from catalog_ingestion.services.import_service import ImportService
    from catalog_jobs.domain.types import JobStatus
    from catalog_jobs.services.progress_tracker import ProgressTracker
    from catalog_kernel.db.engine import create_tables, get_session, init_engine_from_url
    from catalog_kernel.domain.clock import SystemClock
    from catalog_kernel.logging_config import configure_logging

    try:
        settings = load_settings(args.config)
    except Exception as e:
        print(f"ERROR: Failed to load config: {e}", file=sys.stderr)
        return 1
    configure_logging(level=settings.log_level)

    if args.file is not None:
        source_path = args.file.resolve()
        if not source_path.is_file():
            print(f"ERROR: File not found: {source_path}", file=sys.stderr)
            return 1

        if args.inspect_only:
            summary = CsvSourceAdapter().inspect(source_path, {})
            print(f"Rows: {summary.row_count}")
            print(f"Columns: {list(summary.columns)}")
            print("Sample (first 3):")
            for i, row in enumerate(summary.sample_rows[:3], 1):
                print(f"  {i}: {row}")
            return 0

    try:
        init_engine_from_url(args.db_url or settings.database_url)
        if args.create_tables:
            create_tables()
    except Exception as e:
        print(f"ERROR: Database init failed: {e}", file=sys.stderr)
        return 1

    session = get_session()
    clock = SystemClock()
    tracker = ProgressTracker(
        clock=clock, update_interval=settings.progress_update_interval,
    )
    service = ImportService(session, tracker, clock=clock, settings=settings)

    try:
        if args.file is not None:
            if args.validate_only:
                result = service.validate_file(source_path)
            else:
                print(f"Validating {source_path}...")
                result, job = service.submit_file(source_path, created_by=args.actor_id)
            print(
                f"  Rows: {result.summary.total_rows}, "
                f"Valid: {result.summary.valid_rows}, Invalid: {result.summary.invalid_rows}"
            )
            for err in result.errors[:10]:
                print(f"  {err}")
            if len(result.errors) > 10:
                print(f"  ... and {len(result.errors) - 10} more errors.")
            if args.validate_only:
                return 0 if result.is_valid else 1
            if job is None:
                print("File rejected; no job created.")
                return 1
            session.commit()
            job_id = job.job_id
            print(f"Created job {job.job_uuid} with {job.total_items} items.")
            report = service.run_job(job_id, checkpoint=session.commit)
        else:
            job_uuid = args.resume or args.retry_failed
            job = service.store.get_job_by_uuid(job_uuid)
            if args.resume:
                report = service.run_job(job.job_id, checkpoint=session.commit)
            else:
                report = service.retry_failed_items(job.job_id, checkpoint=session.commit)

        session.commit()
        _print_report(report)
        return 0 if report.job.status == JobStatus.COMPLETED else 1
    except Exception as e:
        session.rollback()
        print(f"ERROR: {e}", file=sys.stderr)
        raise
    finally:
        session.close()


if __name__ == "__main__":
    sys.exit(main())
