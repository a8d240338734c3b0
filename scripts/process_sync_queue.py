#!/usr/bin/env python3
"""
Drain the ERP sync queue: claim entries by priority, apply them, repeat.

Each pass is one SYNC job and is committed when it finishes.  Without
--once the worker keeps polling, sleeping queue_poll_interval_seconds
whenever the queue has nothing dispatchable.

Usage:
    python3 scripts/process_sync_queue.py [options]

Examples:
    # Process a single batch and exit
    python3 scripts/process_sync_queue.py --once

    # Show queue depth by status and priority
    python3 scripts/process_sync_queue.py --depth

    # Enqueue an event from a JSON file
    python3 scripts/process_sync_queue.py --enqueue event.json --subject 12345 --priority HIGH
"""

from __future__ import annotations

import argparse
import json
import sys
import time
from pathlib import Path

# Project root on sys.path
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Process the ERP sync queue.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Process one batch and exit.",
    )
    parser.add_argument(
        "--max-batches",
        type=int,
        default=None,
        help="Stop after this many non-empty batches.",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=None,
        help="Entries per batch (default: queue_batch_size setting).",
    )
    parser.add_argument(
        "--depth",
        action="store_true",
        help="Print queue depth by status and priority, then exit.",
    )
    parser.add_argument(
        "--enqueue",
        type=Path,
        default=None,
        metavar="JSON_FILE",
        help="Enqueue the event payload in JSON_FILE, then exit.",
    )
    parser.add_argument(
        "--subject",
        default=None,
        help="Subject id for --enqueue (ERP record id).",
    )
    parser.add_argument(
        "--event-type",
        default="item.updated",
        help="Event type for --enqueue (default: item.updated).",
    )
    parser.add_argument(
        "--priority",
        choices=("HIGH", "NORMAL", "LOW"),
        default="NORMAL",
        help="Priority for --enqueue (default: NORMAL).",
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


def main() -> int:
    args = _parse_args()
    if args.enqueue is not None and not args.subject:
        print("ERROR: --enqueue requires --subject", file=sys.stderr)
        return 1

    # Lazy imports so we fail fast on args first
    from catalog_config import load_settings
    from catalog_jobs.domain.types import QueuePriority
    from catalog_jobs.services.progress_tracker import ProgressTracker
    from catalog_jobs.services.sync_processor import SyncQueueProcessor
    from catalog_kernel.db.engine import create_tables, get_session, init_engine_from_url
    from catalog_kernel.domain.clock import SystemClock
    from catalog_kernel.logging_config import configure_logging

    try:
        settings = load_settings(args.config)
    except Exception as e:
        print(f"ERROR: Failed to load config: {e}", file=sys.stderr)
        return 1
    configure_logging(level=settings.log_level)

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
    processor = SyncQueueProcessor(session, tracker, clock=clock, settings=settings)

    try:
        if args.depth:
            depth = processor.dequeuer.queue_depth()
            for status, by_priority in depth.items():
                counts = ", ".join(f"{p.value}={n}" for p, n in by_priority.items())
                print(f"{status.value:<10} {counts}")
            return 0

        if args.enqueue is not None:
            with open(args.enqueue, encoding="utf-8") as f:
                payload = json.load(f)
            entry = processor.dequeuer.enqueue(
                args.subject,
                args.event_type,
                payload,
                priority=QueuePriority(args.priority),
                max_retries=settings.max_retries,
            )
            session.commit()
            print(f"Queued {entry.entry_id} ({entry.priority.value}) for {entry.subject_id}")
            return 0

        batches = 0
        failed = 0
        while True:
            result = processor.run_once(limit=args.limit, checkpoint=session.commit)
            session.commit()
            if result.claimed:
                batches += 1
                failed += result.failed
                print(
                    f"Batch {batches}: claimed {result.claimed}, done {result.done}, "
                    f"requeued {result.requeued}, failed {result.failed}"
                )
                for err in result.errors[:5]:
                    print(f"  Entry {err.row}: {err.error}")
            if args.once:
                break
            if args.max_batches is not None and batches >= args.max_batches:
                break
            if not result.claimed:
                time.sleep(settings.queue_poll_interval_seconds)
        return 0 if failed == 0 else 1
    except KeyboardInterrupt:
        session.rollback()
        print("Interrupted.", file=sys.stderr)
        return 130
    except Exception as e:
        session.rollback()
        print(f"ERROR: {e}", file=sys.stderr)
        raise
    finally:
        session.close()


if __name__ == "__main__":
    sys.exit(main())
