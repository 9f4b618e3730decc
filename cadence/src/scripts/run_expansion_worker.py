#!/usr/bin/env python3
"""
Run the series expansion worker.

Drains the ``recurring`` expansion queue, materializing queued series into
records and instances. By default the worker keeps polling; use --once for
cron-style runs.

Usage:
    python -m cadence.src.scripts.run_expansion_worker [--once] [--limit N] [--interval SECONDS]

Examples:
    # Poll every 10 seconds until interrupted
    python -m cadence.src.scripts.run_expansion_worker --interval 10

    # Process at most 50 jobs, then exit
    python -m cadence.src.scripts.run_expansion_worker --once --limit 50
"""

import argparse
import signal
import sys
import time

from cadence.src.db.database import SessionLocal
from cadence.src.services.expansion_worker import ExpansionWorker
from cadence.src.utils.logging_config import get_logger, init_logging


# Flag for graceful shutdown
_shutdown_requested = False


def signal_handler(signum, frame):
    """Finish the current job, then stop."""
    global _shutdown_requested
    _shutdown_requested = True


def parse_args(argv=None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Materialize queued recurring series expansions.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s --interval 10
  %(prog)s --once --limit 50
        """
    )

    parser.add_argument(
        "--once",
        action="store_true",
        help="Drain the queue once and exit"
    )
    parser.add_argument(
        "-l", "--limit",
        type=int,
        default=None,
        help="Maximum jobs to process per pass"
    )
    parser.add_argument(
        "-i", "--interval",
        type=float,
        default=5.0,
        help="Seconds to wait between passes when the queue is empty (default: 5)"
    )

    return parser.parse_args(argv)


def run_pass(limit=None) -> int:
    """Process pending jobs in a fresh session; returns jobs processed."""
    db = SessionLocal()
    try:
        return ExpansionWorker(db).run_pending(limit=limit)
    finally:
        db.close()


def main(argv=None) -> int:
    args = parse_args(argv)
    init_logging()
    logger = get_logger("worker")

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    logger.info("Expansion worker started")
    while not _shutdown_requested:
        processed = run_pass(args.limit)
        if processed:
            logger.info(f"Processed {processed} expansion job(s)")
        if args.once:
            break
        if not processed:
            time.sleep(args.interval)

    logger.info("Expansion worker stopped")
    return 0


if __name__ == "__main__":
    sys.exit(main())
