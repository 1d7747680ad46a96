#!/usr/bin/env python3
"""
Long-running sync process for the subscriber sync engine.

This script:
- Loads configuration and wires the engine
- Starts the periodic sync loop
- Stops cleanly on SIGINT/SIGTERM, letting the current record finish

Use --once to run a single batch and exit (e.g. from cron).

Usage:
    python scripts/run_scheduler.py [--config CONFIG_PATH] [--once] [--batch-size N]
"""

import argparse
import signal
import sys
import threading

import structlog

from subsync.exceptions import AlreadyInProgressError
from subsync.providers import build_engine
from subsync.utils.config_loader import ConfigLoader, ConfigurationError
from subsync.utils.logging_config import configure_logging

log = structlog.stdlib.get_logger()


def run_once(config_path: str | None = None, batch_size: int | None = None) -> dict:
    """
    Process a single batch of captured changes.

    Args:
        config_path: Optional path to configuration file
        batch_size: Optional batch size overriding sync.batch_size

    Returns:
        Dictionary with sync statistics
    """
    config = ConfigLoader().load_config(config_path)
    configure_logging(**config.logging.model_dump())

    engine = build_engine(config)
    try:
        result = engine.admin.trigger_sync(batch_size or config.sync.batch_size)
        stats = {"success": result.success, **result.to_wire()}
        log.info("single_sync_completed", **stats)
        return stats
    except (AlreadyInProgressError, ValueError) as e:
        return {"success": False, "error": str(e)}
    finally:
        engine.close()


def run_forever(config_path: str | None = None) -> int:
    """Run the periodic loop until a termination signal arrives."""
    config = ConfigLoader().load_config(config_path)
    configure_logging(**config.logging.model_dump())

    engine = build_engine(config)
    stop_requested = threading.Event()

    def handle_signal(signum, frame):
        log.info("shutdown_signal_received", signal=signum)
        stop_requested.set()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    engine.scheduler.start()
    try:
        while not stop_requested.wait(timeout=1.0):
            pass
    finally:
        engine.close()
        log.info("scheduler_process_exited", **engine.scheduler.get_statistics().to_wire())

    return 0


def main():
    """Main entry point for the scheduler process."""
    parser = argparse.ArgumentParser(description="Subscriber sync scheduler")
    parser.add_argument(
        "--config",
        type=str,
        help="Path to configuration file",
        default=None,
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Process one batch and exit",
    )
    parser.add_argument(
        "--batch-size",
        type=int,
        help="Records to process with --once (1-1000)",
        default=None,
    )

    args = parser.parse_args()

    try:
        if not args.once:
            sys.exit(run_forever(args.config))
        stats = run_once(args.config, args.batch_size)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(2)

    print("\n" + "=" * 60)
    print("SYNCHRONIZATION SUMMARY")
    print("=" * 60)

    if stats.get("success"):
        print("Status: ✓ SUCCESS")
    else:
        print("Status: ✗ FAILED")
        if stats.get("error"):
            print(f"Error: {stats['error']}")
    if "changesProcessed" in stats:
        print(f"Changes Processed: {stats['changesProcessed']}")
        print(f"Successful: {stats['successfulChanges']}")
        print(f"Failed: {stats['failedChanges']}")
        print(f"Conflicts Detected: {stats['conflictsDetected']}")
        print(f"Message: {stats['message']}")

    print("=" * 60)

    sys.exit(0 if stats.get("success") else 1)


if __name__ == "__main__":
    main()
