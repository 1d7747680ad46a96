#!/usr/bin/env python3
"""
Administrative CLI for the subscriber sync engine.

Usage:
    python scripts/sync_admin.py [--config CONFIG_PATH] [--json] COMMAND [ARGS]

Commands:
    status                          Backlog, lag and health
    trigger [--batch-size N]        Run one sync batch now
    invalidate-cache NAME [--key K] Evict one key, or the whole cache
    changes [--page P] [--size S] [--table T]
                                    List unprocessed change records
    change ID                       Show one change record
    enqueue FILE                    Append change records from a JSON file
    test-webhook [--endpoint URL]   Probe one or all webhook endpoints
    conflicts                       List OPEN conflicts
    resolve MSISDN USE_A|USE_B|MERGE [--merged JSON]
    resolve-all USE_A|USE_B
    rearm [--older-than MINUTES]    Re-arm records stuck in PROCESSING

Exit codes:
    0: Command succeeded
    1: Command failed
    2: Invalid arguments or configuration
"""

import argparse
import json
import sys
from typing import Any

import structlog

from subsync.exceptions import SubsyncError
from subsync.providers import SyncEngine, build_engine
from subsync.utils.config_loader import ConfigLoader, ConfigurationError
from subsync.utils.logging_config import configure_logging

log = structlog.stdlib.get_logger()


def _status(engine: SyncEngine, args: argparse.Namespace) -> Any:
    return engine.admin.get_status().to_wire()


def _trigger(engine: SyncEngine, args: argparse.Namespace) -> Any:
    return engine.admin.trigger_sync(args.batch_size).to_wire()


def _invalidate_cache(engine: SyncEngine, args: argparse.Namespace) -> Any:
    engine.admin.invalidate_cache(args.cache_name, args.key)
    return {"success": True, "cacheName": args.cache_name, "key": args.key}


def _changes(engine: SyncEngine, args: argparse.Namespace) -> Any:
    return engine.admin.list_unprocessed_changes(args.page, args.size, args.table).to_wire()


def _change(engine: SyncEngine, args: argparse.Namespace) -> Any:
    record = engine.admin.get_change(args.record_id)
    if record is None:
        raise SubsyncError(f"Change {args.record_id} not found")
    return record.to_wire()


def _enqueue(engine: SyncEngine, args: argparse.Namespace) -> Any:
    with open(args.file, "r") as f:
        payload = json.load(f)

    items = payload if isinstance(payload, list) else [payload]
    appended = []
    for item in items:
        record = engine.change_store.append(
            entity_type=item["tableName"],
            operation=item["operation"],
            entity_id=item["entityId"],
            prior_snapshot=item.get("oldData"),
            new_snapshot=item.get("newData"),
            source_tag=item.get("changeSource", "EXTERNAL_DB"),
        )
        appended.append(record.id)
    return {"success": True, "appended": appended}


def _test_webhook(engine: SyncEngine, args: argparse.Namespace) -> Any:
    return [result.to_wire() for result in engine.admin.test_webhook(args.endpoint)]


def _conflicts(engine: SyncEngine, args: argparse.Namespace) -> Any:
    return [conflict.to_wire() for conflict in engine.admin.list_conflicts()]


def _resolve(engine: SyncEngine, args: argparse.Namespace) -> Any:
    merged = json.loads(args.merged) if args.merged else None
    return engine.admin.resolve_conflict(args.msisdn, args.choice, merged).to_wire()


def _resolve_all(engine: SyncEngine, args: argparse.Namespace) -> Any:
    return [result.to_wire() for result in engine.admin.resolve_all_conflicts(args.choice)]


def _rearm(engine: SyncEngine, args: argparse.Namespace) -> Any:
    return {"success": True, "rearmed": engine.admin.rearm_stuck_records(args.older_than)}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Subscriber sync administration")
    parser.add_argument("--config", type=str, help="Path to configuration file", default=None)
    parser.add_argument("--json", action="store_true", help="Output results in JSON format")

    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("status", help="Backlog, lag and health").set_defaults(handler=_status)

    trigger = commands.add_parser("trigger", help="Run one sync batch now")
    trigger.add_argument("--batch-size", type=int, default=100)
    trigger.set_defaults(handler=_trigger)

    invalidate = commands.add_parser("invalidate-cache", help="Evict cache entries")
    invalidate.add_argument("cache_name")
    invalidate.add_argument("--key", default=None)
    invalidate.set_defaults(handler=_invalidate_cache)

    changes = commands.add_parser("changes", help="List unprocessed change records")
    changes.add_argument("--page", type=int, default=0)
    changes.add_argument("--size", type=int, default=20)
    changes.add_argument("--table", default=None)
    changes.set_defaults(handler=_changes)

    change = commands.add_parser("change", help="Show one change record")
    change.add_argument("record_id", type=int)
    change.set_defaults(handler=_change)

    enqueue = commands.add_parser("enqueue", help="Append change records from a JSON file")
    enqueue.add_argument("file")
    enqueue.set_defaults(handler=_enqueue)

    test_webhook = commands.add_parser("test-webhook", help="Probe webhook endpoints")
    test_webhook.add_argument("--endpoint", default=None)
    test_webhook.set_defaults(handler=_test_webhook)

    commands.add_parser("conflicts", help="List OPEN conflicts").set_defaults(
        handler=_conflicts
    )

    resolve = commands.add_parser("resolve", help="Resolve one conflict")
    resolve.add_argument("msisdn")
    resolve.add_argument("choice", choices=["USE_A", "USE_B", "MERGE"])
    resolve.add_argument("--merged", default=None, help="Merged snapshot as JSON")
    resolve.set_defaults(handler=_resolve)

    resolve_all = commands.add_parser("resolve-all", help="Resolve every OPEN conflict")
    resolve_all.add_argument("choice", choices=["USE_A", "USE_B"])
    resolve_all.set_defaults(handler=_resolve_all)

    rearm = commands.add_parser("rearm", help="Re-arm records stuck in PROCESSING")
    rearm.add_argument("--older-than", type=float, default=None, help="Minutes")
    rearm.set_defaults(handler=_rearm)

    return parser


def print_human(result: Any, indent: int = 0) -> None:
    pad = "  " * indent
    if isinstance(result, dict):
        for key, value in result.items():
            if isinstance(value, (dict, list)) and value:
                print(f"{pad}{key}:")
                print_human(value, indent + 1)
            else:
                print(f"{pad}{key}: {value}")
    elif isinstance(result, list):
        if not result:
            print(f"{pad}(none)")
        for item in result:
            print_human(item, indent)
            print(f"{pad}" + "-" * 40)
    else:
        print(f"{pad}{result}")


def main():
    """Main entry point for the admin CLI."""
    args = build_parser().parse_args()

    try:
        config = ConfigLoader().load_config(args.config)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(2)

    configure_logging(log_level="WARNING", json_logs=config.logging.json_logs)
    engine = build_engine(config)

    try:
        result = args.handler(engine, args)
    except (KeyError, ValueError) as e:
        print(f"Invalid argument: {e}", file=sys.stderr)
        sys.exit(2)
    except (SubsyncError, OSError) as e:
        log.error("admin_command_failed", command=args.command, error=str(e))
        if args.json:
            print(json.dumps({"success": False, "error": str(e)}, indent=2))
        else:
            print(f"✗ {e}")
        sys.exit(1)
    finally:
        engine.close()

    if args.json:
        print(json.dumps(result, indent=2, default=str))
    else:
        print_human(result)

    sys.exit(0)


if __name__ == "__main__":
    main()
