#!/usr/bin/env python3
"""
Health check script for the subscriber sync engine.

This script performs health checks on the engine's components:
- Configuration validation
- Database accessibility
- Change backlog and processing lag
- Subscriber mirror readability (when configured)
- Webhook endpoint reachability (with --webhooks)

Can be used for monitoring, alerting, or pre-deployment validation.

Usage:
    python scripts/health_check.py [--config CONFIG_PATH] [--json] [--webhooks]

Exit codes:
    0: All checks passed
    1: One or more checks failed
"""

import argparse
import json
import sys
from datetime import datetime

import structlog

from subsync.models.config import AppConfig
from subsync.providers import SyncEngine, build_engine
from subsync.utils.config_loader import ConfigLoader

log = structlog.stdlib.get_logger()


class HealthChecker:
    """Performs health checks on engine components."""

    def __init__(self, config_path: str | None = None, check_webhooks: bool = False):
        """
        Initialize health checker.

        Args:
            config_path: Optional path to configuration file
            check_webhooks: Also send a test notification to each endpoint
        """
        self.config_path = config_path
        self.check_webhooks = check_webhooks
        self.results: dict[str, dict] = {}
        self._config: AppConfig | None = None
        self._engine: SyncEngine | None = None

    def check_configuration(self) -> bool:
        check_name = "configuration"
        log.info("checking_configuration")

        try:
            config_loader = ConfigLoader()
            self._config = config_loader.load_config(self.config_path)
            warnings = config_loader.validate_config(self._config)

            self.results[check_name] = {
                "status": "warn" if warnings else "pass",
                "message": "Configuration loaded successfully",
                "details": {
                    "database_path": self._config.store.database_path,
                    "batch_size": self._config.sync.batch_size,
                    "webhook_endpoints": len(self._config.webhook.endpoints),
                    "warnings": warnings,
                },
            }
            return True

        except Exception as e:
            self.results[check_name] = {
                "status": "fail",
                "message": f"Configuration error: {str(e)}",
                "details": {},
            }
            return False

    def check_database(self) -> bool:
        check_name = "database"
        log.info("checking_database")

        if self._config is None:
            self._skip(check_name, "Configuration not loaded")
            return False

        try:
            self._engine = build_engine(self._config)
            unprocessed = self._engine.change_store.count_unprocessed()

            self.results[check_name] = {
                "status": "pass",
                "message": "Database is accessible",
                "details": {
                    "path": self._engine.database.path,
                    "unprocessed_changes": unprocessed,
                },
            }
            return True

        except Exception as e:
            self.results[check_name] = {
                "status": "fail",
                "message": f"Database error: {str(e)}",
                "details": {},
            }
            return False

    def check_sync_backlog(self) -> bool:
        """
        Check backlog size and processing lag against configured thresholds.

        Returns:
            True if the engine reports healthy, False otherwise
        """
        check_name = "sync_backlog"
        log.info("checking_sync_backlog")

        if self._engine is None:
            self._skip(check_name, "Database not available")
            return False

        try:
            status = self._engine.admin.get_status()
            details = {
                "unprocessed_count": status.unprocessed_count,
                "failed_count": status.failed_count,
                "processing_lag_seconds": round(status.processing_lag_seconds, 2),
                "stuck_count": status.stuck_count,
                "open_conflicts": status.open_conflicts,
            }

            if not status.healthy:
                self.results[check_name] = {
                    "status": "fail",
                    "message": "Backlog or lag above threshold",
                    "details": details,
                }
                return False

            self.results[check_name] = {
                "status": "warn" if status.stuck_count or status.open_conflicts else "pass",
                "message": "Backlog within thresholds",
                "details": details,
            }
            return True

        except Exception as e:
            self.results[check_name] = {
                "status": "fail",
                "message": f"Status error: {str(e)}",
                "details": {},
            }
            return False

    def check_mirror(self) -> bool:
        check_name = "mirror"
        log.info("checking_mirror")

        if self._engine is None or self._engine.mirror is None:
            self._skip(check_name, "No subscriber mirror configured")
            return True

        try:
            entries = self._engine.mirror.all()
            self.results[check_name] = {
                "status": "pass",
                "message": "Mirror is readable",
                "details": {"subscribers": len(entries)},
            }
            return True

        except Exception as e:
            self.results[check_name] = {
                "status": "fail",
                "message": f"Mirror error: {str(e)}",
                "details": {},
            }
            return False

    def check_webhook_endpoints(self) -> bool:
        check_name = "webhook_endpoints"
        log.info("checking_webhook_endpoints")

        if not self.check_webhooks or self._engine is None:
            self._skip(check_name, "Webhook probing not requested")
            return True

        try:
            results = self._engine.admin.test_webhook()
            failed = [result for result in results if not result.success]
            self.results[check_name] = {
                "status": "fail" if failed else "pass",
                "message": f"{len(results) - len(failed)} of {len(results)} endpoints reachable",
                "details": {result.endpoint: result.error or "ok" for result in results},
            }
            return not failed

        except Exception as e:
            self.results[check_name] = {
                "status": "fail",
                "message": f"Webhook check error: {str(e)}",
                "details": {},
            }
            return False

    def run_all_checks(self) -> bool:
        """
        Run all health checks.

        Returns:
            True if all checks passed, False otherwise
        """
        checks = [
            self.check_configuration,
            self.check_database,
            self.check_sync_backlog,
            self.check_mirror,
            self.check_webhook_endpoints,
        ]

        all_passed = True
        try:
            for check in checks:
                try:
                    if not check():
                        all_passed = False
                except Exception as e:
                    log.error("check_failed_with_exception", check=check.__name__, error=str(e))
                    all_passed = False
        finally:
            if self._engine is not None:
                self._engine.close()

        return all_passed

    def get_summary(self) -> dict:
        total_checks = len(self.results)
        passed = sum(1 for r in self.results.values() if r["status"] == "pass")
        failed = sum(1 for r in self.results.values() if r["status"] == "fail")
        warnings = sum(1 for r in self.results.values() if r["status"] == "warn")
        skipped = sum(1 for r in self.results.values() if r["status"] == "skip")

        return {
            "timestamp": datetime.now().isoformat(),
            "overall_status": "healthy" if failed == 0 else "unhealthy",
            "total_checks": total_checks,
            "passed": passed,
            "failed": failed,
            "warnings": warnings,
            "skipped": skipped,
            "checks": self.results,
        }

    def _skip(self, check_name: str, message: str) -> None:
        self.results[check_name] = {"status": "skip", "message": message, "details": {}}


def main():
    """Main entry point for health check script."""
    parser = argparse.ArgumentParser(description="Health check for the subscriber sync engine")
    parser.add_argument(
        "--config",
        type=str,
        help="Path to configuration file",
        default=None,
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Output results in JSON format",
    )
    parser.add_argument(
        "--webhooks",
        action="store_true",
        help="Send a test notification to every configured webhook endpoint",
    )

    args = parser.parse_args()

    checker = HealthChecker(config_path=args.config, check_webhooks=args.webhooks)
    all_passed = checker.run_all_checks()
    summary = checker.get_summary()

    if args.json:
        print(json.dumps(summary, indent=2, default=str))
    else:
        print("\n" + "=" * 60)
        print("HEALTH CHECK SUMMARY")
        print("=" * 60)
        print(f"Timestamp: {summary['timestamp']}")
        print(f"Overall Status: {summary['overall_status'].upper()}")
        print(f"Total Checks: {summary['total_checks']}")
        print(f"Passed: {summary['passed']}")
        print(f"Failed: {summary['failed']}")
        print(f"Warnings: {summary['warnings']}")
        print(f"Skipped: {summary['skipped']}")
        print("\n" + "-" * 60)
        print("DETAILED RESULTS")
        print("-" * 60)

        for check_name, result in summary["checks"].items():
            status_symbol = {
                "pass": "✓",
                "fail": "✗",
                "warn": "⚠",
                "skip": "○",
            }.get(result["status"], "?")

            print(f"\n{status_symbol} {check_name.replace('_', ' ').title()}")
            print(f"  Status: {result['status'].upper()}")
            print(f"  Message: {result['message']}")

            if result["details"]:
                print("  Details:")
                for key, value in result["details"].items():
                    print(f"    - {key}: {value}")

        print("\n" + "=" * 60)

    sys.exit(0 if all_passed else 1)


if __name__ == "__main__":
    main()
