from __future__ import annotations

import argparse
import signal
import sys
import threading
import time
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from backup.api import BackupService
from backup.formatting import format_duration
from backup.types import BackupResult
from core.logging_utils import configure_json_logging, redact_url
from core.paths import resolve_working_dir
from core.settings import load_settings, parse_interval


def format_results(results: List[BackupResult]) -> str:
    lines = ["Backup Results:"]
    for result in results:
        if result.success:
            note = "(verified)" if result.verified else "(not verified)"
            lines.append(f"  OK   {result.database} {note}")
        else:
            lines.append(f"  FAIL {result.database}: {result.error}")
    successful = sum(1 for result in results if result.success)
    lines.append(f"Total: {len(results)} | Success: {successful} | Failed: {len(results) - successful}")
    return "\n".join(lines)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Automated CouchDB backup scheduler with retention policy")
    parser.add_argument("-i", "--interval", default=None, help='Backup interval, e.g. "24h", "1d", "30m"')
    parser.add_argument("-b", "--backup-dir", default=None, help="Backup directory")
    parser.add_argument("-p", "--pattern", default=None, help="Database name pattern (glob)")
    parser.add_argument("--no-verify", action="store_true", help="Disable backup verification")
    parser.add_argument("--no-retention", action="store_true", help="Disable retention policy")
    parser.add_argument("--retention-daily", type=int, default=None, help="Daily retention days")
    parser.add_argument("--retention-weekly", type=int, default=None, help="Weekly retention weeks")
    parser.add_argument("--retention-monthly", type=int, default=None, help="Monthly retention months")
    parser.add_argument("--run-once", action="store_true", help="Run a single backup cycle and exit")
    parser.add_argument("--working-dir", type=Path, default=None, help="Override working directory")
    return parser


def _apply_overrides(settings: dict, args: argparse.Namespace) -> dict:
    backup_cfg = settings.setdefault("backup", {})
    retention_cfg = backup_cfg.setdefault("retention", {})
    if args.interval:
        backup_cfg["interval"] = args.interval
    if args.backup_dir:
        backup_cfg["dir"] = args.backup_dir
    if args.pattern:
        backup_cfg["database_pattern"] = args.pattern
    if args.no_verify:
        backup_cfg["verify_after_backup"] = False
    if args.no_retention:
        backup_cfg["apply_retention"] = False
    if args.retention_daily is not None:
        retention_cfg["daily_days"] = args.retention_daily
    if args.retention_weekly is not None:
        retention_cfg["weekly_weeks"] = args.retention_weekly
    if args.retention_monthly is not None:
        retention_cfg["monthly_months"] = args.retention_monthly
    return settings


def cli(argv: Optional[list[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    load_dotenv()
    working_dir = args.working_dir or resolve_working_dir()
    configure_json_logging("couchvault", working_dir)
    settings = _apply_overrides(load_settings(working_dir), args)

    try:
        interval_ms = parse_interval(str(settings["backup"].get("interval") or "24h"))
        service = BackupService(working_dir=working_dir, settings=settings)
        scheduler = service.build_scheduler()
    except ValueError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    config = scheduler.config
    retention = config.retention_config
    print("CouchDB Automated Backup Scheduler")
    print(f"  CouchDB: {redact_url(str(settings['couchdb'].get('url')))}")
    print(f"  Interval: {settings['backup'].get('interval')} ({interval_ms / 3_600_000:.1f} hours)")
    print(f"  Backup Directory: {config.backup_dir}")
    print(f"  Database Pattern: {config.database_pattern}")
    print(f"  Verification: {'enabled' if config.verify_after_backup else 'disabled'}")
    print(f"  Retention: {'enabled' if config.apply_retention else 'disabled'}")
    if config.apply_retention:
        print(f"    Daily: {retention.daily_retention_days} days")
        print(f"    Weekly: {retention.weekly_retention_weeks} weeks")
        print(f"    Monthly: {retention.monthly_retention_months} months")

    try:
        if args.run_once:
            started = time.monotonic()
            results = scheduler.run_backup_cycle()
            print(format_results(results))
            print(f"Duration: {format_duration((time.monotonic() - started) * 1000)}")
            return 1 if any(not result.success for result in results) else 0

        shutdown = threading.Event()

        def _handle_signal(signum, _frame) -> None:
            print("Shutting down backup scheduler...")
            shutdown.set()

        signal.signal(signal.SIGINT, _handle_signal)
        signal.signal(signal.SIGTERM, _handle_signal)
        scheduler.start()
        print("Backup scheduler is running. Press Ctrl+C to stop.")
        while not shutdown.wait(1.0):
            pass
        scheduler.stop()
        return 0
    finally:
        service.close()


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(cli())
