from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from core.logging_utils import configure_json_logging
from core.paths import resolve_backup_dir, resolve_working_dir
from core.settings import load_settings

from .errors import BackupError
from .formatting import format_file_size
from .logs import BackupLogger
from .retention import apply_retention_policy
from .types import BackupFileWithDate, RetentionConfig, RetentionResult
from .verify import validate_backup_file, verify_directory

_LIST_LIMIT = 10
_LIST_HEAD = 5


def _describe(backup: BackupFileWithDate) -> str:
    return f"{Path(backup.path).name} ({backup.date.date().isoformat()})"


def format_retention_summary(result: RetentionResult, config: RetentionConfig, *, verbose: bool = False) -> str:
    lines = ["Retention Policy Summary", "-" * 50]
    lines.append(f"Kept: {len(result.kept)} backup(s)")
    lines.append(f"   Daily (last {config.daily_retention_days} days): {len(result.daily)}")
    lines.append(f"   Weekly (last {config.weekly_retention_weeks} weeks): {len(result.weekly)}")
    lines.append(f"   Monthly (last {config.monthly_retention_months} months): {len(result.monthly)}")

    if result.deleted:
        action = "Would delete" if config.dry_run else "Deleted"
        freed = "to be freed" if config.dry_run else "freed"
        lines.append(f"{action}: {len(result.deleted)} backup(s)")
        lines.append(f"   Space {freed}: {format_file_size(result.freed_bytes)}")
        shown = result.deleted if len(result.deleted) <= _LIST_LIMIT else result.deleted[:_LIST_HEAD]
        lines.extend(f"   - {_describe(backup)}" for backup in shown)
        if len(shown) < len(result.deleted):
            lines.append(f"   ... and {len(result.deleted) - len(shown)} more")

    if result.errors:
        lines.append(f"Errors: {len(result.errors)}")
        lines.extend(f"   - {error.file}: {error.error}" for error in result.errors)

    if config.dry_run:
        lines.append("Dry run mode - no files were deleted")

    if verbose and result.kept:
        lines.append("Kept Backups:")
        by_database: dict[str, List[BackupFileWithDate]] = {}
        for backup in result.kept:
            by_database.setdefault(backup.database, []).append(backup)
        for database, backups in by_database.items():
            backups.sort(key=lambda item: item.date, reverse=True)
            lines.append(f"  {database} ({len(backups)} backups):")
            for backup in backups[:_LIST_HEAD]:
                lines.append(f"    - {Path(backup.path).name} ({format_file_size(backup.size)})")
            if len(backups) > _LIST_HEAD:
                lines.append(f"    ... and {len(backups) - _LIST_HEAD} more")
    return "\n".join(lines)


def _result_payload(result: RetentionResult) -> dict:
    return {
        "dry_run": result.dry_run,
        "kept": [str(item.path) for item in result.kept],
        "deleted": [str(item.path) for item in result.deleted],
        "errors": [{"file": error.file, "error": error.error} for error in result.errors],
        "freed_bytes": result.freed_bytes,
        "tiers": {
            "daily": len(result.daily),
            "weekly": len(result.weekly),
            "monthly": len(result.monthly),
        },
    }


def _run_retention(args: argparse.Namespace, working_dir: Path) -> int:
    settings = load_settings(working_dir)
    defaults = RetentionConfig.from_settings(settings)
    try:
        config = RetentionConfig(
            daily_retention_days=args.daily if args.daily is not None else defaults.daily_retention_days,
            weekly_retention_weeks=args.weekly if args.weekly is not None else defaults.weekly_retention_weeks,
            monthly_retention_months=args.monthly if args.monthly is not None else defaults.monthly_retention_months,
            dry_run=bool(args.dry_run or defaults.dry_run),
        )
    except ValueError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    backup_dir = Path(args.backup_dir) if args.backup_dir else resolve_backup_dir(settings, working_dir)
    if not backup_dir.is_dir():
        print(f"Backup directory does not exist: {backup_dir}")
        return 0
    result = apply_retention_policy(backup_dir, config, logger=BackupLogger(working_dir))
    if args.json:
        print(json.dumps(_result_payload(result), indent=2))
    else:
        print(format_retention_summary(result, config, verbose=args.verbose))
    return 0


def _run_verify(args: argparse.Namespace, working_dir: Path) -> int:
    logger = BackupLogger(working_dir)
    try:
        if args.file:
            result = validate_backup_file(args.file)
            print(f"Total documents: {result.total_documents}")
            print(f"  Valid: {result.valid_documents}")
            print(f"  Design docs: {result.design_documents}")
            print(f"  Todo docs: {result.todo_documents}")
            for error in result.errors[:10]:
                print(f"  - {error}")
            for warning in result.warnings[:5]:
                print(f"  ! {warning}")
            print("Backup file is valid" if result.is_valid else "Backup file validation failed")
            return 0 if result.is_valid else 1
        settings = load_settings(working_dir)
        backup_dir = Path(args.backup_dir) if args.backup_dir else resolve_backup_dir(settings, working_dir)
        ok = verify_directory(backup_dir, logger=logger)
    except BackupError as exc:
        print(f"Backup verification failed: {exc}", file=sys.stderr)
        return 1
    print("All backup files are valid" if ok else "Some backup files have validation errors")
    return 0 if ok else 1


def cli(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Manage CouchDB snapshot files")
    parser.add_argument("--working-dir", type=Path, default=None, help="Override working directory")
    sub = parser.add_subparsers(dest="command", required=True)

    retention = sub.add_parser("retention", help="Apply the retention policy to backup files")
    retention.add_argument("-b", "--backup-dir", default=None, help="Backup directory")
    retention.add_argument("-d", "--daily", type=int, default=None, help="Daily retention days")
    retention.add_argument("-w", "--weekly", type=int, default=None, help="Weekly retention weeks")
    retention.add_argument("-m", "--monthly", type=int, default=None, help="Monthly retention months")
    retention.add_argument("--dry-run", action="store_true", help="Show what would be deleted without deleting")
    retention.add_argument("--verbose", action="store_true", help="List kept backups per database")
    retention.add_argument("--json", action="store_true", help="Output result as JSON")

    verify = sub.add_parser("verify", help="Validate snapshot files")
    verify.add_argument("file", nargs="?", default=None, help="Snapshot file; all files when omitted")
    verify.add_argument("-b", "--backup-dir", default=None, help="Backup directory")

    args = parser.parse_args(argv)
    load_dotenv()
    working_dir = args.working_dir or resolve_working_dir()
    configure_json_logging("couchvault", working_dir)
    if args.command == "retention":
        return _run_retention(args, working_dir)
    return _run_verify(args, working_dir)


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(cli())
