"""Tiered retention policy enforcement for snapshot files.

Each database is handled on its own. Inside the daily window every snapshot
is kept; inside the weekly window only the newest snapshot of each ISO week
survives; inside the monthly window only the newest snapshot of each month
survives. Anything older is deleted together with its ``.log`` companion.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set, Union

from .catalog import get_all_backup_files
from .naming import log_path_for, parse_backup_timestamp
from .types import (
    BackupFileInfo,
    BackupFileWithDate,
    RetentionConfig,
    RetentionError,
    RetentionResult,
)

DAILY = "daily"
WEEKLY = "weekly"
MONTHLY = "monthly"
DELETE = "delete"

DEFAULT_RETENTION_CONFIG = RetentionConfig()

# Months are approximated as 30 days when computing the monthly cutoff.
DAYS_PER_MONTH = 30


@dataclass(slots=True)
class Cutoffs:
    daily: datetime
    weekly: datetime
    monthly: datetime


@dataclass(slots=True)
class CategorizedBackups:
    daily: List[BackupFileWithDate]
    weekly: List[BackupFileWithDate]
    monthly: List[BackupFileWithDate]
    to_delete: List[BackupFileWithDate]


def get_week_key(moment: datetime) -> str:
    year, week, _ = moment.isocalendar()
    return f"{year}-W{week:02d}"


def get_month_key(moment: datetime) -> str:
    return f"{moment.year}-{moment.month:02d}"


def calculate_cutoffs(config: RetentionConfig, now: Optional[datetime] = None) -> Cutoffs:
    current = now or datetime.now(timezone.utc)
    return Cutoffs(
        daily=current - timedelta(days=config.daily_retention_days),
        weekly=current - timedelta(days=config.weekly_retention_weeks * 7),
        monthly=current - timedelta(days=config.monthly_retention_months * DAYS_PER_MONTH),
    )


def enrich_backup_files(files: Iterable[BackupFileInfo]) -> List[BackupFileWithDate]:
    """Attach parsed dates and bucket keys; unparseable entries are dropped."""

    enriched: List[BackupFileWithDate] = []
    for info in files:
        date = parse_backup_timestamp(info.timestamp)
        if date is None:
            continue
        enriched.append(
            BackupFileWithDate(
                path=info.path,
                database=info.database,
                timestamp=info.timestamp,
                size=info.size,
                date=date,
                week_key=get_week_key(date),
                month_key=get_month_key(date),
            )
        )
    return enriched


def group_by_database(backups: Iterable[BackupFileWithDate]) -> Dict[str, List[BackupFileWithDate]]:
    grouped: Dict[str, List[BackupFileWithDate]] = {}
    for backup in backups:
        grouped.setdefault(backup.database, []).append(backup)
    return grouped


def _categorize_backup(
    backup: BackupFileWithDate,
    cutoffs: Cutoffs,
    kept_weeks: Set[str],
    kept_months: Set[str],
) -> str:
    if backup.date >= cutoffs.daily:
        kept_weeks.add(backup.week_key)
        kept_months.add(backup.month_key)
        return DAILY
    if backup.date >= cutoffs.weekly:
        if backup.week_key in kept_weeks:
            return DELETE
        kept_weeks.add(backup.week_key)
        kept_months.add(backup.month_key)
        return WEEKLY
    if backup.date >= cutoffs.monthly:
        if backup.month_key in kept_months:
            return DELETE
        kept_months.add(backup.month_key)
        return MONTHLY
    return DELETE


def categorize_backups(backups: Iterable[BackupFileWithDate], cutoffs: Cutoffs) -> CategorizedBackups:
    """Assign every backup of a single database to exactly one tier.

    The walk is newest-first, so the most recent snapshot claims a week or
    month slot and older snapshots in the same bucket are deleted.
    """

    ordered = sorted(backups, key=lambda item: item.date, reverse=True)
    result = CategorizedBackups(daily=[], weekly=[], monthly=[], to_delete=[])
    kept_weeks: Set[str] = set()
    kept_months: Set[str] = set()
    for backup in ordered:
        tier = _categorize_backup(backup, cutoffs, kept_weeks, kept_months)
        if tier == DAILY:
            result.daily.append(backup)
        elif tier == WEEKLY:
            result.weekly.append(backup)
        elif tier == MONTHLY:
            result.monthly.append(backup)
        else:
            result.to_delete.append(backup)
    return result


def delete_backup_file(backup: BackupFileWithDate, *, dry_run: bool) -> Optional[str]:
    """Remove a snapshot and its log companion; return an error message on failure."""

    if dry_run:
        return None
    try:
        Path(backup.path).unlink()
        log_path = log_path_for(backup.path)
        if log_path.exists():
            log_path.unlink()
    except OSError as exc:
        return str(exc) or exc.__class__.__name__
    return None


def _apply_to_database(
    backups: List[BackupFileWithDate],
    cutoffs: Cutoffs,
    config: RetentionConfig,
    result: RetentionResult,
    logger,
) -> None:
    categorized = categorize_backups(backups, cutoffs)
    result.daily.extend(categorized.daily)
    result.weekly.extend(categorized.weekly)
    result.monthly.extend(categorized.monthly)
    result.kept.extend(categorized.daily + categorized.weekly + categorized.monthly)
    for backup in categorized.to_delete:
        error = delete_backup_file(backup, dry_run=config.dry_run)
        if error is not None:
            result.errors.append(RetentionError(file=str(backup.path), error=error))
            if logger is not None:
                logger.error("backup_delete_failed", file=str(backup.path), err_msg=error)
            continue
        result.deleted.append(backup)
        result.freed_bytes += backup.size
        if logger is not None:
            logger.info(
                "backup_would_delete" if config.dry_run else "backup_removed",
                file=str(backup.path),
                database=backup.database,
                reason="retention",
            )


def apply_retention_to_files(
    files: Iterable[BackupFileInfo],
    config: RetentionConfig,
    *,
    logger=None,
    now: Optional[datetime] = None,
) -> RetentionResult:
    result = RetentionResult(dry_run=config.dry_run)
    enriched = enrich_backup_files(files)
    if not enriched:
        return result
    cutoffs = calculate_cutoffs(config, now)
    for _, backups in group_by_database(enriched).items():
        _apply_to_database(backups, cutoffs, config, result, logger)
    return result


def apply_retention_policy(
    backup_dir: Union[str, Path],
    config: RetentionConfig = DEFAULT_RETENTION_CONFIG,
    *,
    logger=None,
    now: Optional[datetime] = None,
) -> RetentionResult:
    """Classify every snapshot in *backup_dir* and delete the expired ones.

    Deletion failures are collected in ``result.errors``; this function does
    not raise for them.
    """

    files = get_all_backup_files(backup_dir)
    result = apply_retention_to_files(files, config, logger=logger, now=now)
    if logger is not None:
        logger.event(
            event="retention_applied",
            phase="retention",
            ok=not result.errors,
            kept=len(result.kept),
            removed=len(result.deleted),
            errors=len(result.errors),
            freed_bytes=result.freed_bytes,
            dry_run=config.dry_run,
        )
    return result


__all__ = [
    "CategorizedBackups",
    "Cutoffs",
    "DAILY",
    "DEFAULT_RETENTION_CONFIG",
    "DELETE",
    "MONTHLY",
    "WEEKLY",
    "apply_retention_policy",
    "apply_retention_to_files",
    "calculate_cutoffs",
    "categorize_backups",
    "delete_backup_file",
    "enrich_backup_files",
    "get_month_key",
    "get_week_key",
    "group_by_database",
]
