"""Interval-driven backup scheduler."""
from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional

from backup.catalog import ensure_backup_dir, get_backup_files_for
from backup.retention import apply_retention_policy
from backup.types import BackupResult, RetentionConfig
from core.paths import resolve_backup_dir
from core.settings import parse_interval

from .patterns import filter_by_pattern

DEFAULT_INTERVAL_MS = 24 * 60 * 60 * 1000
DEFAULT_DATABASE_PATTERN = "eddo_*"
BACKUP_NOT_FOUND = "Backup file not found after backup"

ListDatabases = Callable[[], Iterable[str]]
Snapshot = Callable[[str], Any]
Verify = Callable[[Path], bool]


@dataclass(slots=True)
class SchedulerConfig:
    backup_dir: Path
    interval_ms: int = DEFAULT_INTERVAL_MS
    database_pattern: str = DEFAULT_DATABASE_PATTERN
    verify_after_backup: bool = True
    apply_retention: bool = True
    retention_config: RetentionConfig = field(default_factory=RetentionConfig)

    def __post_init__(self) -> None:
        self.backup_dir = Path(self.backup_dir)
        if int(self.interval_ms) <= 0:
            raise ValueError(f"interval_ms must be positive, got {self.interval_ms}")
        self.interval_ms = int(self.interval_ms)

    @classmethod
    def from_settings(cls, settings: Dict[str, Any], working_dir: Optional[Path] = None) -> "SchedulerConfig":
        backup_cfg = settings.get("backup") or {}
        return cls(
            backup_dir=resolve_backup_dir(settings, working_dir),
            interval_ms=parse_interval(str(backup_cfg.get("interval") or "24h")),
            database_pattern=str(backup_cfg.get("database_pattern") or DEFAULT_DATABASE_PATTERN),
            verify_after_backup=bool(backup_cfg.get("verify_after_backup", True)),
            apply_retention=bool(backup_cfg.get("apply_retention", True)),
            retention_config=RetentionConfig.from_settings(settings),
        )

    def as_dict(self) -> Dict[str, Any]:
        return {
            "interval_ms": self.interval_ms,
            "backup_dir": str(self.backup_dir),
            "database_pattern": self.database_pattern,
            "verify_after_backup": self.verify_after_backup,
            "apply_retention": self.apply_retention,
            "retention_config": self.retention_config.as_dict(),
        }


@dataclass(slots=True)
class SchedulerState:
    is_running: bool = False
    backup_in_progress: bool = False
    last_backup_time: Optional[datetime] = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BackupScheduler:
    """Run backup cycles on a fixed interval, never two at once.

    Each cycle discovers databases, snapshots the ones matching the
    configured glob one after another, optionally verifies each new file and
    finally applies the retention policy to the whole backup directory.
    """

    def __init__(
        self,
        config: SchedulerConfig,
        *,
        list_databases: ListDatabases,
        snapshot: Snapshot,
        verify: Optional[Verify] = None,
        logger: Any,
    ) -> None:
        if config.verify_after_backup and verify is None:
            raise ValueError("verify_after_backup requires a verify callable")
        self.config = config
        self._list_databases = list_databases
        self._snapshot = snapshot
        self._verify = verify
        self._logger = logger
        self._state = SchedulerState()
        self._state_lock = threading.Lock()
        self._threads: List[threading.Thread] = []
        self._stop_event: Optional[threading.Event] = None
        self._logger.info(
            "scheduler_created",
            interval_ms=config.interval_ms,
            interval_hours=round(config.interval_ms / 3_600_000, 1),
            backup_dir=str(config.backup_dir),
            database_pattern=config.database_pattern,
            verify_after_backup=config.verify_after_backup,
            apply_retention=config.apply_retention,
        )

    # ------------------------------------------------------------------
    @property
    def state(self) -> SchedulerState:
        return self._state

    def start(self) -> None:
        """Arm the timer and kick off an immediate first cycle on its thread."""

        with self._state_lock:
            if self._state.is_running:
                self._logger.warning("scheduler_already_running")
                return
            ensure_backup_dir(self.config.backup_dir)
            self._state.is_running = True
            stop_event = threading.Event()
            self._stop_event = stop_event
            # a loop stopped earlier may still be finishing its cycle
            self._threads = [thread for thread in self._threads if thread.is_alive()]
            thread = threading.Thread(
                target=self._run_loop,
                args=(stop_event,),
                name="backup-scheduler",
                daemon=True,
            )
            self._threads.append(thread)
            thread.start()
        self._logger.info("scheduler_started", next_backup=self._next_backup_time().isoformat())

    def stop(self) -> None:
        """Disarm the timer. A cycle that is already running finishes on its own."""

        with self._state_lock:
            if self._stop_event is not None:
                self._stop_event.set()
            self._stop_event = None
            self._state.is_running = False
        self._logger.info("scheduler_stopped")

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for every loop thread started so far; returns False on timeout."""

        deadline = None if timeout is None else time.monotonic() + timeout
        current = threading.current_thread()
        for thread in list(self._threads):
            if thread is current:
                continue
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            thread.join(remaining)
        return not any(thread.is_alive() for thread in self._threads if thread is not current)

    def _run_loop(self, stop_event: threading.Event) -> None:
        """Run a cycle now, then one per interval measured from the end of the previous cycle."""

        interval_s = self.config.interval_ms / 1000.0
        self._run_cycle_safely("initial")
        while not stop_event.wait(interval_s):
            self._run_cycle_safely("scheduled")

    def _run_cycle_safely(self, trigger: str) -> None:
        try:
            self.run_backup_cycle()
        except Exception as exc:  # pragma: no cover - run_backup_cycle already traps
            self._logger.error("cycle_error", trigger=trigger, err=type(exc).__name__, err_msg=str(exc))

    # ------------------------------------------------------------------
    def run_backup_cycle(self) -> List[BackupResult]:
        """Run one full cycle and return a result per matched database.

        Returns an empty list when another cycle is in flight or when no
        database matches the pattern.
        """

        with self._state_lock:
            if self._state.backup_in_progress:
                self._logger.warning("cycle_skipped", reason="backup already in progress")
                return []
            self._state.backup_in_progress = True

        results: List[BackupResult] = []
        try:
            self._logger.info("cycle_started")
            started = time.monotonic()
            databases = self._databases_to_backup()
            if not databases:
                self._logger.warning("no_matching_databases", pattern=self.config.database_pattern)
                return results
            self._logger.info("databases_selected", count=len(databases), databases=databases)

            for name in databases:
                results.append(self._backup_database(name))

            if self.config.apply_retention:
                self._apply_retention()

            successful = sum(1 for result in results if result.success)
            with self._state_lock:
                self._state.last_backup_time = _utcnow()
            self._logger.info(
                "cycle_completed",
                duration_s=round(time.monotonic() - started, 1),
                successful=successful,
                failed=len(results) - successful,
                next_backup=self._next_backup_time().isoformat(),
            )
        except Exception as exc:
            self._logger.error("cycle_failed", err=type(exc).__name__, err_msg=str(exc))
        finally:
            with self._state_lock:
                self._state.backup_in_progress = False
        return results

    def _databases_to_backup(self) -> List[str]:
        try:
            available = list(self._list_databases())
        except Exception as exc:
            self._logger.error("database_discovery_failed", err=type(exc).__name__, err_msg=str(exc))
            return []
        return filter_by_pattern(available, self.config.database_pattern)

    def _backup_database(self, name: str) -> BackupResult:
        result = BackupResult(database=name)
        try:
            self._logger.info("backup_started", database=name)
            self._snapshot(name)
            files = get_backup_files_for(name, self.config.backup_dir)
            if not files:
                result.error = BACKUP_NOT_FOUND
                self._logger.error("backup_file_missing", database=name)
                return result
            result.backup_file = files[0].path
            result.success = True
            if self.config.verify_after_backup:
                result.verified = self._verify_file(name, result.backup_file)
            self._logger.info(
                "backup_succeeded",
                database=name,
                backup_file=str(result.backup_file),
                verified=result.verified,
            )
        except Exception as exc:
            result.success = False
            result.error = str(exc) or exc.__class__.__name__
            self._logger.error("backup_failed", database=name, err=type(exc).__name__, err_msg=result.error)
        return result

    def _verify_file(self, name: str, path: Path) -> bool:
        try:
            valid = bool(self._verify(path))
        except Exception as exc:
            self._logger.error("verify_error", database=name, backup_file=str(path), err_msg=str(exc))
            return False
        if not valid:
            self._logger.warning("verify_failed", database=name, backup_file=str(path))
        return valid

    def _apply_retention(self) -> None:
        try:
            self._logger.info("retention_started")
            result = apply_retention_policy(
                self.config.backup_dir,
                self.config.retention_config,
                logger=self._logger,
            )
        except Exception as exc:
            self._logger.error("retention_failed", err=type(exc).__name__, err_msg=str(exc))
            return
        self._logger.info(
            "retention_completed",
            kept=len(result.kept),
            deleted=len(result.deleted),
            errors=len(result.errors),
            freed_bytes=result.freed_bytes,
        )

    # ------------------------------------------------------------------
    def _next_backup_time(self) -> datetime:
        return _utcnow() + timedelta(milliseconds=self.config.interval_ms)

    def get_status(self) -> Dict[str, Any]:
        with self._state_lock:
            is_running = self._state.is_running
            in_progress = self._state.backup_in_progress
            last_backup = self._state.last_backup_time
        return {
            "is_running": is_running,
            "backup_in_progress": in_progress,
            "last_backup_time": last_backup,
            "next_backup_time": self._next_backup_time() if is_running else None,
            "config": self.config.as_dict(),
        }


__all__ = [
    "BACKUP_NOT_FOUND",
    "BackupScheduler",
    "SchedulerConfig",
    "SchedulerState",
]
