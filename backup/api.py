"""Public API for backup operations."""
from __future__ import annotations

from dataclasses import replace
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from core.paths import resolve_backup_dir, resolve_working_dir
from core.settings import load_settings

from .catalog import get_all_backup_files
from .create import create_snapshot
from .logs import BackupLogger
from .retention import apply_retention_policy
from .types import BackupFileInfo, RetentionConfig, RetentionResult
from .verify import verify_backup

if TYPE_CHECKING:  # pragma: no cover - typing guard
    from core.couchdb import CouchDBClient
    from orchestrator.scheduler import BackupScheduler


class BackupService:
    """Coordinate discovery, snapshot, verification and retention against one CouchDB."""

    def __init__(
        self,
        *,
        working_dir: Optional[Path] = None,
        settings: Optional[Dict[str, Any]] = None,
        client: Optional[CouchDBClient] = None,
    ) -> None:
        self._working_dir = Path(working_dir or resolve_working_dir())
        self._settings = dict(settings) if settings is not None else load_settings(self._working_dir)
        self._logger = BackupLogger(self._working_dir)
        couch_cfg = self._settings.get("couchdb") or {}
        if client is None:
            from core.couchdb import CouchDBClient

            client = CouchDBClient(
                str(couch_cfg.get("url") or "http://localhost:5984"),
                timeout=float(couch_cfg.get("timeout_s") or 60),
            )
        self._client = client
        self._batch_size = int(couch_cfg.get("batch_size") or 500)
        self._backup_dir = resolve_backup_dir(self._settings, self._working_dir)

    # ------------------------------------------------------------------
    @property
    def working_dir(self) -> Path:
        return self._working_dir

    @property
    def backup_dir(self) -> Path:
        return self._backup_dir

    @property
    def settings(self) -> Dict[str, Any]:
        return self._settings

    # ------------------------------------------------------------------
    def list_databases(self) -> List[str]:
        return self._client.list_databases()

    def snapshot(self, database: str) -> Path:
        return create_snapshot(
            self._client,
            database,
            self._backup_dir,
            batch_size=self._batch_size,
            logger=self._logger,
        )

    def verify(self, path: Path) -> bool:
        return verify_backup(path, logger=self._logger)

    def list_backups(self) -> List[BackupFileInfo]:
        return get_all_backup_files(self._backup_dir)

    def apply_retention(self, *, dry_run: Optional[bool] = None) -> RetentionResult:
        config = RetentionConfig.from_settings(self._settings)
        if dry_run is not None:
            config = replace(config, dry_run=bool(dry_run))
        return apply_retention_policy(self._backup_dir, config, logger=self._logger)

    # ------------------------------------------------------------------
    def build_scheduler(self, **overrides: Any) -> "BackupScheduler":
        """Return a scheduler wired to this service; *overrides* patch the config."""

        from orchestrator.logs import SchedulerLogger
        from orchestrator.scheduler import BackupScheduler, SchedulerConfig

        config = SchedulerConfig.from_settings(self._settings, self._working_dir)
        changes = {key: value for key, value in overrides.items() if value is not None}
        if changes:
            config = replace(config, **changes)
        return BackupScheduler(
            config,
            list_databases=self.list_databases,
            snapshot=self.snapshot,
            verify=self.verify,
            logger=SchedulerLogger(self._working_dir),
        )

    def close(self) -> None:
        self._client.close()


__all__ = ["BackupService"]
