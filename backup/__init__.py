"""Snapshot catalog, retention and verification for CouchDB backups."""
from __future__ import annotations

from .api import BackupService
from .errors import BackupError
from .retention import DEFAULT_RETENTION_CONFIG, apply_retention_policy
from .types import BackupFileInfo, BackupFileWithDate, BackupResult, RetentionConfig, RetentionResult

__all__ = [
    "BackupError",
    "BackupFileInfo",
    "BackupFileWithDate",
    "BackupResult",
    "BackupService",
    "DEFAULT_RETENTION_CONFIG",
    "RetentionConfig",
    "RetentionResult",
    "apply_retention_policy",
]
