"""Error hierarchy for backup operations."""
from __future__ import annotations

from typing import Optional


class BackupError(RuntimeError):
    """Base exception for backup related failures."""


class BackupNotFoundError(BackupError):
    """Raised when an expected snapshot file or directory is missing."""


class BackupVerificationError(BackupError):
    """Raised when a snapshot file cannot be verified at all."""


class SnapshotError(BackupError):
    """Raised when streaming a database into a snapshot file fails."""


class CouchDBError(BackupError):
    """Raised for failed requests against the document store."""

    def __init__(self, message: str, *, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


__all__ = [
    "BackupError",
    "BackupNotFoundError",
    "BackupVerificationError",
    "CouchDBError",
    "SnapshotError",
]
