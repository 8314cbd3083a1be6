"""Structured logging for snapshot, verification and retention events."""
from __future__ import annotations

from pathlib import Path

from core.logging_utils import JsonlEventLogger


class BackupLogger(JsonlEventLogger):
    """Events land in ``logs/backup.jsonl`` and on the ``couchvault.backup`` logger."""

    def __init__(self, working_dir: Path) -> None:
        super().__init__(working_dir, filename="backup.jsonl", logger_name="couchvault.backup")


__all__ = ["BackupLogger"]
