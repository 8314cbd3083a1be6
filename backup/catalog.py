"""Enumerate snapshot files in a backup directory."""
from __future__ import annotations

from pathlib import Path
from typing import List, Union

from .errors import BackupNotFoundError
from .naming import BACKUP_SUFFIX, parse_backup_filename
from .types import BackupFileInfo

PathLike = Union[str, Path]


def ensure_backup_dir(backup_dir: PathLike) -> Path:
    path = Path(backup_dir)
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_all_backup_files(backup_dir: PathLike) -> List[BackupFileInfo]:
    """Return every snapshot file in *backup_dir*, newest timestamp first.

    A missing directory yields an empty list. Files that do not follow the
    ``<database>-<timestamp>.json`` convention are ignored; companion
    ``.log`` files are never catalog entries.
    """

    base = Path(backup_dir)
    if not base.is_dir():
        return []
    items: List[BackupFileInfo] = []
    for child in base.iterdir():
        if not child.name.endswith(BACKUP_SUFFIX):
            continue
        parsed = parse_backup_filename(child.name)
        if parsed is None:
            continue
        try:
            stat = child.stat()
        except OSError:
            continue
        if not child.is_file():
            continue
        database, timestamp = parsed
        items.append(BackupFileInfo(path=child, database=database, timestamp=timestamp, size=int(stat.st_size)))
    items.sort(key=lambda info: info.timestamp, reverse=True)
    return items


def get_backup_files_for(database: str, backup_dir: PathLike) -> List[BackupFileInfo]:
    files = [info for info in get_all_backup_files(backup_dir) if info.database == database]
    files.sort(key=lambda info: info.timestamp, reverse=True)
    return files


def get_latest_backup_file(database: str, backup_dir: PathLike) -> Path:
    base = Path(backup_dir)
    if not base.is_dir():
        raise BackupNotFoundError(f"Backup directory does not exist: {base}")
    files = get_backup_files_for(database, base)
    if not files:
        raise BackupNotFoundError(f"No backup files found for database: {database}")
    return files[0].path


__all__ = [
    "ensure_backup_dir",
    "get_all_backup_files",
    "get_backup_files_for",
    "get_latest_backup_file",
]
