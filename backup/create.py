"""Stream a CouchDB database into a snapshot file."""
from __future__ import annotations

import json
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Protocol, Union

from .catalog import ensure_backup_dir
from .errors import BackupError, SnapshotError
from .logs import BackupLogger
from .naming import build_backup_filename, log_path_for

SNAPSHOT_FORMAT_NAME = "@cloudant/couchbackup"
SNAPSHOT_FORMAT_VERSION = "2.11.0"
SNAPSHOT_MODE = "full"
_PARTIAL_SUFFIX = ".partial"


class DocumentSource(Protocol):
    def iter_documents(self, name: str, *, batch_size: int = ...) -> Iterator[List[Dict[str, Any]]]:
        ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_backup_filename(
    database: str,
    backup_dir: Union[str, Path],
    now: Optional[datetime] = None,
) -> Path:
    return Path(backup_dir) / build_backup_filename(database, now or _utcnow())


def _header_line() -> str:
    header = {
        "name": SNAPSHOT_FORMAT_NAME,
        "version": SNAPSHOT_FORMAT_VERSION,
        "mode": SNAPSHOT_MODE,
        "attachments": False,
    }
    return json.dumps(header, separators=(",", ":"))


def create_snapshot(
    source: DocumentSource,
    database: str,
    backup_dir: Union[str, Path],
    *,
    batch_size: int = 500,
    logger: Optional[BackupLogger] = None,
    now: Optional[datetime] = None,
) -> Path:
    """Write every document of *database* to ``<backup_dir>/<db>-<ts>.json``.

    The file uses the couchbackup line format: a header object followed by
    one JSON array per batch. A ``.log`` companion records each batch. The
    data is written to a ``.partial`` file first and renamed on success, so
    the catalog never sees half-written snapshots.
    """

    base = ensure_backup_dir(backup_dir)
    target = generate_backup_filename(database, base, now)
    partial = target.with_name(target.name + _PARTIAL_SUFFIX)
    log_path = log_path_for(target)
    started = _utcnow()
    if logger is not None:
        logger.info("snapshot_started", database=database, path=str(target))

    total_docs = 0
    batches = 0
    try:
        with partial.open("w", encoding="utf-8") as handle, log_path.open("w", encoding="utf-8") as log_handle:
            log_handle.write(f":t batch_size={batch_size} started={started.isoformat()}\n")
            handle.write(_header_line() + "\n")
            for batch in source.iter_documents(database, batch_size=batch_size):
                handle.write(json.dumps(batch, separators=(",", ":"), ensure_ascii=False) + "\n")
                batches += 1
                total_docs += len(batch)
                log_handle.write(f":d batch{batches} docs={len(batch)}\n")
            log_handle.write(f":changes_complete docs={total_docs} batches={batches}\n")
        os.replace(partial, target)
    except (BackupError, OSError, ValueError) as exc:
        for leftover in (partial, log_path):
            try:
                leftover.unlink(missing_ok=True)
            except OSError:
                pass
        if logger is not None:
            logger.event(event="snapshot_failed", phase="create", ok=False, database=database, err_msg=str(exc))
        raise SnapshotError(f"Snapshot of {database} failed: {exc}") from exc

    duration_ms = int((_utcnow() - started).total_seconds() * 1000)
    if logger is not None:
        logger.event(
            event="snapshot_created",
            phase="create",
            ok=True,
            database=database,
            path=str(target),
            documents=total_docs,
            batches=batches,
            size_bytes=target.stat().st_size,
            duration_ms=duration_ms,
        )
    return target


__all__ = ["DocumentSource", "create_snapshot", "generate_backup_filename"]
