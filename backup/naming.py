"""Snapshot filename encoding.

Snapshot files carry their metadata in the name only::

    <database>-<ISO timestamp with ':' and '.' replaced by '-'>.json

so ``eddo_prod`` captured at ``2025-12-24T23:04:15.080Z`` becomes
``eddo_prod-2025-12-24T23-04-15-080Z.json``. The catalog exposes the
timestamp segment with every ``-`` turned into ``:`` (``2025:12:24T23:04:15:080Z``)
and :func:`parse_backup_timestamp` turns that back into a datetime.
"""
from __future__ import annotations

import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Tuple, Union

BACKUP_SUFFIX = ".json"
LOG_SUFFIX = ".log"

_FILENAME_PATTERN = re.compile(r"^(.+?)-([\d\-T]+Z)\.json$")
_CATALOG_TIMESTAMP_PATTERN = re.compile(
    r"^(\d{4}):(\d{2}):(\d{2})T(\d{2}):(\d{2}):(\d{2}):(\d{3})Z$"
)


def format_timestamp(moment: datetime) -> str:
    """Return *moment* as an ISO-8601 UTC string with millisecond precision."""

    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.astimezone(timezone.utc)
    millis = moment.microsecond // 1000
    return moment.strftime("%Y-%m-%dT%H:%M:%S") + f".{millis:03d}Z"


def encode_timestamp(moment: datetime) -> str:
    return re.sub(r"[:.]", "-", format_timestamp(moment))


def build_backup_filename(database: str, moment: datetime) -> str:
    return f"{database}-{encode_timestamp(moment)}{BACKUP_SUFFIX}"


def parse_backup_filename(filename: Union[str, Path]) -> Optional[Tuple[str, str]]:
    """Split a snapshot filename into ``(database, catalog_timestamp)``.

    Returns ``None`` when the name does not follow the snapshot convention.
    """

    name = Path(filename).name
    match = _FILENAME_PATTERN.match(name)
    if not match:
        return None
    return match.group(1), match.group(2).replace("-", ":")


def parse_backup_timestamp(timestamp: str) -> Optional[datetime]:
    """Decode a catalog timestamp into an aware UTC datetime.

    Falls back to plain ISO parsing for timestamps that were not produced by
    the filename encoding. Returns ``None`` when neither works.
    """

    match = _CATALOG_TIMESTAMP_PATTERN.match(timestamp)
    if match:
        year, month, day, hour, minute, second, millis = (int(part) for part in match.groups())
        try:
            return datetime(year, month, day, hour, minute, second, millis * 1000, tzinfo=timezone.utc)
        except ValueError:
            return None
    text = timestamp.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def log_path_for(path: Union[str, Path]) -> Path:
    """Return the companion log path of a snapshot file."""

    return Path(f"{path}{LOG_SUFFIX}")


__all__ = [
    "BACKUP_SUFFIX",
    "LOG_SUFFIX",
    "build_backup_filename",
    "encode_timestamp",
    "format_timestamp",
    "log_path_for",
    "parse_backup_filename",
    "parse_backup_timestamp",
]
