"""Verify snapshot files written in the couchbackup line format."""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .errors import BackupNotFoundError, BackupVerificationError
from .logs import BackupLogger
from .naming import BACKUP_SUFFIX
from .types import ValidationResult

_TODO_VERSIONS = {"alpha1", "alpha2", "alpha3"}
_ALPHA3_REQUIRED = ("title", "context", "due")


def _parse_header(line: str) -> Optional[Dict[str, Any]]:
    try:
        header = json.loads(line)
    except ValueError:
        return None
    if (
        isinstance(header, dict)
        and header.get("name") == "@cloudant/couchbackup"
        and header.get("version")
        and header.get("mode")
    ):
        return header
    return None


def _check_document(doc: Any, line_number: int, index: int, result: ValidationResult) -> None:
    result.total_documents += 1
    if not isinstance(doc, dict) or not doc.get("_id"):
        result.errors.append(f"Line {line_number}, doc {index}: Missing _id field")
        return
    result.valid_documents += 1
    doc_id = str(doc["_id"])
    if doc_id.startswith("_design/"):
        result.design_documents += 1
    version = doc.get("version")
    if isinstance(version, str) and version in _TODO_VERSIONS:
        result.todo_documents += 1
    if version == "alpha3":
        missing = [name for name in _ALPHA3_REQUIRED if not doc.get(name)]
        if missing:
            result.warnings.append(
                f"Line {line_number}, doc {index} ({doc_id}): TodoAlpha3 missing fields: {', '.join(missing)}"
            )


def validate_backup_file(path: Union[str, Path]) -> ValidationResult:
    """Scan *path* line by line and collect document statistics.

    Raises :class:`BackupNotFoundError` for a missing file and
    :class:`BackupVerificationError` for an empty one; everything else ends
    up in ``result.errors``.
    """

    file_path = Path(path)
    if not file_path.is_file():
        raise BackupNotFoundError(f"Backup file does not exist: {file_path}")
    if file_path.stat().st_size == 0:
        raise BackupVerificationError("Backup file is empty")

    result = ValidationResult()
    with file_path.open("r", encoding="utf-8") as handle:
        for line_number, raw in enumerate(handle, start=1):
            line = raw.strip()
            if not line:
                continue
            if line_number == 1:
                header = _parse_header(line)
                if header is not None:
                    result.backup_version = str(header.get("version"))
                    result.backup_mode = str(header.get("mode"))
                    continue
            try:
                parsed = json.loads(line)
            except ValueError as exc:
                result.errors.append(f"Line {line_number}: Invalid JSON - {exc}")
                continue
            if isinstance(parsed, list):
                for index, doc in enumerate(parsed, start=1):
                    _check_document(doc, line_number, index, result)
            else:
                _check_document(parsed, line_number, 1, result)
    return result


def verify_backup(path: Union[str, Path], *, logger: Optional[BackupLogger] = None) -> bool:
    result = validate_backup_file(path)
    if logger is not None:
        logger.event(
            event="backup_verified",
            phase="verify",
            ok=result.is_valid,
            path=str(path),
            documents=result.total_documents,
            design_documents=result.design_documents,
            errors=len(result.errors),
            warnings=len(result.warnings),
        )
    return result.is_valid


def verify_directory(backup_dir: Union[str, Path], *, logger: Optional[BackupLogger] = None) -> bool:
    base = Path(backup_dir)
    if not base.is_dir():
        raise BackupNotFoundError(f"Backup directory does not exist: {base}")
    files: List[Path] = sorted(child for child in base.iterdir() if child.name.endswith(BACKUP_SUFFIX))
    if not files:
        raise BackupNotFoundError("No backup files found")
    all_valid = True
    for file_path in files:
        try:
            valid = verify_backup(file_path, logger=logger)
        except BackupVerificationError as exc:
            if logger is not None:
                logger.error("backup_verify_failed", path=str(file_path), err_msg=str(exc))
            valid = False
        all_valid = all_valid and valid
    return all_valid


__all__ = ["validate_backup_file", "verify_backup", "verify_directory"]
