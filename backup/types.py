"""Common dataclasses shared across backup modules."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional


@dataclass(slots=True)
class BackupFileInfo:
    """Single snapshot file found in the backup directory."""

    path: Path
    database: str
    timestamp: str
    size: int


@dataclass(slots=True)
class BackupFileWithDate:
    """Catalog entry enriched with the keys used for retention bucketing."""

    path: Path
    database: str
    timestamp: str
    size: int
    date: datetime
    week_key: str
    month_key: str


@dataclass(slots=True)
class RetentionConfig:
    daily_retention_days: int = 30
    weekly_retention_weeks: int = 12
    monthly_retention_months: int = 12
    dry_run: bool = False

    def __post_init__(self) -> None:
        for name in ("daily_retention_days", "weekly_retention_weeks", "monthly_retention_months"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValueError(f"{name} must be an integer, got {value!r}")
            if value < 0:
                raise ValueError(f"{name} must not be negative, got {value}")

    @classmethod
    def from_settings(cls, settings: Mapping[str, Any]) -> "RetentionConfig":
        backup_cfg = settings.get("backup")
        retention: Mapping[str, Any] = {}
        if isinstance(backup_cfg, Mapping) and isinstance(backup_cfg.get("retention"), Mapping):
            retention = backup_cfg["retention"]
        return cls(
            daily_retention_days=int(retention.get("daily_days", 30)),
            weekly_retention_weeks=int(retention.get("weekly_weeks", 12)),
            monthly_retention_months=int(retention.get("monthly_months", 12)),
            dry_run=bool(retention.get("dry_run", False)),
        )

    def as_dict(self) -> Dict[str, object]:
        return {
            "daily_retention_days": self.daily_retention_days,
            "weekly_retention_weeks": self.weekly_retention_weeks,
            "monthly_retention_months": self.monthly_retention_months,
            "dry_run": self.dry_run,
        }


@dataclass(slots=True)
class RetentionError:
    file: str
    error: str


@dataclass(slots=True)
class RetentionResult:
    kept: List[BackupFileWithDate] = field(default_factory=list)
    deleted: List[BackupFileWithDate] = field(default_factory=list)
    errors: List[RetentionError] = field(default_factory=list)
    freed_bytes: int = 0
    daily: List[BackupFileWithDate] = field(default_factory=list)
    weekly: List[BackupFileWithDate] = field(default_factory=list)
    monthly: List[BackupFileWithDate] = field(default_factory=list)
    dry_run: bool = False


@dataclass(slots=True)
class BackupResult:
    """Outcome of backing up one database during a scheduler cycle."""

    database: str
    success: bool = False
    backup_file: Optional[Path] = None
    error: Optional[str] = None
    verified: Optional[bool] = None


@dataclass(slots=True)
class ValidationResult:
    total_documents: int = 0
    valid_documents: int = 0
    design_documents: int = 0
    todo_documents: int = 0
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    backup_version: Optional[str] = None
    backup_mode: Optional[str] = None

    @property
    def is_valid(self) -> bool:
        return not self.errors and self.total_documents > 0


__all__ = [
    "BackupFileInfo",
    "BackupFileWithDate",
    "BackupResult",
    "RetentionConfig",
    "RetentionError",
    "RetentionResult",
    "ValidationResult",
]
