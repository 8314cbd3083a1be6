from __future__ import annotations

import json
import os
import re
import time
from pathlib import Path
from typing import Any, Dict

from .paths import get_default_settings_paths, get_logs_dir
from .settings_schema import SETTINGS_VALIDATOR

__all__ = [
    "DEFAULT_SETTINGS",
    "ENV_OVERRIDES",
    "SETTINGS_VERSION",
    "load_settings",
    "merge_defaults",
    "parse_interval",
    "save_settings",
]

SETTINGS_VERSION = 1


DEFAULT_SETTINGS: Dict[str, Any] = {
    "version": SETTINGS_VERSION,
    "couchdb": {
        "url": "http://localhost:5984",
        "timeout_s": 60,
        "batch_size": 500,
    },
    "backup": {
        "dir": "./backups",
        "interval": "24h",
        "database_pattern": "eddo_*",
        "verify_after_backup": True,
        "apply_retention": True,
        "retention": {
            "daily_days": 30,
            "weekly_weeks": 12,
            "monthly_months": 12,
            "dry_run": False,
        },
    },
}

# environment variable -> (section, key)
ENV_OVERRIDES: Dict[str, tuple[str, str]] = {
    "COUCHDB_URL": ("couchdb", "url"),
    "BACKUP_DIR": ("backup", "dir"),
    "BACKUP_DATABASE_PATTERN": ("backup", "database_pattern"),
    "BACKUP_INTERVAL": ("backup", "interval"),
}

_INTERVAL_PATTERN = re.compile(r"^(\d+)([smhd])$", re.IGNORECASE)
_UNIT_MS = {
    "s": 1000,
    "m": 60 * 1000,
    "h": 60 * 60 * 1000,
    "d": 24 * 60 * 60 * 1000,
}


def parse_interval(interval: str) -> int:
    """Convert ``"30m"``, ``"24h"``, ``"1d"`` style strings into milliseconds."""

    match = _INTERVAL_PATTERN.match(str(interval).strip())
    if not match:
        raise ValueError(f'Invalid interval format: {interval}. Use format like "24h", "1d", "30m"')
    value = int(match.group(1))
    return value * _UNIT_MS[match.group(2).lower()]


def merge_defaults(data: Dict[str, Any]) -> Dict[str, Any]:
    def _merge(default: Dict[str, Any], payload: Dict[str, Any]) -> Dict[str, Any]:
        result: Dict[str, Any] = {}
        for key, value in default.items():
            if isinstance(value, dict):
                current = payload.get(key)
                result[key] = _merge(value, current if isinstance(current, dict) else {})
            elif isinstance(value, list):
                current = payload.get(key)
                result[key] = list(current) if isinstance(current, list) else list(value)
            else:
                result[key] = payload.get(key, value)
        for key, value in payload.items():
            if key not in result:
                result[key] = value
        return result

    return _merge(DEFAULT_SETTINGS, data or {})


def _apply_env_overrides(settings: Dict[str, Any]) -> Dict[str, Any]:
    for env_name, (section, key) in ENV_OVERRIDES.items():
        value = os.environ.get(env_name)
        if value is None or not value.strip():
            continue
        block = settings.setdefault(section, {})
        if isinstance(block, dict):
            block[key] = value.strip()
    return settings


def _log_unknown_keys(settings: Dict[str, Any], working_dir: Path) -> None:
    unknown = list(SETTINGS_VALIDATOR.unknown_keys(settings))
    if not unknown:
        return
    logs_dir = get_logs_dir(working_dir)
    logs_dir.mkdir(parents=True, exist_ok=True)
    payload = {
        "ts": time.time(),
        "unknown": unknown,
    }
    target = logs_dir / "settings_unknown.json"
    try:
        with open(target, "w", encoding="utf-8") as handle:
            json.dump(payload, handle, ensure_ascii=False, indent=2)
    except OSError:
        return


def load_settings(working_dir: Path, *, apply_env: bool = True) -> Dict[str, Any]:
    data: Dict[str, Any] = {}
    for candidate in get_default_settings_paths(working_dir):
        try:
            with open(candidate, "r", encoding="utf-8") as handle:
                loaded = json.load(handle)
        except FileNotFoundError:
            continue
        except json.JSONDecodeError:
            continue
        except OSError:
            continue
        if isinstance(loaded, dict):
            data = loaded
            break
    merged = merge_defaults(data)
    if apply_env:
        merged = _apply_env_overrides(merged)
    merged["version"] = SETTINGS_VERSION
    merged.setdefault("working_dir", str(working_dir))
    _log_unknown_keys(merged, working_dir)
    return merged


def save_settings(settings: Dict[str, Any], working_dir: Path) -> None:
    merged = merge_defaults(dict(settings))
    merged["version"] = SETTINGS_VERSION
    merged.setdefault("working_dir", str(working_dir))
    path = Path(working_dir) / "settings.json"
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as handle:
        json.dump(merged, handle, ensure_ascii=False, indent=2)
