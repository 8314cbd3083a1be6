from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Mapping, Optional

__all__ = [
    "DEFAULT_BACKUP_DIR",
    "get_default_settings_paths",
    "get_logs_dir",
    "resolve_backup_dir",
    "resolve_working_dir",
]

_PROJECT_ROOT = Path(__file__).resolve().parent.parent

HOME_ENV = "COUCHVAULT_HOME"
DEFAULT_BACKUP_DIR = "./backups"


def _expand_path(value: str) -> Path:
    expanded = os.path.expandvars(os.path.expanduser(value))
    return Path(expanded).resolve()


def resolve_working_dir() -> Path:
    """Return the directory holding ``settings.json`` and ``logs/``.

    ``COUCHVAULT_HOME`` wins when set; otherwise the current directory is used.
    """

    env_home = os.environ.get(HOME_ENV)
    if env_home and env_home.strip():
        candidate = _expand_path(env_home.strip())
    else:
        candidate = Path.cwd()
    candidate.mkdir(parents=True, exist_ok=True)
    return candidate


def get_logs_dir(working_dir: Path) -> Path:
    return Path(working_dir) / "logs"


def resolve_backup_dir(settings: Mapping[str, Any], working_dir: Optional[Path] = None) -> Path:
    """Resolve the configured backup directory relative to *working_dir*."""

    backup_cfg = settings.get("backup") if isinstance(settings, Mapping) else None
    raw = None
    if isinstance(backup_cfg, Mapping):
        raw = backup_cfg.get("dir")
    text = str(raw).strip() if raw else DEFAULT_BACKUP_DIR
    path = Path(os.path.expandvars(os.path.expanduser(text)))
    if not path.is_absolute():
        path = Path(working_dir or resolve_working_dir()) / path
    return path


def get_default_settings_paths(working_dir: Path) -> list[Path]:
    """Return the search order for settings.json files."""

    return [Path(working_dir) / "settings.json", _PROJECT_ROOT / "settings.json"]
