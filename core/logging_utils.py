from __future__ import annotations

import json
import logging
import time
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Optional
from urllib.parse import urlsplit, urlunsplit

from .paths import get_logs_dir, resolve_working_dir


class JsonLogFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # noqa: D401
        payload: Dict[str, Any] = {
            "ts": time.time(),
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        for key, value in getattr(record, "__dict__", {}).items():
            if key.startswith("_"):
                continue
            if key in payload:
                continue
            try:
                json.dumps(value)
            except TypeError:
                continue
            payload[key] = value
        return json.dumps(payload, ensure_ascii=False)


def configure_json_logging(name: str = "couchvault", working_dir: Optional[Path] = None) -> logging.Logger:
    base = Path(working_dir) if working_dir is not None else resolve_working_dir()
    logs_dir = get_logs_dir(base)
    logs_dir.mkdir(parents=True, exist_ok=True)
    log_path = logs_dir / "couchvault.log.jsonl"
    logger = logging.getLogger(name)
    logger.setLevel(logging.INFO)
    for handler in list(logger.handlers):
        if isinstance(handler, logging.FileHandler) and getattr(handler, "baseFilename", None) == str(log_path):
            break
    else:
        handler = logging.FileHandler(log_path, encoding="utf-8")
        handler.setFormatter(JsonLogFormatter())
        logger.addHandler(handler)
    return logger


class JsonlEventLogger:
    """Append structured events to ``logs/<filename>`` and mirror them to *logger_name*."""

    def __init__(self, working_dir: Path, *, filename: str, logger_name: str) -> None:
        self._working_dir = Path(working_dir)
        self._log_path = get_logs_dir(self._working_dir) / filename
        self._log_path.parent.mkdir(parents=True, exist_ok=True)
        self._logger = logging.getLogger(logger_name)
        self._lock = Lock()

    @property
    def log_path(self) -> Path:
        return self._log_path

    # ------------------------------------------------------------------
    def _write(self, payload: Dict[str, Any], *, level: int) -> None:
        payload.setdefault("ts", datetime.now(timezone.utc).isoformat())
        payload.setdefault("level", logging.getLevelName(level))
        line = json.dumps(payload, sort_keys=True, default=str)
        with self._lock:
            with self._log_path.open("a", encoding="utf-8") as handle:
                handle.write(line + "\n")
        self._logger.log(level, "%s", line)

    def event(self, *, event: str, phase: str, ok: bool, **extra: Any) -> None:
        payload: Dict[str, Any] = {"event": event, "phase": phase, "ok": bool(ok)}
        payload.update(extra)
        self._write(payload, level=logging.INFO if ok else logging.ERROR)

    def info(self, event: str, **extra: Any) -> None:
        self._write({"event": event, **extra, "ok": True}, level=logging.INFO)

    def warning(self, event: str, **extra: Any) -> None:
        self._write({"event": event, **extra, "ok": False}, level=logging.WARNING)

    def error(self, event: str, **extra: Any) -> None:
        self._write({"event": event, **extra, "ok": False}, level=logging.ERROR)


def redact_url(url: Optional[str]) -> str:
    """Drop the password from a URL so it can be logged."""

    if not url:
        return ""
    parts = urlsplit(url)
    if not parts.password:
        return url
    host = parts.hostname or ""
    if parts.port:
        host = f"{host}:{parts.port}"
    netloc = f"{parts.username}:***@{host}" if parts.username else host
    return urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))


__all__ = [
    "JsonLogFormatter",
    "JsonlEventLogger",
    "configure_json_logging",
    "redact_url",
]
