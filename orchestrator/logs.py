"""Structured logging for the backup scheduler."""
from __future__ import annotations

from pathlib import Path

from core.logging_utils import JsonlEventLogger


class SchedulerLogger(JsonlEventLogger):
    """Write scheduler events to ``logs/scheduler.jsonl``."""

    def __init__(self, working_dir: Path) -> None:
        super().__init__(working_dir, filename="scheduler.jsonl", logger_name="couchvault.orchestrator")


__all__ = ["SchedulerLogger"]
