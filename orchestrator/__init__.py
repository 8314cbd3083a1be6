"""Interval scheduler that drives CouchDB backup cycles."""

from .patterns import glob_to_regex, matches_pattern
from .scheduler import BackupScheduler, SchedulerConfig, SchedulerState

__all__ = [
    "BackupScheduler",
    "SchedulerConfig",
    "SchedulerState",
    "glob_to_regex",
    "matches_pattern",
]
