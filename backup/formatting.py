"""Human readable sizes and durations for CLI output."""
from __future__ import annotations

_SIZE_UNITS = ("B", "KB", "MB", "GB")


def format_file_size(size_bytes: int) -> str:
    size = float(size_bytes)
    unit = 0
    while size >= 1024 and unit < len(_SIZE_UNITS) - 1:
        size /= 1024
        unit += 1
    return f"{size:.2f} {_SIZE_UNITS[unit]}"


def format_duration(duration_ms: float) -> str:
    seconds = int(duration_ms // 1000)
    minutes = seconds // 60
    hours = minutes // 60
    if hours > 0:
        return f"{hours}h {minutes % 60}m {seconds % 60}s"
    if minutes > 0:
        return f"{minutes}m {seconds % 60}s"
    return f"{seconds}s"


__all__ = ["format_duration", "format_file_size"]
