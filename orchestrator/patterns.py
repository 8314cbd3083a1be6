"""Glob-style database name matching."""
from __future__ import annotations

import re
from functools import lru_cache
from typing import Iterable, List, Pattern

# Regex metacharacters other than the glob wildcards themselves.
_META = re.compile(r"[.+^${}()|\[\]\\]")


def glob_to_regex(pattern: str) -> str:
    """Translate ``*``/``?`` globs into an anchored regular expression.

    Metacharacters are escaped before the wildcards are substituted so that
    a pattern such as ``eddo.prod`` only matches a literal dot.
    """

    escaped = _META.sub(lambda match: "\\" + match.group(0), pattern)
    return "^" + escaped.replace("*", ".*").replace("?", ".") + "$"


@lru_cache(maxsize=64)
def _compile(pattern: str) -> Pattern[str]:
    return re.compile(glob_to_regex(pattern))


def matches_pattern(name: str, pattern: str) -> bool:
    return _compile(pattern).fullmatch(name) is not None


def filter_by_pattern(names: Iterable[str], pattern: str) -> List[str]:
    """Keep the names matching *pattern*, preserving their order."""

    return [name for name in names if matches_pattern(name, pattern)]


__all__ = ["filter_by_pattern", "glob_to_regex", "matches_pattern"]
