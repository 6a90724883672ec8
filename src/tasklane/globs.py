"""Glob expansion and matching shared by fingerprinting, caching and watching."""

from __future__ import annotations

import glob as globlib
import os
import re
from functools import lru_cache
from pathlib import Path
from typing import Iterable


class InvalidPattern(ValueError):
    """Raised for a glob pattern that can't be expanded."""

    def __init__(self, pattern: str, reason: str):
        self.pattern = pattern
        self.reason = reason
        super().__init__(f"Invalid glob pattern '{pattern}': {reason}")


def has_magic(pattern: str) -> bool:
    """True if `pattern` contains glob wildcards."""
    return globlib.has_magic(pattern)


def expand_globs(patterns: Iterable[str], base_path: Path, files_only: bool = True) -> list[Path]:
    """Expand glob patterns to existing paths, sorted and de-duplicated.

    Relative patterns are resolved against `base_path`; absolute patterns are
    used as-is. A `**` segment matches files and directories at any depth,
    so `src/**` covers every file below `src`. Hidden files are included.
    Sorting keeps repeated expansions byte-for-byte reproducible.

    Args:
        patterns: Glob patterns (`**` matches across directories)
        base_path: Directory relative patterns are resolved from
        files_only: Drop directories from the result

    Returns:
        Sorted list of absolute paths

    Raises:
        InvalidPattern: On an empty pattern
    """
    matches: set[Path] = set()
    for pattern in patterns:
        if not pattern.strip():
            raise InvalidPattern(pattern, "pattern is empty")
        if Path(pattern).is_absolute():
            full_pattern = pattern
        else:
            full_pattern = os.path.join(globlib.escape(str(base_path)), pattern)
        for match in globlib.glob(full_pattern, recursive=True, include_hidden=True):
            candidate = Path(match)
            if files_only and not candidate.is_file():
                continue
            matches.add(candidate.absolute())
    return sorted(matches, key=lambda p: p.as_posix())


@lru_cache(maxsize=256)
def _compile(pattern: str) -> re.Pattern[str]:
    parts = []
    i = 0
    while i < len(pattern):
        if pattern.startswith("**/", i):
            parts.append("(?:.*/)?")
            i += 3
        elif pattern.startswith("**", i):
            parts.append(".*")
            i += 2
        elif pattern[i] == "*":
            parts.append("[^/]*")
            i += 1
        elif pattern[i] == "?":
            parts.append("[^/]")
            i += 1
        elif pattern[i] == "[":
            end = pattern.find("]", i + 1)
            if end == -1:
                parts.append(re.escape(pattern[i]))
                i += 1
            else:
                body = pattern[i + 1:end]
                if body.startswith("!"):
                    body = "^" + body[1:]
                parts.append(f"[{body}]")
                i = end + 1
        else:
            parts.append(re.escape(pattern[i]))
            i += 1
    return re.compile("".join(parts) + r"\Z")


def glob_match(pattern: str, relative_path: str) -> bool:
    """Match a POSIX-style relative path against a glob pattern.

    `*` and `?` stay within one path segment; `**` spans segments.
    """
    return _compile(pattern).match(relative_path) is not None


class PatternMatcher:
    """Matches absolute paths against patterns anchored at base directories."""

    def __init__(self, ignored: Iterable[Path] = ()):
        self._entries: list[tuple[Path | None, str]] = []
        self._ignored = [Path(os.path.realpath(p)) for p in ignored]

    def add(self, base_path: Path, pattern: str) -> None:
        if Path(pattern).is_absolute():
            self._entries.append((None, Path(pattern).as_posix()))
            return
        if pattern.startswith("./"):
            pattern = pattern[2:]
        self._entries.append((Path(os.path.realpath(base_path)), pattern))

    @property
    def patterns(self) -> list[str]:
        return [pattern for _, pattern in self._entries]

    def __bool__(self) -> bool:
        return bool(self._entries)

    def is_ignored(self, path: Path) -> bool:
        path = Path(os.path.realpath(path))
        return any(path == ignored or ignored in path.parents for ignored in self._ignored)

    def matches(self, path: Path) -> bool:
        path = Path(os.path.realpath(path))
        if self.is_ignored(path):
            return False
        for base, pattern in self._entries:
            if base is None:
                if glob_match(pattern, path.as_posix()):
                    return True
                continue
            try:
                relative = path.relative_to(base)
            except ValueError:
                continue
            if glob_match(pattern, relative.as_posix()):
                return True
        return False
