"""Deterministic task fingerprints used as cache keys."""

from __future__ import annotations

import hashlib
import json
import os
from pathlib import Path
from typing import Iterable, Mapping, Sequence

from tasklane.globs import InvalidPattern, expand_globs
from tasklane.model import Task

FINGERPRINT_LENGTH = 16

_READ_CHUNK = 1024 * 1024


class FingerprintError(Exception):
    """Raised when a task's fingerprint cannot be computed."""

    pass


class SourceVanished(FingerprintError):
    """A source file matched by `sources` disappeared before it could be hashed."""

    def __init__(self, path: Path):
        self.path = path
        super().__init__(f"Source file vanished before it could be hashed: {path}")


class SourceUnreadable(FingerprintError):
    """A source file exists but could not be read."""

    def __init__(self, path: Path, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Source file could not be read: {path} ({reason})")


class InvalidSourcePattern(FingerprintError):
    """A `sources` pattern can't be expanded."""

    def __init__(self, pattern: str, reason: str):
        self.pattern = pattern
        super().__init__(f"Invalid source pattern '{pattern}': {reason}")


def resolve_task_cwd(task: Task, project_root: Path) -> Path:
    """Absolute working directory of a task."""
    if not task.cwd:
        return project_root
    cwd = Path(task.cwd).expanduser()
    return cwd if cwd.is_absolute() else project_root / cwd


def resolve_sources(task: Task, project_root: Path, ignored: Iterable[Path] = ()) -> list[Path]:
    """Expand a task's `sources` patterns, sorted by path.

    Files under any `ignored` directory (the cache directory) are dropped.

    Raises:
        InvalidSourcePattern: If a pattern can't be expanded
    """
    try:
        sources = expand_globs(task.sources, resolve_task_cwd(task, project_root))
    except InvalidPattern as e:
        raise InvalidSourcePattern(e.pattern, e.reason) from e

    ignored_dirs = [Path(os.path.abspath(path)) for path in ignored]
    if not ignored_dirs:
        return sources
    return [
        path
        for path in sources
        if not any(path == root or root in path.parents for root in ignored_dirs)
    ]


def hash_file(path: Path) -> str:
    """SHA-256 of a file's current contents.

    Raises:
        SourceVanished: If the file no longer exists
        SourceUnreadable: If the file can't be read
    """
    digest = hashlib.sha256()
    try:
        with open(path, "rb") as f:
            for chunk in iter(lambda: f.read(_READ_CHUNK), b""):
                digest.update(chunk)
    except FileNotFoundError:
        raise SourceVanished(path) from None
    except IsADirectoryError:
        raise SourceVanished(path) from None
    except OSError as e:
        raise SourceUnreadable(path, e.strerror or str(e)) from e
    return digest.hexdigest()


def task_config_record(
    task: Task, global_env: Mapping[str, str], shell_default: bool = False
) -> dict:
    """The behaviour-affecting configuration of a task, as plain data."""
    env = dict(global_env)
    env.update(task.env)
    return {
        "name": task.name,
        "run": list(task.run),
        "script": task.script,
        "env": [f"{key}={env[key]}" for key in sorted(env)],
        "cwd": task.cwd or "",
        "shell": task.shell if task.shell is not None else shell_default,
    }


def compute_fingerprint(
    task: Task,
    global_env: Mapping[str, str],
    resolved_sources: Sequence[Path],
    base_path: Path | None = None,
    shell_default: bool = False,
) -> str:
    """Derive the cache key for one task invocation.

    The canonical byte sequence is the task configuration (name, commands or
    script, merged environment, cwd, shell flag) serialised as compact JSON
    with sorted keys, followed by each source path and the SHA-256 of its
    contents, paths in lexicographic order. The whole sequence is hashed with
    SHA-256.

    Args:
        task: Task being fingerprinted
        global_env: Global environment overlay (task entries win)
        resolved_sources: Files matched by the task's `sources` patterns
        base_path: Paths are recorded relative to this directory when given,
            so moving the project does not invalidate the cache
        shell_default: Shell flag applied when the task doesn't set one

    Returns:
        Hex digest truncated to FINGERPRINT_LENGTH characters

    Raises:
        SourceVanished: If a source file disappeared after glob resolution
        SourceUnreadable: If a source file couldn't be read
    """
    digest = hashlib.sha256()
    record = task_config_record(task, global_env, shell_default)
    digest.update(json.dumps(record, sort_keys=True, separators=(",", ":")).encode())

    entries = []
    for path in resolved_sources:
        display = Path(os.path.relpath(path, base_path)) if base_path else Path(path)
        entries.append((display.as_posix(), path))

    for display, path in sorted(entries, key=lambda entry: entry[0]):
        digest.update(b"\0")
        digest.update(display.encode())
        digest.update(b"\0")
        digest.update(hash_file(path).encode())

    return digest.hexdigest()[:FINGERPRINT_LENGTH]


def fingerprint_task(
    task: Task,
    global_env: Mapping[str, str],
    project_root: Path,
    shell_default: bool = False,
    ignored: Iterable[Path] = (),
) -> str:
    """Resolve a task's sources and compute its fingerprint."""
    cwd = resolve_task_cwd(task, project_root)
    sources = resolve_sources(task, project_root, ignored)
    return compute_fingerprint(task, global_env, sources, base_path=cwd, shell_default=shell_default)
