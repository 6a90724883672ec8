"""Persistent fingerprint cache."""

from __future__ import annotations

import json
import os
import re
import shutil
import tempfile
import threading
import time
from contextlib import suppress
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterator, Optional

from tasklane.logging import Logger

ENTRY_SUFFIX = ".json"

LOCK_STRIPES = 64

_SAFE_NAME = re.compile(r"[^A-Za-z0-9._-]")


@dataclass
class CacheEntry:
    """
    Record of a completed task run for one fingerprint.
    """

    task: str
    fingerprint: str
    exit_code: int
    created_at: float = field(default_factory=time.time)
    duration: float = 0.0
    outputs: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """
        Convert to dictionary for JSON serialization.
        """
        return {
            "task": self.task,
            "fingerprint": self.fingerprint,
            "exit_code": self.exit_code,
            "created_at": self.created_at,
            "duration": self.duration,
            "outputs": list(self.outputs),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CacheEntry":
        """
        Create from dictionary loaded from JSON.
        """
        return cls(
            task=data["task"],
            fingerprint=data["fingerprint"],
            exit_code=int(data["exit_code"]),
            created_at=float(data["created_at"]),
            duration=float(data.get("duration", 0.0)),
            outputs=[str(p) for p in data.get("outputs", [])],
        )

    def missing_outputs(self) -> list[str]:
        """Recorded output paths that no longer exist on disk."""
        return [path for path in self.outputs if not os.path.exists(path)]


@dataclass
class CacheStats:
    entries: int
    total_size: int
    cache_dir: Path

    def __str__(self) -> str:
        if self.total_size < 1024:
            size = f"{self.total_size} B"
        elif self.total_size < 1024 * 1024:
            size = f"{self.total_size / 1024:.1f} KB"
        else:
            size = f"{self.total_size / (1024 * 1024):.1f} MB"
        return f"{self.entries} entries, {size} total ({self.cache_dir})"


class CacheStore:
    """
    Durable (task name, fingerprint) → CacheEntry mapping.

    Each entry lives in its own JSON document under
    `<cache_dir>/<task>/<fingerprint>.json`, written to a temporary file and
    renamed into place so readers never observe a partial write. Lookups and
    records for the same key are serialised by one of a fixed set of striped
    locks; unreadable or corrupt entries are treated as misses.
    """

    def __init__(self, cache_dir: Path, logger: Optional[Logger] = None):
        """
        Initialize cache store.

        Args:
        cache_dir: Directory holding cache entries (created lazily)
        logger: Optional logger for diagnostic output
        """
        self.cache_dir = Path(cache_dir)
        self.logger = logger
        self._locks = tuple(threading.Lock() for _ in range(LOCK_STRIPES))

    def _lock_for(self, task_name: str, fingerprint: str) -> threading.Lock:
        return self._locks[hash((task_name, fingerprint)) % LOCK_STRIPES]

    def _task_dir(self, task_name: str) -> Path:
        return self.cache_dir / _SAFE_NAME.sub("_", task_name)

    def entry_path(self, task_name: str, fingerprint: str) -> Path:
        return self._task_dir(task_name) / f"{fingerprint}{ENTRY_SUFFIX}"

    def _trace(self, message: str) -> None:
        if self.logger:
            self.logger.trace(message)

    def _read(self, task_name: str, fingerprint: str) -> CacheEntry | None:
        path = self.entry_path(task_name, fingerprint)
        try:
            with open(path, "r", encoding="utf-8") as f:
                entry = CacheEntry.from_dict(json.load(f))
        except FileNotFoundError:
            return None
        except (OSError, ValueError, KeyError, TypeError) as e:
            if self.logger:
                self.logger.debug(f"Ignoring unreadable cache entry {path}: {e}")
            return None

        # Sanitised directory names can collide; the stored name is authoritative
        if entry.task != task_name or entry.fingerprint != fingerprint:
            self._trace(f"Cache entry {path} belongs to another key, ignoring")
            return None
        return entry

    def lookup(self, task_name: str, fingerprint: str) -> CacheEntry | None:
        """
        Look up a cache hit.

        A hit requires an entry for (task_name, fingerprint) whose recorded
        outputs all still exist on disk.

        Returns:
        CacheEntry on a hit, None on a miss
        """
        with self._lock_for(task_name, fingerprint):
            entry = self._read(task_name, fingerprint)
            if entry is None:
                self._trace(f"Cache miss for '{task_name}' ({fingerprint})")
                return None

            missing = entry.missing_outputs()
            if missing:
                if self.logger:
                    self.logger.debug(
                        f"Cache entry for '{task_name}' is stale, missing outputs: {', '.join(missing)}"
                    )
                return None

            self._trace(f"Cache hit for '{task_name}' ({fingerprint})")
            return entry

    def record(self, task_name: str, fingerprint: str, entry: CacheEntry) -> None:
        """
        Store an entry atomically.

        Raises:
        OSError: If the entry can't be written (the previous entry, if any, is left intact)
        """
        with self._lock_for(task_name, fingerprint):
            path = self.entry_path(task_name, fingerprint)
            path.parent.mkdir(parents=True, exist_ok=True)
            payload = json.dumps(entry.to_dict(), indent=2, sort_keys=True)

            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{fingerprint}.", suffix=".tmp", dir=path.parent
            )
            tmp_path = Path(tmp_name)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(payload + "\n")
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_path, path)
            except BaseException:
                # Includes KeyboardInterrupt: never leave a half-written entry behind
                with suppress(OSError):
                    tmp_path.unlink()
                raise

            self._trace(f"Recorded cache entry for '{task_name}' ({fingerprint})")

    def _entry_files(self) -> Iterator[Path]:
        if not self.cache_dir.is_dir():
            return
        for task_dir in sorted(self.cache_dir.iterdir()):
            if not task_dir.is_dir():
                continue
            for path in sorted(task_dir.glob(f"*{ENTRY_SUFFIX}")):
                if path.is_file():
                    yield path

    def invalidate_task(self, task_name: str) -> int:
        """
        Remove every entry recorded for one task.

        Returns:
        Number of entries removed
        """
        task_dir = self._task_dir(task_name)
        if not task_dir.is_dir():
            return 0
        removed = 0
        for path in task_dir.glob(f"*{ENTRY_SUFFIX}"):
            with suppress(FileNotFoundError):
                path.unlink()
                removed += 1
        with suppress(OSError):
            task_dir.rmdir()
        return removed

    def invalidate_all(self) -> int:
        """
        Remove every cache entry.

        Returns:
        Number of entries removed
        """
        removed = sum(1 for _ in self._entry_files())
        if self.cache_dir.exists():
            if self.logger:
                self.logger.trace(f"Removing cache directory {self.cache_dir}")
            shutil.rmtree(self.cache_dir)
        return removed

    def stats(self) -> CacheStats:
        entries = 0
        total_size = 0
        for path in self._entry_files():
            try:
                total_size += path.stat().st_size
            except FileNotFoundError:
                continue
            entries += 1
        return CacheStats(entries=entries, total_size=total_size, cache_dir=self.cache_dir)
