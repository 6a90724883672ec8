"""Watch mode: file events, debouncing and change-triggered re-runs."""

from __future__ import annotations

import os
import queue
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import replace
from pathlib import Path
from typing import Callable, Iterable, Iterator, Sequence

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from tasklane.executor import ExecutionOptions, Executor, RunReport
from tasklane.globs import PatternMatcher, has_magic
from tasklane.graph import TaskGraph
from tasklane.hasher import resolve_task_cwd
from tasklane.logging import Logger

POLL_INTERVAL = 0.1

# Access notifications never change file contents
_IGNORED_EVENT_TYPES = frozenset({"opened", "closed_no_write"})


class WatchError(Exception):
    """Raised when watching cannot start or the notification subsystem dies."""

    pass


class FileEventSource(ABC):
    """A cancellable subscription producing changed paths."""

    @abstractmethod
    def start(self) -> None: ...

    @abstractmethod
    def stop(self) -> None: ...

    @abstractmethod
    def get(self, timeout: float) -> Path | None:
        """Next changed path, or None if nothing arrived within `timeout`."""
        ...

    @property
    @abstractmethod
    def is_alive(self) -> bool: ...


class _QueueingHandler(FileSystemEventHandler):
    def __init__(self, events: queue.Queue[Path]):
        super().__init__()
        self._events = events

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory or event.event_type in _IGNORED_EVENT_TYPES:
            return
        self._events.put(Path(os.fsdecode(event.src_path)))
        dest_path = getattr(event, "dest_path", "")
        if dest_path:
            self._events.put(Path(os.fsdecode(dest_path)))


class WatchdogEventSource(FileEventSource):
    """File events from a watchdog Observer, recursive over each root."""

    def __init__(self, roots: Sequence[Path], logger: Logger):
        self.roots = list(roots)
        self.logger = logger
        self._events: queue.Queue[Path] = queue.Queue()
        self._observer = None

    def start(self) -> None:
        observer = Observer()
        handler = _QueueingHandler(self._events)
        try:
            for root in self.roots:
                self.logger.debug(f"Watching {root}")
                observer.schedule(handler, str(root), recursive=True)
            observer.start()
        except OSError as e:
            raise WatchError(f"Could not start file watcher: {e}") from e
        self._observer = observer

    def stop(self) -> None:
        if self._observer is None:
            return
        self._observer.stop()
        if self._observer.is_alive():
            self._observer.join(timeout=5)
        self._observer = None

    def get(self, timeout: float) -> Path | None:
        try:
            return self._events.get(timeout=timeout)
        except queue.Empty:
            return None

    @property
    def is_alive(self) -> bool:
        return self._observer is not None and self._observer.is_alive()


def debounce(
    source: FileEventSource,
    window: float,
    cancel_event: threading.Event | None = None,
    poll_interval: float = POLL_INTERVAL,
) -> Iterator[list[Path]]:
    """Collect events until the stream has been quiet for `window` seconds.

    Yields one sorted, de-duplicated batch per burst. Events that arrive while
    the consumer is busy (e.g. running tasks) stay queued in the source and
    open the next batch. Returns when `cancel_event` is set.

    Raises:
        WatchError: If the event source stops producing events on its own
    """

    def cancelled() -> bool:
        return cancel_event is not None and cancel_event.is_set()

    while not cancelled():
        first = source.get(timeout=poll_interval)
        if first is None:
            if not source.is_alive:
                raise WatchError("File watcher stopped unexpectedly")
            continue

        batch = {first}
        quiet_at = time.monotonic() + window
        while True:
            if cancelled():
                return
            remaining = quiet_at - time.monotonic()
            if remaining <= 0:
                break
            path = source.get(timeout=min(remaining, poll_interval))
            if path is not None:
                batch.add(path)
                quiet_at = time.monotonic() + window

        yield sorted(batch, key=lambda p: p.as_posix())


def build_matcher(
    graph: TaskGraph,
    targets: Iterable[str],
    project_root: Path,
    ignored: Iterable[Path] = (),
) -> PatternMatcher:
    """Matcher over the effective watch patterns of every task in the closure."""
    matcher = PatternMatcher(ignored=ignored)
    for name in sorted(graph.closure(targets)):
        task = graph.tasks[name]
        cwd = resolve_task_cwd(task, project_root)
        for pattern in task.effective_watch_patterns:
            matcher.add(cwd, pattern)
    return matcher


def _static_prefix(pattern_path: Path) -> Path:
    parts = []
    for part in pattern_path.parts:
        if has_magic(part):
            break
        parts.append(part)
    return Path(*parts) if parts else Path(".")


def watch_roots(graph: TaskGraph, targets: Iterable[str], project_root: Path) -> list[Path]:
    """Existing directories to subscribe to, with nested roots collapsed."""
    candidates = {project_root}
    for name in graph.closure(targets):
        task = graph.tasks[name]
        cwd = resolve_task_cwd(task, project_root)
        for pattern in task.effective_watch_patterns:
            pattern_path = Path(pattern).expanduser()
            if pattern_path.is_absolute():
                candidates.add(_static_prefix(pattern_path))
            else:
                candidates.add(cwd)

    existing = set()
    for candidate in candidates:
        path = Path(os.path.realpath(candidate))
        while not path.is_dir() and path != path.parent:
            path = path.parent
        existing.add(path)

    roots: list[Path] = []
    for path in sorted(existing, key=lambda p: len(p.parts)):
        if not any(root == path or root in path.parents for root in roots):
            roots.append(path)
    return sorted(roots)


class WatchLoop:
    """Re-runs targets whenever files matching their watch patterns change.

    Runs never overlap: the loop is single-threaded, so events arriving during
    a run are absorbed into the next debounce batch.
    """

    def __init__(
        self,
        graph: TaskGraph,
        targets: Sequence[str],
        executor: Executor,
        logger: Logger,
        project_root: Path,
        options: ExecutionOptions | None = None,
        debounce_ms: int = 300,
        event_source: FileEventSource | None = None,
        ignored: Iterable[Path] = (),
        on_event: Callable[[list[Path]], None] | None = None,
        on_report: Callable[[RunReport], None] | None = None,
        cancel_event: threading.Event | None = None,
    ):
        self.graph = graph
        self.targets = list(targets)
        self.executor = executor
        self.logger = logger
        self.project_root = Path(project_root)
        self.debounce = debounce_ms / 1000
        self.ignored = list(ignored)
        self.on_event = on_event
        self.on_report = on_report
        self.cancel_event = cancel_event or threading.Event()
        options = options or ExecutionOptions()
        # A shared cancel flag lets stop() interrupt an in-flight run
        self.options = replace(options, cancel_event=self.cancel_event)
        self._event_source = event_source
        self.reports: list[RunReport] = []

    def stop(self) -> None:
        self.cancel_event.set()

    def affected_targets(self, changed: Sequence[Path]) -> list[str]:
        """Targets whose dependency closure watches any of `changed`."""
        affected = []
        for target in self.targets:
            matcher = build_matcher(self.graph, [target], self.project_root, self.ignored)
            if any(matcher.matches(path) for path in changed):
                affected.append(target)
        return affected

    def run(self, initial_run: bool = True) -> None:
        """Watch until stopped.

        Raises:
            TaskNotFoundError: If a target doesn't exist
            WatchError: If there is nothing to watch or the watcher dies
        """
        matcher = build_matcher(self.graph, self.targets, self.project_root, self.ignored)
        if not matcher:
            raise WatchError(
                f"Nothing to watch: no 'watch' or 'sources' patterns for {', '.join(self.targets)}"
            )

        source = self._event_source or WatchdogEventSource(
            watch_roots(self.graph, self.targets, self.project_root), self.logger
        )
        source.start()
        try:
            if initial_run:
                self._run(self.targets)
            self.logger.info(f"[cyan]Watching {len(matcher.patterns)} pattern(s), press Ctrl+C to stop[/cyan]")

            for batch in debounce(source, self.debounce, self.cancel_event):
                changed = [path for path in batch if matcher.matches(path)]
                if not changed:
                    self.logger.trace(f"Ignoring {len(batch)} unrelated change(s)")
                    continue

                affected = self.affected_targets(changed)
                if self.on_event is not None:
                    self.on_event(changed)
                for path in changed:
                    self.logger.info(f"[dim]changed: {self._display(path)}[/dim]")
                self._run(affected)
        finally:
            source.stop()

    def _display(self, path: Path) -> str:
        try:
            return Path(os.path.realpath(path)).relative_to(os.path.realpath(self.project_root)).as_posix()
        except ValueError:
            return str(path)

    def _run(self, targets: Sequence[str]) -> None:
        if not targets or self.cancel_event.is_set():
            return
        try:
            report = self.executor.run(self.graph, targets, self.options)
        except Exception as e:
            self.logger.error(f"[red]Run failed: {e}[/red]")
            return

        self.reports.append(report)
        if report.succeeded:
            self.logger.info("[green]Run succeeded[/green]")
        elif not report.cancelled:
            self.logger.error(f"[red]Run failed: {', '.join(report.failed_tasks) or 'tasks skipped'}[/red]")
        if self.on_report is not None:
            self.on_report(report)
