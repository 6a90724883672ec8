"""Task execution: scheduling, caching and failure propagation."""

from __future__ import annotations

import os
import subprocess
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Iterable, Mapping

from tasklane.cache import CacheEntry, CacheStore
from tasklane.globs import InvalidPattern, expand_globs, has_magic
from tasklane.graph import ExecutionPlan, TaskGraph
from tasklane.hasher import FingerprintError, fingerprint_task, resolve_task_cwd
from tasklane.logging import Logger
from tasklane.model import Task
from tasklane.process_runner import CommandCancelled, PassthroughProcessRunner, ProcessRunner
from tasklane.script import ScriptEngine

COORDINATOR_POLL = 0.1

_STDERR_TAIL_LINES = 20


class TaskState(Enum):
    PENDING = "pending"
    READY = "ready"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskState.SUCCEEDED, TaskState.FAILED, TaskState.SKIPPED)


class FailureReason(Enum):
    EXIT_CODE = "exit_code"
    TIMEOUT = "timeout"
    SCRIPT_ERROR = "script_error"
    FINGERPRINT = "fingerprint"
    SPAWN_ERROR = "spawn_error"
    CANCELLED = "cancelled"
    DEPENDENCY_FAILED = "dependency_failed"


class RunStatus(Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class TaskResult:
    """Terminal (or in-flight) state of one task within a run."""

    name: str
    state: TaskState = TaskState.PENDING
    cached: bool = False
    reason: FailureReason | None = None
    message: str = ""
    exit_code: int | None = None
    duration: float = 0.0
    fingerprint: str | None = None
    value: object = None
    tolerated: bool = False  # failed, but allow_failure lets dependents proceed

    @property
    def succeeded(self) -> bool:
        return self.state is TaskState.SUCCEEDED

    @property
    def failed(self) -> bool:
        return self.state is TaskState.FAILED

    @property
    def satisfies_dependents(self) -> bool:
        """Whether tasks depending on this one may start."""
        return self.state is TaskState.SUCCEEDED or (self.failed and self.tolerated)


@dataclass
class RunReport:
    """Outcome of one Executor.run invocation."""

    plan: ExecutionPlan
    results: dict[str, TaskResult] = field(default_factory=dict)
    duration: float = 0.0
    dry_run: bool = False
    cancelled: bool = False

    @property
    def failed_tasks(self) -> list[str]:
        return [name for name, result in self.results.items() if result.failed]

    @property
    def blocking_failures(self) -> list[str]:
        """Failed tasks without allow_failure."""
        return [name for name, result in self.results.items() if result.failed and not result.tolerated]

    @property
    def skipped_tasks(self) -> list[str]:
        return [name for name, result in self.results.items() if result.state is TaskState.SKIPPED]

    @property
    def status(self) -> RunStatus:
        """FAILED if any task failed (tolerated failures included) or was skipped."""
        if self.failed_tasks or self.skipped_tasks or self.cancelled:
            return RunStatus.FAILED
        return RunStatus.SUCCEEDED

    @property
    def succeeded(self) -> bool:
        return self.status is RunStatus.SUCCEEDED

    @property
    def exit_code(self) -> int:
        return 0 if self.succeeded else 1

    def counts(self) -> dict[str, int]:
        counts = {"succeeded": 0, "cached": 0, "failed": 0, "skipped": 0}
        for result in self.results.values():
            if result.state is TaskState.SUCCEEDED:
                counts["succeeded"] += 1
                if result.cached:
                    counts["cached"] += 1
            elif result.state is TaskState.FAILED:
                counts["failed"] += 1
            elif result.state is TaskState.SKIPPED:
                counts["skipped"] += 1
        return counts


@dataclass
class ExecutionOptions:
    """Per-invocation executor options."""

    parallelism: int = 0  # 0 = host parallelism
    force: bool = False
    dry_run: bool = False
    shell: bool = False  # default for tasks that don't set `shell`
    cancel_event: threading.Event | None = None

    def effective_parallelism(self) -> int:
        if self.parallelism and self.parallelism > 0:
            return self.parallelism
        return os.cpu_count() or 1


class _CommandFailure(Exception):
    def __init__(self, reason: FailureReason, message: str, exit_code: int | None = None):
        self.reason = reason
        self.message = message
        self.exit_code = exit_code
        super().__init__(message)


class Executor:
    """Executes task graphs with bounded parallelism and fingerprint caching."""

    def __init__(
        self,
        project_root: Path,
        logger: Logger,
        cache: CacheStore | None = None,
        process_runner: ProcessRunner | None = None,
        global_env: Mapping[str, str] | None = None,
        script_engine: ScriptEngine | None = None,
        base_env: Mapping[str, str] | None = None,
    ):
        """Initialize executor.

        Args:
            project_root: Directory task working directories are relative to
            logger: Logger for progress and diagnostics
            cache: Cache store, or None to disable caching entirely
            process_runner: Runner used for `run` commands
            global_env: Global environment overlay (task entries win)
            script_engine: Engine for `script` tasks
            base_env: Environment the overlays are applied to (defaults to os.environ)
        """
        self.project_root = Path(project_root)
        self.logger = logger
        self.cache = cache
        self.process_runner = process_runner or PassthroughProcessRunner(logger)
        self.global_env = dict(global_env or {})
        self.script_engine = script_engine or ScriptEngine(logger)
        self.base_env = dict(os.environ if base_env is None else base_env)

    def plan(self, graph: TaskGraph, targets: Iterable[str]) -> ExecutionPlan:
        return graph.plan(targets)

    def run(
        self,
        graph: TaskGraph,
        targets: Iterable[str],
        options: ExecutionOptions | None = None,
    ) -> RunReport:
        """Run `targets` and their transitive dependencies.

        Task-level errors never escape: they are reported through the
        returned RunReport. A KeyboardInterrupt in the calling thread cancels
        the run (running commands are killed) and is re-raised once workers
        have settled.

        Raises:
            TaskNotFoundError: If a target doesn't exist
        """
        options = options or ExecutionOptions()
        plan = graph.plan(targets)
        report = RunReport(plan=plan, dry_run=options.dry_run)
        if options.dry_run:
            return report

        start = time.monotonic()
        cancel_event = options.cancel_event or threading.Event()
        results = {name: TaskResult(name=name) for name in plan.order}
        report.results = results

        sorter = graph.sorter(plan.targets)
        sorter.prepare()
        slots = options.effective_parallelism()
        ready: list[str] = []
        running: dict[Future, str] = {}

        self.logger.trace(f"Scheduling {len(results)} task(s) on {slots} slot(s)")

        with ThreadPoolExecutor(max_workers=slots, thread_name_prefix="tasklane") as pool:
            try:
                while sorter.is_active():
                    for name in sorted(sorter.get_ready()):
                        if self._settle_without_running(graph.tasks[name], results, cancel_event):
                            sorter.done(name)
                        else:
                            results[name].state = TaskState.READY
                            ready.append(name)

                    while ready and len(running) < slots:
                        name = ready.pop(0)
                        if self._settle_without_running(graph.tasks[name], results, cancel_event):
                            sorter.done(name)
                            continue
                        results[name].state = TaskState.RUNNING
                        future = pool.submit(
                            self._run_one, graph.tasks[name], options, cancel_event
                        )
                        running[future] = name

                    if not running:
                        # Everything released so far settled without running
                        continue

                    done, _ = wait(running, timeout=COORDINATOR_POLL, return_when=FIRST_COMPLETED)
                    for future in done:
                        name = running.pop(future)
                        results[name] = future.result()
                        self._log_result(results[name])
                        sorter.done(name)
            except KeyboardInterrupt:
                cancel_event.set()
                report.cancelled = True
                for future, name in running.items():
                    # Workers see the cancel flag and kill their processes
                    results[name] = future.result()
                self._mark_unstarted_cancelled(results)
                report.duration = time.monotonic() - start
                raise

        if cancel_event.is_set():
            report.cancelled = True
            self._mark_unstarted_cancelled(results)

        report.duration = time.monotonic() - start
        return report

    def _settle_without_running(
        self, task: Task, results: dict[str, TaskResult], cancel_event: threading.Event
    ) -> bool:
        """Resolve tasks that must not start; True if the task is now terminal."""
        result = results[task.name]
        if cancel_event.is_set():
            result.state = TaskState.SKIPPED
            result.reason = FailureReason.CANCELLED
            result.message = "Run cancelled"
            return True

        blocked = [dep for dep in task.depends if not results[dep].satisfies_dependents]
        if blocked:
            result.state = TaskState.SKIPPED
            result.reason = FailureReason.DEPENDENCY_FAILED
            result.message = f"Dependency failed: {', '.join(blocked)}"
            self._log_result(result)
            return True
        return False

    @staticmethod
    def _mark_unstarted_cancelled(results: dict[str, TaskResult]) -> None:
        for result in results.values():
            if not result.state.is_terminal:
                result.state = TaskState.SKIPPED
                result.reason = FailureReason.CANCELLED
                result.message = "Run cancelled"

    def _run_one(self, task: Task, options: ExecutionOptions, cancel_event: threading.Event) -> TaskResult:
        """Execute a single task on a worker thread."""
        start = time.monotonic()
        result = TaskResult(name=task.name, state=TaskState.RUNNING)

        if task.is_aggregate:
            # Pure dependency aggregators are always satisfied; no fingerprint
            result.state = TaskState.SUCCEEDED
            result.cached = True
            return result

        use_cache = self.cache is not None and not task.no_cache
        shell_default = options.shell
        if use_cache:
            try:
                result.fingerprint = fingerprint_task(
                    task,
                    self.global_env,
                    self.project_root,
                    shell_default,
                    ignored=[self.cache.cache_dir],
                )
            except FingerprintError as e:
                return self._fail(result, FailureReason.FINGERPRINT, str(e), task, start)

            self.logger.debug(f"Fingerprint for '{task.name}': {result.fingerprint}")
            if not options.force:
                entry = self.cache.lookup(task.name, result.fingerprint)
                if entry is not None:
                    return self._replay(result, entry, task, start)

        self.logger.info(f"[bold]Running:[/bold] {task.name}")
        cwd = resolve_task_cwd(task, self.project_root)
        env = self._task_env(task)

        try:
            if task.script is not None:
                result.value = self._run_script(task, env, cwd, cancel_event)
            elif task.parallel and len(task.run) > 1:
                self._run_commands_parallel(task, env, cwd, shell_default, cancel_event)
            else:
                self._run_commands_sequential(task, env, cwd, shell_default, cancel_event)
        except _CommandFailure as failure:
            result.exit_code = failure.exit_code
            result = self._fail(result, failure.reason, failure.message, task, start)
            if failure.reason is not FailureReason.CANCELLED:
                self._record(task, result)
            return result

        result.state = TaskState.SUCCEEDED
        result.exit_code = 0
        result.duration = time.monotonic() - start
        self._record(task, result)
        return result

    def _fail(
        self, result: TaskResult, reason: FailureReason, message: str, task: Task, start: float
    ) -> TaskResult:
        result.state = TaskState.FAILED
        result.reason = reason
        result.message = message
        result.tolerated = task.allow_failure
        result.duration = time.monotonic() - start
        return result

    def _replay(self, result: TaskResult, entry: CacheEntry, task: Task, start: float) -> TaskResult:
        result.cached = True
        result.exit_code = entry.exit_code
        result.duration = time.monotonic() - start
        if entry.exit_code == 0:
            result.state = TaskState.SUCCEEDED
        else:
            result.state = TaskState.FAILED
            result.reason = FailureReason.EXIT_CODE
            result.message = f"Cached failure (exit code {entry.exit_code})"
            result.tolerated = task.allow_failure
        return result

    def _record(self, task: Task, result: TaskResult) -> None:
        """Store a cache entry for a successful or tolerated-failed run."""
        if self.cache is None or task.no_cache or result.fingerprint is None:
            return
        if result.failed and not task.allow_failure:
            return

        try:
            outputs = self._resolve_outputs(task)
        except InvalidPattern as e:
            self.logger.warn(f"[yellow]Not caching '{task.name}': {e}[/yellow]")
            return

        entry = CacheEntry(
            task=task.name,
            fingerprint=result.fingerprint,
            exit_code=result.exit_code if result.exit_code is not None else 1,
            duration=result.duration,
            outputs=outputs,
        )
        try:
            self.cache.record(task.name, result.fingerprint, entry)
        except OSError as e:
            self.logger.warn(f"[yellow]Could not write cache entry for '{task.name}': {e}[/yellow]")

    def _resolve_outputs(self, task: Task) -> list[str]:
        """Concrete output paths recorded with a cache entry.

        Glob patterns record whatever they match now; literal paths are
        recorded as-is so a missing declared output invalidates the entry.

        Raises:
            InvalidPattern: If an output pattern can't be expanded
        """
        cwd = resolve_task_cwd(task, self.project_root)
        outputs: set[str] = set()
        for pattern in task.outputs:
            if not pattern.strip():
                raise InvalidPattern(pattern, "pattern is empty")
            if has_magic(pattern):
                outputs.update(str(p) for p in expand_globs([pattern], cwd, files_only=False))
            else:
                path = Path(pattern).expanduser()
                outputs.add(str(path if path.is_absolute() else cwd / path))
        return sorted(outputs)

    def _task_env(self, task: Task) -> dict[str, str]:
        env = dict(self.base_env)
        env.update(self.global_env)
        env.update(task.env)
        return env

    def _run_script(self, task: Task, env: dict[str, str], cwd: Path, cancel_event: threading.Event) -> object:
        outcome = self.script_engine.execute(
            task.script, env, cwd, timeout=task.timeout, cancel_event=cancel_event
        )
        if outcome.output:
            self.logger.info(outcome.output.rstrip("\n"))
        if outcome.timed_out:
            raise _CommandFailure(FailureReason.TIMEOUT, f"Timed out after {task.timeout}s")
        if outcome.cancelled:
            raise _CommandFailure(FailureReason.CANCELLED, "Run cancelled")
        if not outcome.success:
            raise _CommandFailure(FailureReason.SCRIPT_ERROR, outcome.error or "Script failed", exit_code=1)
        return outcome.value

    def _run_commands_sequential(
        self,
        task: Task,
        env: dict[str, str],
        cwd: Path,
        shell_default: bool,
        cancel_event: threading.Event,
    ) -> None:
        deadline = None if task.timeout is None else time.monotonic() + task.timeout
        for cmd in task.run:
            self._run_command(task, cmd, env, cwd, shell_default, deadline, cancel_event)

    def _run_commands_parallel(
        self,
        task: Task,
        env: dict[str, str],
        cwd: Path,
        shell_default: bool,
        cancel_event: threading.Event,
    ) -> None:
        """Run all commands concurrently; every command runs to completion.

        Failures are captured per command and joined before deciding the
        task's outcome. A timeout outranks other failures.
        """
        deadline = None if task.timeout is None else time.monotonic() + task.timeout
        failures: list[_CommandFailure] = []
        with ThreadPoolExecutor(
            max_workers=len(task.run), thread_name_prefix=f"tasklane-{task.name}"
        ) as group:
            futures = [
                group.submit(self._run_command, task, cmd, env, cwd, shell_default, deadline, cancel_event)
                for cmd in task.run
            ]
            for future in futures:
                try:
                    future.result()
                except _CommandFailure as failure:
                    failures.append(failure)

        if not failures:
            return
        for reason in (FailureReason.CANCELLED, FailureReason.TIMEOUT):
            for failure in failures:
                if failure.reason is reason:
                    raise failure
        if len(failures) == 1:
            raise failures[0]
        raise _CommandFailure(
            failures[0].reason,
            "; ".join(failure.message for failure in failures),
            exit_code=failures[0].exit_code,
        )

    def _run_command(
        self,
        task: Task,
        cmd: str,
        env: dict[str, str],
        cwd: Path,
        shell_default: bool,
        deadline: float | None,
        cancel_event: threading.Event,
    ) -> None:
        shell = task.shell if task.shell is not None else shell_default
        timeout = None
        if deadline is not None:
            timeout = deadline - time.monotonic()
            if timeout <= 0:
                raise _CommandFailure(FailureReason.TIMEOUT, f"Timed out after {task.timeout}s")

        self.logger.debug(f"[dim]{task.name}: {cmd}[/dim]")
        try:
            completed = self.process_runner.run(
                cmd, shell=shell, cwd=cwd, env=env, timeout=timeout, cancel_event=cancel_event
            )
        except subprocess.TimeoutExpired:
            raise _CommandFailure(FailureReason.TIMEOUT, f"Timed out after {task.timeout}s") from None
        except CommandCancelled:
            raise _CommandFailure(FailureReason.CANCELLED, "Run cancelled") from None
        except FileNotFoundError:
            raise _CommandFailure(
                FailureReason.SPAWN_ERROR,
                f"Command not found: {cmd}",
                exit_code=127,
            ) from None
        except (OSError, ValueError) as e:
            raise _CommandFailure(FailureReason.SPAWN_ERROR, f"Failed to start '{cmd}': {e}") from None

        if completed.returncode != 0:
            message = f"Command '{cmd}' failed with exit code {completed.returncode}"
            stderr = completed.stderr
            if isinstance(stderr, bytes):
                stderr = stderr.decode(errors="replace")
            if stderr:
                tail = "\n".join(stderr.strip().splitlines()[-_STDERR_TAIL_LINES:])
                message = f"{message}\n{tail}"
            raise _CommandFailure(FailureReason.EXIT_CODE, message, exit_code=completed.returncode)

    def _log_result(self, result: TaskResult) -> None:
        if result.state is TaskState.SUCCEEDED:
            suffix = " (cached)" if result.cached else ""
            self.logger.info(f"[green]✓[/green] {result.name}{suffix} [dim]{result.duration:.2f}s[/dim]")
        elif result.state is TaskState.FAILED:
            tolerated = " (allowed)" if result.tolerated else ""
            self.logger.error(f"[red]✗ {result.name}{tolerated}: {result.message}[/red]")
        elif result.state is TaskState.SKIPPED:
            self.logger.warn(f"[yellow]- {result.name} skipped: {result.message}[/yellow]")
