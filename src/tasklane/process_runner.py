"""Process execution abstraction layer.

This module provides an interface for running subprocesses, allowing for
better testability and dependency injection.
"""

from __future__ import annotations

import os
import shlex
import signal
import subprocess
import threading
import time
from abc import ABC, abstractmethod
from contextlib import suppress
from enum import Enum
from pathlib import Path
from typing import Any, Mapping

from tasklane.logging import Logger

__all__ = [
    "ProcessRunner",
    "PassthroughProcessRunner",
    "SilentProcessRunner",
    "CapturingProcessRunner",
    "CommandCancelled",
    "TaskOutputTypes",
    "make_process_runner",
    "split_command",
]

POLL_INTERVAL = 0.05
TERMINATE_GRACE = 1.0


class TaskOutputTypes(Enum):
    """
    Enum defining task output control modes.
    """

    ALL = "all"
    NONE = "none"
    CAPTURE = "capture"


class CommandCancelled(Exception):
    """Raised when a running command is killed because the run was cancelled."""

    def __init__(self, cmd: Any):
        self.cmd = cmd
        super().__init__(f"Command cancelled: {cmd}")


def split_command(cmd: str) -> list[str]:
    """Split a command string into argv for direct (non-shell) execution.

    Raises:
        ValueError: On unbalanced quotes or an empty command
    """
    argv = shlex.split(cmd)
    if not argv:
        raise ValueError("Empty command")
    return argv


def _process_group_kwargs() -> dict[str, Any]:
    """Popen keyword arguments giving the child its own process group."""
    if os.name == "posix":
        return {"start_new_session": True}
    return {}


def _signal_group(process: subprocess.Popen, sig: int) -> None:
    with suppress(ProcessLookupError, PermissionError):
        os.killpg(process.pid, sig)


def _terminate(process: subprocess.Popen) -> tuple[Any, Any]:
    """Stop a process and everything it spawned, then reap it.

    On POSIX the whole process group gets SIGTERM, then SIGKILL if it is
    still holding the pipes open after TERMINATE_GRACE seconds. Elsewhere
    only the direct child can be killed.
    """
    if os.name != "posix":
        process.kill()
        return process.communicate()

    _signal_group(process, signal.SIGTERM)
    try:
        return process.communicate(timeout=TERMINATE_GRACE)
    except subprocess.TimeoutExpired:
        _signal_group(process, signal.SIGKILL)
        return process.communicate()


def _wait_for_process(
    process: subprocess.Popen,
    timeout: float | None,
    cancel_event: threading.Event | None,
) -> tuple[Any, Any]:
    """Wait for a process while honouring a deadline and a cancel flag.

    The process (and its process group) is terminated and reaped before
    TimeoutExpired or CommandCancelled propagates.
    """
    deadline = None if timeout is None else time.monotonic() + timeout
    while True:
        if cancel_event is not None and cancel_event.is_set():
            _terminate(process)
            raise CommandCancelled(process.args)

        wait_for = POLL_INTERVAL
        if deadline is not None:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                stdout, stderr = _terminate(process)
                raise subprocess.TimeoutExpired(process.args, timeout, output=stdout, stderr=stderr)
            wait_for = min(wait_for, remaining)

        try:
            # communicate() may be called again after it times out
            stdout, stderr = process.communicate(timeout=wait_for)
        except subprocess.TimeoutExpired:
            continue
        except BaseException:
            _terminate(process)
            raise
        return stdout, stderr


class ProcessRunner(ABC):
    """
    Abstract interface for running task commands.
    """

    def __init__(self, logger: Logger) -> None:
        self._logger = logger

    def run(
        self,
        cmd: str | list[str],
        *,
        shell: bool = False,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        timeout: float | None = None,
        cancel_event: threading.Event | None = None,
    ) -> subprocess.CompletedProcess[Any]:
        """
        Run one command to completion.

        Args:
        cmd: Command string (split with shlex unless shell=True) or argv list
        shell: Interpret the command with the platform shell
        cwd: Working directory
        env: Complete environment for the child process
        timeout: Seconds before the process is killed (None = unbounded)
        cancel_event: When set, the process is killed

        Returns:
        subprocess.CompletedProcess: The completed process result (never checked)

        Raises:
        subprocess.TimeoutExpired: If timeout is exceeded
        CommandCancelled: If cancel_event was set while running
        OSError: If the process could not be started
        ValueError: If a non-shell command string can't be split
        """
        if shell:
            args: str | list[str] = cmd if isinstance(cmd, str) else shlex.join(cmd)
        else:
            args = split_command(cmd) if isinstance(cmd, str) else list(cmd)

        self._logger.trace(f"Spawning {args!r} in {cwd}")
        process = subprocess.Popen(
            args,
            shell=shell,
            cwd=cwd,
            env=dict(env) if env is not None else None,
            **_process_group_kwargs(),
            **self._stream_kwargs(),
        )
        stdout, stderr = _wait_for_process(process, timeout, cancel_event)
        return subprocess.CompletedProcess(
            args=args, returncode=process.returncode, stdout=stdout, stderr=stderr
        )

    @abstractmethod
    def _stream_kwargs(self) -> dict[str, Any]:
        """Popen keyword arguments controlling stdout/stderr."""
        ...


class PassthroughProcessRunner(ProcessRunner):
    """
    Process runner whose children inherit the parent's stdout and stderr.
    """

    def _stream_kwargs(self) -> dict[str, Any]:
        return {}


class SilentProcessRunner(ProcessRunner):
    """
    Process runner that suppresses all subprocess output by redirecting to DEVNULL.
    """

    def _stream_kwargs(self) -> dict[str, Any]:
        return {"stdout": subprocess.DEVNULL, "stderr": subprocess.DEVNULL}


class CapturingProcessRunner(ProcessRunner):
    """
    Process runner that captures stdout and stderr as text.

    Captured stderr is surfaced in task failure messages.
    """

    def _stream_kwargs(self) -> dict[str, Any]:
        return {
            "stdout": subprocess.PIPE,
            "stderr": subprocess.PIPE,
            "text": True,
            "errors": "replace",
        }


def make_process_runner(output_type: TaskOutputTypes, logger: Logger) -> ProcessRunner:
    """
    Factory function for creating ProcessRunner instances.

    Raises:
    ValueError: If an invalid TaskOutputTypes value is provided
    """
    match output_type:
        case TaskOutputTypes.ALL:
            return PassthroughProcessRunner(logger)
        case TaskOutputTypes.NONE:
            return SilentProcessRunner(logger)
        case TaskOutputTypes.CAPTURE:
            return CapturingProcessRunner(logger)
        case _:
            raise ValueError(f"Invalid TaskOutputTypes: {output_type}")
