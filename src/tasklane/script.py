"""
Embedded script support.

A task's `script` is Python source run in a fresh namespace. Instead of
ambient globals, the script sees a narrow set of builtins provided by a
ScriptHost object, so each capability can be replaced in tests.
"""

from __future__ import annotations

import builtins
import io
import json
import os
import shutil
import subprocess
import sys
import threading
import time
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Mapping

import yaml

from tasklane.globs import InvalidPattern, expand_globs
from tasklane.logging import Logger
from tasklane.process_runner import CapturingProcessRunner, CommandCancelled, ProcessRunner

SCRIPT_FILENAME = "<task-script>"
SCRIPT_POLL_INTERVAL = 0.05


class ScriptError(Exception):
    """Raised by script builtins; also describes a failed script."""

    pass


class _ScriptAbort(BaseException):
    """Unwinds a script on timeout or cancellation.

    Derives from BaseException so `except Exception` in user code can't
    swallow it.
    """

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


TIMEOUT = "timeout"
CANCELLED = "cancelled"


@dataclass
class ScriptResult:
    """Outcome of running a script."""

    success: bool
    value: Any = None
    output: str = ""
    error: str | None = None
    timed_out: bool = False
    cancelled: bool = False


def semver_bump(version: str, part: str) -> str:
    """Bump one component of a MAJOR.MINOR.PATCH version string.

    Args:
        version: Version such as "1.2.3" (a leading "v" is kept)
        part: One of "major", "minor", "patch"

    Raises:
        ScriptError: On a malformed version or unknown part
    """
    prefix = "v" if version.startswith("v") else ""
    core = version[len(prefix):].split("-", 1)[0].split("+", 1)[0]
    pieces = core.split(".")
    if len(pieces) != 3 or not all(piece.isdigit() for piece in pieces):
        raise ScriptError(f"Invalid semver format: '{version}'")

    major, minor, patch = (int(piece) for piece in pieces)
    match part:
        case "major":
            return f"{prefix}{major + 1}.0.0"
        case "minor":
            return f"{prefix}{major}.{minor + 1}.0"
        case "patch":
            return f"{prefix}{major}.{minor}.{patch + 1}"
        case _:
            raise ScriptError(f"Unknown version part: '{part}' (expected major, minor or patch)")


class ScriptHost:
    """Host capabilities exposed to task scripts.

    Relative paths are resolved against the task's working directory.
    """

    def __init__(
        self,
        cwd: Path,
        env: Mapping[str, str],
        process_runner: ProcessRunner,
        deadline: float | None = None,
        cancel_event: threading.Event | None = None,
    ):
        self.cwd = Path(cwd)
        self.env = dict(env)
        self._process_runner = process_runner
        self._deadline = deadline
        self._cancel_event = cancel_event

    def _path(self, path: str) -> Path:
        candidate = Path(path).expanduser()
        return candidate if candidate.is_absolute() else self.cwd / candidate

    def read_file(self, path: str) -> str:
        try:
            return self._path(path).read_text()
        except OSError as e:
            raise ScriptError(f"Failed to read file '{path}': {e}") from e

    def write_file(self, path: str, content: str) -> None:
        try:
            self._path(path).write_text(content)
        except OSError as e:
            raise ScriptError(f"Failed to write file '{path}': {e}") from e

    def file_exists(self, path: str) -> bool:
        return self._path(path).exists()

    def is_file(self, path: str) -> bool:
        return self._path(path).is_file()

    def is_dir(self, path: str) -> bool:
        return self._path(path).is_dir()

    def mkdir(self, path: str) -> None:
        try:
            self._path(path).mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ScriptError(f"Failed to create directory '{path}': {e}") from e

    def rmdir(self, path: str) -> None:
        try:
            shutil.rmtree(self._path(path))
        except OSError as e:
            raise ScriptError(f"Failed to remove directory '{path}': {e}") from e

    def list_dir(self, path: str = ".") -> list[str]:
        try:
            return sorted(str(child) for child in self._path(path).iterdir())
        except OSError as e:
            raise ScriptError(f"Failed to read directory '{path}': {e}") from e

    def join_path(self, first: str, second: str) -> str:
        return str(Path(first) / second)

    def parent_path(self, path: str) -> str:
        return os.path.dirname(path)

    def file_name(self, path: str) -> str:
        return Path(path).name

    def extension(self, path: str) -> str:
        """Final suffix without the dot; "" when there is none."""
        return Path(path).suffix[1:]

    def exec(self, cmd: str) -> str:
        """Run a shell command and return its stdout.

        Raises:
            ScriptError: If the command can't be started or exits non-zero
        """
        timeout = None
        if self._deadline is not None:
            timeout = max(self._deadline - time.monotonic(), 0.0)
        try:
            result = self._process_runner.run(
                cmd,
                shell=True,
                cwd=self.cwd,
                env=self.env,
                timeout=timeout,
                cancel_event=self._cancel_event,
            )
        except subprocess.TimeoutExpired:
            raise _ScriptAbort(TIMEOUT) from None
        except CommandCancelled:
            raise _ScriptAbort(CANCELLED) from None
        except OSError as e:
            raise ScriptError(f"Failed to execute command '{cmd}': {e}") from e

        if result.returncode != 0:
            stderr = (result.stderr or "").strip()
            raise ScriptError(f"Command failed with exit code {result.returncode}: {cmd}\n{stderr}".rstrip())
        return result.stdout or ""

    def glob(self, pattern: str) -> list[str]:
        try:
            matches = expand_globs([pattern], self.cwd, files_only=False)
        except InvalidPattern as e:
            raise ScriptError(str(e)) from e
        return [str(path) for path in matches]

    def parse_json(self, text: str) -> Any:
        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            raise ScriptError(f"Failed to parse JSON: {e}") from e

    def to_json(self, value: Any) -> str:
        try:
            return json.dumps(value, indent=2)
        except (TypeError, ValueError) as e:
            raise ScriptError(f"Failed to serialize JSON: {e}") from e

    def parse_toml(self, text: str) -> dict[str, Any]:
        try:
            return tomllib.loads(text)
        except tomllib.TOMLDecodeError as e:
            raise ScriptError(f"Failed to parse TOML: {e}") from e

    def parse_yaml(self, text: str) -> Any:
        try:
            return yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise ScriptError(f"Failed to parse YAML: {e}") from e

    def semver_bump(self, version: str, part: str) -> str:
        return semver_bump(version, part)

    def get_env(self, name: str, default: str = "") -> str:
        return self.env.get(name, default)

    def set_env(self, name: str, value: str) -> None:
        """Set a variable for later `exec` calls and `get_env` lookups."""
        self.env[name] = str(value)

    def builtins(self) -> dict[str, Callable[..., Any]]:
        """Names injected into the script namespace."""
        return {
            "read_file": self.read_file,
            "write_file": self.write_file,
            "file_exists": self.file_exists,
            "is_file": self.is_file,
            "is_dir": self.is_dir,
            "mkdir": self.mkdir,
            "rmdir": self.rmdir,
            "list_dir": self.list_dir,
            "join_path": self.join_path,
            "parent_path": self.parent_path,
            "file_name": self.file_name,
            "extension": self.extension,
            "exec": self.exec,
            "glob": self.glob,
            "parse_json": self.parse_json,
            "to_json": self.to_json,
            "parse_toml": self.parse_toml,
            "parse_yaml": self.parse_yaml,
            "semver_bump": self.semver_bump,
            "get_env": self.get_env,
            "set_env": self.set_env,
        }


HostFactory = Callable[..., ScriptHost]


class ScriptEngine:
    """Runs task scripts.

    Each script runs on a dedicated thread carrying a trace hook that checks
    the deadline and cancel event on every line the script executes. The
    calling thread stops waiting at the deadline even when the script is
    blocked inside a call the hook can't see.
    """

    def __init__(
        self,
        logger: Logger,
        process_runner: ProcessRunner | None = None,
        host_factory: HostFactory = ScriptHost,
    ):
        self._logger = logger
        self._process_runner = process_runner or CapturingProcessRunner(logger)
        self._host_factory = host_factory

    def execute(
        self,
        source: str,
        env: Mapping[str, str],
        cwd: Path,
        timeout: float | None = None,
        cancel_event: threading.Event | None = None,
    ) -> ScriptResult:
        """Run script source and report success, printed output and `result`.

        The script body runs on its own daemon thread. Once the deadline
        passes or the run is cancelled, this returns without waiting for it;
        a script stuck in a blocking call is abandoned and unwinds at its next
        traced line.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        try:
            code = compile(source, SCRIPT_FILENAME, "exec")
        except SyntaxError as e:
            return ScriptResult(success=False, error=f"SyntaxError: {e.msg} (line {e.lineno})")

        host = self._host_factory(
            cwd=cwd,
            env=env,
            process_runner=self._process_runner,
            deadline=deadline,
            cancel_event=cancel_event,
        )
        output = io.StringIO()

        def script_print(*args: Any, **kwargs: Any) -> None:
            kwargs.pop("file", None)
            builtins.print(*args, file=output, **kwargs)

        namespace: dict[str, Any] = {
            "__name__": "__tasklane_script__",
            "__builtins__": builtins,
            "env": host.env,
            "cwd": str(cwd),
            "print": script_print,
            "result": None,
        }
        namespace.update(host.builtins())

        outcome: list[ScriptResult] = []

        def body() -> None:
            outcome.append(self._run(code, namespace, output, deadline, cancel_event, timeout))

        thread = threading.Thread(target=body, name="tasklane-script", daemon=True)
        thread.start()
        while True:
            thread.join(SCRIPT_POLL_INTERVAL)
            if outcome:
                return outcome[0]
            if not thread.is_alive():
                return ScriptResult(success=False, output=output.getvalue(), error="Script stopped unexpectedly")
            if cancel_event is not None and cancel_event.is_set():
                return _aborted(CANCELLED, output, timeout)
            if deadline is not None and time.monotonic() > deadline:
                return _aborted(TIMEOUT, output, timeout)

    def _run(self, code, namespace, output, deadline, cancel_event, timeout) -> ScriptResult:
        tracer = self._make_tracer(deadline, cancel_event)
        if tracer is not None:
            sys.settrace(tracer)
        try:
            exec(code, namespace)
        except _ScriptAbort as abort:
            return _aborted(abort.reason, output, timeout)
        except SystemExit as e:
            return ScriptResult(success=False, output=output.getvalue(), error=f"Script called exit({e.code})")
        except Exception as e:
            self._logger.debug(f"Script raised {type(e).__name__}: {e}")
            return ScriptResult(
                success=False,
                output=output.getvalue(),
                error=_describe_exception(e),
            )
        finally:
            if tracer is not None:
                sys.settrace(None)

        return ScriptResult(success=True, value=namespace.get("result"), output=output.getvalue())

    @staticmethod
    def _make_tracer(deadline: float | None, cancel_event: threading.Event | None):
        if deadline is None and cancel_event is None:
            return None

        def check() -> None:
            if cancel_event is not None and cancel_event.is_set():
                raise _ScriptAbort(CANCELLED)
            if deadline is not None and time.monotonic() > deadline:
                raise _ScriptAbort(TIMEOUT)

        def local_tracer(frame, event, arg):
            if event == "line":
                check()
            return local_tracer

        def global_tracer(frame, event, arg):
            check()
            if frame.f_code.co_filename == SCRIPT_FILENAME:
                return local_tracer
            return None

        return global_tracer


def _aborted(reason: str, output: io.StringIO, timeout: float | None) -> ScriptResult:
    timed_out = reason == TIMEOUT
    return ScriptResult(
        success=False,
        output=output.getvalue(),
        error=f"Script timed out after {timeout}s" if timed_out else "Script cancelled",
        timed_out=timed_out,
        cancelled=not timed_out,
    )


def _describe_exception(error: Exception) -> str:
    line = None
    tb = error.__traceback__
    while tb is not None:
        if tb.tb_frame.f_code.co_filename == SCRIPT_FILENAME:
            line = tb.tb_lineno
        tb = tb.tb_next
    location = f" (line {line})" if line is not None else ""
    if isinstance(error, ScriptError):
        return f"{error}{location}"
    return f"{type(error).__name__}: {error}{location}"
