"""In-memory task model.

Plain data only; structural validation (types, unknown fields) happens when a
recipe is loaded and graph-level validation happens in tasklane.graph.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class Task:
    """Represents a task definition."""

    name: str
    desc: str = ""
    run: list[str] = field(default_factory=list)
    script: str | None = None
    depends: list[str] = field(default_factory=list)
    parallel: bool = False
    env: dict[str, str] = field(default_factory=dict)
    cwd: str | None = None
    shell: bool | None = None  # None inherits Settings.shell
    watch: list[str] = field(default_factory=list)
    sources: list[str] = field(default_factory=list)
    outputs: list[str] = field(default_factory=list)
    no_cache: bool = False
    allow_failure: bool = False
    timeout: float | None = None

    def __post_init__(self):
        """Ensure lists are always lists."""
        if isinstance(self.run, str):
            self.run = [self.run]
        if isinstance(self.depends, str):
            self.depends = [self.depends]
        if isinstance(self.watch, str):
            self.watch = [self.watch]
        if isinstance(self.sources, str):
            self.sources = [self.sources]
        if isinstance(self.outputs, str):
            self.outputs = [self.outputs]
        if not self.timeout:
            self.timeout = None

    @property
    def is_aggregate(self) -> bool:
        """True for tasks that only exist to group their dependencies."""
        return not self.run and self.script is None

    @property
    def effective_watch_patterns(self) -> list[str]:
        """Patterns watched for this task: `watch`, falling back to `sources`."""
        return list(self.watch) if self.watch else list(self.sources)


@dataclass
class Settings:
    """Global behaviour settings, layered from config files and the recipe."""

    cache: bool = True
    cache_dir: str | None = None
    parallelism: int = 0
    watch_debounce_ms: int = 300
    shell: bool = False


SETTINGS_FIELDS: dict[str, type] = {
    "cache": bool,
    "cache_dir": str,
    "parallelism": int,
    "watch_debounce_ms": int,
    "shell": bool,
}
