"""Parse recipe YAML files into the task model."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from tasklane.config import ConfigError, apply_settings, load_default_settings, validate_settings
from tasklane.model import Settings, Task

RECIPE_FILENAMES = ["tasklane.yaml", "tasklane.yml", "tl.yaml"]

DEFAULT_CACHE_DIR = Path(".tasklane") / "cache"

_TOP_LEVEL_KEYS = {"env", "settings", "tasks"}

# field name -> (accepted types, description used in error messages)
_TASK_FIELDS: dict[str, tuple[tuple[type, ...], str]] = {
    "desc": ((str,), "a string"),
    "run": ((list, str), "a list of strings"),
    "script": ((str,), "a string"),
    "depends": ((list, str), "a list of strings"),
    "parallel": ((bool,), "a boolean"),
    "env": ((dict,), "a dictionary"),
    "cwd": ((str,), "a string"),
    "shell": ((bool,), "a boolean"),
    "watch": ((list, str), "a list of strings"),
    "sources": ((list, str), "a list of strings"),
    "outputs": ((list, str), "a list of strings"),
    "no_cache": ((bool,), "a boolean"),
    "allow_failure": ((bool,), "a boolean"),
    "timeout": ((int, float), "a number of seconds"),
}


class RecipeError(Exception):
    """Raised when a recipe file is malformed."""

    pass


@dataclass
class Recipe:
    """Represents a parsed recipe file with all tasks."""

    tasks: dict[str, Task]
    project_root: Path
    env: dict[str, str] = field(default_factory=dict)
    settings: Settings = field(default_factory=Settings)
    recipe_path: Path | None = None

    def get_task(self, name: str) -> Task | None:
        """Get task by name."""
        return self.tasks.get(name)

    def task_names(self) -> list[str]:
        """Get all task names."""
        return list(self.tasks.keys())

    @property
    def cache_dir(self) -> Path:
        """Resolved cache directory."""
        if self.settings.cache_dir:
            path = Path(self.settings.cache_dir).expanduser()
            return path if path.is_absolute() else self.project_root / path
        return self.project_root / DEFAULT_CACHE_DIR


def find_recipe_file(start_dir: Path | None = None) -> Path | None:
    """Find a recipe file in the current or parent directories.

    Args:
        start_dir: Directory to start searching from (defaults to cwd)

    Returns:
        Path to recipe file if found, None otherwise
    """
    if start_dir is None:
        start_dir = Path.cwd()

    current = start_dir.resolve()

    while True:
        for filename in RECIPE_FILENAMES:
            recipe_path = current / filename
            if recipe_path.exists():
                return recipe_path

        parent = current.parent
        if parent == current:
            break
        current = parent

    return None


def parse_recipe(recipe_path: Path, defaults: Settings | None = None) -> Recipe:
    """Parse a recipe file.

    Args:
        recipe_path: Path to the recipe file
        defaults: Settings the recipe's `settings` block is layered over.
            When omitted, machine and user config files are consulted.

    Returns:
        Recipe object with all tasks

    Raises:
        FileNotFoundError: If recipe file doesn't exist
        RecipeError: If YAML is invalid or the recipe structure is invalid
        ConfigError: If a settings file or the settings block is invalid
    """
    if not recipe_path.exists():
        raise FileNotFoundError(f"Recipe file not found: {recipe_path}")

    try:
        with open(recipe_path, "r") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise RecipeError(f"Error parsing YAML in '{recipe_path}': {e}") from e

    if defaults is None:
        defaults = load_default_settings()

    return parse_recipe_data(data, recipe_path.parent, defaults, recipe_path)


def parse_recipe_data(
    data: Any,
    project_root: Path,
    defaults: Settings | None = None,
    recipe_path: Path | None = None,
) -> Recipe:
    """Build a Recipe from already-loaded YAML data."""
    if data is None:
        data = {}

    if not isinstance(data, dict):
        raise RecipeError("Recipe must be a dictionary")

    unknown = sorted(str(key) for key in data if key not in _TOP_LEVEL_KEYS)
    if unknown:
        raise RecipeError(
            f"Unknown top-level key(s): {', '.join(unknown)} "
            f"(expected: {', '.join(sorted(_TOP_LEVEL_KEYS))})"
        )

    env = _parse_env(data.get("env"), "Global 'env'")

    try:
        overrides = validate_settings(data.get("settings"), "recipe")
    except ConfigError as e:
        raise RecipeError(str(e)) from e
    settings = apply_settings(defaults or Settings(), overrides)

    tasks_data = data.get("tasks") or {}
    if not isinstance(tasks_data, dict):
        raise RecipeError("'tasks' must be a dictionary")

    tasks: dict[str, Task] = {}
    for task_name, task_data in tasks_data.items():
        task = _parse_task(str(task_name), task_data)
        tasks[task.name] = task

    return Recipe(
        tasks=tasks,
        project_root=project_root,
        env=env,
        settings=settings,
        recipe_path=recipe_path,
    )


def _parse_env(value: Any, what: str) -> dict[str, str]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise RecipeError(f"{what} must be a dictionary")
    env = {}
    for key, item in value.items():
        if isinstance(item, (dict, list)) or item is None:
            raise RecipeError(f"{what} value for '{key}' must be a scalar")
        # YAML turns `true` and `1` into non-strings; the environment only holds strings
        if isinstance(item, bool):
            item = "true" if item else "false"
        env[str(key)] = str(item)
    return env


def _parse_task(task_name: str, task_data: Any) -> Task:
    if not isinstance(task_data, dict):
        raise RecipeError(f"Task '{task_name}' must be a dictionary")

    for key, value in task_data.items():
        field_spec = _TASK_FIELDS.get(key)
        if field_spec is None:
            raise RecipeError(f"Task '{task_name}' has unknown field '{key}'")
        accepted, description = field_spec
        if isinstance(value, bool) and bool not in accepted:
            raise RecipeError(f"Task '{task_name}': field '{key}' must be {description}")
        if not isinstance(value, accepted):
            raise RecipeError(f"Task '{task_name}': field '{key}' must be {description}")
        if isinstance(value, list) and not all(isinstance(item, str) for item in value):
            raise RecipeError(f"Task '{task_name}': field '{key}' must be {description}")

    for key in ("watch", "sources", "outputs"):
        patterns = task_data.get(key, [])
        if isinstance(patterns, str):
            patterns = [patterns]
        if any(not pattern.strip() for pattern in patterns):
            raise RecipeError(f"Task '{task_name}': field '{key}' contains an empty pattern")

    timeout = task_data.get("timeout")
    if timeout is not None and timeout < 0:
        raise RecipeError(f"Task '{task_name}': field 'timeout' must not be negative")

    task = Task(
        name=task_name,
        desc=task_data.get("desc", ""),
        run=task_data.get("run", []),
        script=task_data.get("script"),
        depends=task_data.get("depends", []),
        parallel=task_data.get("parallel", False),
        env=_parse_env(task_data.get("env"), f"Task '{task_name}' env"),
        cwd=task_data.get("cwd"),
        shell=task_data.get("shell"),
        watch=task_data.get("watch", []),
        sources=task_data.get("sources", []),
        outputs=task_data.get("outputs", []),
        no_cache=task_data.get("no_cache", False),
        allow_failure=task_data.get("allow_failure", False),
        timeout=timeout,
    )

    if not task.run and task.script is None and not task.depends:
        raise RecipeError(f"Task '{task_name}' must have 'run' commands, 'script', or 'depends'")

    if task_name in task.depends:
        raise RecipeError(f"Task '{task_name}' cannot depend on itself")

    return task
