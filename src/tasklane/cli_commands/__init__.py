"""CLI command implementations and shared utilities."""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Optional

import typer

from tasklane.config import ConfigError
from tasklane.graph import GraphError, TaskGraph, build_graph
from tasklane.logging import Logger
from tasklane.parser import RECIPE_FILENAMES, Recipe, RecipeError, find_recipe_file, parse_recipe

EXIT_SUCCESS = 0
EXIT_TASK_FAILED = 1
EXIT_CONFIG_ERROR = 2
EXIT_WATCH_ERROR = 3
EXIT_INTERRUPTED = 130


def _supports_unicode() -> bool:
    """
    Check if the terminal supports Unicode characters.

    Returns:
    True if terminal supports UTF-8, False otherwise
    """
    # Hard stop: classic Windows console (conhost)
    if os.name == "nt" and "WT_SESSION" not in os.environ:
        return False

    encoding = sys.stdout.encoding
    if not encoding:
        return False

    try:
        "✓✗".encode(encoding)
        return True
    except UnicodeEncodeError:
        return False


def get_action_success_string() -> str:
    """
    Get the appropriate success symbol based on terminal capabilities.

    Returns:
    Unicode tick symbol (✓) if terminal supports UTF-8, otherwise "[ OK ]"
    """
    return "✓" if _supports_unicode() else "[ OK ]"


def get_action_failure_string() -> str:
    """
    Get the appropriate failure symbol based on terminal capabilities.

    Returns:
    Unicode cross symbol (✗) if terminal supports UTF-8, otherwise "[ FAIL ]"
    """
    return "✗" if _supports_unicode() else "[ FAIL ]"


def resolve_recipe_path(logger: Logger, tasks_file: Optional[str] = None) -> Path:
    """
    Locate the recipe file, exiting with a configuration error if there is none.
    """
    if tasks_file:
        recipe_path = Path(tasks_file)
        if not recipe_path.exists():
            logger.error(f"[red]Recipe file not found: {tasks_file}[/red]")
            raise typer.Exit(EXIT_CONFIG_ERROR)
        return recipe_path

    recipe_path = find_recipe_file()
    if recipe_path is None:
        logger.error(f"[red]No recipe file found ({', '.join(RECIPE_FILENAMES)})[/red]")
        logger.info("Run [cyan]tl init[/cyan] to create one")
        raise typer.Exit(EXIT_CONFIG_ERROR)
    return recipe_path


def get_recipe(logger: Logger, tasks_file: Optional[str] = None) -> Recipe:
    """
    Load and validate the recipe.

    Raises:
    typer.Exit: With EXIT_CONFIG_ERROR if the recipe is missing or malformed
    """
    recipe_path = resolve_recipe_path(logger, tasks_file)
    try:
        recipe = parse_recipe(recipe_path)
    except (RecipeError, ConfigError) as e:
        logger.error(f"[red]{e}[/red]")
        raise typer.Exit(EXIT_CONFIG_ERROR)

    logger.debug(f"Loaded recipe {recipe_path}")
    return recipe


def get_graph(logger: Logger, recipe: Recipe) -> TaskGraph:
    """
    Build the dependency graph, reporting graph errors as configuration errors.
    """
    try:
        return build_graph(recipe.tasks)
    except GraphError as e:
        logger.error(f"[red]{e}[/red]")
        raise typer.Exit(EXIT_CONFIG_ERROR)


def check_targets(logger: Logger, graph: TaskGraph, targets: list[str]) -> None:
    """
    Exit with a configuration error if any target is not a known task.
    """
    unknown = [name for name in targets if name not in graph]
    if not unknown:
        return
    for name in unknown:
        logger.error(f"[red]Task not found: {name}[/red]")
    logger.info("Available tasks: " + ", ".join(graph.task_names()))
    raise typer.Exit(EXIT_CONFIG_ERROR)
