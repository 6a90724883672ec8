from __future__ import annotations

from typing import Optional

from tasklane.cli_commands import get_action_success_string, get_graph, get_recipe
from tasklane.logging import Logger


def check_recipe(logger: Logger, tasks_file: Optional[str] = None) -> None:
    """
    Validate the recipe and its dependency graph without running anything.
    """
    recipe = get_recipe(logger, tasks_file)
    graph = get_graph(logger, recipe)

    for name in graph.task_names():
        task = graph.tasks[name]
        if task.parallel and len(task.run) < 2:
            logger.warn(f"[yellow]'{name}' sets parallel with fewer than two commands[/yellow]")

    logger.info(
        f"[green]{get_action_success_string()} {recipe.recipe_path} is valid "
        f"({len(graph.task_names())} tasks)[/green]"
    )
