"""Watch command implementation."""

from __future__ import annotations

from typing import Optional

import typer
from rich.console import Console

from tasklane.cli_commands import (
    EXIT_INTERRUPTED,
    EXIT_WATCH_ERROR,
    check_targets,
    get_graph,
    get_recipe,
)
from tasklane.cli_commands.run_tasks import make_executor, make_options, print_report
from tasklane.logging import Logger
from tasklane.process_runner import TaskOutputTypes
from tasklane.watch import WatchError, WatchLoop


def watch_task(
    logger: Logger,
    console: Console,
    targets: list[str],
    tasks_file: Optional[str] = None,
    clear: bool = False,
    parallelism: Optional[int] = None,
    task_output: TaskOutputTypes = TaskOutputTypes.ALL,
) -> None:
    """
    Re-run tasks whenever their watched files change, until interrupted.
    """
    recipe = get_recipe(logger, tasks_file)
    graph = get_graph(logger, recipe)
    check_targets(logger, graph, targets)

    def before_run(changed) -> None:
        if clear:
            console.clear()

    loop = WatchLoop(
        graph,
        targets,
        make_executor(logger, recipe, task_output),
        logger,
        recipe.project_root,
        options=make_options(recipe, parallelism),
        debounce_ms=recipe.settings.watch_debounce_ms,
        ignored=[recipe.cache_dir],
        on_event=before_run,
        on_report=lambda report: print_report(logger, report),
    )

    try:
        loop.run()
    except WatchError as e:
        logger.fatal(f"[red]{e}[/red]")
        raise typer.Exit(EXIT_WATCH_ERROR)
    except KeyboardInterrupt:
        loop.stop()
        logger.info("[dim]Stopped watching[/dim]")
        raise typer.Exit(EXIT_INTERRUPTED)
