"""Command-line interface for tasklane."""

from __future__ import annotations

from typing import List, Optional

import typer
from rich.console import Console

from tasklane import __version__
from tasklane.cli_commands.check_recipe import check_recipe
from tasklane.cli_commands.clean_cache import cache_path, cache_stats, clear_cache
from tasklane.cli_commands.init_recipe import init_recipe
from tasklane.cli_commands.list_tasks import ListFormat, list_tasks
from tasklane.cli_commands.run_tasks import run_tasks
from tasklane.cli_commands.show_graph import GraphFormat, show_graph
from tasklane.cli_commands.watch_task import watch_task
from tasklane.console_logger import ConsoleLogger
from tasklane.logging import Logger, LogLevel, parse_log_level
from tasklane.process_runner import TaskOutputTypes

app = typer.Typer(
    help="tasklane - a task runner with dependency graphs, content caching and watch mode",
    add_completion=False,
    no_args_is_help=True,
)
cache_app = typer.Typer(help="Inspect and manage the task cache", no_args_is_help=True)
app.add_typer(cache_app, name="cache")


class CliState:
    """Global options shared by every subcommand."""

    def __init__(self, console: Console, logger: Logger, tasks_file: Optional[str]):
        self.console = console
        self.logger = logger
        self.tasks_file = tasks_file


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"tasklane version {__version__}")
        raise typer.Exit()


def _parse_log_level_option(value: str) -> LogLevel:
    try:
        return parse_log_level(value)
    except ValueError as e:
        raise typer.BadParameter(str(e)) from None


def _parse_task_output(value: str) -> TaskOutputTypes:
    try:
        return TaskOutputTypes(value.lower())
    except ValueError:
        valid = ", ".join(t.value for t in TaskOutputTypes)
        raise typer.BadParameter(f"Invalid task output '{value}'. Valid values: {valid}") from None


@app.callback()
def main_callback(
    ctx: typer.Context,
    tasks_file: Optional[str] = typer.Option(
        None, "--file", "-f", help="Recipe file (default: search upwards for tasklane.yaml)"
    ),
    log_level: str = typer.Option(
        "info", "--log-level", "-L", help="Log verbosity: fatal, error, warn, info, debug, trace"
    ),
    version: Optional[bool] = typer.Option(
        None, "--version", "-v", callback=_version_callback, is_eager=True, help="Show version and exit"
    ),
):
    console = Console()
    logger = ConsoleLogger(console, _parse_log_level_option(log_level))
    ctx.obj = CliState(console, logger, tasks_file)


@app.command("run")
def run_command(
    ctx: typer.Context,
    tasks: List[str] = typer.Argument(..., help="Tasks to run"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show the execution plan without running"),
    force: bool = typer.Option(False, "--force", help="Ignore cached results"),
    parallel: Optional[int] = typer.Option(
        None, "--parallel", "-j", min=0, help="Maximum concurrent tasks (0 = one per CPU)"
    ),
    task_output: str = typer.Option(
        "all", "--task-output", help="Task output handling: all, none, capture"
    ),
):
    """Run tasks and their dependencies."""
    state: CliState = ctx.obj
    run_tasks(
        state.logger,
        tasks,
        state.tasks_file,
        dry_run=dry_run,
        force=force,
        parallelism=parallel,
        task_output=_parse_task_output(task_output),
    )


@app.command("list")
def list_command(
    ctx: typer.Context,
    deps: bool = typer.Option(False, "--deps", help="Show dependencies"),
    output_format: ListFormat = typer.Option(ListFormat.TEXT, "--format", help="Output format"),
):
    """List all tasks."""
    state: CliState = ctx.obj
    list_tasks(state.logger, state.tasks_file, show_deps=deps, output_format=output_format)


@app.command("graph")
def graph_command(
    ctx: typer.Context,
    task: Optional[str] = typer.Argument(None, help="Only show this task and its dependencies"),
    output_format: GraphFormat = typer.Option(GraphFormat.TEXT, "--format", help="Output format"),
):
    """Render the dependency graph."""
    state: CliState = ctx.obj
    show_graph(state.logger, task, state.tasks_file, output_format=output_format)


@app.command("watch")
def watch_command(
    ctx: typer.Context,
    tasks: List[str] = typer.Argument(..., help="Tasks to re-run on change"),
    clear: bool = typer.Option(False, "--clear", help="Clear the screen before each run"),
    parallel: Optional[int] = typer.Option(
        None, "--parallel", "-j", min=0, help="Maximum concurrent tasks (0 = one per CPU)"
    ),
    task_output: str = typer.Option(
        "all", "--task-output", help="Task output handling: all, none, capture"
    ),
):
    """Watch files and re-run tasks when they change."""
    state: CliState = ctx.obj
    watch_task(
        state.logger,
        state.console,
        tasks,
        state.tasks_file,
        clear=clear,
        parallelism=parallel,
        task_output=_parse_task_output(task_output),
    )


@app.command("check")
def check_command(ctx: typer.Context):
    """Validate the recipe and dependency graph."""
    state: CliState = ctx.obj
    check_recipe(state.logger, state.tasks_file)


@app.command("init")
def init_command(
    ctx: typer.Context,
    force: bool = typer.Option(False, "--force", help="Overwrite an existing recipe"),
):
    """Create a starter tasklane.yaml."""
    state: CliState = ctx.obj
    init_recipe(state.logger, force=force)


@cache_app.command("clear")
def cache_clear_command(
    ctx: typer.Context,
    task: Optional[str] = typer.Option(None, "--task", help="Only clear entries for this task"),
):
    """Remove cached results."""
    state: CliState = ctx.obj
    clear_cache(state.logger, state.tasks_file, task_name=task)


@cache_app.command("stats")
def cache_stats_command(ctx: typer.Context):
    """Show cache size."""
    state: CliState = ctx.obj
    cache_stats(state.logger, state.tasks_file)


@cache_app.command("path")
def cache_path_command(ctx: typer.Context):
    """Show the cache directory."""
    state: CliState = ctx.obj
    cache_path(state.logger, state.tasks_file)


def main():
    """Console script entry point."""
    app()


if __name__ == "__main__":
    main()
