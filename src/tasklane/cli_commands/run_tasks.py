"""Run command implementation."""

from __future__ import annotations

from typing import Optional

import typer

from tasklane.cache import CacheStore
from tasklane.cli_commands import (
    EXIT_INTERRUPTED,
    check_targets,
    get_action_failure_string,
    get_action_success_string,
    get_graph,
    get_recipe,
)
from tasklane.executor import ExecutionOptions, Executor, RunReport, TaskState
from tasklane.graph import ExecutionPlan, TaskGraph
from tasklane.logging import Logger
from tasklane.parser import Recipe
from tasklane.process_runner import TaskOutputTypes, make_process_runner


def make_executor(logger: Logger, recipe: Recipe, task_output: TaskOutputTypes) -> Executor:
    """
    Build an executor wired to the recipe's cache and global environment.
    """
    cache = CacheStore(recipe.cache_dir, logger) if recipe.settings.cache else None
    return Executor(
        recipe.project_root,
        logger,
        cache=cache,
        process_runner=make_process_runner(task_output, logger),
        global_env=recipe.env,
    )


def make_options(recipe: Recipe, parallelism: Optional[int] = None, force: bool = False, dry_run: bool = False) -> ExecutionOptions:
    return ExecutionOptions(
        parallelism=recipe.settings.parallelism if parallelism is None else parallelism,
        force=force,
        dry_run=dry_run,
        shell=recipe.settings.shell,
    )


def run_tasks(
    logger: Logger,
    targets: list[str],
    tasks_file: Optional[str] = None,
    dry_run: bool = False,
    force: bool = False,
    parallelism: Optional[int] = None,
    task_output: TaskOutputTypes = TaskOutputTypes.ALL,
) -> None:
    """
    Run tasks and their dependencies, exiting non-zero if the run failed.
    """
    recipe = get_recipe(logger, tasks_file)
    graph = get_graph(logger, recipe)
    check_targets(logger, graph, targets)

    executor = make_executor(logger, recipe, task_output)
    options = make_options(recipe, parallelism, force, dry_run)

    if dry_run:
        print_plan(logger, graph, executor.plan(graph, targets))
        return

    try:
        report = executor.run(graph, targets, options)
    except KeyboardInterrupt:
        logger.error(f"[red]{get_action_failure_string()} Interrupted[/red]")
        raise typer.Exit(EXIT_INTERRUPTED)

    print_report(logger, report)
    if not report.succeeded:
        raise typer.Exit(report.exit_code)


def print_plan(logger: Logger, graph: TaskGraph, plan: ExecutionPlan) -> None:
    """
    Show what would be executed, stage by stage.
    """
    logger.info(f"[bold]Execution plan for {', '.join(plan.targets)}:[/bold]")
    step = 0
    for index, stage in enumerate(plan.stages, 1):
        logger.info(f"[dim]stage {index}[/dim]")
        for name in stage:
            step += 1
            task = graph.tasks[name]
            if task.script is not None:
                what = "[dim](script)[/dim]"
            elif task.is_aggregate:
                what = "[dim](dependencies only)[/dim]"
            else:
                mode = "parallel" if task.parallel and len(task.run) > 1 else "sequential"
                what = f"[dim]({len(task.run)} command(s), {mode})[/dim]"
            logger.info(f"  {step}. [cyan]{name}[/cyan] {what}")


def print_report(logger: Logger, report: RunReport) -> None:
    """
    Summarise a run: one line of counts plus the reason for every failure.
    """
    for name, result in report.results.items():
        if result.state is TaskState.FAILED:
            allowed = " [dim](allowed)[/dim]" if result.tolerated else ""
            reason = result.reason.value if result.reason else "failed"
            logger.error(f"[red]{get_action_failure_string()} {name}[/red]{allowed} [dim]{reason}[/dim]")
        elif result.state is TaskState.SKIPPED:
            logger.warn(f"[yellow]- {name} skipped ({result.message})[/yellow]")

    counts = report.counts()
    summary = (
        f"{counts['succeeded']} succeeded ({counts['cached']} cached), "
        f"{counts['failed']} failed, {counts['skipped']} skipped "
        f"in {report.duration:.2f}s"
    )
    if report.succeeded:
        logger.info(f"[green]{get_action_success_string()} {summary}[/green]")
    else:
        logger.error(f"[red]{get_action_failure_string()} {summary}[/red]")
