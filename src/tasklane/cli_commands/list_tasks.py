from __future__ import annotations

import json
from enum import Enum
from typing import Optional

from rich.table import Table

from tasklane.cli_commands import get_recipe
from tasklane.logging import Logger


class ListFormat(str, Enum):
    TEXT = "text"
    JSON = "json"
    PLAIN = "plain"


def list_tasks(
    logger: Logger,
    tasks_file: Optional[str] = None,
    show_deps: bool = False,
    output_format: ListFormat = ListFormat.TEXT,
):
    """
    List all available tasks with descriptions.
    """
    recipe = get_recipe(logger, tasks_file)
    names = sorted(recipe.task_names())

    if output_format is ListFormat.PLAIN:
        for name in names:
            logger.info(name, markup=False, highlight=False)
        return

    if output_format is ListFormat.JSON:
        payload = []
        for name in names:
            task = recipe.tasks[name]
            entry = {"name": name, "desc": task.desc}
            if show_deps:
                entry["depends"] = list(task.depends)
            payload.append(entry)
        logger.info(json.dumps(payload, indent=2), markup=False, highlight=False, soft_wrap=True)
        return

    max_task_name_len = max((len(name) for name in names), default=0)

    # Borderless table, one row per task
    table = Table(show_edge=False, show_header=False, box=None, padding=(0, 2))
    table.add_column("Task", style="bold cyan", no_wrap=True, width=max_task_name_len)
    if show_deps:
        table.add_column("Depends", style="dim", max_width=60)
    table.add_column("Description", style="white", max_width=80)

    for name in names:
        task = recipe.tasks[name]
        if show_deps:
            table.add_row(name, ", ".join(task.depends), task.desc)
        else:
            table.add_row(name, task.desc)

    logger.info(table)
