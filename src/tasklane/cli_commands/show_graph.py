from __future__ import annotations

import json
from enum import Enum
from typing import Optional

from rich.tree import Tree

from tasklane.cli_commands import check_targets, get_graph, get_recipe
from tasklane.graph import TaskGraph, build_dependency_tree
from tasklane.logging import Logger


class GraphFormat(str, Enum):
    TEXT = "text"
    DOT = "dot"
    JSON = "json"


def show_graph(
    logger: Logger,
    task_name: Optional[str] = None,
    tasks_file: Optional[str] = None,
    output_format: GraphFormat = GraphFormat.TEXT,
):
    """
    Show the dependency graph, optionally restricted to one task's closure.
    """
    recipe = get_recipe(logger, tasks_file)
    graph = get_graph(logger, recipe)
    if task_name is not None:
        check_targets(logger, graph, [task_name])
        names = graph.execution_order([task_name])
    else:
        names = graph.all_tasks_ordered()

    if output_format is GraphFormat.DOT:
        logger.info(render_dot(graph, names), markup=False, highlight=False, soft_wrap=True)
    elif output_format is GraphFormat.JSON:
        logger.info(render_json(graph, names), markup=False, highlight=False, soft_wrap=True)
    else:
        roots = [task_name] if task_name is not None else _roots(graph)
        for root in roots:
            logger.info(_build_rich_tree(build_dependency_tree(graph, root)))


def _roots(graph: TaskGraph) -> list[str]:
    """Tasks nothing depends on."""
    return [name for name in graph.task_names() if not graph.dependents(name)]


def render_dot(graph: TaskGraph, names: list[str]) -> str:
    lines = ["digraph tasks {", "    rankdir=LR;"]
    for name in names:
        lines.append(f"    {json.dumps(name)};")
    for name in names:
        for dep in graph.dependencies(name):
            lines.append(f"    {json.dumps(name)} -> {json.dumps(dep)};")
    lines.append("}")
    return "\n".join(lines)


def render_json(graph: TaskGraph, names: list[str]) -> str:
    payload = {
        "order": names,
        "tasks": {name: {"depends": graph.dependencies(name)} for name in names},
    }
    return json.dumps(payload, indent=2)


def _build_rich_tree(dep_tree: dict) -> Tree:
    """
    Build a Rich Tree visualization from a dependency tree structure.

    Args:
        dep_tree: Nested dictionary representing task dependencies

    Returns:
        Rich Tree object for terminal display
    """
    tree = Tree(f"[cyan]{dep_tree['name']}[/cyan]")
    for dep in dep_tree.get("deps", []):
        tree.add(_build_rich_tree(dep))
    return tree
