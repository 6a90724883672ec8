"""Dependency graph construction, validation and execution planning."""

from __future__ import annotations

from dataclasses import dataclass, field
from graphlib import TopologicalSorter
from types import MappingProxyType
from typing import Iterable, Mapping

from tasklane.model import Task


class GraphError(Exception):
    """Base class for errors detected while validating the task graph."""

    pass


class UnknownDependency(GraphError):
    """Raised when a task depends on a task that doesn't exist."""

    def __init__(self, task: str, dependency: str):
        self.task = task
        self.dependency = dependency
        super().__init__(f"Task '{task}' depends on unknown task '{dependency}'")


class CycleDetected(GraphError):
    """Raised when a dependency cycle is detected."""

    def __init__(self, cycle: list[str]):
        self.cycle = cycle
        chain = " → ".join(cycle + cycle[:1])
        super().__init__(f"Dependency cycle detected: {chain}")


class ConflictingExecutionMode(GraphError):
    """Raised when a task declares both `run` and `script`."""

    def __init__(self, task: str):
        self.task = task
        super().__init__(f"Task '{task}' cannot have both 'run' and 'script'")


class TaskNotFoundError(GraphError):
    """Raised when a requested task doesn't exist."""

    def __init__(self, name: str, available: Iterable[str] = ()):
        self.name = name
        self.available = sorted(available)
        super().__init__(f"Task not found: {name}")


@dataclass(frozen=True)
class ExecutionPlan:
    """Layered, topologically valid grouping of a dependency closure.

    Every task in a stage depends only on tasks in earlier stages, so tasks
    within one stage are mutually independent.
    """

    targets: tuple[str, ...]
    stages: tuple[tuple[str, ...], ...] = field(default_factory=tuple)

    @property
    def order(self) -> list[str]:
        """Flattened execution order (dependencies first)."""
        return [name for stage in self.stages for name in stage]

    def __len__(self) -> int:
        return sum(len(stage) for stage in self.stages)


class TaskGraph:
    """Validated, read-only dependency graph.

    An edge A → B means "A depends on B" (B must complete first).
    """

    def __init__(self, tasks: Mapping[str, Task]):
        self._tasks = MappingProxyType(dict(tasks))
        dependents: dict[str, list[str]] = {name: [] for name in self._tasks}
        for name in sorted(self._tasks):
            for dep in self._tasks[name].depends:
                dependents[dep].append(name)
        self._dependents = MappingProxyType(
            {name: tuple(children) for name, children in dependents.items()}
        )

    @property
    def tasks(self) -> Mapping[str, Task]:
        return self._tasks

    def __contains__(self, name: object) -> bool:
        return name in self._tasks

    def get_task(self, name: str) -> Task | None:
        return self._tasks.get(name)

    def task_names(self) -> list[str]:
        return sorted(self._tasks)

    def dependencies(self, name: str) -> list[str]:
        """Direct dependencies of a task, in declaration order."""
        return list(self._require(name).depends)

    def dependents(self, name: str) -> list[str]:
        """Tasks that directly depend on `name`."""
        self._require(name)
        return list(self._dependents[name])

    def closure(self, targets: Iterable[str]) -> set[str]:
        """Transitive dependency closure of `targets` (targets included).

        Raises:
            TaskNotFoundError: If a target doesn't exist
        """
        seen: set[str] = set()
        stack = [self._require(target).name for target in targets]
        while stack:
            name = stack.pop()
            if name in seen:
                continue
            seen.add(name)
            stack.extend(self._tasks[name].depends)
        return seen

    def sorter(self, targets: Iterable[str]) -> TopologicalSorter:
        """A TopologicalSorter over the closure of `targets`."""
        closure = self.closure(targets)
        return TopologicalSorter(
            {name: set(self._tasks[name].depends) for name in sorted(closure)}
        )

    def plan(self, targets: Iterable[str]) -> ExecutionPlan:
        """Compute a fresh ExecutionPlan for `targets`."""
        targets = tuple(targets)
        sorter = self.sorter(targets)
        sorter.prepare()
        stages = []
        while sorter.is_active():
            ready = tuple(sorted(sorter.get_ready()))
            stages.append(ready)
            sorter.done(*ready)
        return ExecutionPlan(targets=targets, stages=tuple(stages))

    def execution_order(self, targets: Iterable[str]) -> list[str]:
        """Tasks of the closure of `targets`, dependencies first."""
        return self.plan(targets).order

    def all_tasks_ordered(self) -> list[str]:
        return self.execution_order(self._tasks)

    def _require(self, name: str) -> Task:
        task = self._tasks.get(name)
        if task is None:
            raise TaskNotFoundError(name, self._tasks)
        return task


def build_graph(tasks: Mapping[str, Task]) -> TaskGraph:
    """Validate a task mapping and build its dependency graph.

    Args:
        tasks: Mapping of task name to Task

    Returns:
        An immutable TaskGraph

    Raises:
        ConflictingExecutionMode: If a task has both `run` and `script`
        UnknownDependency: If a `depends` entry names a missing task
        CycleDetected: If the `depends` relation contains a cycle
    """
    for name in sorted(tasks):
        task = tasks[name]
        if task.run and task.script is not None:
            raise ConflictingExecutionMode(name)
        for dep in task.depends:
            if dep not in tasks:
                raise UnknownDependency(name, dep)

    cycle = find_cycle(tasks)
    if cycle:
        raise CycleDetected(cycle)

    return TaskGraph(tasks)


_UNVISITED, _IN_PROGRESS, _DONE = 0, 1, 2


def find_cycle(tasks: Mapping[str, Task]) -> list[str] | None:
    """Return the members of the first cycle found, or None.

    Depth-first traversal with an in-progress marker per node; a back-edge to
    an in-progress node closes a cycle. Members are reported in the order the
    traversal discovered them.
    """
    marks = {name: _UNVISITED for name in tasks}
    path: list[str] = []

    for root in sorted(tasks):
        if marks[root] != _UNVISITED:
            continue
        # Iterative DFS: stack of (node, iterator over its dependencies)
        marks[root] = _IN_PROGRESS
        path.append(root)
        stack = [(root, iter(tasks[root].depends))]
        while stack:
            node, deps = stack[-1]
            for dep in deps:
                if dep not in marks:
                    continue
                if marks[dep] == _IN_PROGRESS:
                    return path[path.index(dep):]
                if marks[dep] == _UNVISITED:
                    marks[dep] = _IN_PROGRESS
                    path.append(dep)
                    stack.append((dep, iter(tasks[dep].depends)))
                    break
            else:
                marks[node] = _DONE
                path.pop()
                stack.pop()

    return None


def build_dependency_tree(graph: TaskGraph, target_task: str) -> dict:
    """Build a tree structure representing dependencies for visualization.

    Returns:
        Nested dictionary {"name": ..., "deps": [...]} rooted at target_task
    """
    if target_task not in graph:
        raise TaskNotFoundError(target_task, graph.task_names())

    def build_tree(task_name: str) -> dict:
        return {
            "name": task_name,
            "deps": [build_tree(dep) for dep in graph.dependencies(task_name)],
        }

    return build_tree(target_task)
