"""tasklane - task runner with dependency graphs, content caching and watch mode."""

__version__ = "0.1.0"

from tasklane.cache import CacheEntry, CacheStore
from tasklane.executor import ExecutionOptions, Executor, FailureReason, RunReport, TaskResult, TaskState
from tasklane.graph import (
    ConflictingExecutionMode,
    CycleDetected,
    ExecutionPlan,
    GraphError,
    TaskGraph,
    TaskNotFoundError,
    UnknownDependency,
    build_dependency_tree,
    build_graph,
)
from tasklane.hasher import FingerprintError, SourceUnreadable, SourceVanished, compute_fingerprint
from tasklane.model import Settings, Task
from tasklane.parser import Recipe, RecipeError, find_recipe_file, parse_recipe

__all__ = [
    "__version__",
    "CacheEntry",
    "CacheStore",
    "ConflictingExecutionMode",
    "CycleDetected",
    "ExecutionOptions",
    "ExecutionPlan",
    "Executor",
    "FailureReason",
    "FingerprintError",
    "GraphError",
    "Recipe",
    "RecipeError",
    "RunReport",
    "Settings",
    "SourceUnreadable",
    "SourceVanished",
    "Task",
    "TaskGraph",
    "TaskNotFoundError",
    "TaskResult",
    "TaskState",
    "UnknownDependency",
    "build_dependency_tree",
    "build_graph",
    "compute_fingerprint",
    "find_recipe_file",
    "parse_recipe",
]
