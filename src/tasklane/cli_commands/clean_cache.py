"""Cache management command implementations."""

from __future__ import annotations

from typing import Optional

from tasklane.cache import CacheStore
from tasklane.cli_commands import check_targets, get_action_success_string, get_graph, get_recipe
from tasklane.logging import Logger
from tasklane.parser import Recipe


def _cache_store(logger: Logger, tasks_file: Optional[str]) -> tuple[CacheStore, Recipe]:
    recipe = get_recipe(logger, tasks_file)
    return CacheStore(recipe.cache_dir, logger), recipe


def clear_cache(logger: Logger, tasks_file: Optional[str] = None, task_name: Optional[str] = None) -> None:
    """
    Remove cached results, for one task or for all of them.
    """
    store, recipe = _cache_store(logger, tasks_file)
    if task_name is not None:
        check_targets(logger, get_graph(logger, recipe), [task_name])
        removed = store.invalidate_task(task_name)
        what = f"for '{task_name}'"
    else:
        removed = store.invalidate_all()
        what = f"from {store.cache_dir}"

    if removed:
        logger.info(f"[green]{get_action_success_string()} Removed {removed} cache entr{'y' if removed == 1 else 'ies'} {what}[/green]")
        logger.info("Affected tasks will run fresh on next execution")
    else:
        logger.info(f"[yellow]No cache entries {what}[/yellow]")


def cache_stats(logger: Logger, tasks_file: Optional[str] = None) -> None:
    """
    Show the number and total size of cache entries.
    """
    store, _ = _cache_store(logger, tasks_file)
    logger.info(str(store.stats()), markup=False, highlight=False)


def cache_path(logger: Logger, tasks_file: Optional[str] = None) -> None:
    """
    Print the cache directory.
    """
    store, _ = _cache_store(logger, tasks_file)
    logger.info(str(store.cache_dir), markup=False, highlight=False, soft_wrap=True)
