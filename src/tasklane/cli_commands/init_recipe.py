"""Initialize a new tasklane recipe file."""

from __future__ import annotations

from pathlib import Path

import typer

from tasklane.cli_commands import EXIT_CONFIG_ERROR, get_action_success_string
from tasklane.logging import Logger

RECIPE_TEMPLATE = """# tasklane recipe

# Environment shared by every task (task `env` entries win)
env:
  RUST_LOG: info

# settings:
#   cache: true
#   parallelism: 0          # 0 = one slot per CPU
#   watch_debounce_ms: 300

tasks:
  build:
    desc: Compile the application
    sources: ["src/**/*.py"]
    outputs: [dist/]
    run:
      - python -m build

  lint:
    desc: Run the linters
    sources: ["src/**/*.py"]
    run: ruff check src

  test:
    desc: Run tests
    depends: [build]
    watch: ["src/**/*.py", "tests/**/*.py"]
    run: pytest

  ci:
    desc: Everything CI runs
    depends: [lint, test]

  # bump:
  #   desc: Bump the patch version
  #   script: |
  #     version = read_file("VERSION").strip()
  #     result = semver_bump(version, "patch")
  #     write_file("VERSION", result + "\\n")
"""


def init_recipe(logger: Logger, force: bool = False):
    """
    Create a starter recipe file in the current directory.
    """
    recipe_path = Path("tasklane.yaml")
    if recipe_path.exists() and not force:
        logger.error("[red]tasklane.yaml already exists (use --force to overwrite)[/red]")
        raise typer.Exit(EXIT_CONFIG_ERROR)

    recipe_path.write_text(RECIPE_TEMPLATE)
    logger.info(f"[green]{get_action_success_string()} Created {recipe_path}[/green]")
    logger.info("Edit the file to define your tasks")
