"""
Machine and user level configuration files providing default settings.
"""

from __future__ import annotations

from dataclasses import replace
from pathlib import Path
from typing import Any, Optional

import platformdirs
import yaml

from tasklane.model import SETTINGS_FIELDS, Settings

__all__ = [
    "get_user_config_path",
    "get_machine_config_path",
    "parse_config_file",
    "validate_settings",
    "apply_settings",
    "load_default_settings",
    "ConfigError",
]


class ConfigError(Exception):
    """
    Raised when a configuration file is invalid.
    """

    pass


def get_machine_config_path() -> Path:
    """
    Get the path to the machine-level (system-wide) configuration file.

    Uses platformdirs to determine the appropriate site config directory
    for the current platform, then appends 'tasklane/config.yml'.

    Returns:
        Path to the machine config file (may not exist)
    """
    config_dir = Path(platformdirs.site_config_dir("tasklane"))
    return config_dir / "config.yml"


def get_user_config_path() -> Path:
    """
    Get the path to the user-level configuration file.

    Returns:
        Path to the user config file (may not exist)
    """
    config_dir: Path = Path(platformdirs.user_config_dir("tasklane"))
    return config_dir / "config.yml"


def validate_settings(data: Any, source: str) -> dict[str, Any]:
    """
    Validate a raw `settings` mapping.

    Args:
        data: Value found under the `settings` key
        source: Description of where the value came from, for error messages

    Returns:
        The validated mapping (only known keys, correctly typed)

    Raises:
        ConfigError: On unknown keys or wrongly typed values
    """
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Error in {source}: 'settings' must be a dictionary")

    for key, value in data.items():
        expected = SETTINGS_FIELDS.get(key)
        if expected is None:
            valid = ", ".join(sorted(SETTINGS_FIELDS))
            raise ConfigError(
                f"Error in {source}: Unknown setting '{key}' (valid settings: {valid})"
            )
        # bool is a subclass of int, so reject it explicitly for int fields
        if expected is int and (isinstance(value, bool) or not isinstance(value, int)):
            raise ConfigError(f"Error in {source}: Setting '{key}' must be an integer")
        if expected is not int and not isinstance(value, expected):
            raise ConfigError(
                f"Error in {source}: Setting '{key}' must be a {expected.__name__}"
            )
        if expected is int and value < 0:
            raise ConfigError(f"Error in {source}: Setting '{key}' must not be negative")

    return dict(data)


def apply_settings(base: Settings, overrides: dict[str, Any]) -> Settings:
    """Return a copy of `base` with validated overrides applied."""
    return replace(base, **overrides)


def parse_config_file(path: Path) -> dict[str, Any]:
    """
    Parse a tasklane configuration file and return its settings overrides.

    Config files may only contain a `settings` mapping. Empty files or files
    that do not exist are valid and yield no overrides.

    Raises:
        ConfigError: If the config file is invalid (malformed YAML, unknown keys, etc.)

    Example:
        ~/.config/tasklane/config.yml:
            ```yaml
            settings:
              parallelism: 4
              watch_debounce_ms: 500
            ```
    """
    if not path.exists():
        return {}

    try:
        with open(path, "r") as f:
            content = f.read()
    except (IOError, OSError) as e:
        raise ConfigError(f"Error reading config file '{path}': {e}") from e

    if not content.strip():
        return {}

    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ConfigError(f"Error parsing YAML in config file '{path}': {e}") from e

    if data is None:
        return {}

    if not isinstance(data, dict):
        raise ConfigError(f"Error in config file '{path}': top level must be a dictionary")

    unknown = [key for key in data if key != "settings"]
    if unknown:
        raise ConfigError(
            f"Error in config file '{path}': Config files may only contain 'settings', "
            f"but found: {', '.join(str(k) for k in unknown)}"
        )

    return validate_settings(data.get("settings"), f"config file '{path}'")


def load_default_settings(
    machine_config: Optional[Path] = None, user_config: Optional[Path] = None
) -> Settings:
    """
    Build default settings from the machine config overlaid with the user config.
    """
    settings = Settings()
    for path in (
        machine_config or get_machine_config_path(),
        user_config or get_user_config_path(),
    ):
        settings = apply_settings(settings, parse_config_file(path))
    return settings
