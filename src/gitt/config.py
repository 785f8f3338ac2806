"""Configuration management for gitt.

Handles loading and saving user configuration from config.toml.
Uses caching for fast repeated access.
"""

from __future__ import annotations

import copy
import tomllib
from pathlib import Path
from typing import Any

from .core import CONFIG_DIR

CONFIG_FILE = CONFIG_DIR / "config.toml"

# Default configuration values
DEFAULTS: dict[str, Any] = {
    "network": {
        "timeout": 30,  # Seconds before a stalled transfer is abandoned
    },
    "startup": {
        "auto_recover": True,  # Resume interrupted clones, release busy repos
    },
    "display": {
        "show_progress": True,  # Show progress bars
        "verbose": False,  # Debug logging
    },
    "history": {
        "limit": 50,  # Commits shown by 'gitt log'
    },
    "messages": {},  # Overrides for user-facing error messages, by key
}


def _deep_merge(base: dict, override: dict) -> dict:
    """Deep merge two dictionaries, with override taking precedence."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _get_config_mtime(config_file: Path) -> float | None:
    """Get config file modification time for cache invalidation."""
    try:
        return config_file.stat().st_mtime if config_file.exists() else None
    except OSError:
        return None


_cached_config: dict[str, Any] | None = None
_cached_key: tuple[Path, float | None] | None = None


def load_config(config_file: Path = CONFIG_FILE) -> dict[str, Any]:
    """Load configuration from config.toml, merged with defaults.

    Uses caching - config is only re-read if the file has been modified.
    """
    global _cached_config, _cached_key

    cache_key = (config_file, _get_config_mtime(config_file))
    if _cached_config is not None and _cached_key == cache_key:
        return _cached_config

    config = copy.deepcopy(DEFAULTS)

    if config_file.exists():
        try:
            with open(config_file, "rb") as f:
                user_config = tomllib.load(f)
            config = _deep_merge(config, user_config)
        except (tomllib.TOMLDecodeError, OSError):
            # If config file is malformed, use defaults
            pass

    _cached_config = config
    _cached_key = cache_key

    return config


def invalidate_config_cache() -> None:
    """Invalidate the config cache (call after saving config)."""
    global _cached_config, _cached_key
    _cached_config = None
    _cached_key = None


def save_config(config: dict[str, Any], config_file: Path = CONFIG_FILE) -> bool:
    """Save configuration to config.toml."""
    import tomlkit

    try:
        config_file.parent.mkdir(parents=True, exist_ok=True)

        doc = tomlkit.document()
        doc.add(tomlkit.comment("gitt configuration file"))
        doc.add(tomlkit.nl())

        for section, values in config.items():
            if isinstance(values, dict):
                table = tomlkit.table()
                for key, value in values.items():
                    table.add(key, value)
                doc.add(section, table)
            else:
                doc.add(section, values)

        with open(config_file, "w", encoding="utf-8") as f:
            f.write(tomlkit.dumps(doc))

        invalidate_config_cache()

        return True
    except OSError:
        return False


def get_config_value(key_path: str, default: Any = None, config_file: Path | None = None) -> Any:
    """Get a specific config value by dot-separated path.

    Example: get_config_value("network.timeout", 30)
    """
    value: Any = load_config(config_file or CONFIG_FILE)
    for key in key_path.split("."):
        if isinstance(value, dict) and key in value:
            value = value[key]
        else:
            return default

    return value


def init_config(config_file: Path = CONFIG_FILE) -> Path:
    """Initialize config file with defaults if it doesn't exist.

    Returns path to config file.
    """
    if not config_file.exists():
        save_config(DEFAULTS, config_file)
    return config_file


def get_network_timeout() -> int:
    """Seconds a transfer may stall before git gives up."""
    return get_config_value("network.timeout", DEFAULTS["network"]["timeout"])


def should_auto_recover() -> bool:
    """Check if startup recovery is enabled."""
    return get_config_value("startup.auto_recover", DEFAULTS["startup"]["auto_recover"])


def should_show_progress() -> bool:
    return get_config_value("display.show_progress", DEFAULTS["display"]["show_progress"])


def is_verbose() -> bool:
    """Check if verbose mode is enabled."""
    return get_config_value("display.verbose", DEFAULTS["display"]["verbose"])


def get_history_limit() -> int:
    return get_config_value("history.limit", DEFAULTS["history"]["limit"])


def get_message_overrides() -> dict[str, str]:
    return get_config_value("messages", {}) or {}
