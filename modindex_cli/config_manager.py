"""Configuration manager for modindex using TOML files."""

from __future__ import annotations

import logging
from typing import Any, Dict

import toml

from .config import BASE_DIR

logger = logging.getLogger(__name__)

CONFIG_FILE = BASE_DIR / "config.toml"

# Settable keys and the type each value is coerced to
DEFAULT_CONFIG: Dict[str, Dict[str, Any]] = {
    "store": {
        "db_path": str(BASE_DIR / "index.db"),
    },
    "docs": {
        "goos": "linux",
        "goarch": "amd64",
    },
    "ingest": {
        "workers": 4,
        "timeout": 300.0,
    },
    "logging": {
        "level": "WARNING",
    },
}


def load_full_config() -> Dict[str, Any]:
    """Load the entire TOML config (all sections).

    Returns an empty dict when the file is missing or unreadable; callers
    fall back to their own defaults.
    """
    if not CONFIG_FILE.exists():
        return {}
    try:
        with open(CONFIG_FILE, "r", encoding="utf-8") as f:
            return toml.load(f)
    except (OSError, toml.TomlDecodeError) as exc:
        logger.warning("Ignoring unreadable config file %s: %s", CONFIG_FILE, exc)
        return {}


def _save_full_config(config: Dict[str, Any]) -> bool:
    """Write entire config dict to TOML file, preserving all sections."""
    CONFIG_FILE.parent.mkdir(parents=True, exist_ok=True)
    try:
        with open(CONFIG_FILE, "w", encoding="utf-8") as f:
            toml.dump(config, f)
        return True
    except OSError as exc:
        logger.warning("Could not write config file %s: %s", CONFIG_FILE, exc)
        return False


def effective_config() -> Dict[str, Dict[str, Any]]:
    """Defaults overlaid with whatever the config file sets."""
    merged = {section: dict(values) for section, values in DEFAULT_CONFIG.items()}
    for section, values in load_full_config().items():
        if isinstance(values, dict):
            merged.setdefault(section, {}).update(values)
    return merged


def set_value(dotted_key: str, raw_value: str) -> bool:
    """Set ``section.key`` to *raw_value*, coerced to the default's type.

    Raises:
        KeyError: if the key is not a known setting.
        ValueError: if the value cannot be coerced.
    """
    section, _, key = dotted_key.partition(".")
    if section not in DEFAULT_CONFIG or key not in DEFAULT_CONFIG[section]:
        raise KeyError(dotted_key)

    default = DEFAULT_CONFIG[section][key]
    value: Any = raw_value
    if isinstance(default, int):
        value = int(raw_value)
    elif isinstance(default, float):
        value = float(raw_value)

    config = load_full_config()
    config.setdefault(section, {})[key] = value
    return _save_full_config(config)
