"""Configuration file loading and caching.

Handles:
- YAML file parsing
- Deep merging of system, user and project layers
- Environment variable overrides
- Conversion from dict to typed Config dataclass
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable
from dataclasses import fields
from pathlib import Path
from typing import Any, TypeVar

import yaml

from roomagent.config.paths import get_config_paths
from roomagent.config.schema import (
    AgentConfig,
    BackgroundConfig,
    Config,
    LLMConfig,
    LoggingConfig,
    StorageConfig,
    WebConfig,
    WindowConfig,
)

# Module logger (may not be configured yet at import time)
_log = logging.getLogger("roomagent.config")

_cached_config: Config | None = None

_reload_callbacks: list[Callable[[Config], None]] = []

_T = TypeVar("_T")


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML file, returning empty dict if not found or invalid."""
    if not path.exists():
        return {}

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        _log.warning("Invalid YAML in %s: %s", path, e)
        return {}
    except OSError as e:
        _log.warning("Error reading %s: %s", path, e)
        return {}
    return data if isinstance(data, dict) else {}


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Merge override into a copy of base.

    Nested dicts merge recursively, lists and scalars replace, and a None
    in override leaves the base value alone so partial layers stay partial.
    """
    merged = dict(base)
    for key, value in override.items():
        if value is None:
            continue
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = deep_merge(current, value)
        else:
            merged[key] = value
    return merged


def env_overrides() -> dict[str, Any]:
    """Config values taken from ROOMAGENT_* environment variables.

    API keys are not read here; see fetch_secret().
    """
    overrides: dict[str, Any] = {}

    log_path = os.environ.get("ROOMAGENT_LOG")
    if log_path:
        overrides.setdefault("logging", {})["file"] = log_path

    model = os.environ.get("ROOMAGENT_MODEL")
    if model:
        overrides.setdefault("llm", {})["model"] = model

    return overrides


def _section(cls: type[_T], data: Any) -> _T:
    """Build a dataclass from a dict, ignoring unknown keys."""
    if not isinstance(data, dict):
        return cls()
    known = {f.name for f in fields(cls)}  # type: ignore[arg-type]
    return cls(**{k: v for k, v in data.items() if k in known})


def dict_to_config(data: dict[str, Any]) -> Config:
    """Convert merged dict to typed Config dataclass."""
    agents: list[AgentConfig] = []
    for entry in data.get("agents") or []:
        if not isinstance(entry, dict) or not entry.get("name") or not entry.get("user_id"):
            _log.warning("Skipping agent entry without name/user_id: %r", entry)
            continue
        agents.append(_section(AgentConfig, entry))

    storage_data = data.get("storage") or {}
    storage = StorageConfig(
        data_dir=storage_data.get("data_dir"),
        shares={str(k): str(v) for k, v in (storage_data.get("shares") or {}).items()},
    )

    known_keys = {"llm", "logging", "windows", "background", "storage", "web", "agents"}
    extra = {k: v for k, v in data.items() if k not in known_keys}

    return Config(
        llm=_section(LLMConfig, data.get("llm")),
        logging=_section(LoggingConfig, data.get("logging")),
        windows=_section(WindowConfig, data.get("windows")),
        background=_section(BackgroundConfig, data.get("background")),
        storage=storage,
        web=_section(WebConfig, data.get("web")),
        agents=agents,
        extra=extra,
    )


def load_config(
    project_root: str | None = None,
    *,
    config_file: Path | None = None,
    reload: bool = False,
) -> Config:
    """Load and merge config from all sources.

    Priority order (highest to lowest):
    1. Environment variables
    2. Explicit config_file (e.g. --config on the command line)
    3. Project config (<project_root>/.roomagent/config.yaml)
    4. User config
    5. System config

    Only the plain global config (no project_root, no config_file) is cached.
    """
    global _cached_config

    cacheable = project_root is None and config_file is None
    if cacheable and _cached_config is not None and not reload:
        return _cached_config

    merged: dict[str, Any] = {}
    paths = get_config_paths(project_root)
    if config_file is not None:
        paths.append(config_file)
    for path in paths:
        layer = load_yaml_file(path)
        if layer:
            _log.debug("Loaded config from %s", path)
            merged = deep_merge(merged, layer)

    merged = deep_merge(merged, env_overrides())
    config = dict_to_config(merged)

    if cacheable:
        _cached_config = config
    return config


def get_config() -> Config:
    """Get the cached global config, loading it on first use."""
    if _cached_config is None:
        return load_config()
    return _cached_config


def reset_config() -> None:
    """Forget the cached config (used by tests)."""
    global _cached_config
    _cached_config = None


def reload_config(project_root: str | None = None) -> Config:
    """Reload config from files and notify callbacks."""
    config = load_config(project_root, reload=True)
    for callback in list(_reload_callbacks):
        try:
            callback(config)
        except Exception as e:
            _log.warning("Config reload callback error: %s", e)
    return config


def on_config_reload(callback: Callable[[Config], None]) -> Callable[[], None]:
    """Register a reload callback; returns a function that unregisters it."""
    _reload_callbacks.append(callback)

    def unregister() -> None:
        if callback in _reload_callbacks:
            _reload_callbacks.remove(callback)

    return unregister
