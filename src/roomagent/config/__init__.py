"""Configuration management for roomagent.

Hierarchical YAML configuration with:
- System-level config (/etc/roomagent/ or %PROGRAMDATA%)
- User-level config (~/.config/roomagent/ or ~/.roomagent/)
- Project-level config (<project>/.roomagent/)
- Environment variable overrides (highest priority)

Example usage:
    from roomagent.config import load_config

    config = load_config(project_root="/path/to/project")
    print(config.llm.model)
    for agent in config.agents:
        print(agent.name, agent.user_id)
"""

from roomagent.config.loader import (
    deep_merge,
    get_config,
    load_config,
    on_config_reload,
    reload_config,
    reset_config,
)
from roomagent.config.paths import get_config_paths, get_default_data_dir
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
from roomagent.config.secrets import clear_secret_cache, fetch_secret

__all__ = [
    "Config",
    "load_config",
    "get_config",
    "reload_config",
    "reset_config",
    "on_config_reload",
    "deep_merge",
    "AgentConfig",
    "BackgroundConfig",
    "LLMConfig",
    "LoggingConfig",
    "StorageConfig",
    "WebConfig",
    "WindowConfig",
    "fetch_secret",
    "clear_secret_cache",
    "get_config_paths",
    "get_default_data_dir",
]
