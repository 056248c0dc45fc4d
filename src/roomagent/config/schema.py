"""Configuration schema dataclasses for roomagent.

Defines the structure of configuration at all levels (system, user, project).
All fields are optional to support partial configs that merge together.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class LLMConfig:
    """Completion service configuration."""

    model: str | None = None  # e.g., "anthropic/claude-sonnet-4-20250514"
    api_base: str | None = None  # Custom endpoint
    max_tokens: int | None = None  # Default: 4096
    embedding_model: str | None = None  # Default: "text-embedding-3-small"
    wake_check_model: str | None = None  # Enables the background wake checker


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str | None = None  # DEBUG, INFO, WARNING, ERROR
    verbose: int | None = None  # 0..4, overrides level
    file: str | None = None  # Log file path


@dataclass
class WindowConfig:
    """Defaults for windows opened by tools.

    Example config.yaml:
        windows:
          max_lines: 80
          scroll_size: 40
    """

    max_lines: int = 60
    scroll_size: int = 20
    auto_close_turns: int = 2
    refresh_timeout: float = 30.0  # Seconds before a refresh counts as failed


@dataclass
class BackgroundConfig:
    """Bounded background queue for persistence and indexing."""

    max_pending: int = 256
    workers: int = 2


@dataclass
class StorageConfig:
    """Durable storage locations.

    Example config.yaml:
        storage:
          data_dir: ~/.roomagent/data
          shares:
            notes: ~/agent-notes
            system: /srv/roomagent/system
    """

    data_dir: str | None = None  # Journal location; default ~/.roomagent/data
    shares: dict[str, str] = field(default_factory=dict)  # share name -> directory


@dataclass
class WebConfig:
    """Web fetcher and search settings."""

    timeout: float = 30.0
    user_agent: str = "roomagent/0.1"
    search_engine_id: str | None = None  # Google Custom Search engine (cx); key comes from GOOGLE_API_KEY


@dataclass
class AgentConfig:
    """One agent definition. Mirrors roomagent.agent.parameters.AgentParameters."""

    name: str
    user_id: str
    model: str | None = None
    persona: str | None = None
    system_prompt: str = ""
    post_prompt: str | None = None
    scratch_pad_file: str | None = None
    agent_flags: int = 0
    temperature: float = 0.7
    approx_context_chars_max: int = 200000
    max_function_call_iterations: int = 10
    wake_up_timer_seconds: int = 1800
    reload_memory: bool = False
    admin_user_id: str | None = None
    guide_file: str | None = None  # Locator of the static agent guide
    thoughts_room_id: str | None = None  # Room that mirrors thoughts and tool results
    running_on: str | None = None  # Host label shown to the model


@dataclass
class Config:
    """Root configuration object.

    Aggregates all configuration sections. All fields use default factories
    to ensure partial configs work correctly with deep merging.
    """

    llm: LLMConfig = field(default_factory=LLMConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    windows: WindowConfig = field(default_factory=WindowConfig)
    background: BackgroundConfig = field(default_factory=BackgroundConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    web: WebConfig = field(default_factory=WebConfig)
    agents: list[AgentConfig] = field(default_factory=list)

    # Extension point for future config sections
    extra: dict[str, Any] = field(default_factory=dict)

    def find_agent(self, name: str | None) -> AgentConfig | None:
        """Return the named agent, or the first one when name is None."""
        if not self.agents:
            return None
        if name is None:
            return self.agents[0]
        for agent in self.agents:
            if agent.name == name:
                return agent
        return None
