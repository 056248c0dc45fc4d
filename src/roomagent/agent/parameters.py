"""Per-agent runtime parameters."""

from __future__ import annotations

import socket
from dataclasses import dataclass
from enum import IntFlag
from typing import TYPE_CHECKING

from roomagent.logging import get_logger

if TYPE_CHECKING:
    from roomagent.config.schema import AgentConfig, LLMConfig

log = get_logger("agent.parameters")

MIN_WAKE_UP_TIMER_SECONDS = 60
MAX_WAKE_UP_TIMER_SECONDS = 10800


class AgentFlags(IntFlag):
    """Tool-call discipline switches."""

    NONE = 0
    PREVENT_PARALLEL_FUNCTION_CALLS = 1
    PREVENT_FUNCTION_CALLS_WITHOUT_THOUGHTS = 2


@dataclass
class AgentParameters:
    """Identity, prompts and limits for one agent.

    Only wake_up_timer_seconds is changed at runtime (by the agent itself
    through set_agent_parameters).
    """

    name: str
    user_id: str
    model: str
    persona: str = ""
    system_prompt: str = ""
    post_prompt: str | None = None
    scratch_pad_file: str | None = None
    guide_file: str | None = None
    agent_flags: AgentFlags = AgentFlags.NONE
    temperature: float = 0.7
    approx_context_chars_max: int = 200000
    max_function_call_iterations: int = 10
    wake_up_timer_seconds: int = 1800
    reload_memory: bool = False
    admin_user_id: str = ""
    thoughts_room_id: str | None = None
    running_on: str = ""
    system_id: str | None = None  # Defaults to the chat client's

    @classmethod
    def from_config(cls, agent: AgentConfig, llm: LLMConfig | None = None) -> AgentParameters:
        model = agent.model or (llm.model if llm else None)
        if not model:
            raise ValueError(f"No model configured for agent {agent.name}")
        return cls(
            name=agent.name,
            user_id=agent.user_id,
            model=model,
            persona=agent.persona or "",
            system_prompt=agent.system_prompt,
            post_prompt=agent.post_prompt,
            scratch_pad_file=agent.scratch_pad_file,
            guide_file=agent.guide_file,
            agent_flags=AgentFlags(agent.agent_flags),
            temperature=agent.temperature,
            approx_context_chars_max=agent.approx_context_chars_max,
            max_function_call_iterations=agent.max_function_call_iterations,
            wake_up_timer_seconds=agent.wake_up_timer_seconds,
            reload_memory=agent.reload_memory,
            admin_user_id=agent.admin_user_id or "",
            thoughts_room_id=agent.thoughts_room_id,
            running_on=agent.running_on or socket.gethostname(),
        )

    @property
    def prevent_parallel_function_calls(self) -> bool:
        return AgentFlags.PREVENT_PARALLEL_FUNCTION_CALLS in self.agent_flags

    @property
    def prevent_function_calls_without_thoughts(self) -> bool:
        return AgentFlags.PREVENT_FUNCTION_CALLS_WITHOUT_THOUGHTS in self.agent_flags

    def set_wake_up_timer(self, seconds: int) -> int:
        """Clamp to [60, 10800] seconds and store. Returns the stored value."""
        seconds = min(max(MIN_WAKE_UP_TIMER_SECONDS, seconds), MAX_WAKE_UP_TIMER_SECONDS)
        self.wake_up_timer_seconds = seconds
        log.info("Agent wake timer set to %d", seconds)
        return seconds
