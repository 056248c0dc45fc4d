"""Agent orchestration: the wake loop, its tool table and the wake checker."""

from roomagent.agent.builtin_tools import BuiltinTools
from roomagent.agent.loop import (
    WAKE_NEW_EVENT,
    WAKE_SERVER_RESTART,
    WAKE_TIMER,
    WAKE_UNSCHEDULED,
    AgentLoop,
)
from roomagent.agent.parameters import AgentFlags, AgentParameters
from roomagent.agent.tools import ToolRegistry, ToolSpec
from roomagent.agent.wake_checker import WakeChecker, parse_wake_reason

__all__ = [
    "AgentFlags",
    "AgentLoop",
    "AgentParameters",
    "BuiltinTools",
    "ToolRegistry",
    "ToolSpec",
    "WakeChecker",
    "parse_wake_reason",
    # Wake reasons
    "WAKE_NEW_EVENT",
    "WAKE_SERVER_RESTART",
    "WAKE_TIMER",
    "WAKE_UNSCHEDULED",
]
