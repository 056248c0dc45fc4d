"""roomagent: a chat-room agent that sees the world as one bounded markup snapshot.

Events from many rooms are folded into per-room histories and rendered,
together with the agent's open windows, into a single <chatInterface>
document. Each wake cycle sends that document to a language model and
runs the tools it asks for, under a fixed iteration cap.
"""

__version__ = "0.1.0"

# Public API
from roomagent.agent import AgentFlags, AgentLoop, AgentParameters, ToolRegistry, WakeChecker
from roomagent.config import Config, get_config, load_config
from roomagent.context import ContentWindow, DisplayMode, RoomContext, WindowSet
from roomagent.core import BackgroundQueue, LiteLLMProvider, LLMProvider, Message, Role
from roomagent.markup import MarkupNode, parse, parse_fragment

__all__ = [
    # Agent
    "AgentFlags",
    "AgentLoop",
    "AgentParameters",
    "ToolRegistry",
    "WakeChecker",
    # Config
    "Config",
    "get_config",
    "load_config",
    # Context
    "ContentWindow",
    "DisplayMode",
    "RoomContext",
    "WindowSet",
    # Core
    "BackgroundQueue",
    "LLMProvider",
    "LiteLLMProvider",
    "Message",
    "Role",
    # Markup
    "MarkupNode",
    "parse",
    "parse_fragment",
    "__version__",
]
