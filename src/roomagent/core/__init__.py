"""Core runtime: completion service, token accounting, background work."""

from roomagent.core.background import BackgroundQueue
from roomagent.core.llm import LiteLLMProvider, LLMProvider, Message, Role, ToolCall
from roomagent.core.tokens import (
    chars_to_tokens,
    count_message_tokens,
    count_tokens,
    invalidate_cache,
    tokens_to_chars,
)

__all__ = [
    "BackgroundQueue",
    # LLM
    "LLMProvider",
    "LiteLLMProvider",
    "Message",
    "Role",
    "ToolCall",
    # Tokens
    "chars_to_tokens",
    "count_message_tokens",
    "count_tokens",
    "invalidate_cache",
    "tokens_to_chars",
]
