"""Completion service abstraction."""

from roomagent.core.llm.litellm_provider import (
    LiteLLMProvider,
    create_provider,
    resolve_api_key,
)
from roomagent.core.llm.provider import (
    CompletionResult,
    LLMProvider,
    Message,
    Role,
    ToolCall,
)

__all__ = [
    "CompletionResult",
    "LLMProvider",
    "LiteLLMProvider",
    "Message",
    "Role",
    "ToolCall",
    "create_provider",
    "resolve_api_key",
]
