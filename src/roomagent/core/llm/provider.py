"""Completion service protocol and message types."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol, runtime_checkable


class Role(Enum):
    """Message role in a conversation."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


@dataclass(frozen=True, slots=True)
class ToolCall:
    """A tool invocation requested by the model.

    Attributes:
        id: Call id; the tool result message refers back to it
        name: Tool name as registered in the tool table
        arguments: Raw JSON argument string as produced by the model
    """

    id: str
    name: str
    arguments: str = "{}"

    @property
    def args(self) -> dict[str, Any]:
        """Arguments decoded from JSON. Malformed or non-object JSON raises ValueError."""
        if not self.arguments or not self.arguments.strip():
            return {}
        decoded = json.loads(self.arguments)
        if not isinstance(decoded, dict):
            raise ValueError(f"tool arguments must be a JSON object, got {type(decoded).__name__}")
        return decoded


@dataclass(frozen=True, slots=True)
class Message:
    """A message in a completion request.

    Assistant messages may carry tool_calls; tool messages carry the
    tool_call_id they answer.
    """

    role: Role
    content: str | None
    tool_calls: tuple[ToolCall, ...] = ()
    tool_call_id: str | None = None
    name: str | None = None


@dataclass(slots=True)
class CompletionResult:
    """Result from a completion call."""

    content: str | None = None
    tool_calls: list[ToolCall] = field(default_factory=list)
    finish_reason: str | None = None
    usage: dict[str, int] = field(default_factory=dict)

    def to_message(self) -> Message:
        """The assistant message to append to the conversation."""
        return Message(Role.ASSISTANT, self.content, tuple(self.tool_calls))


@runtime_checkable
class LLMProvider(Protocol):
    """Protocol for completion services."""

    @property
    def model(self) -> str:
        """The model identifier being used."""
        ...

    async def complete(
        self,
        messages: list[Message],
        *,
        tools: list[dict[str, Any]] | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> CompletionResult:
        """Generate a completion.

        Args:
            messages: Conversation messages
            tools: Tool schemas in OpenAI function format
            temperature: Sampling temperature
            max_tokens: Maximum tokens to generate

        Returns:
            CompletionResult with text and any requested tool calls
        """
        ...
