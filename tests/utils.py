"""Shared test utilities and fakes for roomagent tests."""

from __future__ import annotations

import asyncio
import json
import zlib
from typing import Any
from unittest.mock import Mock

from roomagent.agent import AgentParameters
from roomagent.chat.protocols import RoomInfo
from roomagent.core.llm.provider import CompletionResult, Message, ToolCall

AGENT_USER_ID = "@agent:test"
ADMIN_USER_ID = "@admin:test"


def make_params(**overrides: Any) -> AgentParameters:
    """AgentParameters with test defaults; keyword arguments override fields."""
    values: dict[str, Any] = {
        "name": "Ava",
        "user_id": AGENT_USER_ID,
        "model": "test-model",
        "persona": "I am Ava.\nI keep notes.",
        "system_prompt": "You are Ava.",
        "admin_user_id": ADMIN_USER_ID,
        "running_on": "testhost",
    }
    values.update(overrides)
    return AgentParameters(**values)


def tool_call(name: str, call_id: str = "call_1", **arguments: Any) -> ToolCall:
    return ToolCall(call_id, name, json.dumps(arguments))


class FakeChatClient:
    """In-memory ChatClient that records what the agent does."""

    def __init__(self, system_id: str = "test", user_id: str = AGENT_USER_ID) -> None:
        self._system_id = system_id
        self._user_id = user_id
        self.rooms: dict[str, RoomInfo] = {}
        self.sent: list[tuple[str, str, str | None]] = []
        self.typing: list[tuple[str, bool]] = []
        self.fail_send: Exception | None = None
        self.fail_joined_rooms = False

    def add_room(self, room_id: str, name: str | None = None, members: list[str] | None = None) -> RoomInfo:
        info = RoomInfo(room_id, name, members if members is not None else ["@user:test", self._user_id])
        self.rooms[room_id] = info
        return info

    @property
    def system_id(self) -> str:
        return self._system_id

    @property
    def user_id(self) -> str:
        return self._user_id

    async def joined_rooms(self) -> list[str]:
        if self.fail_joined_rooms:
            raise ConnectionError("chat system unavailable")
        return list(self.rooms)

    async def room_info(self, room_id: str) -> RoomInfo:
        return self.rooms.get(room_id) or RoomInfo(room_id)

    async def send_message(self, room_id: str, text: str, thread_id: str | None = None) -> None:
        if self.fail_send is not None:
            raise self.fail_send
        self.sent.append((room_id, text, thread_id))

    async def set_typing(self, room_id: str, typing: bool, timeout: float = 30.0) -> None:
        self.typing.append((room_id, typing))


class ScriptedProvider:
    """LLMProvider returning queued results in order.

    Once the script runs out it answers with an empty result (no tool
    calls), which ends a cycle.
    """

    def __init__(self, *results: CompletionResult, model: str = "scripted") -> None:
        self._model = model
        self.results = list(results)
        self.calls: list[dict[str, Any]] = []

    @property
    def model(self) -> str:
        return self._model

    def queue(self, content: str | None = None, *tool_calls: ToolCall) -> None:
        self.results.append(CompletionResult(content=content, tool_calls=list(tool_calls)))

    async def complete(
        self,
        messages: list[Message],
        *,
        tools: list[dict[str, Any]] | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> CompletionResult:
        self.calls.append({"messages": list(messages), "tools": tools, "temperature": temperature})
        if self.results:
            return self.results.pop(0)
        return CompletionResult(content=None)


class LoopingProvider(ScriptedProvider):
    """Provider that asks for a tool call on every request."""

    def __init__(self, call: ToolCall, thought: str = "Still working.") -> None:
        super().__init__()
        self._call = call
        self._thought = thought

    async def complete(self, messages: list[Message], **kwargs: Any) -> CompletionResult:
        self.calls.append({"messages": list(messages), **kwargs})
        return CompletionResult(content=self._thought, tool_calls=[self._call])


class FailingProvider(ScriptedProvider):
    """Provider whose every request raises."""

    def __init__(self, error: Exception) -> None:
        super().__init__()
        self._error = error

    async def complete(self, messages: list[Message], **kwargs: Any) -> CompletionResult:
        self.calls.append({"messages": list(messages), **kwargs})
        raise self._error


class HashEmbedder:
    """Deterministic bag-of-words embedder.

    Each word bumps one of `dimensions` buckets, so texts sharing words
    have a positive cosine similarity and disjoint texts score zero.
    """

    def __init__(self, dimensions: int = 64) -> None:
        self._dimensions = dimensions
        self.calls: list[list[str]] = []

    async def embed(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        vectors = []
        for text in texts:
            vector = [0.0] * self._dimensions
            for word in text.lower().split():
                vector[zlib.crc32(word.encode("utf-8")) % self._dimensions] += 1.0
            vectors.append(vector)
        return vectors


def create_mock_llm_response(
    content: str | None = "Test response",
    tool_calls: list[tuple[str, str, str]] | None = None,
) -> Any:
    """Create a mock litellm completion response.

    Args:
        content: Response content
        tool_calls: (id, name, arguments) triples

    Returns:
        Mock mimicking the litellm response structure
    """
    response = Mock()
    response.choices = [Mock()]
    response.choices[0].message = Mock()
    response.choices[0].message.content = content
    response.choices[0].finish_reason = "tool_calls" if tool_calls else "stop"

    calls = []
    for call_id, name, arguments in tool_calls or []:
        call = Mock()
        call.id = call_id
        call.function = Mock()
        call.function.name = name
        call.function.arguments = arguments
        calls.append(call)
    response.choices[0].message.tool_calls = calls or None

    response.usage = Mock()
    response.usage.prompt_tokens = 10
    response.usage.completion_tokens = 20
    response.usage.total_tokens = 30

    return response


async def wait_for_async(coro, timeout: float = 1.0):
    """Wait for an async coroutine with a timeout.

    Raises:
        asyncio.TimeoutError: If timeout is exceeded
    """
    return await asyncio.wait_for(coro, timeout=timeout)
