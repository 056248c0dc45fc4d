"""LiteLLM provider implementation.

Supports 100+ LLM providers through litellm, e.g.:
- OpenRouter: "openrouter/anthropic/claude-3.5-sonnet"
- OpenAI: "gpt-4o"
- Local: "ollama/llama3"

See https://docs.litellm.ai/docs/providers for full list.
"""

from __future__ import annotations

from typing import Any

import litellm

from roomagent.config.secrets import fetch_secret
from roomagent.core.llm.provider import CompletionResult, Message, Role, ToolCall
from roomagent.logging import get_logger

log = get_logger("llm")

DEFAULT_MODEL = "openrouter/anthropic/claude-3.5-sonnet"

# Model prefix -> environment variable holding its API key
PROVIDER_KEY_VARS = {
    "openrouter": "OPENROUTER_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "openai": "OPENAI_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "deepseek": "DEEPSEEK_API_KEY",
    "mistral": "MISTRAL_API_KEY",
}


def resolve_api_key(model: str) -> str | None:
    """Find the API key for a model from its provider prefix.

    Checks the environment, then .env.secrets. Models without a known
    prefix (e.g. "gpt-4o", "ollama/llama3") return None and litellm falls
    back to its own lookup.
    """
    prefix = model.split("/", 1)[0] if "/" in model else ""
    env_var = PROVIDER_KEY_VARS.get(prefix)
    if env_var is None:
        return None
    return fetch_secret(env_var)


def _message_to_dict(message: Message) -> dict[str, Any]:
    data: dict[str, Any] = {"role": message.role.value, "content": message.content}
    if message.tool_calls:
        data["tool_calls"] = [
            {
                "id": call.id,
                "type": "function",
                "function": {"name": call.name, "arguments": call.arguments},
            }
            for call in message.tool_calls
        ]
    if message.role is Role.TOOL:
        data["tool_call_id"] = message.tool_call_id
        if message.name:
            data["name"] = message.name
    return data


def _parse_tool_calls(raw: Any) -> list[ToolCall]:
    calls: list[ToolCall] = []
    for call in raw or []:
        function = call.function
        calls.append(
            ToolCall(
                id=call.id or "",
                name=function.name or "",
                arguments=function.arguments or "{}",
            )
        )
    return calls


class LiteLLMProvider:
    """Completion service backed by litellm.acompletion.

    Usage:
        provider = LiteLLMProvider("gpt-4o")
        provider = LiteLLMProvider("gpt-4", api_base="http://localhost:8000/v1")
    """

    def __init__(
        self,
        model: str,
        *,
        api_key: str | None = None,
        api_base: str | None = None,
        max_tokens: int | None = None,
        **kwargs: Any,
    ) -> None:
        """Initialize the provider.

        Args:
            model: Model identifier (e.g., "gpt-4o", "ollama/llama3")
            api_key: API key (uses env vars if not provided)
            api_base: Custom API base URL
            max_tokens: Default generation limit
            **kwargs: Additional litellm options
        """
        self._model = model
        self._api_key = api_key
        self._api_base = api_base
        self._max_tokens = max_tokens
        self._kwargs = kwargs

    @property
    def model(self) -> str:
        return self._model

    def _build_kwargs(
        self,
        messages: list[Message],
        *,
        tools: list[dict[str, Any]] | None,
        temperature: float | None,
        max_tokens: int | None,
    ) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": self._model,
            "messages": [_message_to_dict(m) for m in messages],
            **self._kwargs,
        }
        if tools:
            kwargs["tools"] = tools
        if temperature is not None:
            kwargs["temperature"] = temperature
        max_tokens = max_tokens or self._max_tokens
        if max_tokens:
            kwargs["max_tokens"] = max_tokens
        if self._api_key:
            kwargs["api_key"] = self._api_key
        if self._api_base:
            kwargs["api_base"] = self._api_base
        return kwargs

    async def complete(
        self,
        messages: list[Message],
        *,
        tools: list[dict[str, Any]] | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> CompletionResult:
        kwargs = self._build_kwargs(
            messages, tools=tools, temperature=temperature, max_tokens=max_tokens
        )
        log.info("Completion request: model=%s messages=%d tools=%d", self._model, len(messages), len(tools or []))

        response = await litellm.acompletion(**kwargs)

        choice = response.choices[0]
        usage: dict[str, int] = {}
        if getattr(response, "usage", None):
            usage = {
                "prompt_tokens": response.usage.prompt_tokens,
                "completion_tokens": response.usage.completion_tokens,
                "total_tokens": response.usage.total_tokens,
            }

        return CompletionResult(
            content=choice.message.content or None,
            tool_calls=_parse_tool_calls(getattr(choice.message, "tool_calls", None)),
            finish_reason=choice.finish_reason,
            usage=usage,
        )


def create_provider(model: str = DEFAULT_MODEL, **kwargs: Any) -> LiteLLMProvider:
    """Create a provider with sensible defaults."""
    return LiteLLMProvider(model, **kwargs)
