"""Token accounting for context snapshots (tiktoken, o200k_base)."""

from __future__ import annotations

from collections.abc import Iterable

import tiktoken

from roomagent.core.llm.provider import Message

# Rough ratio for budget conversions when no encoder pass is wanted
CHARS_PER_TOKEN = 3.5

# Singleton encoder (loaded once on first use)
_encoder: tiktoken.Encoding | None = None


def _get_encoder() -> tiktoken.Encoding:
    global _encoder
    if _encoder is None:
        _encoder = tiktoken.get_encoding("o200k_base")
    return _encoder


# Content hash -> token count
_token_cache: dict[int, int] = {}


def count_tokens(text: str) -> int:
    """Count tokens with caching."""
    key = hash(text)
    if key not in _token_cache:
        _token_cache[key] = len(_get_encoder().encode(text, disallowed_special=()))
    return _token_cache[key]


def count_message_tokens(messages: Iterable[Message]) -> int:
    """Token count of all message bodies, ignoring per-message framing."""
    return sum(count_tokens(m.content) for m in messages if m.content)


def invalidate_cache() -> None:
    _token_cache.clear()


def chars_to_tokens(chars: int) -> int:
    return int(chars / CHARS_PER_TOKEN)


def tokens_to_chars(tokens: int) -> int:
    return int(tokens * CHARS_PER_TOKEN)
