"""litellm-backed embedder for the relevance index."""

from __future__ import annotations

from typing import Any

import litellm

from roomagent.errors import IOFailure
from roomagent.logging import get_logger

log = get_logger("memory.embedder")

DEFAULT_EMBEDDING_MODEL = "openai/text-embedding-3-small"


class LiteLLMEmbedder:
    """Thin wrapper around litellm.aembedding.

    Usage:
        embedder = LiteLLMEmbedder(model="openai/text-embedding-3-small")
        vectors = await embedder.embed(["hello world", "goodbye"])
    """

    def __init__(
        self,
        model: str = DEFAULT_EMBEDDING_MODEL,
        api_key: str | None = None,
        api_base: str | None = None,
    ) -> None:
        self.model = model
        self.api_key = api_key
        self.api_base = api_base
        self._dimension: int | None = None

    @property
    def dimension(self) -> int | None:
        """Embedding dimension, known after the first successful call."""
        return self._dimension

    async def embed(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []

        kwargs: dict[str, Any] = {"model": self.model, "input": texts}
        if self.api_key:
            kwargs["api_key"] = self.api_key
        if self.api_base:
            kwargs["api_base"] = self.api_base

        try:
            response = await litellm.aembedding(**kwargs)
        except Exception as e:
            raise IOFailure(f"embedding request failed: {e}") from e

        # Some providers return numpy floats
        vectors = [[float(x) for x in item["embedding"]] for item in response.data]
        if self._dimension is None and vectors:
            self._dimension = len(vectors[0])
            log.info("Embedding dimension detected: %d", self._dimension)
        return vectors
