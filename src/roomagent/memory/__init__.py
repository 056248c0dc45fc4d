"""Long-term agent memory: the durable journal and the relevance index."""

from roomagent.memory.embedder import LiteLLMEmbedder
from roomagent.memory.journal import JournalStore
from roomagent.memory.relevance import (
    Embedder,
    RelevanceIndex,
    ScoredItem,
    chunk_text,
    cosine_similarity,
)

__all__ = [
    "Embedder",
    "JournalStore",
    "LiteLLMEmbedder",
    "RelevanceIndex",
    "ScoredItem",
    "chunk_text",
    "cosine_similarity",
]
