"""Semantic relevance index over room events.

Texts are split into overlapping word chunks, each chunk is embedded, and
searches score every stored chunk against every query chunk by cosine
similarity. An item's score is the best score of any of its chunks.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Generic, Protocol, TypeVar

import numpy as np

from roomagent.logging import get_logger

log = get_logger("memory.relevance")

T = TypeVar("T")


class Embedder(Protocol):
    """Turns texts into vectors, one per input text."""

    async def embed(self, texts: list[str]) -> list[list[float]]: ...


@dataclass(frozen=True, eq=False)
class _Chunk(Generic[T]):
    item: T
    text: str
    vector: np.ndarray  # Unit length, or all zeros


@dataclass(frozen=True)
class ScoredItem(Generic[T]):
    item: T
    score: float


def chunk_text(text: str, chunk_size: int = 512, overlap_words: int = 12) -> list[str]:
    """Split text on spaces into chunks of roughly chunk_size characters.

    Consecutive chunks share their trailing/leading overlap_words words.
    """
    words = text.split()
    chunks: list[str] = []
    current: list[str] = []
    length = 0
    fresh = 0
    for word in words:
        current.append(word)
        length += len(word) + 1
        fresh += 1
        if length >= chunk_size:
            chunks.append(" ".join(current))
            current = current[-overlap_words:] if overlap_words > 0 else []
            length = len(" ".join(current)) + 1 if current else 0
            fresh = 0
    if fresh:
        chunks.append(" ".join(current))
    return chunks


def _normalize(vectors: np.ndarray) -> np.ndarray:
    """Scale rows to unit length; zero rows stay zero."""
    norms = np.linalg.norm(vectors, axis=-1, keepdims=True)
    return np.divide(vectors, norms, out=np.zeros_like(vectors), where=norms > 0)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    a_vec = np.asarray(a, dtype=np.float64)
    b_vec = np.asarray(b, dtype=np.float64)
    norm = np.linalg.norm(a_vec) * np.linalg.norm(b_vec)
    return float(np.dot(a_vec, b_vec) / norm) if norm else 0.0


class RelevanceIndex(Generic[T]):
    """In-memory chunked embedding index.

    Items are compared by identity, so structurally equal events stored
    twice stay separate entries.
    """

    def __init__(self, embedder: Embedder, chunk_size: int = 512, overlap_words: int = 12) -> None:
        self._embedder = embedder
        self._chunk_size = chunk_size
        self._overlap_words = overlap_words
        self._chunks: list[_Chunk[T]] = []
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        """Number of stored chunks."""
        return len(self._chunks)

    def _split(self, text: str) -> list[str]:
        return chunk_text(text, self._chunk_size, self._overlap_words)

    async def add(self, item: T, text: str) -> int:
        """Embed text and store its chunks for item. Returns the chunk count."""
        chunks = self._split(text)
        if not chunks:
            return 0
        vectors = _normalize(np.asarray(await self._embedder.embed(chunks), dtype=np.float64))
        async with self._lock:
            self._chunks.extend(_Chunk(item, chunk, vector) for chunk, vector in zip(chunks, vectors))
        log.debug("Indexed %d chunk(s)", len(chunks))
        return len(chunks)

    async def search(
        self,
        query: str,
        k: int = 10,
        filter: Callable[[T], bool] | None = None,
    ) -> list[ScoredItem[T]]:
        """Top-k items by best chunk similarity, highest first."""
        query_chunks = self._split(query)
        if not query_chunks or not self._chunks:
            return []
        candidates = [c for c in self._chunks if filter is None or filter(c.item)]
        if not candidates:
            return []
        query_vectors = _normalize(np.asarray(await self._embedder.embed(query_chunks), dtype=np.float64))

        # Rows are query chunks, columns candidate chunks; keep the best query match per chunk.
        scores = (query_vectors @ np.stack([c.vector for c in candidates]).T).max(axis=0)
        best: dict[int, ScoredItem[T]] = {}
        for chunk, score in zip(candidates, scores.tolist()):
            current = best.get(id(chunk.item))
            if current is None or score > current.score:
                best[id(chunk.item)] = ScoredItem(chunk.item, score)
        return sorted(best.values(), key=lambda s: s.score, reverse=True)[:k]
