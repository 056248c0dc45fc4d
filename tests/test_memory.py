"""Tests for the memory package: relevance index, embedder and journal."""

from __future__ import annotations

from unittest.mock import AsyncMock, Mock, patch

import pytest

from roomagent.errors import IOFailure
from roomagent.memory import (
    JournalStore,
    LiteLLMEmbedder,
    RelevanceIndex,
    chunk_text,
    cosine_similarity,
)
from tests.utils import HashEmbedder

# =============================================================================
# Chunking and similarity
# =============================================================================


class TestChunking:
    """Tests for chunk_text."""

    def test_short_text_is_one_chunk(self) -> None:
        assert chunk_text("a few words here") == ["a few words here"]

    def test_empty_text(self) -> None:
        assert chunk_text("   ") == []

    def test_chunks_overlap(self) -> None:
        """Consecutive chunks share overlap_words words."""
        words = [f"w{i:03d}" for i in range(100)]
        chunks = chunk_text(" ".join(words), chunk_size=50, overlap_words=2)
        assert len(chunks) > 1
        for first, second in zip(chunks, chunks[1:]):
            assert first.split()[-2:] == second.split()[:2]
        assert chunks[-1].split()[-1] == "w099"

    def test_no_trailing_duplicate_chunk(self) -> None:
        """Text ending exactly on a chunk boundary adds no overlap-only chunk."""
        chunks = chunk_text("aaaa bbbb", chunk_size=10, overlap_words=1)
        assert chunks == ["aaaa bbbb"]


class TestCosineSimilarity:
    def test_identical(self) -> None:
        assert cosine_similarity([1.0, 2.0], [1.0, 2.0]) == pytest.approx(1.0)

    def test_orthogonal(self) -> None:
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == 0.0

    def test_zero_vector(self) -> None:
        assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0


# =============================================================================
# RelevanceIndex
# =============================================================================


class TestRelevanceIndex:
    """Tests for RelevanceIndex."""

    @pytest.mark.asyncio
    async def test_search_ranks_by_similarity(self) -> None:
        index: RelevanceIndex[str] = RelevanceIndex(HashEmbedder())
        await index.add("cats", "cats purr and cats nap")
        await index.add("rockets", "rockets launch into orbit")
        results = await index.search("why do cats purr", k=2)
        assert [r.item for r in results][0] == "cats"
        assert results[0].score > results[1].score

    @pytest.mark.asyncio
    async def test_search_limits_and_filters(self) -> None:
        index: RelevanceIndex[str] = RelevanceIndex(HashEmbedder())
        for name in ("a", "b", "c", "d"):
            await index.add(name, f"shared words {name}")
        assert len(await index.search("shared words", k=2)) == 2
        filtered = await index.search("shared words", k=10, filter=lambda item: item != "a")
        assert "a" not in [r.item for r in filtered]
        assert len(filtered) == 3

    @pytest.mark.asyncio
    async def test_items_compared_by_identity(self) -> None:
        """Equal items stored twice remain separate results."""
        index: RelevanceIndex[list[str]] = RelevanceIndex(HashEmbedder())
        first, second = ["x"], ["x"]
        await index.add(first, "same text")
        await index.add(second, "same text")
        results = await index.search("same text")
        assert len(results) == 2

    @pytest.mark.asyncio
    async def test_empty_index_skips_embedding(self) -> None:
        embedder = HashEmbedder()
        index: RelevanceIndex[str] = RelevanceIndex(embedder)
        assert await index.search("anything") == []
        assert embedder.calls == []

    @pytest.mark.asyncio
    async def test_long_text_is_chunked(self) -> None:
        index: RelevanceIndex[str] = RelevanceIndex(HashEmbedder(), chunk_size=20, overlap_words=1)
        count = await index.add("doc", " ".join(f"word{i}" for i in range(30)))
        assert count > 1
        assert len(index) == count
        assert len(await index.search("word3 word4")) == 1

    @pytest.mark.asyncio
    async def test_best_query_chunk_wins(self) -> None:
        """Each item scores its best match against any query chunk."""
        embedder = Mock()
        embedder.embed = AsyncMock(
            side_effect=[
                [[1.0, 0.0, 0.0]],
                [[0.0, 3.0, 0.0]],
                [[0.0, 0.0, 0.0]],
                [[2.0, 0.0, 0.0], [0.0, 1.0, 1.0]],
            ]
        )
        index: RelevanceIndex[str] = RelevanceIndex(embedder, chunk_size=10, overlap_words=0)
        await index.add("x", "alpha")
        await index.add("y", "beta")
        await index.add("blank", "gamma")
        results = await index.search("alpha one beta two")
        scores = {r.item: r.score for r in results}
        assert scores["x"] == pytest.approx(1.0)
        assert scores["y"] == pytest.approx(2 ** -0.5)
        assert scores["blank"] == 0.0
        assert [r.item for r in results] == ["x", "y", "blank"]


# =============================================================================
# LiteLLMEmbedder
# =============================================================================


class TestLiteLLMEmbedder:
    """Tests for the litellm-backed embedder."""

    @pytest.mark.asyncio
    async def test_embed(self) -> None:
        response = Mock()
        response.data = [{"embedding": [1, 2, 3]}, {"embedding": [4, 5, 6]}]
        with patch("litellm.aembedding", new_callable=AsyncMock, return_value=response) as mock:
            embedder = LiteLLMEmbedder("openai/text-embedding-3-small", api_key="sk-test")
            vectors = await embedder.embed(["a", "b"])

        assert vectors == [[1.0, 2.0, 3.0], [4.0, 5.0, 6.0]]
        assert embedder.dimension == 3
        kwargs = mock.call_args.kwargs
        assert kwargs["model"] == "openai/text-embedding-3-small"
        assert kwargs["input"] == ["a", "b"]
        assert kwargs["api_key"] == "sk-test"

    @pytest.mark.asyncio
    async def test_embed_nothing(self) -> None:
        with patch("litellm.aembedding", new_callable=AsyncMock) as mock:
            assert await LiteLLMEmbedder().embed([]) == []
        mock.assert_not_called()

    @pytest.mark.asyncio
    async def test_failure_is_io_failure(self) -> None:
        with patch("litellm.aembedding", new_callable=AsyncMock, side_effect=RuntimeError("rate limited")):
            with pytest.raises(IOFailure, match="rate limited"):
                await LiteLLMEmbedder().embed(["a"])


# =============================================================================
# JournalStore
# =============================================================================


class TestJournalStore:
    """Tests for the durable journal."""

    def test_append_and_recent(self, tmp_path) -> None:
        journal = JournalStore(tmp_path)
        for i in range(5):
            journal.append("@agent:test", f"<thought>entry {i}</thought>")
        assert journal.recent("@agent:test") == [f"<thought>entry {i}</thought>" for i in range(5)]
        assert journal.recent("@agent:test", limit=2) == [
            "<thought>entry 3</thought>",
            "<thought>entry 4</thought>",
        ]
        assert journal.recent("@agent:test", limit=0) == []

    def test_agents_are_separate(self, tmp_path) -> None:
        journal = JournalStore(tmp_path)
        journal.append("@a:test", "<x/>")
        assert journal.recent("@b:test") == []
        assert journal.path_for("@a:test").parent == tmp_path / "journal"
        assert "@" not in journal.path_for("@a:test").name

    def test_multiline_entries_survive(self, tmp_path) -> None:
        journal = JournalStore(tmp_path)
        entry = '<functionResult function="file_tree">\n <args>{"path": "x:/"}</args>\n</functionResult>'
        journal.append("@agent:test", entry)
        assert journal.recent("@agent:test") == [entry]

    def test_corrupted_journal(self, tmp_path) -> None:
        journal = JournalStore(tmp_path)
        path = journal.path_for("@agent:test")
        path.parent.mkdir(parents=True)
        path.write_text("---\nentry: [unclosed\n", encoding="utf-8")
        assert journal.recent("@agent:test") == []
