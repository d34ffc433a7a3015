"""Unit tests for the batched embedder."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from conftest import NO_WAIT, CountingEmbeddings

from kb_sync.config import Settings
from kb_sync.exceptions import EmbeddingServiceError, RateLimited
from kb_sync.ingestion.embedder import Embedder, get_embedding_provider
from kb_sync.models import Chunk


def _chunks(*texts: str) -> list[Chunk]:
    return [
        Chunk(content=t, metadata={"path": "a.md", "source": "a.md", "chunk_index": i, "document_id": "d1"})
        for i, t in enumerate(texts)
    ]


class TestBatching:
    def test_batches_respect_count_limit(self) -> None:
        embedder = Embedder(CountingEmbeddings(), batch_size=2, max_batch_chars=10_000, retry_policy=NO_WAIT)
        batches = embedder.batches(_chunks("a", "b", "c", "d", "e"))
        assert [len(b) for b in batches] == [2, 2, 1]

    def test_batches_respect_char_budget(self) -> None:
        embedder = Embedder(CountingEmbeddings(), batch_size=100, max_batch_chars=10, retry_policy=NO_WAIT)
        batches = embedder.batches(_chunks("aaaa", "bbbb", "cccc", "dddddddddddddddd", "e"))
        assert [[c.content for c in b] for b in batches] == [
            ["aaaa", "bbbb"],
            ["cccc"],
            ["dddddddddddddddd"],  # oversized chunk travels alone
            ["e"],
        ]

    def test_invalid_batch_size(self) -> None:
        with pytest.raises(ValueError):
            Embedder(CountingEmbeddings(), batch_size=0)


class TestEmbed:
    @pytest.mark.asyncio
    async def test_output_matches_input_order(self) -> None:
        provider = CountingEmbeddings()
        embedder = Embedder(provider, batch_size=2, retry_policy=NO_WAIT)
        chunks = _chunks("one", "two", "three", "four", "five")

        embedded = await embedder.embed(chunks)

        assert [e.content for e in embedded] == ["one", "two", "three", "four", "five"]
        assert [e.embedding for e in embedded] == [provider.embed_query(c.content) for c in chunks]
        assert embedded[2].metadata == chunks[2].metadata
        assert provider.calls == [["one", "two"], ["three", "four"], ["five"]]

    @pytest.mark.asyncio
    async def test_empty_input_makes_no_calls(self) -> None:
        provider = CountingEmbeddings()
        assert await Embedder(provider, retry_policy=NO_WAIT).embed([]) == []
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_failed_batch_is_retried_in_isolation(self) -> None:
        provider = CountingEmbeddings()
        embedder = Embedder(provider, batch_size=2, retry_policy=NO_WAIT)
        # first batch succeeds, second fails once
        chunks = _chunks("a", "b", "c")

        original = provider.embed_documents
        attempts = {"n": 0}

        def flaky(texts):
            if texts == ["c"] and attempts["n"] == 0:
                attempts["n"] += 1
                provider.calls.append(list(texts))
                raise EmbeddingServiceError("503")
            return original(texts)

        provider.embed_documents = flaky  # type: ignore[method-assign]
        embedded = await embedder.embed(chunks)

        assert [e.content for e in embedded] == ["a", "b", "c"]
        assert provider.calls == [["a", "b"], ["c"], ["c"]]

    @pytest.mark.asyncio
    async def test_exhausted_retries_raise(self) -> None:
        provider = CountingEmbeddings()
        provider.failures = [EmbeddingServiceError("down")] * 3
        embedder = Embedder(provider, retry_policy=NO_WAIT)
        with pytest.raises(EmbeddingServiceError, match="down"):
            await embedder.embed(_chunks("a"))
        assert len(provider.calls) == NO_WAIT.max_attempts

    @pytest.mark.asyncio
    async def test_rate_limited_is_retried(self) -> None:
        provider = CountingEmbeddings()
        provider.failures = [RateLimited("slow down", retry_after=0)]
        embedded = await Embedder(provider, retry_policy=NO_WAIT).embed(_chunks("a", "b"))
        assert len(embedded) == 2
        assert len(provider.calls) == 2

    @pytest.mark.asyncio
    async def test_provider_errors_are_mapped(self) -> None:
        provider = CountingEmbeddings()
        provider.failures = [RuntimeError("boom")] * 3
        with pytest.raises(EmbeddingServiceError, match="RuntimeError: boom"):
            await Embedder(provider, retry_policy=NO_WAIT).embed(_chunks("a"))

    @pytest.mark.asyncio
    async def test_http_429_maps_to_rate_limited(self) -> None:
        exc = RuntimeError("Too Many Requests")
        exc.response = MagicMock(status_code=429, headers={"retry-after": "0"})  # type: ignore[attr-defined]
        provider = CountingEmbeddings()
        provider.failures = [exc]
        embedded = await Embedder(provider, retry_policy=NO_WAIT).embed(_chunks("a"))
        assert len(embedded) == 1

    @pytest.mark.asyncio
    async def test_vector_count_mismatch_is_an_error(self) -> None:
        provider = CountingEmbeddings()
        provider.embed_documents = lambda texts: [[0.1, 0.2]]  # type: ignore[method-assign]
        with pytest.raises(EmbeddingServiceError, match="2 inputs"):
            await Embedder(provider, retry_policy=NO_WAIT).embed(_chunks("a", "b"))

    @pytest.mark.asyncio
    async def test_inconsistent_dimensions_are_an_error(self) -> None:
        provider = CountingEmbeddings()
        vectors = iter([[[0.1, 0.2]], [[0.1, 0.2, 0.3]]])
        provider.embed_documents = lambda texts: next(vectors)  # type: ignore[method-assign]
        embedder = Embedder(provider, batch_size=1, retry_policy=NO_WAIT)
        with pytest.raises(EmbeddingServiceError, match="dimensionality"):
            await embedder.embed(_chunks("a", "b"))

    @pytest.mark.asyncio
    async def test_embed_query(self) -> None:
        provider = CountingEmbeddings()
        vector = await Embedder(provider, retry_policy=NO_WAIT).embed_query("hello")
        assert vector == provider.embed_query("hello")


class TestProviderFactory:
    def test_fake_provider_is_deterministic(self) -> None:
        provider = get_embedding_provider(Settings(embedding_provider="fake", embedding_dimensions=16))
        first = provider.embed_documents(["hello"])[0]
        assert len(first) == 16
        assert provider.embed_documents(["hello"])[0] == first

    def test_unknown_provider_raises(self) -> None:
        with pytest.raises(ValueError, match="Unsupported embedding_provider"):
            get_embedding_provider(Settings(embedding_provider="nope"))
