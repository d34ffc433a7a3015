"""Batched embedding of chunks through a LangChain ``Embeddings`` provider."""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence

from langchain_core.embeddings import DeterministicFakeEmbedding, Embeddings

from kb_sync.config import Settings, settings
from kb_sync.exceptions import EmbeddingError, EmbeddingServiceError, RateLimited
from kb_sync.models import Chunk, EmbeddedChunk
from kb_sync.retry import RetryPolicy, call_with_retry

logger = logging.getLogger(__name__)


def get_embedding_provider(cfg: Settings = settings) -> Embeddings:
    """Return the configured embedding provider.

    ``openai`` and ``huggingface`` are imported lazily so that only the
    selected backend has to be installed.
    """
    provider = cfg.embedding_provider.lower()
    if provider == "openai":
        from langchain_openai import OpenAIEmbeddings

        return OpenAIEmbeddings(
            model=cfg.embedding_model,
            api_key=cfg.openai_api_key or None,
            # retries are handled by Embedder, per batch
            max_retries=0,
        )
    if provider == "huggingface":
        from langchain_huggingface import HuggingFaceEmbeddings

        return HuggingFaceEmbeddings(
            model_name=cfg.embedding_model,
            encode_kwargs={"normalize_embeddings": True},
        )
    if provider == "fake":
        logger.warning("Using deterministic fake embeddings (dim=%d)", cfg.embedding_dimensions)
        return DeterministicFakeEmbedding(size=cfg.embedding_dimensions)
    raise ValueError(
        f"Unsupported embedding_provider={cfg.embedding_provider!r}. Choose from: openai, huggingface, fake."
    )


def _map_provider_error(exc: Exception) -> EmbeddingError:
    """Translate a provider exception into the pipeline taxonomy."""
    status = getattr(exc, "status_code", None) or getattr(getattr(exc, "response", None), "status_code", None)
    if status == 429 or type(exc).__name__ == "RateLimitError":
        headers = getattr(getattr(exc, "response", None), "headers", None) or {}
        retry_after = headers.get("retry-after")
        try:
            delay = float(retry_after) if retry_after is not None else None
        except ValueError:
            delay = None
        return RateLimited(str(exc), retry_after=delay)
    return EmbeddingServiceError(f"{type(exc).__name__}: {exc}")


class Embedder:
    """Convert chunks into vectors in order-preserving, bounded batches.

    Parameters
    ----------
    provider:
        Any LangChain ``Embeddings`` implementation.
    batch_size:
        Maximum chunks per provider request.
    max_batch_chars:
        Maximum total characters per request.  A single chunk larger than
        this is sent on its own.
    retry_policy:
        Backoff applied to each batch in isolation.
    """

    def __init__(
        self,
        provider: Embeddings,
        *,
        batch_size: int = settings.embedding_batch_size,
        max_batch_chars: int = settings.embedding_max_batch_chars,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        if batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        self._provider = provider
        self.batch_size = batch_size
        self.max_batch_chars = max_batch_chars
        self.retry_policy = retry_policy or RetryPolicy.from_settings()

    def batches(self, chunks: Sequence[Chunk]) -> list[list[Chunk]]:
        """Partition *chunks* without reordering or dropping any."""
        batches: list[list[Chunk]] = []
        current: list[Chunk] = []
        current_chars = 0
        for chunk in chunks:
            size = len(chunk.content)
            if current and (len(current) >= self.batch_size or current_chars + size > self.max_batch_chars):
                batches.append(current)
                current, current_chars = [], 0
            current.append(chunk)
            current_chars += size
        if current:
            batches.append(current)
        return batches

    async def embed(self, chunks: Sequence[Chunk]) -> list[EmbeddedChunk]:
        """Embed *chunks*; the result is index-aligned with the input."""
        if not chunks:
            return []

        batches = self.batches(chunks)
        logger.info("Embedding %d chunks in %d batches", len(chunks), len(batches))
        t0 = time.monotonic()

        embedded: list[EmbeddedChunk] = []
        dim: int | None = None
        for number, batch in enumerate(batches, 1):
            vectors = await call_with_retry(
                self._embed_batch,
                [chunk.content for chunk in batch],
                policy=self.retry_policy,
                description=f"embedding batch {number}/{len(batches)}",
            )
            for chunk, vector in zip(batch, vectors):
                if dim is None:
                    dim = len(vector)
                elif len(vector) != dim:
                    raise EmbeddingServiceError(
                        f"Inconsistent embedding dimensionality: expected {dim}, got {len(vector)}"
                    )
                embedded.append(EmbeddedChunk(content=chunk.content, metadata=chunk.metadata, embedding=vector))
            logger.debug("  embedded %d / %d", len(embedded), len(chunks))

        logger.info("Embedded %d chunks (dim=%s) in %.1fs", len(embedded), dim, time.monotonic() - t0)
        return embedded

    async def embed_query(self, text: str) -> list[float]:
        """Embed a single piece of text."""
        vectors = await call_with_retry(
            self._embed_batch, [text], policy=self.retry_policy, description="embedding query"
        )
        return vectors[0]

    async def _embed_batch(self, texts: list[str]) -> list[list[float]]:
        try:
            vectors = await self._provider.aembed_documents(texts)
        except EmbeddingError:
            raise
        except Exception as exc:
            raise _map_provider_error(exc) from exc

        if len(vectors) != len(texts):
            raise EmbeddingServiceError(f"Provider returned {len(vectors)} vectors for {len(texts)} inputs")
        return [list(vector) for vector in vectors]
