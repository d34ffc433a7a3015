"""
Store — persistence of embedding records keyed by owning document.

Public surface
--------------
- :class:`EmbeddingStoreBase` — abstract backend (subclass for pgvector, etc.).
- :class:`InMemoryEmbeddingStore` — in-process backend for tests.
- :class:`ChromaEmbeddingStore` — default Chroma backend.
- :func:`get_embedding_store` — build the backend selected in settings.
"""

from kb_sync.config import Settings, settings
from kb_sync.retry import RetryPolicy
from kb_sync.store.base import EmbeddingStoreBase
from kb_sync.store.memory import InMemoryEmbeddingStore

__all__ = [
    "ChromaEmbeddingStore",
    "EmbeddingStoreBase",
    "InMemoryEmbeddingStore",
    "get_embedding_store",
]


def get_embedding_store(cfg: Settings = settings) -> EmbeddingStoreBase:
    """Return the store configured by ``cfg.vector_store``."""
    policy = RetryPolicy.from_settings(cfg)
    if cfg.vector_store == "memory":
        return InMemoryEmbeddingStore(batch_size=cfg.store_batch_size, retry_policy=policy)
    if cfg.vector_store == "chroma":
        from kb_sync.store.chroma_store import ChromaEmbeddingStore

        return ChromaEmbeddingStore(
            cfg.chroma_collection,
            host=cfg.chroma_host,
            port=cfg.chroma_port,
            batch_size=cfg.store_batch_size,
            retry_policy=policy,
        )
    raise ValueError(f"Unsupported vector_store={cfg.vector_store!r}. Choose from: chroma, memory.")


def __getattr__(name: str):  # noqa: ANN001
    """Lazy-import ChromaEmbeddingStore to avoid pulling in chromadb at import time."""
    if name == "ChromaEmbeddingStore":
        from kb_sync.store.chroma_store import ChromaEmbeddingStore

        return ChromaEmbeddingStore
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
