"""Chroma implementation of the embedding-store abstraction."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable
from typing import Any, TypeVar

import chromadb

from kb_sync.config import settings
from kb_sync.exceptions import ConstraintViolation, StoreUnavailable
from kb_sync.models import EmbeddingRecord
from kb_sync.store.base import EmbeddingStoreBase

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _flat_metadata(record: EmbeddingRecord) -> dict[str, str | int | float | bool]:
    """Chroma metadata values must be flat str/int/float/bool."""
    meta: dict[str, str | int | float | bool] = {}
    for key, value in record.metadata.items():
        if isinstance(value, (str, int, float, bool)):
            meta[key] = value
    meta["document_id"] = record.document_id
    meta["chunk_index"] = record.chunk_index
    return meta


class ChromaEmbeddingStore(EmbeddingStoreBase):
    """Chroma-backed embedding store.

    Records are upserted under their deterministic ``record_id`` and
    deleted with a ``document_id`` metadata filter.  The Chroma HTTP client
    is blocking, so every call runs in a worker thread.

    Parameters
    ----------
    collection_name:
        Name of the Chroma collection.
    host / port:
        Chroma server location.  Ignored when *client* is given.
    distance_metric:
        ``cosine`` | ``l2`` | ``ip``; only applied when the collection is created.
    client:
        Pre-built Chroma client (mainly for tests).
    """

    def __init__(
        self,
        collection_name: str = settings.chroma_collection,
        *,
        host: str = settings.chroma_host,
        port: int = settings.chroma_port,
        distance_metric: str = "cosine",
        client: Any | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self.collection_name = collection_name
        self._client = client if client is not None else chromadb.HttpClient(host=host, port=port)
        self._collection = self._client.get_or_create_collection(
            name=collection_name,
            metadata={"hnsw:space": distance_metric},
        )

    async def _call(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        try:
            return await asyncio.to_thread(fn, *args, **kwargs)
        except ValueError as exc:
            raise ConstraintViolation(f"Chroma rejected the request: {exc}") from exc
        except Exception as exc:
            raise StoreUnavailable(f"Chroma request failed: {exc}") from exc

    # -- EmbeddingStoreBase overrides -----------------------------------------

    async def select_by_document_ids(self, ids: Iterable[str]) -> list[EmbeddingRecord]:
        wanted = sorted(set(ids))
        if not wanted:
            return []
        result = await self._call(
            self._collection.get,
            where={"document_id": {"$in": wanted}},
            include=["documents", "embeddings", "metadatas"],
        )

        records: list[EmbeddingRecord] = []
        docs = result.get("documents") or []
        embeddings = result.get("embeddings")
        metas = result.get("metadatas") or []
        if embeddings is None:
            embeddings = []
        for content, embedding, meta in zip(docs, embeddings, metas):
            meta = dict(meta or {})
            records.append(
                EmbeddingRecord(
                    document_id=str(meta.pop("document_id")),
                    chunk_index=int(meta.pop("chunk_index", 0)),
                    content=content or "",
                    embedding=[float(x) for x in embedding],
                    metadata=meta,
                )
            )
        records.sort(key=lambda r: (r.document_id, r.chunk_index))
        return records

    async def count(self) -> int:
        return await self._call(self._collection.count)

    async def health_check(self) -> bool:
        try:
            await self._call(self._client.heartbeat)
            return True
        except StoreUnavailable:
            logger.warning("Chroma health-check failed", exc_info=True)
            return False

    async def _delete_document_ids(self, ids: list[str]) -> None:
        await self._call(self._collection.delete, where={"document_id": {"$in": ids}})

    async def _insert_batch(self, records: list[EmbeddingRecord]) -> None:
        await self._call(
            self._collection.upsert,
            ids=[r.record_id for r in records],
            embeddings=[r.embedding for r in records],
            documents=[r.content for r in records],
            metadatas=[_flat_metadata(r) for r in records],
        )
