"""In-process embedding store, for tests and local dry runs."""

from __future__ import annotations

import asyncio
from collections.abc import Iterable

from kb_sync.exceptions import ConstraintViolation
from kb_sync.models import EmbeddingRecord
from kb_sync.store.base import EmbeddingStoreBase


class InMemoryEmbeddingStore(EmbeddingStoreBase):
    """Dictionary-backed store keyed by ``record_id``."""

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self._records: dict[str, EmbeddingRecord] = {}
        self._lock = asyncio.Lock()

    @property
    def records(self) -> list[EmbeddingRecord]:
        return sorted(self._records.values(), key=lambda r: (r.document_id, r.chunk_index))

    async def select_by_document_ids(self, ids: Iterable[str]) -> list[EmbeddingRecord]:
        wanted = set(ids)
        return [r for r in self.records if r.document_id in wanted]

    async def count(self) -> int:
        return len(self._records)

    async def _delete_document_ids(self, ids: list[str]) -> None:
        doomed = set(ids)
        async with self._lock:
            for key in [k for k, r in self._records.items() if r.document_id in doomed]:
                del self._records[key]

    async def _insert_batch(self, records: list[EmbeddingRecord]) -> None:
        async with self._lock:
            if self._records:
                dim = len(next(iter(self._records.values())).embedding)
                bad = next((r for r in records if len(r.embedding) != dim), None)
                if bad is not None:
                    raise ConstraintViolation(
                        f"Record {bad.record_id!r} has dimension {len(bad.embedding)}, store holds {dim}"
                    )
            for record in records:
                self._records[record.record_id] = record.model_copy(deep=True)
