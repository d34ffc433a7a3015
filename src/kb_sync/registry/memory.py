"""In-process source registry."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone

from kb_sync.exceptions import DuplicateSource, SourceNotFound
from kb_sync.models import Source
from kb_sync.registry.base import SourceRegistryBase


class InMemorySourceRegistry(SourceRegistryBase):
    """Dictionary-backed registry.  Returned sources are copies."""

    def __init__(self, sources: list[Source] | None = None) -> None:
        self._sources: dict[str, Source] = {}
        self._lock = asyncio.Lock()
        for source in sources or []:
            self._sources[source.id] = source.model_copy(deep=True)

    async def get(self) -> list[Source]:
        return [s.model_copy(deep=True) for s in self._sources.values()]

    async def get_by_id(self, source_id: str) -> Source | None:
        source = self._sources.get(source_id)
        return source.model_copy(deep=True) if source else None

    async def get_by_name(self, name: str) -> Source | None:
        for source in self._sources.values():
            if source.name == name:
                return source.model_copy(deep=True)
        return None

    async def insert(self, source: Source) -> Source:
        async with self._lock:
            if any(s.name == source.name for s in self._sources.values()):
                raise DuplicateSource(f"Source {source.name!r} is already registered")
            if source.id in self._sources:
                raise DuplicateSource(f"Source id {source.id!r} is already registered")
            self._sources[source.id] = source.model_copy(deep=True)
            await self._persist()
        return source.model_copy(deep=True)

    async def update(
        self,
        source_id: str,
        *,
        last_revision_marker: str | None,
        document_hashes: dict[str, str] | None = None,
    ) -> None:
        async with self._lock:
            current = self._sources.get(source_id)
            if current is None:
                raise SourceNotFound(f"Source {source_id!r} is not registered")
            changes: dict = {
                "last_revision_marker": last_revision_marker,
                "updated_at": datetime.now(timezone.utc),
            }
            if document_hashes is not None:
                changes["document_hashes"] = dict(document_hashes)
            self._sources[source_id] = current.model_copy(update=changes)
            await self._persist()

    async def _persist(self) -> None:
        """Hook for durable subclasses; called with the lock held."""
