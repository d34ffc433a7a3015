"""Abstract source registry."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from kb_sync.exceptions import DuplicateSource
from kb_sync.models import Source

logger = logging.getLogger(__name__)


class SourceRegistryBase(ABC):
    """Tracks registered sources and their last synchronized revision.

    :meth:`update` is the only way sync progress is recorded.  Callers
    must invoke it only after the store reconciliation for that revision
    has fully succeeded.
    """

    @abstractmethod
    async def get(self) -> list[Source]:
        """All registered sources, in registration order."""
        ...

    @abstractmethod
    async def get_by_id(self, source_id: str) -> Source | None: ...

    @abstractmethod
    async def get_by_name(self, name: str) -> Source | None: ...

    @abstractmethod
    async def insert(self, source: Source) -> Source:
        """Register *source*.

        Raises
        ------
        DuplicateSource
            A source with the same name already exists.
        """
        ...

    @abstractmethod
    async def update(
        self,
        source_id: str,
        *,
        last_revision_marker: str | None,
        document_hashes: dict[str, str] | None = None,
    ) -> None:
        """Record a completed sync.

        Raises
        ------
        SourceNotFound
            *source_id* is not registered.
        """
        ...

    async def ensure(self, source: Source) -> Source:
        """Return the source registered under ``source.name``, inserting it if absent."""
        existing = await self.get_by_name(source.name)
        if existing is not None:
            return existing
        try:
            created = await self.insert(source)
        except DuplicateSource:
            # lost a race with a concurrent ensure()
            existing = await self.get_by_name(source.name)
            if existing is None:
                raise
            return existing
        logger.info("Registered source %s (%s)", created.name, created.kind.value)
        return created
