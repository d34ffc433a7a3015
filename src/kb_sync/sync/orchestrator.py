"""Sync orchestrator — keeps the embedding store consistent with each source.

One sync attempt for a source walks the states::

    idle → fetching → diffing → embedding → reconciling → committed
                                                 ↘ failed (from any of them)

Only documents whose content hash changed are chunked and embedded.
Reconciliation always deletes the stale records of changed and removed
documents *before* inserting fresh ones, and the source's revision marker
is committed last.  A failed or cancelled attempt therefore leaves the
marker untouched, and re-running the sync repairs whatever partial
delete/insert state it left behind.

Usage::

    orchestrator = SyncOrchestrator(registry, store, Chunker(), Embedder(provider))
    result = await orchestrator.sync_source(source.id)
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import defaultdict
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

from kb_sync.exceptions import SourceNotFound
from kb_sync.ingestion.chunker import Chunker
from kb_sync.ingestion.embedder import Embedder
from kb_sync.ingestion.fetcher import FetcherBase, get_fetcher
from kb_sync.models import Document, EmbeddingRecord, FetchResult, Source, SyncResult, SyncState
from kb_sync.registry.base import SourceRegistryBase
from kb_sync.retry import RetryPolicy, call_with_retry
from kb_sync.store.base import EmbeddingStoreBase

logger = logging.getLogger(__name__)


@dataclass
class SyncPlan:
    """Outcome of diffing a fetch against the last committed hashes."""

    added: list[Document] = field(default_factory=list)
    modified: list[Document] = field(default_factory=list)
    removed_ids: list[str] = field(default_factory=list)
    unchanged: int = 0
    hashes: dict[str, str] = field(default_factory=dict)

    @property
    def changed(self) -> list[Document]:
        return self.added + self.modified

    @property
    def stale_ids(self) -> list[str]:
        """Every document whose existing records must go."""
        return [d.id for d in self.changed] + self.removed_ids

    @property
    def is_noop(self) -> bool:
        return not self.changed and not self.removed_ids


def plan_changes(known_hashes: dict[str, str], fetched: FetchResult) -> SyncPlan:
    """Diff *fetched* against *known_hashes* (``document_id -> content_hash``).

    For a complete fetch, known documents missing from it are removed.  For a
    partial fetch, the fetcher's ``removed_ids`` are authoritative and every
    other known document carries over unchanged.
    """
    # the same path fetched twice: last one wins
    documents = list({doc.id: doc for doc in fetched.documents}.values())

    plan = SyncPlan()
    plan.hashes = {} if fetched.complete else dict(known_hashes)
    for doc in documents:
        previous = known_hashes.get(doc.id)
        if previous is None:
            plan.added.append(doc)
        elif previous != doc.content_hash:
            plan.modified.append(doc)
        else:
            plan.unchanged += 1
        plan.hashes[doc.id] = doc.content_hash

    fetched_ids = {doc.id for doc in documents}
    if fetched.complete:
        plan.removed_ids = sorted(set(known_hashes) - fetched_ids)
    else:
        plan.removed_ids = sorted(set(fetched.removed_ids) - fetched_ids)
        for doc_id in plan.removed_ids:
            plan.hashes.pop(doc_id, None)
    return plan


class SyncOrchestrator:
    """Coordinate fetch → diff → chunk → embed → reconcile → commit per source.

    Parameters
    ----------
    registry:
        Where sources and their checkpoints live.
    store:
        Embedding store to reconcile.
    chunker / embedder:
        Document → chunks → vectors.
    fetcher_factory:
        Returns the fetcher for a source; defaults to :func:`get_fetcher`.
    retry_policy:
        Backoff for transient fetch errors.
    """

    def __init__(
        self,
        registry: SourceRegistryBase,
        store: EmbeddingStoreBase,
        chunker: Chunker,
        embedder: Embedder,
        *,
        fetcher_factory: Callable[[Source], FetcherBase] = get_fetcher,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self.registry = registry
        self.store = store
        self.chunker = chunker
        self.embedder = embedder
        self.fetcher_factory = fetcher_factory
        self.retry_policy = retry_policy or RetryPolicy.from_settings()
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._states: dict[str, SyncState] = {}

    def state_of(self, source_id: str) -> SyncState:
        return self._states.get(source_id, SyncState.IDLE)

    # -- public API -----------------------------------------------------------

    async def sync_source(self, source_id: str, *, raise_on_error: bool = True) -> SyncResult:
        """Sync one source.

        Concurrent calls for the same source are serialized.  On failure the
        error is re-raised, or returned inside a ``failed`` result when
        *raise_on_error* is false.
        """
        async with self._locks[source_id]:
            result = SyncResult(source_id=source_id, source_name="")
            try:
                return await self._sync(source_id, result)
            except Exception as exc:
                self._set_state(result, SyncState.FAILED)
                result.error = f"{type(exc).__name__}: {exc}"
                logger.error("Sync of source %s failed: %s", result.source_name or source_id, result.error)
                if raise_on_error:
                    raise
                return result

    async def sync_many(self, source_ids: Iterable[str]) -> list[SyncResult]:
        """Sync sources concurrently; one failure does not affect the others."""
        ids = list(dict.fromkeys(source_ids))
        return list(await asyncio.gather(*(self.sync_source(sid, raise_on_error=False) for sid in ids)))

    async def sync_all(self, kind: str | None = None) -> list[SyncResult]:
        """Sync every registered source, optionally only those of *kind*."""
        sources = await self.registry.get()
        return await self.sync_many(s.id for s in sources if kind is None or s.kind == kind)

    # -- internals ------------------------------------------------------------

    def _set_state(self, result: SyncResult, state: SyncState) -> None:
        result.state = state
        self._states[result.source_id] = state

    async def _sync(self, source_id: str, result: SyncResult) -> SyncResult:
        t0 = time.monotonic()
        source = await self.registry.get_by_id(source_id)
        if source is None:
            raise SourceNotFound(f"Source {source_id!r} is not registered")
        result.source_name = source.name
        result.previous_marker = source.last_revision_marker
        logger.info("Syncing source %s (%s)", source.name, source.kind.value)

        # cold sync whenever there is nothing trustworthy to diff against
        since = source.last_revision_marker if source.document_hashes else None

        self._set_state(result, SyncState.FETCHING)
        fetcher = self.fetcher_factory(source)
        fetched = await call_with_retry(
            fetcher.fetch,
            source,
            since,
            policy=self.retry_policy,
            description=f"fetching {source.name}",
        )

        self._set_state(result, SyncState.DIFFING)
        plan = plan_changes(source.document_hashes if since else {}, fetched)
        result.new_marker = fetched.new_marker
        result.added = sorted(d.path for d in plan.added)
        result.modified = sorted(d.path for d in plan.modified)
        result.removed = plan.removed_ids
        result.unchanged = plan.unchanged
        logger.info(
            "%s: %d added, %d modified, %d removed, %d unchanged",
            source.name,
            len(plan.added),
            len(plan.modified),
            len(plan.removed_ids),
            plan.unchanged,
        )

        records: list[EmbeddingRecord] = []
        if plan.changed:
            self._set_state(result, SyncState.EMBEDDING)
            chunks = self.chunker.chunk_documents(plan.changed)
            embedded = await self.embedder.embed(chunks)
            records = [EmbeddingRecord.from_chunk(chunk) for chunk in embedded]
            result.chunks_embedded = len(embedded)

        if not plan.is_noop:
            self._set_state(result, SyncState.RECONCILING)
            await self.store.delete_by_document_ids(plan.stale_ids)
            await self.store.insert_many(records)
            result.records_inserted = len(records)

        await self.registry.update(
            source.id,
            last_revision_marker=fetched.new_marker,
            document_hashes=plan.hashes,
        )
        self._set_state(result, SyncState.COMMITTED)
        result.duration_ms = int((time.monotonic() - t0) * 1000)
        logger.info(
            "Synced source %s at %s (%d records) in %dms",
            source.name,
            fetched.new_marker[:12],
            len(records),
            result.duration_ms,
        )
        return result
