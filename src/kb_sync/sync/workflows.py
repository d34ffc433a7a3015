"""Entry points that wire the pipeline from settings and run a sync scope.

Each workflow returns ``{"results": [...], "duration_ms": int}`` and raises
if any source failed, so callers see either full success or an error.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

from kb_sync.config import Settings, settings
from kb_sync.exceptions import SyncError
from kb_sync.ingestion.chunker import Chunker
from kb_sync.ingestion.embedder import Embedder, get_embedding_provider
from kb_sync.ingestion.fetcher import get_fetcher
from kb_sync.models import Source, SourceKind, SyncResult
from kb_sync.registry import get_source_registry
from kb_sync.retry import RetryPolicy
from kb_sync.store import get_embedding_store
from kb_sync.sync.orchestrator import SyncOrchestrator

logger = logging.getLogger(__name__)

KNOWLEDGE_BASE_SOURCE_NAME = "dep-knowledge-base"
TICKET_HISTORY_SOURCE_NAME = "ticket-history"


class SyncFailed(SyncError):
    """One or more sources failed to sync."""

    def __init__(self, results: list[SyncResult]) -> None:
        failed = [r for r in results if not r.succeeded]
        super().__init__(
            "; ".join(f"{r.source_name or r.source_id}: {r.error}" for r in failed) or "sync failed"
        )
        self.results = results


def build_orchestrator(cfg: Settings = settings) -> SyncOrchestrator:
    """Wire registry, store, chunker and embedder from *cfg*."""
    policy = RetryPolicy.from_settings(cfg)
    return SyncOrchestrator(
        registry=get_source_registry(cfg),
        store=get_embedding_store(cfg),
        chunker=Chunker(chunk_size=cfg.chunk_size, chunk_overlap=cfg.chunk_overlap),
        embedder=Embedder(
            get_embedding_provider(cfg),
            batch_size=cfg.embedding_batch_size,
            max_batch_chars=cfg.embedding_max_batch_chars,
            retry_policy=policy,
        ),
        fetcher_factory=lambda source: get_fetcher(source, cfg),
        retry_policy=policy,
    )


def _report(results: list[SyncResult], t0: float) -> dict[str, Any]:
    report = {
        "results": [r.model_dump(mode="json") for r in results],
        "duration_ms": int((time.monotonic() - t0) * 1000),
    }
    if any(not r.succeeded for r in results):
        raise SyncFailed(results)
    return report


async def sync_github_repos(orchestrator: SyncOrchestrator | None = None) -> dict[str, Any]:
    """Sync every registered GitHub source."""
    orchestrator = orchestrator or build_orchestrator()
    logger.info("Syncing github repos")
    t0 = time.monotonic()
    results = await orchestrator.sync_all(kind=SourceKind.GITHUB)
    return _report(results, t0)


async def sync_knowledge_base(
    orchestrator: SyncOrchestrator | None = None,
    cfg: Settings = settings,
) -> dict[str, Any]:
    """Sync the local knowledge base and, when configured, the ticket history.

    Both sources are registered on first use.
    """
    orchestrator = orchestrator or build_orchestrator(cfg)
    logger.info("Syncing knowledge base")
    t0 = time.monotonic()

    wanted = [
        Source(
            name=KNOWLEDGE_BASE_SOURCE_NAME,
            owner="local",
            ref="main",
            kind=SourceKind.DIRECTORY,
            location=cfg.knowledge_base_dir,
        )
    ]
    if cfg.ticket_dataset_path:
        wanted.append(
            Source(
                name=TICKET_HISTORY_SOURCE_NAME,
                owner="local",
                ref="main",
                kind=SourceKind.TICKETS,
                location=cfg.ticket_dataset_path,
            )
        )
    sources = [await orchestrator.registry.ensure(source) for source in wanted]

    results = await orchestrator.sync_many(s.id for s in sources)
    return _report(results, t0)


async def register_github_repo(
    owner: str,
    name: str,
    ref: str = "main",
    orchestrator: SyncOrchestrator | None = None,
) -> Source:
    """Register a GitHub repository for syncing (idempotent)."""
    orchestrator = orchestrator or build_orchestrator()
    return await orchestrator.registry.ensure(Source(name=name, owner=owner, ref=ref, kind=SourceKind.GITHUB))


def run_sync_github_repos() -> dict[str, Any]:
    """Blocking wrapper around :func:`sync_github_repos`."""
    logging.basicConfig(level=settings.log_level)
    return asyncio.run(sync_github_repos())


def run_sync_knowledge_base() -> dict[str, Any]:
    """Blocking wrapper around :func:`sync_knowledge_base`."""
    logging.basicConfig(level=settings.log_level)
    return asyncio.run(sync_knowledge_base())
