"""Unit tests for the sync workflows."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from conftest import NO_WAIT, SpyStore

from kb_sync.config import Settings
from kb_sync.ingestion.fetcher import get_fetcher
from kb_sync.models import Source, SourceKind
from kb_sync.registry import InMemorySourceRegistry
from kb_sync.sync import SyncFailed, SyncOrchestrator, register_github_repo, sync_github_repos, sync_knowledge_base
from kb_sync.sync.workflows import KNOWLEDGE_BASE_SOURCE_NAME, TICKET_HISTORY_SOURCE_NAME


@pytest.fixture()
def kb_dir(tmp_path: Path) -> Path:
    root = tmp_path / "knowledge-base"
    (root / "pdfs").mkdir(parents=True)
    (root / "onboarding.md").write_text("# Onboarding\nWelcome aboard.")
    (root / "pdfs" / "scan.md").write_text("ignored")
    return root


def _orchestrator(cfg: Settings, store: SpyStore, chunker, embedder) -> SyncOrchestrator:
    return SyncOrchestrator(
        InMemorySourceRegistry(),
        store,
        chunker,
        embedder,
        fetcher_factory=lambda source: get_fetcher(source, cfg),
        retry_policy=NO_WAIT,
    )


@pytest.mark.asyncio
async def test_sync_knowledge_base_registers_once(kb_dir: Path, store: SpyStore, chunker, embedder) -> None:
    cfg = Settings(knowledge_base_dir=str(kb_dir), ticket_dataset_path="")
    orchestrator = _orchestrator(cfg, store, chunker, embedder)

    report = await sync_knowledge_base(orchestrator, cfg)
    again = await sync_knowledge_base(orchestrator, cfg)

    sources = await orchestrator.registry.get()
    assert [s.name for s in sources] == [KNOWLEDGE_BASE_SOURCE_NAME]
    assert sources[0].kind == SourceKind.DIRECTORY
    assert report["results"][0]["added"] == ["onboarding.md"]
    assert report["results"][0]["state"] == "committed"
    assert isinstance(report["duration_ms"], int)
    assert again["results"][0]["unchanged"] == 1
    assert await store.count() == 1


@pytest.mark.asyncio
async def test_sync_knowledge_base_includes_ticket_history(
    kb_dir: Path, tmp_path: Path, store: SpyStore, chunker, embedder
) -> None:
    tickets = tmp_path / "tickets.jsonl"
    tickets.write_text(json.dumps({"key": "SUP-1", "summary": "Printer jam"}) + "\n")
    cfg = Settings(knowledge_base_dir=str(kb_dir), ticket_dataset_path=str(tickets))
    orchestrator = _orchestrator(cfg, store, chunker, embedder)

    report = await sync_knowledge_base(orchestrator, cfg)

    assert {r["source_name"] for r in report["results"]} == {KNOWLEDGE_BASE_SOURCE_NAME, TICKET_HISTORY_SOURCE_NAME}
    assert await store.count() == 2


@pytest.mark.asyncio
async def test_failed_source_raises_sync_failed(tmp_path: Path, store: SpyStore, chunker, embedder) -> None:
    cfg = Settings(knowledge_base_dir=str(tmp_path / "missing"), ticket_dataset_path="")
    orchestrator = _orchestrator(cfg, store, chunker, embedder)

    with pytest.raises(SyncFailed) as excinfo:
        await sync_knowledge_base(orchestrator, cfg)

    assert KNOWLEDGE_BASE_SOURCE_NAME in str(excinfo.value)
    assert excinfo.value.results[0].state == "failed"


@pytest.mark.asyncio
async def test_sync_github_repos_only_touches_github_sources(orchestrator: SyncOrchestrator, fetcher) -> None:
    fetcher.files = {"README.md": "# Repo"}
    await register_github_repo("acme", "docs", orchestrator=orchestrator)
    await register_github_repo("acme", "docs", orchestrator=orchestrator)
    await orchestrator.registry.insert(Source(name="local", kind=SourceKind.DIRECTORY))

    report = await sync_github_repos(orchestrator)

    assert [r["source_name"] for r in report["results"]] == ["docs"]
    assert len(fetcher.calls) == 1
