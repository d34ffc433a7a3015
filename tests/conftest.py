"""Shared pytest configuration and fixtures."""

from __future__ import annotations

import hashlib
import io
import tarfile
from unittest.mock import MagicMock

import pytest
import pytest_asyncio
import requests
from langchain_core.embeddings import Embeddings

from kb_sync.ingestion.chunker import Chunker
from kb_sync.ingestion.embedder import Embedder
from kb_sync.ingestion.fetcher import FetcherBase
from kb_sync.models import Document, EmbeddingRecord, FetchResult, Source, SourceKind
from kb_sync.registry import InMemorySourceRegistry
from kb_sync.retry import RetryPolicy
from kb_sync.store import InMemoryEmbeddingStore
from kb_sync.sync import SyncOrchestrator


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line("markers", "integration: marks tests requiring external services")


NO_WAIT = RetryPolicy(max_attempts=3, initial_wait=0, max_wait=0, jitter=0)


# ── Fakes ───────────────────────────────────────────────────────────────


class CountingEmbeddings(Embeddings):
    """Deterministic provider that records every request.

    Queue exceptions in ``failures`` to make the next calls raise.
    """

    def __init__(self, dim: int = 8) -> None:
        self.dim = dim
        self.calls: list[list[str]] = []
        self.failures: list[Exception] = []

    def _vector(self, text: str) -> list[float]:
        digest = hashlib.sha256(text.encode()).digest()
        return [b / 255 for b in digest[: self.dim]]

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        if self.failures:
            raise self.failures.pop(0)
        return [self._vector(t) for t in texts]

    def embed_query(self, text: str) -> list[float]:
        return self._vector(text)

    @property
    def texts_embedded(self) -> int:
        return sum(len(c) for c in self.calls)


class FakeFetcher(FetcherBase):
    """Serves ``files`` (path → content) as a complete fetch at ``marker``."""

    def __init__(self, files: dict[str, str] | None = None, marker: str = "rev-1") -> None:
        self.files = dict(files or {})
        self.marker = marker
        self.calls: list[str | None] = []
        self.errors: list[Exception] = []

    async def fetch(self, source: Source, since_marker: str | None = None) -> FetchResult:
        self.calls.append(since_marker)
        if self.errors:
            raise self.errors.pop(0)
        return self._fetch(source, since_marker)

    def _fetch(self, source: Source, since_marker: str | None) -> FetchResult:
        documents = [
            Document(source_id=source.id, path=path, content=content)
            for path, content in sorted(self.files.items())
        ]
        return FetchResult(documents=documents, new_marker=self.marker, complete=True)


class SpyStore(InMemoryEmbeddingStore):
    """In-memory store that records every public call and backend batch."""

    def __init__(self, **kwargs) -> None:
        kwargs.setdefault("retry_policy", NO_WAIT)
        super().__init__(**kwargs)
        self.delete_calls: list[list[str]] = []
        self.insert_calls: list[list[EmbeddingRecord]] = []
        self.batch_sizes: list[int] = []

    async def delete_by_document_ids(self, ids) -> None:
        ids = list(ids)
        self.delete_calls.append(ids)
        await super().delete_by_document_ids(ids)

    async def insert_many(self, records) -> None:
        self.insert_calls.append(list(records))
        await super().insert_many(records)

    async def _insert_batch(self, records: list[EmbeddingRecord]) -> None:
        self.batch_sizes.append(len(records))
        await super()._insert_batch(records)


# ── Fixtures ────────────────────────────────────────────────────────────


@pytest.fixture()
def provider() -> CountingEmbeddings:
    return CountingEmbeddings()


@pytest.fixture()
def embedder(provider: CountingEmbeddings) -> Embedder:
    return Embedder(provider, batch_size=16, max_batch_chars=100_000, retry_policy=NO_WAIT)


@pytest.fixture()
def chunker() -> Chunker:
    return Chunker(chunk_size=1000, chunk_overlap=0)


@pytest.fixture()
def store() -> SpyStore:
    return SpyStore()


@pytest.fixture()
def fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture()
def registry() -> InMemorySourceRegistry:
    return InMemorySourceRegistry()


@pytest_asyncio.fixture()
async def source(registry: InMemorySourceRegistry) -> Source:
    return await registry.insert(Source(name="docs", owner="acme", ref="main", kind=SourceKind.GITHUB))


@pytest.fixture()
def orchestrator(
    registry: InMemorySourceRegistry,
    store: SpyStore,
    chunker: Chunker,
    embedder: Embedder,
    fetcher: FakeFetcher,
) -> SyncOrchestrator:
    return SyncOrchestrator(
        registry,
        store,
        chunker,
        embedder,
        fetcher_factory=lambda _source: fetcher,
        retry_policy=NO_WAIT,
    )


# ── GitHub API doubles ──────────────────────────────────────────────────

GITHUB_API = "https://api.github.test"
HEAD_SHA = "b" * 40
BASE_SHA = "a" * 40


def make_tarball(files: dict[str, str], prefix: str = "acme-docs-bbbbbbb") -> bytes:
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tar:
        for name, content in files.items():
            data = content.encode()
            info = tarfile.TarInfo(f"{prefix}/{name}")
            info.size = len(data)
            tar.addfile(info, io.BytesIO(data))
    return buf.getvalue()


def http_response(status: int = 200, json_data=None, content: bytes = b"") -> MagicMock:
    resp = MagicMock(status_code=status, content=content)
    resp.json.return_value = json_data
    if status >= 400:
        resp.raise_for_status.side_effect = requests.HTTPError(f"HTTP {status}")
    return resp


def http_session(routes: dict[str, MagicMock]) -> MagicMock:
    session = MagicMock()
    session.headers = {}

    def get(url, **kwargs):
        if url not in routes:
            return http_response(404)
        route = routes[url]
        if isinstance(route, Exception):
            raise route
        return route

    session.get.side_effect = get
    return session


def github_routes(
    files: dict[str, str], blob_shas: dict[str, str] | None = None, head: str = HEAD_SHA
) -> dict[str, MagicMock]:
    """Routes for acme/docs with *files* in the tarball at commit *head*."""
    repo = f"{GITHUB_API}/repos/acme/docs"
    tree = [{"type": "blob", "path": p, "sha": s} for p, s in (blob_shas or {}).items()]
    tree.append({"type": "tree", "path": "guides", "sha": "t1"})
    return {
        f"{repo}/git/ref/heads/main": http_response(json_data={"object": {"sha": head}}),
        f"{repo}/git/trees/{head}": http_response(json_data={"tree": tree}),
        f"{repo}/tarball/{head}": http_response(content=make_tarball(files)),
    }

