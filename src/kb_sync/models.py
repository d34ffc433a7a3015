"""Domain models for sources, documents, chunks and sync results."""

from __future__ import annotations

import hashlib
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field, model_validator


def content_hash(text: str) -> str:
    """Return the SHA-256 hex digest of *text*."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def document_id_for(source_id: str, path: str) -> str:
    """Stable document identifier derived from the owning source and path."""
    return hashlib.sha256(f"{source_id}:{path}".encode("utf-8")).hexdigest()[:32]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SourceKind(str, Enum):
    """Selects the fetcher used for a source."""

    GITHUB = "github"
    DIRECTORY = "directory"
    TICKETS = "tickets"


class Source(BaseModel):
    """A registered external content origin and its sync checkpoint.

    Attributes
    ----------
    id:
        Registry identifier.
    name:
        Unique name (repository name for GitHub sources).
    owner:
        Repository owner / organisation, or ``"local"`` for file-backed kinds.
    ref:
        Branch or version the source is pinned to.
    kind:
        Which fetcher handles this source.
    location:
        Filesystem path for ``directory`` and ``tickets`` sources.
    last_revision_marker:
        Opaque token (commit SHA, dataset digest) of the last successful sync.
    document_hashes:
        ``document_id -> content_hash`` of every document present after the
        last successful sync.  Used to skip unchanged documents.
    """

    id: str = Field(default_factory=lambda: uuid4().hex[:12])
    name: str
    owner: str = "local"
    ref: str = "main"
    kind: SourceKind = SourceKind.GITHUB
    location: str | None = None
    last_revision_marker: str | None = None
    document_hashes: dict[str, str] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}@{self.ref}"


class Document(BaseModel):
    """One logical document fetched from a source.

    ``id`` and ``content_hash`` are derived when not supplied.
    """

    id: str = ""
    source_id: str
    path: str
    content: str
    content_hash: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _derive_identity(self) -> Document:
        if not self.id:
            self.id = document_id_for(self.source_id, self.path)
        if not self.content_hash:
            self.content_hash = content_hash(self.content)
        return self


class Chunk(BaseModel):
    """A bounded slice of a document's text plus provenance metadata.

    ``metadata`` always carries ``path``, ``source`` and ``chunk_index``;
    anything else is source-specific and passed through untouched.
    """

    content: str
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def chunk_index(self) -> int:
        return int(self.metadata.get("chunk_index", 0))

    @property
    def document_id(self) -> str | None:
        return self.metadata.get("document_id")


class EmbeddedChunk(Chunk):
    """A chunk together with its embedding vector."""

    embedding: list[float]


class EmbeddingRecord(BaseModel):
    """Persisted pairing of a chunk's text and vector, keyed by owning document."""

    document_id: str
    chunk_index: int = 0
    content: str
    embedding: list[float]
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def record_id(self) -> str:
        """Deterministic key so resubmitting a record overwrites it."""
        return f"{self.document_id}_{self.chunk_index}"

    @classmethod
    def from_chunk(cls, chunk: EmbeddedChunk, document_id: str | None = None) -> EmbeddingRecord:
        doc_id = document_id or chunk.document_id
        if not doc_id:
            raise ValueError(f"Chunk for {chunk.metadata.get('path')!r} carries no document_id")
        return cls(
            document_id=doc_id,
            chunk_index=chunk.chunk_index,
            content=chunk.content,
            embedding=chunk.embedding,
            metadata=dict(chunk.metadata),
        )


class FetchResult(BaseModel):
    """What a fetcher returns for one source.

    Attributes
    ----------
    documents:
        Fetched documents.  With ``complete=True`` this is the full current
        document set; otherwise only added / modified documents.
    new_marker:
        Revision marker describing the fetched state.
    removed_ids:
        Document ids known to be deleted upstream (partial fetches only).
    complete:
        Whether ``documents`` is the full set.
    """

    documents: list[Document] = Field(default_factory=list)
    new_marker: str
    removed_ids: list[str] = Field(default_factory=list)
    complete: bool = True


class SyncState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    DIFFING = "diffing"
    EMBEDDING = "embedding"
    RECONCILING = "reconciling"
    COMMITTED = "committed"
    FAILED = "failed"


class SyncResult(BaseModel):
    """Caller-visible outcome of one source sync attempt."""

    source_id: str
    source_name: str
    state: SyncState = SyncState.IDLE
    previous_marker: str | None = None
    new_marker: str | None = None
    added: list[str] = Field(default_factory=list)
    modified: list[str] = Field(default_factory=list)
    removed: list[str] = Field(default_factory=list)
    unchanged: int = 0
    chunks_embedded: int = 0
    records_inserted: int = 0
    error: str | None = None
    duration_ms: int = 0

    @property
    def succeeded(self) -> bool:
        return self.state == SyncState.COMMITTED
