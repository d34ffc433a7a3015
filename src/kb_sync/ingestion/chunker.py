"""Text chunking strategies."""

from __future__ import annotations

import bisect
import re
from collections.abc import Iterable

from langchain_text_splitters import RecursiveCharacterTextSplitter

from kb_sync.config import settings
from kb_sync.models import Chunk, Document

# Markdown headings first, then paragraphs, lines, sentences, words, characters.
MARKDOWN_SEPARATORS = ["\n# ", "\n## ", "\n### ", "\n#### ", "\n\n", "\n", ". ", " ", ""]

_HEADING_RE = re.compile(r"^(#{1,6})[ \t]+(.+?)(?:[ \t]+#+)?[ \t]*$", re.MULTILINE)


class Chunker:
    """Split documents into bounded, overlapping chunks.

    A document that already fits in ``chunk_size`` characters is kept as a
    single chunk with its content verbatim.  Longer documents go through
    LangChain's ``RecursiveCharacterTextSplitter``.  The output is a pure
    function of the document, so re-chunking unchanged content always yields
    the same chunks with the same indices.

    Parameters
    ----------
    chunk_size:
        Maximum number of characters per chunk.
    chunk_overlap:
        Number of overlapping characters between consecutive chunks.
    separators:
        Split boundaries in priority order.
    """

    def __init__(
        self,
        chunk_size: int = settings.chunk_size,
        chunk_overlap: int = settings.chunk_overlap,
        separators: list[str] | None = None,
    ) -> None:
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        if chunk_overlap >= chunk_size:
            raise ValueError(f"chunk_overlap ({chunk_overlap}) must be < chunk_size ({chunk_size})")
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self._splitter = RecursiveCharacterTextSplitter(
            chunk_size=chunk_size,
            chunk_overlap=chunk_overlap,
            length_function=len,
            separators=separators or MARKDOWN_SEPARATORS,
            add_start_index=True,
        )

    def chunk(self, document: Document) -> list[Chunk]:
        """Return the ordered chunks of *document*."""
        text = document.content
        if not text.strip():
            return []

        if len(text) <= self.chunk_size:
            pieces = [(text, 0)]
        else:
            pieces = [
                (piece.page_content, piece.metadata.get("start_index", 0))
                for piece in self._splitter.create_documents([text])
            ]

        headings = _heading_positions(text)
        chunk_count = len(pieces)
        chunks: list[Chunk] = []
        for idx, (content, start) in enumerate(pieces):
            metadata = {
                **document.metadata,
                "path": document.path,
                "source": document.metadata.get("source", document.path),
                "document_id": document.id,
                "chunk_index": idx,
                "chunk_count": chunk_count,
            }
            heading = _heading_at(headings, start)
            if heading is not None:
                metadata["heading"] = heading
            chunks.append(Chunk(content=content, metadata=metadata))
        return chunks

    def chunk_documents(self, documents: Iterable[Document]) -> list[Chunk]:
        """Chunk many documents, preserving document order."""
        return [chunk for document in documents for chunk in self.chunk(document)]


def _heading_positions(text: str) -> tuple[list[int], list[str]]:
    starts: list[int] = []
    titles: list[str] = []
    for match in _HEADING_RE.finditer(text):
        starts.append(match.start())
        titles.append(match.group(2))
    return starts, titles


def _heading_at(headings: tuple[list[int], list[str]], offset: int) -> str | None:
    """Nearest heading that starts at or before *offset*."""
    starts, titles = headings
    pos = bisect.bisect_right(starts, offset)
    return titles[pos - 1] if pos else None
