"""Fetchers — retrieve the current documents of a source.

Every fetcher returns a :class:`~kb_sync.models.FetchResult`.  A fetch is
either *complete* (the full current document set; change detection happens
in the orchestrator by content hash) or *partial* (only added / modified
documents plus explicit ``removed_ids``).

Fetchers do blocking I/O (``requests``, file reads); :meth:`FetcherBase.fetch`
runs it in a worker thread so the event loop stays free for other sources.
"""

from __future__ import annotations

import asyncio
import hashlib
import io
import json
import logging
import tarfile
from abc import ABC, abstractmethod
from pathlib import Path, PurePosixPath
from typing import Any

import requests

from kb_sync.config import Settings, settings
from kb_sync.exceptions import FetchError, SourceNotFound, SourceUnreachable
from kb_sync.models import Document, FetchResult, Source, SourceKind, document_id_for

logger = logging.getLogger(__name__)

MARKDOWN_SUFFIXES = (".md",)


def _is_markdown(path: str) -> bool:
    return path.lower().endswith(MARKDOWN_SUFFIXES)


def _marker_for(documents: list[Document]) -> str:
    """Digest over the (path, content_hash) pairs of a document set."""
    digest = hashlib.sha256()
    for doc in sorted(documents, key=lambda d: d.path):
        digest.update(f"{doc.path}\0{doc.content_hash}\n".encode("utf-8"))
    return digest.hexdigest()


class FetcherBase(ABC):
    """Backend-agnostic fetcher interface."""

    async def fetch(self, source: Source, since_marker: str | None = None) -> FetchResult:
        """Return the documents of *source*, optionally relative to *since_marker*.

        Raises
        ------
        SourceUnreachable
            Transient failure; safe to retry.
        SourceNotFound
            The source does not exist upstream.
        """
        return await asyncio.to_thread(self._fetch, source, since_marker)

    @abstractmethod
    def _fetch(self, source: Source, since_marker: str | None) -> FetchResult: ...


# -- GitHub -------------------------------------------------------------------


class GitHubFetcher(FetcherBase):
    """Markdown documentation from a GitHub repository.

    The head commit of ``source.ref`` is the revision marker.  On a warm
    sync the compare API narrows the download to changed markdown files; if
    the comparison is unavailable (base commit gone after a force-push) or
    truncated, the full document set is returned instead.

    Parameters
    ----------
    token:
        Optional API token.
    api_url:
        GitHub REST API base URL.
    timeout:
        Per-request timeout in seconds.
    session:
        Injected ``requests.Session`` (mainly for tests).
    """

    # The compare API lists at most this many files per response.
    COMPARE_FILE_LIMIT = 300

    def __init__(
        self,
        *,
        token: str = settings.github_token,
        api_url: str = settings.github_api_url,
        timeout: int = settings.request_timeout,
        session: requests.Session | None = None,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()
        self._session.headers.update(
            {"Accept": "application/vnd.github+json", "X-GitHub-Api-Version": "2022-11-28"}
        )
        if token:
            self._session.headers["Authorization"] = f"Bearer {token}"

    def _fetch(self, source: Source, since_marker: str | None) -> FetchResult:
        head = self.get_head_sha(source)

        if since_marker:
            if since_marker == head:
                logger.info("%s is already at %s", source.full_name, head[:7])
                return FetchResult(new_marker=head, complete=False)
            changes = self.get_changes(source, since_marker, head)
            if changes is not None:
                changed, removed = changes
                documents = self.fetch_markdown_files(source, head, only=changed) if changed else []
                # changed files that are now blank are gone, as on a full fetch
                returned = {doc.path for doc in documents}
                removed += [path for path in changed if path not in returned]
                logger.info(
                    "%s %s..%s: %d changed, %d removed",
                    source.full_name,
                    since_marker[:7],
                    head[:7],
                    len(documents),
                    len(removed),
                )
                return FetchResult(
                    documents=documents,
                    new_marker=head,
                    removed_ids=[document_id_for(source.id, path) for path in removed],
                    complete=False,
                )

        documents = self.fetch_markdown_files(source, head)
        logger.info("%s @ %s: fetched %d markdown files", source.full_name, head[:7], len(documents))
        return FetchResult(documents=documents, new_marker=head, complete=True)

    # -- GitHub API helpers ---------------------------------------------------

    def _get(self, path: str, **kwargs: Any) -> requests.Response:
        url = f"{self.api_url}{path}"
        try:
            resp = self._session.get(url, timeout=self.timeout, **kwargs)
        except (requests.ConnectionError, requests.Timeout) as exc:
            raise SourceUnreachable(f"GET {url}: {exc}") from exc

        if resp.status_code == 404:
            raise SourceNotFound(f"GET {url}: 404 Not Found")
        if resp.status_code in (403, 429) or resp.status_code >= 500:
            raise SourceUnreachable(f"GET {url}: HTTP {resp.status_code}")
        try:
            resp.raise_for_status()
        except requests.HTTPError as exc:
            raise FetchError(f"GET {url}: {exc}") from exc
        return resp

    def get_head_sha(self, source: Source) -> str:
        resp = self._get(f"/repos/{source.owner}/{source.name}/git/ref/heads/{source.ref}")
        return resp.json()["object"]["sha"]

    def get_blob_shas(self, source: Source, commit_sha: str) -> dict[str, str]:
        """Map every blob path in the commit's tree to its blob SHA."""
        resp = self._get(
            f"/repos/{source.owner}/{source.name}/git/trees/{commit_sha}",
            params={"recursive": "1"},
        )
        return {
            item["path"]: item["sha"]
            for item in resp.json().get("tree", [])
            if item.get("type") == "blob" and item.get("path")
        }

    def get_changes(self, source: Source, base: str, head: str) -> tuple[list[str], list[str]] | None:
        """Return ``(changed_paths, removed_paths)`` for markdown files, or ``None``
        when a full fetch is required."""
        try:
            resp = self._get(f"/repos/{source.owner}/{source.name}/compare/{base}...{head}")
        except SourceNotFound:
            logger.warning("Cannot compare %s..%s for %s; falling back to full fetch", base[:7], head[:7], source.full_name)
            return None

        files = resp.json().get("files", [])
        if len(files) >= self.COMPARE_FILE_LIMIT:
            logger.warning("Comparison for %s is truncated; falling back to full fetch", source.full_name)
            return None

        changed: list[str] = []
        removed: list[str] = []
        for item in files:
            filename = item.get("filename", "")
            status = item.get("status")
            previous = item.get("previous_filename", "")
            if status == "renamed" and _is_markdown(previous):
                removed.append(previous)
            if not _is_markdown(filename):
                continue
            if status == "removed":
                removed.append(filename)
            else:
                changed.append(filename)
        return changed, removed

    def get_tarball(self, source: Source, commit_sha: str) -> bytes:
        resp = self._get(f"/repos/{source.owner}/{source.name}/tarball/{commit_sha}")
        return resp.content

    def fetch_markdown_files(
        self, source: Source, commit_sha: str, *, only: list[str] | None = None
    ) -> list[Document]:
        """Download the tarball at *commit_sha* and return its markdown files.

        Whitespace-only files are skipped.  When *only* is given, other paths
        are ignored.
        """
        wanted = set(only) if only is not None else None
        documents = self.extract_markdown(source, self.get_tarball(source, commit_sha), wanted)
        shas = self.get_blob_shas(source, commit_sha)
        for doc in documents:
            doc.metadata["sha"] = shas.get(doc.path, "")
        return documents

    @staticmethod
    def extract_markdown(source: Source, tarball: bytes, wanted: set[str] | None = None) -> list[Document]:
        documents: list[Document] = []
        try:
            archive = tarfile.open(fileobj=io.BytesIO(tarball), mode="r:*")
        except tarfile.TarError as exc:
            raise SourceUnreachable(f"Corrupt tarball for {source.full_name}: {exc}") from exc

        with archive:
            for member in archive:
                if not member.isfile():
                    continue
                # strip the "<owner>-<repo>-<sha>/" prefix
                rel_path = "/".join(member.name.split("/")[1:])
                if not _is_markdown(rel_path):
                    continue
                if wanted is not None and rel_path not in wanted:
                    continue
                fh = archive.extractfile(member)
                if fh is None:
                    continue
                content = fh.read().decode("utf-8", errors="replace")
                if not content.strip():
                    continue
                documents.append(
                    Document(
                        source_id=source.id,
                        path=rel_path,
                        content=content,
                        metadata={
                            "owner": source.owner,
                            "repo": source.name,
                            "name": PurePosixPath(rel_path).name,
                            "source": f"{source.owner}/{source.name}",
                        },
                    )
                )
        documents.sort(key=lambda d: d.path)
        return documents


# -- Local knowledge base -----------------------------------------------------


class DirectoryFetcher(FetcherBase):
    """Markdown files under a local directory (the curated knowledge base).

    Parameters
    ----------
    exclude:
        Directory names skipped anywhere in the tree.
    glob_pattern:
        File-matching pattern relative to ``source.location``.
    """

    def __init__(
        self,
        *,
        exclude: list[str] | None = None,
        glob_pattern: str = "**/*.md",
    ) -> None:
        self.exclude = set(settings.knowledge_base_exclude if exclude is None else exclude)
        self.glob_pattern = glob_pattern

    def _fetch(self, source: Source, since_marker: str | None) -> FetchResult:
        if not source.location:
            raise SourceNotFound(f"Source {source.name!r} has no location")
        root = Path(source.location)
        if not root.is_dir():
            raise SourceNotFound(f"Directory not found: {root}")

        documents: list[Document] = []
        for fpath in sorted(root.glob(self.glob_pattern)):
            if not fpath.is_file():
                continue
            rel = fpath.relative_to(root)
            if self.exclude.intersection(rel.parts[:-1]):
                continue
            try:
                content = fpath.read_text(encoding="utf-8", errors="replace")
            except OSError as exc:
                raise SourceUnreachable(f"Cannot read {fpath}: {exc}") from exc
            if not content.strip():
                continue
            path = rel.as_posix()
            documents.append(
                Document(source_id=source.id, path=path, content=content, metadata={"source": path})
            )

        logger.info("Read %d markdown files from %s", len(documents), root)
        return FetchResult(documents=documents, new_marker=_marker_for(documents), complete=True)


# -- Ticket history -----------------------------------------------------------


class TicketDatasetFetcher(FetcherBase):
    """Historical tickets from a JSON-Lines export.

    Each line is an object with at least ``key`` and ``summary``; optional
    ``description``, ``resolution``, ``status`` and ``components``.  Tickets
    are rendered to markdown so they chunk like documentation.  The digest of
    the file is the revision marker.
    """

    def _fetch(self, source: Source, since_marker: str | None) -> FetchResult:
        if not source.location:
            raise SourceNotFound(f"Source {source.name!r} has no location")
        path = Path(source.location)
        if not path.is_file():
            raise SourceNotFound(f"Ticket dataset not found: {path}")
        try:
            raw = path.read_bytes()
        except OSError as exc:
            raise SourceUnreachable(f"Cannot read {path}: {exc}") from exc

        marker = hashlib.sha256(raw).hexdigest()
        if since_marker == marker:
            return FetchResult(new_marker=marker, complete=False)

        tickets: dict[str, dict] = {}
        for lineno, line in enumerate(raw.decode("utf-8", errors="replace").splitlines(), 1):
            line = line.strip()
            if not line:
                continue
            try:
                obj = json.loads(line)
            except json.JSONDecodeError as exc:
                logger.warning("Skipping malformed line %d of %s: %s", lineno, path, exc)
                continue
            if not isinstance(obj, dict) or not obj.get("key"):
                logger.warning("Skipping line %d of %s: missing 'key'", lineno, path)
                continue
            # later exports of the same ticket win
            tickets[str(obj["key"])] = obj

        documents = [
            Document(
                source_id=source.id,
                path=f"tickets/{key}",
                content=render_ticket(ticket),
                metadata={
                    "source": source.name,
                    "ticket_key": key,
                    "status": _text(ticket.get("status")),
                },
            )
            for key, ticket in sorted(tickets.items())
        ]
        logger.info("Read %d tickets from %s", len(documents), path)
        return FetchResult(documents=documents, new_marker=marker, complete=True)


def _text(value: Any) -> str:
    """Exports carry nulls and numbers where strings are expected."""
    return "" if value is None else str(value).strip()


def render_ticket(ticket: dict) -> str:
    """Render one ticket record as a markdown document."""
    lines = [f"# {_text(ticket['key'])}: {_text(ticket.get('summary'))}", ""]
    status = _text(ticket.get("status"))
    if status:
        lines.append(f"**Status:** {status}")
    components = ticket.get("components") or []
    if isinstance(components, str):
        components = [components]
    if components:
        lines.append(f"**Components:** {', '.join(str(c) for c in components)}")
    for heading, field in (("Description", "description"), ("Resolution", "resolution")):
        body = _text(ticket.get(field))
        if body:
            lines += ["", f"## {heading}", "", body]
    return "\n".join(lines).strip() + "\n"


def get_fetcher(source: Source, cfg: Settings = settings) -> FetcherBase:
    """Return the fetcher for ``source.kind``."""
    if source.kind == SourceKind.GITHUB:
        return GitHubFetcher(token=cfg.github_token, api_url=cfg.github_api_url, timeout=cfg.request_timeout)
    if source.kind == SourceKind.DIRECTORY:
        return DirectoryFetcher(exclude=cfg.knowledge_base_exclude)
    if source.kind == SourceKind.TICKETS:
        return TicketDatasetFetcher()
    raise ValueError(f"Unsupported source kind: {source.kind!r}")
