"""Source registry persisted to a JSON file."""

from __future__ import annotations

import asyncio
import logging
import os
import tempfile
from pathlib import Path

from pydantic import TypeAdapter

from kb_sync.models import Source
from kb_sync.registry.memory import InMemorySourceRegistry

logger = logging.getLogger(__name__)

_SOURCES = TypeAdapter(list[Source])


class JsonFileSourceRegistry(InMemorySourceRegistry):
    """Registry that mirrors its state to *path* after every mutation.

    The file is rewritten through a temporary file and ``os.replace`` so a
    crash mid-write never leaves a truncated registry behind.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        sources: list[Source] = []
        if self.path.exists():
            sources = _SOURCES.validate_json(self.path.read_bytes())
            logger.debug("Loaded %d sources from %s", len(sources), self.path)
        super().__init__(sources)

    async def _persist(self) -> None:
        payload = _SOURCES.dump_json(list(self._sources.values()), indent=2)
        await asyncio.to_thread(self._write, payload)

    def _write(self, payload: bytes) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(payload)
            os.replace(tmp, self.path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise
