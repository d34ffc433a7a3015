"""FastAPI application exposing the sync workflows as HTTP triggers."""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any

from fastapi import Depends, FastAPI
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from kb_sync.config import settings
from kb_sync.exceptions import SourceNotFound
from kb_sync.sync import SyncFailed, SyncOrchestrator, build_orchestrator, sync_github_repos, sync_knowledge_base

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Knowledge Base Sync API",
    version="0.1.0",
    description="Triggers for synchronizing source content into the vector knowledge base.",
)


# ── Response schemas ──────────────────────────────────────────────────
class SyncResponse(BaseModel):
    """Per-source results and wall-clock duration of a sync run."""

    results: list[dict[str, Any]]
    duration_ms: int = Field(serialization_alias="durationMs")


@lru_cache(maxsize=1)
def get_orchestrator() -> SyncOrchestrator:
    """Process-wide orchestrator, so per-source locks are shared across requests."""
    return build_orchestrator()


def _failure(message: str, exc: Exception) -> JSONResponse:
    logger.error("%s: %s", message, exc)
    return JSONResponse({"error": message}, status_code=500)


def _ok(report: dict[str, Any]) -> dict[str, Any]:
    return SyncResponse(**report).model_dump(by_alias=True)


# ── Routes ────────────────────────────────────────────────────────────
@app.get("/health")
async def health() -> dict[str, str]:
    """Liveness probe."""
    return {"status": "ok"}


@app.post("/sync/repos")
async def sync_repos(orchestrator: SyncOrchestrator = Depends(get_orchestrator)) -> Any:
    """Sync every registered GitHub repository."""
    try:
        report = await sync_github_repos(orchestrator)
    except SyncFailed as exc:
        return _failure("Failed to sync github repos", exc)
    logger.info("Github repos synced in %dms", report["duration_ms"])
    return _ok(report)


@app.post("/sync/knowledge-base")
async def sync_kb(orchestrator: SyncOrchestrator = Depends(get_orchestrator)) -> Any:
    """Sync the local knowledge base (and ticket history when configured)."""
    try:
        report = await sync_knowledge_base(orchestrator)
    except SyncFailed as exc:
        return _failure("Failed to sync knowledge base", exc)
    logger.info("Knowledge base synced in %dms", report["duration_ms"])
    return _ok(report)


@app.post("/sync/sources/{source_id}")
async def sync_one(source_id: str, orchestrator: SyncOrchestrator = Depends(get_orchestrator)) -> Any:
    """Sync a single registered source."""
    if await orchestrator.registry.get_by_id(source_id) is None:
        return JSONResponse({"error": f"Unknown source {source_id!r}"}, status_code=404)
    result = await orchestrator.sync_source(source_id, raise_on_error=False)
    if not result.succeeded:
        return _failure(f"Failed to sync source {result.source_name}", RuntimeError(result.error))
    return _ok({"results": [result.model_dump(mode="json")], "duration_ms": result.duration_ms})
