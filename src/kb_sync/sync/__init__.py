"""
Sync — the orchestrator and the workflows that drive it.

Public API
----------
- :class:`SyncOrchestrator` — per-source fetch → diff → embed → reconcile.
- :func:`plan_changes` — hash-based diff of a fetch against the last sync.
- :func:`sync_github_repos` / :func:`sync_knowledge_base` — workflow entry points.
"""

from kb_sync.sync.orchestrator import SyncOrchestrator, SyncPlan, plan_changes
from kb_sync.sync.workflows import (
    SyncFailed,
    build_orchestrator,
    register_github_repo,
    sync_github_repos,
    sync_knowledge_base,
)

__all__ = [
    "SyncFailed",
    "SyncOrchestrator",
    "SyncPlan",
    "build_orchestrator",
    "plan_changes",
    "register_github_repo",
    "sync_github_repos",
    "sync_knowledge_base",
]
