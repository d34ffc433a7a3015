"""
Registry — registered content sources and their sync checkpoints.
"""

from kb_sync.config import Settings, settings
from kb_sync.registry.base import SourceRegistryBase
from kb_sync.registry.json_file import JsonFileSourceRegistry
from kb_sync.registry.memory import InMemorySourceRegistry

__all__ = [
    "InMemorySourceRegistry",
    "JsonFileSourceRegistry",
    "SourceRegistryBase",
    "get_source_registry",
]


def get_source_registry(cfg: Settings = settings) -> SourceRegistryBase:
    """Registry backed by ``cfg.registry_path``, or in-memory when it is empty."""
    if not cfg.registry_path:
        return InMemorySourceRegistry()
    return JsonFileSourceRegistry(cfg.registry_path)
