"""KFP v2 components — each file exports one @dsl.component."""

from pipelines.components.sync import sync_sources

__all__ = ["sync_sources"]
