"""Shared configuration loaded from environment / ``.env``."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Pipeline-wide settings, populated from ``KB_SYNC_*`` env vars or a .env file."""

    # GitHub
    github_token: str = Field(default="", description="Token for the GitHub REST API (optional for public repos)")
    github_api_url: str = "https://api.github.com"
    request_timeout: int = Field(default=60, description="Per-request timeout in seconds")

    # Embedding
    embedding_provider: str = Field(
        default="openai",
        description="One of 'openai', 'huggingface' or 'fake' (deterministic, for keyless environments)",
    )
    embedding_model: str = "text-embedding-3-small"
    embedding_dimensions: int = 1536
    openai_api_key: str = ""
    embedding_batch_size: int = Field(default=64, description="Max chunks per embedding request")
    embedding_max_batch_chars: int = Field(
        default=200_000,
        description="Max total characters per embedding request (rough proxy for the token budget)",
    )

    # Chunking
    chunk_size: int = Field(default=8000, description="Maximum characters per chunk")
    chunk_overlap: int = 200

    # Vector store
    vector_store: str = Field(default="chroma", description="'chroma' or 'memory'")
    chroma_host: str = "localhost"
    chroma_port: int = 8000
    chroma_collection: str = "kb_sync"
    store_batch_size: int = Field(default=50, description="Max records per insert statement")

    # Source registry
    registry_path: str = "data/sources.json"

    # Knowledge base
    knowledge_base_dir: str = "knowledge-base"
    knowledge_base_exclude: list[str] = Field(default_factory=lambda: ["pdfs"])
    ticket_dataset_path: str = Field(
        default="",
        description="JSON-Lines export of historical tickets. Leave empty to skip ticket sync.",
    )

    # Retries
    max_attempts: int = 5
    retry_initial_wait: float = 1.0
    retry_max_wait: float = 30.0

    log_level: str = "INFO"

    model_config = SettingsConfigDict(env_prefix="KB_SYNC_", env_file=".env", env_file_encoding="utf-8")


# Singleton — import `settings` wherever needed.
settings = Settings()
