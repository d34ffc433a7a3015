"""Abstract base class for embedding-store backends.

Adding a new backend (pgvector, Qdrant …) only requires subclassing
:class:`EmbeddingStoreBase` and implementing the backend primitives.
Batching, input validation and retries live here so every backend
behaves the same.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable, Sequence

from kb_sync.exceptions import ConstraintViolation
from kb_sync.models import EmbeddingRecord
from kb_sync.retry import RetryPolicy, call_with_retry

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 50


class EmbeddingStoreBase(ABC):
    """Persist, retrieve and delete embedding records keyed by document id.

    Parameters
    ----------
    batch_size:
        Maximum records per backend insert call.
    retry_policy:
        Backoff applied to each backend call on ``StoreUnavailable``.
    """

    def __init__(self, *, batch_size: int = DEFAULT_BATCH_SIZE, retry_policy: RetryPolicy | None = None) -> None:
        if batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        self.batch_size = batch_size
        self.retry_policy = retry_policy or RetryPolicy.from_settings()

    # -- public API -----------------------------------------------------------

    async def delete_by_document_ids(self, ids: Iterable[str]) -> None:
        """Remove every record owned by each of *ids*.

        A no-op on empty input; ids without records are ignored.
        """
        unique = sorted(set(ids))
        if not unique:
            return
        await call_with_retry(
            self._delete_document_ids,
            unique,
            policy=self.retry_policy,
            description=f"deleting records of {len(unique)} documents",
        )
        logger.debug("Deleted records of %d documents", len(unique))

    async def insert_many(self, records: Sequence[EmbeddingRecord]) -> None:
        """Persist *records* in sequential batches of at most ``batch_size``.

        A no-op on empty input.  Records are keyed by ``record_id``, so
        resubmitting a batch after a partial failure overwrites identically.
        """
        if not records:
            return
        self._validate(records)

        total_batches = (len(records) + self.batch_size - 1) // self.batch_size
        for number, start in enumerate(range(0, len(records), self.batch_size), 1):
            batch = list(records[start : start + self.batch_size])
            await call_with_retry(
                self._insert_batch,
                batch,
                policy=self.retry_policy,
                description=f"inserting batch {number}/{total_batches}",
            )
            logger.debug("  inserted batch %d/%d (%d records)", number, total_batches, len(batch))

    # -- required overrides ---------------------------------------------------

    @abstractmethod
    async def select_by_document_ids(self, ids: Iterable[str]) -> list[EmbeddingRecord]:
        """Return the records of *ids*, ordered by document id then chunk index."""
        ...

    @abstractmethod
    async def count(self) -> int:
        """Total number of stored records."""
        ...

    @abstractmethod
    async def _delete_document_ids(self, ids: list[str]) -> None: ...

    @abstractmethod
    async def _insert_batch(self, records: list[EmbeddingRecord]) -> None: ...

    # -- optional overrides ---------------------------------------------------

    async def health_check(self) -> bool:
        """Return ``True`` when the backend is reachable and ready."""
        return True

    # -- helpers --------------------------------------------------------------

    @staticmethod
    def _validate(records: Sequence[EmbeddingRecord]) -> None:
        seen: set[str] = set()
        dim = len(records[0].embedding)
        for record in records:
            if record.record_id in seen:
                raise ConstraintViolation(f"Duplicate record {record.record_id!r} in insert")
            seen.add(record.record_id)
            if not record.embedding or len(record.embedding) != dim:
                raise ConstraintViolation(
                    f"Record {record.record_id!r} has dimension {len(record.embedding)}, expected {dim}"
                )
