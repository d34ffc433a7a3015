"""Error taxonomy for the sync pipeline.

Every error raised by a pipeline stage derives from :class:`SyncError`.
Transient kinds set ``retryable = True`` and are retried with bounded
exponential backoff where they are raised; everything else aborts the
current source's sync attempt immediately.
"""

from __future__ import annotations


class SyncError(Exception):
    """Base class for all pipeline errors."""

    retryable: bool = False


# -- fetch stage --------------------------------------------------------------


class FetchError(SyncError):
    """Raised by fetchers."""


class SourceUnreachable(FetchError):
    """The upstream source could not be reached (network, 5xx, throttling)."""

    retryable = True


class SourceNotFound(FetchError):
    """The source (or its registry entry) does not exist."""


# -- embed stage --------------------------------------------------------------


class EmbeddingError(SyncError):
    """Raised by the embedder."""


class EmbeddingServiceError(EmbeddingError):
    """The embedding provider failed or returned a malformed response."""

    retryable = True


class RateLimited(EmbeddingError):
    """The embedding provider asked us to slow down.

    ``retry_after`` is the server-suggested delay in seconds, when known.
    """

    retryable = True

    def __init__(self, message: str = "rate limited", *, retry_after: float | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


# -- store stage --------------------------------------------------------------


class StoreError(SyncError):
    """Raised by embedding stores."""


class StoreUnavailable(StoreError):
    """The backing store could not be reached."""

    retryable = True


class ConstraintViolation(StoreError):
    """A write violated the record model (duplicate keys, bad dimensions)."""


# -- registry stage -----------------------------------------------------------


class RegistryError(SyncError):
    """Raised by source registries."""


class DuplicateSource(RegistryError):
    """A source with the same name is already registered."""
