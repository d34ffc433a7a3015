"""
kb_sync — keeps a vector knowledge base in step with its upstream sources.

Sources (GitHub markdown, the local knowledge base, ticket history) are
fetched, diffed by content hash, chunked, embedded, and reconciled into an
embedding store.  Unchanged documents are never re-embedded.
"""

__version__ = "0.1.0"
