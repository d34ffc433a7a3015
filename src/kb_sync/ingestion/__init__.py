"""
Ingestion — fetching, chunking, and embedding of source documents.

This module converts upstream content (GitHub markdown, the local
knowledge base, historical tickets) into embedded chunks ready to be
reconciled into the vector store.
"""
