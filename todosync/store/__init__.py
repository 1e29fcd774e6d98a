"""Authoritative storage for the synchronized document.

Keeps the current revision of each document and an append-only archive of
every revision it superseded.
"""

from .document_store import DocumentStore

__all__ = ["DocumentStore"]
