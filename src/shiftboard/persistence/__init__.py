"""Persistence layer for scheduling and notification documents.

This package provides the document store interface the scheduling core talks
to, and a SQLite-backed implementation of it.

Public API:
- DocumentStore: Interface every storage backend implements
- SQLiteDocumentStore: SQLite-backed document store
- BatchWrite: One write queued in an atomic batch
- StoredDocument: A document returned by a query
- MAX_BATCH_SIZE: Ceiling on writes per atomic batch

Example:
    from shiftboard.persistence import BatchWrite, SQLiteDocumentStore

    store = SQLiteDocumentStore(Path("/path/to/db"))
    store.atomic_batch([
        BatchWrite.set("schedules", "s1_2025-06-02_morning_c1", {...}),
        BatchWrite.delete("weekly_registrations", "u1_2025-06-02"),
    ])
"""

from .document_store import MAX_BATCH_SIZE, BatchWrite, DocumentStore, QueryFilter, SQLiteDocumentStore, StoredDocument

__all__ = [
    "MAX_BATCH_SIZE",
    "BatchWrite",
    "DocumentStore",
    "QueryFilter",
    "SQLiteDocumentStore",
    "StoredDocument",
]
