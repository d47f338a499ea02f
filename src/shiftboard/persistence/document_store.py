"""Document store collaborator and its SQLite-backed implementation.

The scheduling core treats storage as a generic document store: documents are
JSON objects addressed by ``(collection, document id)``, written with full
replace (``set``), top-level merge (``update``) or ``delete``, queried with
simple field predicates, and grouped into bounded atomic batches.
"""

from __future__ import annotations

import json
import re
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Literal

from ..errors import NotFoundError
from ..utils import isoformat_utc, new_document_id, utc_now

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator, Sequence
    from contextlib import AbstractContextManager

MAX_BATCH_SIZE = 500

WriteOp = Literal["set", "update", "delete"]
QueryFilter = tuple[str, str, Any]

_FIELD_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)*$")
_SQL_OPERATORS = {"==": "=", "!=": "!=", "<": "<", "<=": "<=", ">": ">", ">=": ">="}


@dataclass(slots=True)
class BatchWrite:
    """One write queued in an atomic batch."""

    op: WriteOp
    collection: str
    doc_id: str
    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def set(cls, collection: str, doc_id: str, data: dict[str, Any]) -> BatchWrite:
        return cls("set", collection, doc_id, data)

    @classmethod
    def update(cls, collection: str, doc_id: str, data: dict[str, Any]) -> BatchWrite:
        return cls("update", collection, doc_id, data)

    @classmethod
    def delete(cls, collection: str, doc_id: str) -> BatchWrite:
        return cls("delete", collection, doc_id)


@dataclass(slots=True)
class StoredDocument:
    id: str
    data: dict[str, Any]


class DocumentStore:
    """Interface every storage backend implements."""

    max_batch_size: int = MAX_BATCH_SIZE

    def new_id(self) -> str:
        return new_document_id()

    def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        raise NotImplementedError

    def set(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        raise NotImplementedError

    def update(self, collection: str, doc_id: str, fields: dict[str, Any]) -> None:
        raise NotImplementedError

    def delete(self, collection: str, doc_id: str) -> None:
        raise NotImplementedError

    def query(self, collection: str, filters: Iterable[QueryFilter] = ()) -> list[StoredDocument]:
        raise NotImplementedError

    def atomic_batch(self, writes: Sequence[BatchWrite]) -> None:
        raise NotImplementedError

    def transaction(self) -> AbstractContextManager[None]:
        """Context manager that serialises a read-then-write sequence against other writers."""
        raise NotImplementedError


class SQLiteDocumentStore(DocumentStore):
    """SQLite-backed document store.

    Each document is one row holding its JSON body. Queries evaluate
    predicates with ``json_extract`` and return documents in insertion order.
    The database uses WAL mode and one connection per thread, so background
    fan-out threads can share a store instance with request threads.

    Example:
        store = SQLiteDocumentStore(Path("/data/shiftboard.db"))
        store.set("users", "u1", {"name": "An", "isActive": True})
        active = store.query("users", [("isActive", "==", True)])
    """

    SCHEMA_VERSION = 1

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        self._local = threading.local()
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        if not hasattr(self._local, "connection") or self._local.connection is None:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            self._local.connection = sqlite3.connect(self._db_path, timeout=30.0)
            self._local.connection.execute("PRAGMA journal_mode=WAL")
            self._local.connection.row_factory = sqlite3.Row
        return self._local.connection

    def _init_db(self) -> None:
        conn = self._get_connection()
        conn.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY
            )
        """)
        row = conn.execute("SELECT version FROM schema_version LIMIT 1").fetchone()
        current_version = row["version"] if row else 0
        if current_version < self.SCHEMA_VERSION:
            self._migrate_schema(current_version)

    def _migrate_schema(self, from_version: int) -> None:
        conn = self._get_connection()
        if from_version < 1:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS documents (
                    collection TEXT NOT NULL,
                    doc_id TEXT NOT NULL,
                    body TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY (collection, doc_id)
                )
            """)
        conn.execute("DELETE FROM schema_version")
        conn.execute("INSERT INTO schema_version (version) VALUES (?)", (self.SCHEMA_VERSION,))
        conn.commit()

    def close(self) -> None:
        """Close the database connection for the current thread."""
        if hasattr(self._local, "connection") and self._local.connection is not None:
            self._local.connection.close()
            self._local.connection = None

    def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        return self._read(self._get_connection(), collection, doc_id)

    def set(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        self.atomic_batch([BatchWrite.set(collection, doc_id, data)])

    def update(self, collection: str, doc_id: str, fields: dict[str, Any]) -> None:
        self.atomic_batch([BatchWrite.update(collection, doc_id, fields)])

    def delete(self, collection: str, doc_id: str) -> None:
        self.atomic_batch([BatchWrite.delete(collection, doc_id)])

    def query(self, collection: str, filters: Iterable[QueryFilter] = ()) -> list[StoredDocument]:
        clauses = ["collection = ?"]
        params: list[Any] = [collection]
        for field_name, op, value in filters:
            if not _FIELD_PATTERN.match(field_name):
                raise ValueError(f"Invalid query field '{field_name}'")
            if op not in _SQL_OPERATORS:
                raise ValueError(f"Unsupported query operator '{op}'")
            path = f"$.{field_name}"
            if value is None and op in ("==", "!="):
                clauses.append(f"json_extract(body, ?) IS {'NOT ' if op == '!=' else ''}NULL")
                params.append(path)
                continue
            clauses.append(f"json_extract(body, ?) {_SQL_OPERATORS[op]} ?")
            params.extend([path, int(value) if isinstance(value, bool) else value])

        cursor = self._get_connection().execute(
            f"SELECT doc_id, body FROM documents WHERE {' AND '.join(clauses)} ORDER BY rowid",
            params,
        )
        return [StoredDocument(id=row["doc_id"], data=json.loads(row["body"])) for row in cursor]

    def atomic_batch(self, writes: Sequence[BatchWrite]) -> None:
        """Apply every write or none of them.

        Raises:
            ValueError: More than ``max_batch_size`` writes were supplied.
            NotFoundError: An ``update`` targets a missing document.
        """
        if len(writes) > self.max_batch_size:
            raise ValueError(f"Atomic batch holds {len(writes)} writes; the ceiling is {self.max_batch_size}")
        if not writes:
            return
        conn = self._get_connection()
        if not getattr(self._local, "in_transaction", False):
            with conn:
                for write in writes:
                    self._apply(conn, write)
            return

        conn.execute("SAVEPOINT atomic_batch")
        try:
            for write in writes:
                self._apply(conn, write)
        except Exception:
            conn.execute("ROLLBACK TO atomic_batch")
            conn.execute("RELEASE atomic_batch")
            raise
        conn.execute("RELEASE atomic_batch")

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Hold the database write lock for the duration of the block.

        ``BEGIN IMMEDIATE`` takes the lock before the first read, so a count
        taken inside the block cannot be invalidated by another writer before
        the block's own writes land. Batches issued inside the block commit
        with it; nested calls join the outer transaction.
        """
        if getattr(self._local, "in_transaction", False):
            yield
            return

        conn = self._get_connection()
        conn.execute("BEGIN IMMEDIATE")
        self._local.in_transaction = True
        try:
            yield
        except BaseException:
            conn.rollback()
            raise
        else:
            conn.commit()
        finally:
            self._local.in_transaction = False

    def _apply(self, conn: sqlite3.Connection, write: BatchWrite) -> None:
        if write.op == "delete":
            conn.execute(
                "DELETE FROM documents WHERE collection = ? AND doc_id = ?",
                (write.collection, write.doc_id),
            )
            return

        if write.op == "update":
            existing = self._read(conn, write.collection, write.doc_id)
            if existing is None:
                raise NotFoundError(f"Document {write.collection}/{write.doc_id} does not exist")
            body = {**existing, **write.data}
        elif write.op == "set":
            body = dict(write.data)
        else:
            raise ValueError(f"Unsupported write operation '{write.op}'")

        conn.execute(
            """
            INSERT INTO documents (collection, doc_id, body, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(collection, doc_id) DO UPDATE SET
                body = excluded.body,
                updated_at = excluded.updated_at
            """,
            (write.collection, write.doc_id, json.dumps(body, ensure_ascii=False), isoformat_utc(utc_now())),
        )

    @staticmethod
    def _read(conn: sqlite3.Connection, collection: str, doc_id: str) -> dict[str, Any] | None:
        row = conn.execute(
            "SELECT body FROM documents WHERE collection = ? AND doc_id = ?",
            (collection, doc_id),
        ).fetchone()
        return json.loads(row["body"]) if row else None
