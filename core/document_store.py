"""
Shop Document Store

Schemaless, collection-oriented storage for clients, services, repairs and
accounts. Each document is a JSON object keyed by an opaque generated id;
queries are equality filters plus a single-field ordering. There are no
joins: all cross-collection association happens in application code.

Backed by a single SQLite table so the whole shop lives in one file
(``data/shop.db`` by default). Storage order (insertion sequence) is kept
so that ties in an ordered query come back in the order they were written.

Timestamps are stored as ``{"seconds": int, "nanoseconds": int}`` pairs.

Usage:
    from core.document_store import DocumentStore

    store = DocumentStore(db_path="data/shop.db")
    doc_id = store.add("clients", {"ownerName": "Ivan Petrov"})
    store.update("clients", doc_id, {"phone": "0888111222"})
    newest = store.query("clients", order_by="createdAt", descending=True)
"""

import json
import logging
import sqlite3
import threading
import time
import uuid
from pathlib import Path
from typing import Any

from core.errors import ConflictError, NotFoundError, StorageError

logger = logging.getLogger("shop.store")


def server_timestamp() -> dict[str, int]:
    """Current UTC time as a {seconds, nanoseconds} pair."""
    now_ns = time.time_ns()
    return {"seconds": now_ns // 1_000_000_000, "nanoseconds": now_ns % 1_000_000_000}


def _order_key(value: Any) -> tuple:
    """Sort key that tolerates missing fields and mixed value shapes.

    Missing values sort before everything else; timestamp pairs compare
    by (seconds, nanoseconds); numbers before strings.
    """
    if value is None:
        return (0, 0)
    if isinstance(value, dict) and "seconds" in value:
        return (1, (value.get("seconds") or 0, value.get("nanoseconds") or 0))
    if isinstance(value, bool):
        return (2, int(value))
    if isinstance(value, (int, float)):
        return (2, value)
    return (3, str(value))


class DocumentStore:
    """SQLite-backed document collections.

    Args:
        db_path: Path to the SQLite database file. ``":memory:"`` works
                 for throwaway stores.
    """

    def __init__(self, db_path: str = "data/shop.db"):
        self._db_path = db_path
        self._lock = threading.RLock()
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        try:
            self._conn = sqlite3.connect(db_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._init_db()
        except sqlite3.Error as e:
            logger.error("Failed to open document store at %s: %s", db_path, e)
            raise StorageError(f"Cannot open document store: {e}") from e
        logger.info("DocumentStore initialized (db=%s)", db_path)

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    def _init_db(self) -> None:
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS documents (
                seq         INTEGER PRIMARY KEY AUTOINCREMENT,
                collection  TEXT NOT NULL,
                doc_id      TEXT NOT NULL,
                data        TEXT NOT NULL DEFAULT '{}',
                UNIQUE (collection, doc_id)
            );

            CREATE INDEX IF NOT EXISTS idx_doc_collection
                ON documents(collection);
        """)
        self._conn.commit()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        """Run one statement under the store lock, wrapping sqlite errors."""
        with self._lock:
            try:
                cur = self._conn.execute(sql, params)
                self._conn.commit()
                return cur
            except sqlite3.Error as e:
                logger.error("Document store error: %s", e)
                raise StorageError(f"Document store failure: {e}") from e

    @staticmethod
    def _decode(row: sqlite3.Row) -> dict[str, Any]:
        try:
            data = json.loads(row["data"]) if row["data"] else {}
        except (json.JSONDecodeError, TypeError):
            logger.warning("Corrupt document %s/%s, treating as empty",
                           row["collection"], row["doc_id"])
            data = {}
        data["id"] = row["doc_id"]
        return data

    @staticmethod
    def _encode(data: dict[str, Any]) -> str:
        payload = {k: v for k, v in data.items() if k != "id"}
        return json.dumps(payload, ensure_ascii=False)

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    def add(self, collection: str, data: dict[str, Any]) -> str:
        """Insert a document under a new generated id. Returns the id.

        ``createdAt`` is stamped with a server timestamp unless the caller
        already set one.
        """
        doc_id = uuid.uuid4().hex[:20]
        payload = dict(data)
        payload.setdefault("createdAt", server_timestamp())
        self._execute(
            "INSERT INTO documents (collection, doc_id, data) VALUES (?, ?, ?)",
            (collection, doc_id, self._encode(payload)),
        )
        logger.debug("Document added: %s/%s", collection, doc_id)
        return doc_id

    def set(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        """Create or overwrite a document with a caller-chosen id."""
        with self._lock:
            existing = self.get(collection, doc_id)
            if existing is None:
                self._execute(
                    "INSERT INTO documents (collection, doc_id, data) VALUES (?, ?, ?)",
                    (collection, doc_id, self._encode(data)),
                )
            else:
                self._execute(
                    "UPDATE documents SET data = ? WHERE collection = ? AND doc_id = ?",
                    (self._encode(data), collection, doc_id),
                )

    def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        """Fetch a single document by id, or None."""
        row = self._execute(
            "SELECT * FROM documents WHERE collection = ? AND doc_id = ?",
            (collection, doc_id),
        ).fetchone()
        return self._decode(row) if row else None

    def update(
        self,
        collection: str,
        doc_id: str,
        fields: dict[str, Any],
        expect: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Shallow-merge fields into an existing document.

        The read, merge and write happen under the store lock, so concurrent
        updates of different fields never drop each other. With ``expect``,
        the write only happens if every listed field still holds the given
        value (a callable value is called with the stored value instead);
        otherwise ConflictError is raised and nothing is written.

        Returns the merged document. Raises NotFoundError if the id is unknown.
        """
        with self._lock:
            current = self.get(collection, doc_id)
            if current is None:
                raise NotFoundError(collection, doc_id)
            for key, value in (expect or {}).items():
                held = value(current.get(key)) if callable(value) else current.get(key) == value
                if not held:
                    raise ConflictError(
                        f"{collection} record '{doc_id}' changed: {key} is {current.get(key)!r}"
                    )
            current.update(fields)
            self._execute(
                "UPDATE documents SET data = ? WHERE collection = ? AND doc_id = ?",
                (self._encode(current), collection, doc_id),
            )
        current["id"] = doc_id
        return current

    def delete(self, collection: str, doc_id: str) -> bool:
        """Delete a document. Returns True if something was removed."""
        cur = self._execute(
            "DELETE FROM documents WHERE collection = ? AND doc_id = ?",
            (collection, doc_id),
        )
        deleted = cur.rowcount > 0
        if deleted:
            logger.debug("Document deleted: %s/%s", collection, doc_id)
        return deleted

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def query(
        self,
        collection: str,
        where: dict[str, Any] | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Return documents matching all equality filters.

        Ordering is stable: documents with equal ``order_by`` values keep
        their storage order in both directions.
        """
        rows = self._execute(
            "SELECT * FROM documents WHERE collection = ? ORDER BY seq ASC",
            (collection,),
        ).fetchall()
        docs = [self._decode(r) for r in rows]

        if where:
            docs = [
                d for d in docs
                if all(d.get(key) == value for key, value in where.items())
            ]

        if order_by:
            # list.sort keeps equal keys in storage order even with reverse=True
            docs.sort(key=lambda d: _order_key(d.get(order_by)), reverse=descending)

        if limit is not None:
            docs = docs[:limit]
        return docs

    def count(self, collection: str) -> int:
        row = self._execute(
            "SELECT COUNT(*) AS c FROM documents WHERE collection = ?",
            (collection,),
        ).fetchone()
        return int(row["c"])

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()
        logger.info("DocumentStore closed")
