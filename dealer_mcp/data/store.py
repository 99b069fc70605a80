"""RecordStore protocol and SQLite implementation for CRM collections.

Each collection is a table of JSON documents plus a few indexed lookup
columns.  Records go in and come out as plain dicts.
"""

from __future__ import annotations

import json
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from typing import (
    Any,
    Iterator,
    Protocol,
    runtime_checkable,
)

from dealer_mcp.constants import COLLECTIONS

# Columns mirrored out of the JSON document so lookups can use an index.
INDEXED_FIELDS: dict[str, tuple[str, ...]] = {
    "leads": ("phone", "email", "status"),
    "opportunities": ("lead_id", "stage"),
    "appointments": ("lead_id", "status"),
    "finance_applications": ("lead_id", "status"),
    "consent_events": ("lead_id", "channel"),
    "inventory": ("vin", "status"),
    "conversation_threads": ("lead_id",),
    "conversations": ("lead_id",),
    "call_events": ("lead_id", "outcome"),
    "workflow_runs": ("lead_id", "workflow_key"),
}

ID_PREFIXES: dict[str, str] = {
    "leads": "lead",
    "opportunities": "opp",
    "appointments": "appt",
    "finance_applications": "finance",
    "consent_events": "consent",
    "inventory": "unit",
    "conversation_threads": "thread",
    "conversations": "msg",
    "call_events": "call",
    "workflow_runs": "run",
}


class RecordNotFoundError(LookupError):
    """Raised when a referenced record id does not exist."""

    def __init__(self, collection: str, record_id: str) -> None:
        super().__init__(f"{collection} record '{record_id}' not found.")
        self.collection = collection
        self.record_id = record_id


def new_record_id(collection: str) -> str:
    return f"{ID_PREFIXES.get(collection, 'rec')}-{uuid.uuid4().hex[:12]}"


# ── Protocol ────────────────────────────────────────────────────────


@runtime_checkable
class RecordStore(Protocol):
    """Minimal interface the CRM facade needs from persistence."""

    def get(self, collection: str, record_id: str) -> dict[str, Any] | None: ...
    def find_first(self, collection: str, field: str, value: Any) -> dict[str, Any] | None: ...
    def insert(self, collection: str, record: dict[str, Any]) -> str: ...
    def patch(
        self, collection: str, record_id: str, changes: dict[str, Any],
    ) -> dict[str, Any]: ...
    def list_all(self, collection: str) -> list[dict[str, Any]]: ...
    def count(self, collection: str) -> int: ...
    def reset(self) -> None: ...
    def atomic(self) -> Any: ...


# ── SQLite implementation ───────────────────────────────────────────


class SqliteRecordStore:
    """SQLite-backed record store with WAL mode and one writer lock.

    ``atomic()`` holds the lock across several verbs, which is how the
    facade makes intake dedup and stage writes single read-modify-write
    steps.
    """

    def __init__(self, db_path: str = ":memory:") -> None:
        self._lock = threading.RLock()
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        with self._lock:
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA synchronous=NORMAL")
            self._conn.execute("PRAGMA temp_store=MEMORY")
            self._create_schema()

    # ── Schema ─────────────────────────────────────────────────────

    def _create_schema(self) -> None:
        statements: list[str] = []
        for collection in COLLECTIONS:
            columns = "".join(
                f",\n                {name} TEXT" for name in INDEXED_FIELDS[collection]
            )
            statements.append(f"""
            CREATE TABLE IF NOT EXISTS {collection} (
                seq  INTEGER PRIMARY KEY AUTOINCREMENT,
                id   TEXT NOT NULL UNIQUE,
                doc  TEXT NOT NULL{columns}
            );""")
            for name in INDEXED_FIELDS[collection]:
                statements.append(
                    f"CREATE INDEX IF NOT EXISTS idx_{collection}_{name} "
                    f"ON {collection}({name});"
                )
        self._conn.executescript("\n".join(statements))

    # ── Helpers ────────────────────────────────────────────────────

    @staticmethod
    def _check_collection(collection: str) -> None:
        if collection not in INDEXED_FIELDS:
            raise ValueError(
                f"Unknown collection '{collection}'. "
                f"Expected one of: {', '.join(COLLECTIONS)}."
            )

    @staticmethod
    def _index_values(collection: str, record: dict[str, Any]) -> list[Any]:
        values: list[Any] = []
        for name in INDEXED_FIELDS[collection]:
            value = record.get(name)
            values.append(None if value is None else str(value))
        return values

    @staticmethod
    def _row_to_dict(row: sqlite3.Row) -> dict[str, Any]:
        record = json.loads(row["doc"])
        record["id"] = row["id"]
        return record

    @contextmanager
    def atomic(self) -> Iterator[SqliteRecordStore]:
        with self._lock:
            yield self

    # ── Verbs ──────────────────────────────────────────────────────

    def get(self, collection: str, record_id: str) -> dict[str, Any] | None:
        self._check_collection(collection)
        with self._lock:
            row = self._conn.execute(
                f"SELECT id, doc FROM {collection} WHERE id = ?", (record_id,),
            ).fetchone()
        return self._row_to_dict(row) if row else None

    def find_first(self, collection: str, field: str, value: Any) -> dict[str, Any] | None:
        """Oldest record whose *field* equals *value*."""
        self._check_collection(collection)
        if field == "id":
            return self.get(collection, str(value))
        if field in INDEXED_FIELDS[collection]:
            clause = f"{field} = ?"
            param: Any = None if value is None else str(value)
        else:
            if not field.replace("_", "").isalnum():
                raise ValueError(f"Invalid field name '{field}'.")
            clause = f"json_extract(doc, '$.{field}') = ?"
            param = value
        with self._lock:
            row = self._conn.execute(
                f"SELECT id, doc FROM {collection} WHERE {clause} ORDER BY seq LIMIT 1",
                (param,),
            ).fetchone()
        return self._row_to_dict(row) if row else None

    def insert(self, collection: str, record: dict[str, Any]) -> str:
        self._check_collection(collection)
        doc = dict(record)
        record_id = str(doc.pop("id", None) or new_record_id(collection))
        columns = ("id", "doc", *INDEXED_FIELDS[collection])
        placeholders = ", ".join("?" * len(columns))
        with self._lock:
            try:
                self._conn.execute(
                    f"INSERT INTO {collection} ({', '.join(columns)}) VALUES ({placeholders})",
                    (record_id, json.dumps(doc, default=str), *self._index_values(collection, doc)),
                )
            except sqlite3.IntegrityError as exc:
                raise ValueError(f"{collection} record '{record_id}' already exists.") from exc
            self._conn.commit()
        return record_id

    def patch(
        self, collection: str, record_id: str, changes: dict[str, Any],
    ) -> dict[str, Any]:
        """Merge *changes* into an existing record and return the result."""
        self._check_collection(collection)
        with self._lock:
            current = self.get(collection, record_id)
            if current is None:
                raise RecordNotFoundError(collection, record_id)
            updated = {**current, **{k: v for k, v in changes.items() if k != "id"}}
            doc = {k: v for k, v in updated.items() if k != "id"}
            assignments = ", ".join(
                f"{name} = ?" for name in ("doc", *INDEXED_FIELDS[collection])
            )
            self._conn.execute(
                f"UPDATE {collection} SET {assignments} WHERE id = ?",
                (json.dumps(doc, default=str), *self._index_values(collection, doc), record_id),
            )
            self._conn.commit()
        return updated

    def list_all(self, collection: str) -> list[dict[str, Any]]:
        """Every record, in insertion order."""
        self._check_collection(collection)
        with self._lock:
            rows = self._conn.execute(
                f"SELECT id, doc FROM {collection} ORDER BY seq",
            ).fetchall()
        return [self._row_to_dict(row) for row in rows]

    def count(self, collection: str) -> int:
        self._check_collection(collection)
        with self._lock:
            row = self._conn.execute(f"SELECT COUNT(*) FROM {collection}").fetchone()
        return row[0]

    def reset(self) -> None:
        with self._lock:
            with self._conn:
                for collection in COLLECTIONS:
                    self._conn.execute(f"DELETE FROM {collection}")

    def close(self) -> None:
        with self._lock:
            self._conn.close()
