"""
SQLite record store for Aivora.

This module manages the database that holds every entity record,
whatever its kind. Records are schemaless JSON payloads; shape checks
happen one layer up, in the Collection bound to a compiled schema.

Invariants:
    - One row per (kind, record_id)
    - Payloads round-trip unchanged, including undeclared fields
    - All writes run in an explicit IMMEDIATE transaction
    - Unique-field checks run inside the same transaction as the write

How to change safely:
    - Schema migrations must be backward compatible
    - Bump SCHEMA_VERSION and add a migration step for table changes
    - Use transactions for all write operations

Table schema:
    records:
        - kind TEXT (entity kind name)
        - record_id TEXT (32 hex chars)
        - payload_json TEXT
        - created_at INTEGER (Unix ms)
        - updated_at INTEGER (Unix ms)
        - PRIMARY KEY (kind, record_id)
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import sqlite3
import time
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Any

from ..errors import DuplicateRecordError, StoreNotInitializedError

logger = logging.getLogger(__name__)

_RECORD_ID_RE = re.compile(r"^[0-9a-f]{32}$")
_FIELD_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def new_record_id() -> str:
    """Generate a new record identifier."""
    return uuid.uuid4().hex


def is_valid_field_name(value: Any) -> bool:
    """Whether value can be addressed as a top-level JSON path in SQL."""
    return isinstance(value, str) and bool(_FIELD_NAME_RE.match(value))


def is_valid_record_id(value: Any) -> bool:
    """Whether value has the shape of a record identifier."""
    return isinstance(value, str) and bool(_RECORD_ID_RE.match(value))


def _json_default(value: Any) -> Any:
    if isinstance(value, (set, tuple)):
        return list(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


@dataclass
class StoredRecord:
    """A record as persisted.

    Attributes:
        kind: Entity kind name
        record_id: Unique record identifier
        payload: Field values
        created_at: Row creation timestamp (Unix ms)
        updated_at: Row update timestamp (Unix ms)
    """

    kind: str
    record_id: str
    payload: dict[str, Any]
    created_at: int
    updated_at: int

    def to_record(self) -> dict[str, Any]:
        """Public representation: the payload plus its id."""
        return {"id": self.record_id, **self.payload}


class RecordStore:
    """SQLite store for entity records of every kind.

    Thread safety:
        Each database connection is created per-operation.
        SQLite handles concurrent access via WAL mode.

    Example:
        >>> store = RecordStore("/var/lib/aivora/aivora.db")
        >>> await store.initialize()
        >>> record = await store.insert_record("Task", {"title": "Ship it"})
    """

    SCHEMA_VERSION = 1

    def __init__(
        self,
        db_path: str | Path,
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
        cache_size_pages: int = -64000,
    ) -> None:
        """Initialize the record store.

        Args:
            db_path: Path of the SQLite database file
            wal_mode: Enable SQLite WAL mode
            busy_timeout_ms: SQLite busy timeout
            cache_size_pages: SQLite cache size (negative = KB)
        """
        self.db_path = Path(db_path)
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self.cache_size_pages = cache_size_pages
        self._lock = asyncio.Lock()

    @contextmanager
    def _get_connection(self, create: bool = False) -> Iterator[sqlite3.Connection]:
        """Get a database connection.

        Args:
            create: Whether to create the database if it does not exist

        Yields:
            SQLite connection

        Raises:
            StoreNotInitializedError: If database doesn't exist and create=False
        """
        if not create and not self.db_path.exists():
            raise StoreNotInitializedError(str(self.db_path))

        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(
            str(self.db_path),
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,  # Autocommit by default, explicit transactions
        )
        conn.row_factory = sqlite3.Row

        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            conn.execute(f"PRAGMA cache_size = {self.cache_size_pages}")
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")

            yield conn
        finally:
            conn.close()

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        """Create database schema."""
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS records (
                kind TEXT NOT NULL,
                record_id TEXT NOT NULL,
                payload_json TEXT NOT NULL DEFAULT '{}',
                created_at INTEGER NOT NULL,
                updated_at INTEGER NOT NULL,
                PRIMARY KEY (kind, record_id)
            );

            CREATE INDEX IF NOT EXISTS idx_records_created ON records(kind, created_at);

            INSERT OR IGNORE INTO schema_version (version, applied_at)
            VALUES (1, strftime('%s', 'now') * 1000);
        """)

    async def initialize(self) -> None:
        """Create the database file and schema if they don't exist."""
        async with self._lock:
            with self._get_connection(create=True) as conn:
                self._create_schema(conn)
        logger.info(f"Initialized record store: {self.db_path}")

    def exists(self) -> bool:
        return self.db_path.exists()

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> StoredRecord:
        return StoredRecord(
            kind=row["kind"],
            record_id=row["record_id"],
            payload=json.loads(row["payload_json"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def _check_unique(
        self,
        conn: sqlite3.Connection,
        kind: str,
        unique: dict[str, Any],
        exclude_id: str | None = None,
    ) -> None:
        """Raise DuplicateRecordError if another record holds a unique value."""
        for field_name, value in unique.items():
            if not _FIELD_NAME_RE.match(field_name):
                raise ValueError(f"Invalid unique field name: {field_name!r}")
            cursor = conn.execute(
                f"""
                SELECT record_id FROM records
                WHERE kind = ? AND json_extract(payload_json, '$.{field_name}') = ?
                AND record_id != ?
                LIMIT 1
                """,
                (kind, value, exclude_id or ""),
            )
            if cursor.fetchone() is not None:
                raise DuplicateRecordError(kind, field_name)

    async def insert_record(
        self,
        kind: str,
        payload: dict[str, Any],
        record_id: str | None = None,
        unique: dict[str, Any] | None = None,
    ) -> StoredRecord:
        """Insert a new record.

        Args:
            kind: Entity kind name
            payload: Field values
            record_id: Optional specific id (generated if not provided)
            unique: Field values that must not already exist for this kind

        Returns:
            The stored record

        Raises:
            DuplicateRecordError: If a unique value is already taken
        """
        return (await self.insert_records(kind, [payload], [record_id], unique=[unique]))[0]

    async def insert_records(
        self,
        kind: str,
        payloads: list[dict[str, Any]],
        record_ids: list[str | None] | None = None,
        unique: list[dict[str, Any] | None] | None = None,
    ) -> list[StoredRecord]:
        """Insert several records in a single transaction."""
        record_ids = record_ids or [None] * len(payloads)
        unique = unique or [None] * len(payloads)
        now = int(time.time() * 1000)
        stored: list[StoredRecord] = []

        with self._get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                for payload, record_id, unique_values in zip(payloads, record_ids, unique):
                    if unique_values:
                        self._check_unique(conn, kind, unique_values)
                    record_id = record_id or new_record_id()
                    conn.execute(
                        """
                        INSERT INTO records (kind, record_id, payload_json, created_at, updated_at)
                        VALUES (?, ?, ?, ?, ?)
                        """,
                        (kind, record_id, json.dumps(payload, default=_json_default), now, now),
                    )
                    stored.append(
                        StoredRecord(
                            kind=kind,
                            record_id=record_id,
                            payload=payload,
                            created_at=now,
                            updated_at=now,
                        )
                    )
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise

        logger.debug(
            "Inserted records",
            extra={"kind": kind, "count": len(stored)},
        )
        return stored

    async def update_record(
        self,
        kind: str,
        record_id: str,
        patch: dict[str, Any],
        unique: dict[str, Any] | None = None,
    ) -> StoredRecord | None:
        """Update a record's payload.

        Uses PATCH semantics - merges with existing payload.

        Returns:
            Updated record or None if not found
        """
        now = int(time.time() * 1000)

        with self._get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                cursor = conn.execute(
                    "SELECT * FROM records WHERE kind = ? AND record_id = ?",
                    (kind, record_id),
                )
                row = cursor.fetchone()
                if not row:
                    conn.execute("ROLLBACK")
                    return None

                if unique:
                    self._check_unique(conn, kind, unique, exclude_id=record_id)

                payload = json.loads(row["payload_json"])
                payload.update(patch)

                conn.execute(
                    """
                    UPDATE records SET payload_json = ?, updated_at = ?
                    WHERE kind = ? AND record_id = ?
                    """,
                    (json.dumps(payload, default=_json_default), now, kind, record_id),
                )
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise

        return StoredRecord(
            kind=kind,
            record_id=record_id,
            payload=payload,
            created_at=row["created_at"],
            updated_at=now,
        )

    async def delete_record(self, kind: str, record_id: str) -> bool:
        """Delete a record.

        Returns:
            True if deleted, False if not found
        """
        with self._get_connection() as conn:
            cursor = conn.execute(
                "DELETE FROM records WHERE kind = ? AND record_id = ?",
                (kind, record_id),
            )
            return cursor.rowcount > 0

    async def get_record(self, kind: str, record_id: str) -> StoredRecord | None:
        """Get a record by id, or None if not found."""
        with self._get_connection() as conn:
            cursor = conn.execute(
                "SELECT * FROM records WHERE kind = ? AND record_id = ?",
                (kind, record_id),
            )
            row = cursor.fetchone()
            return self._row_to_record(row) if row else None

    async def list_records(
        self, kind: str, equals: dict[str, Any] | None = None
    ) -> list[StoredRecord]:
        """Records of a kind, oldest first.

        Args:
            kind: Entity kind name
            equals: Top-level field -> scalar value. A row qualifies when the
                field equals the value or is an array containing it. SQLite
                compares true/false as 1/0, so callers needing exact JSON
                equality must re-check the returned payloads.
        """
        clauses = ["kind = ?"]
        params: list[Any] = [kind]
        for field_name, value in (equals or {}).items():
            if not _FIELD_NAME_RE.match(field_name):
                raise ValueError(f"Invalid filter field name: {field_name!r}")
            clauses.append(
                f"""(
                    json_extract(payload_json, '$.{field_name}') = ?
                    OR EXISTS (
                        SELECT 1 FROM json_each(payload_json, '$.{field_name}')
                        WHERE json_each.value = ?
                    )
                )"""
            )
            params.extend([value, value])

        with self._get_connection() as conn:
            cursor = conn.execute(
                f"SELECT * FROM records WHERE {' AND '.join(clauses)} "
                "ORDER BY created_at, rowid",
                params,
            )
            return [self._row_to_record(row) for row in cursor.fetchall()]

    async def count_records(self, kind: str | None = None) -> int:
        with self._get_connection() as conn:
            if kind is None:
                cursor = conn.execute("SELECT COUNT(*) FROM records")
            else:
                cursor = conn.execute("SELECT COUNT(*) FROM records WHERE kind = ?", (kind,))
            return cursor.fetchone()[0]

    async def get_stats(self) -> dict[str, int]:
        """Record counts per kind."""
        with self._get_connection() as conn:
            cursor = conn.execute("SELECT kind, COUNT(*) FROM records GROUP BY kind")
            return {row[0]: row[1] for row in cursor.fetchall()}
