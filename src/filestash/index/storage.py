"""SQLite index store."""

from __future__ import annotations

import json
import logging
import os
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterable, Iterator, List, Optional

from filestash.config import DEFAULT_HISTORY_LIMIT
from filestash.models import IndexRecord, ScanHistoryEntry

LOGGER = logging.getLogger(__name__)

WriteErrorCallback = Callable[[IndexRecord, Exception], None]

_RECORD_COLUMNS = (
    "id, full_path, parent_directory, name, extension, size_bytes, "
    "created_at, modified_at, is_directory, attributes, fingerprint"
)


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _row_to_record(row: sqlite3.Row) -> IndexRecord:
    return IndexRecord(
        id=row["id"],
        full_path=row["full_path"],
        parent_directory=row["parent_directory"],
        name=row["name"],
        extension=row["extension"],
        size_bytes=row["size_bytes"],
        created_at=row["created_at"],
        modified_at=row["modified_at"],
        is_directory=bool(row["is_directory"]),
        attributes=row["attributes"],
        fingerprint=row["fingerprint"],
    )


def _row_to_history(row: sqlite3.Row) -> ScanHistoryEntry:
    return ScanHistoryEntry(
        scan_id=row["scan_id"],
        roots=tuple(json.loads(row["roots"])),
        concurrency=row["concurrency"],
        fingerprint_enabled=bool(row["fingerprint_enabled"]),
        status=row["status"],
        total=row["total"],
        processed=row["processed"],
        error_count=row["error_count"],
        started_at=row["started_at"],
        ended_at=row["ended_at"],
        duration_ms=row["duration_ms"],
    )


class SQLiteIndexStore:
    """Persistence layer for index records and scan history.

    The connection is shared between the event loop thread and the worker
    threads used for batch writes; every access goes through ``_lock``.
    """

    def __init__(self, db_path: Path, *, history_limit: int = DEFAULT_HISTORY_LIMIT) -> None:
        self.db_path = Path(db_path)
        self.history_limit = history_limit
        self._lock = threading.RLock()
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL;")
        self._conn.execute("PRAGMA synchronous=NORMAL;")
        self._ensure_schema()

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                yield self._conn
                self._conn.commit()
            except Exception:
                self._conn.rollback()
                raise

    def _ensure_schema(self) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS files (
                    id INTEGER PRIMARY KEY,
                    full_path TEXT NOT NULL UNIQUE,
                    parent_directory TEXT NOT NULL,
                    name TEXT NOT NULL,
                    extension TEXT NOT NULL DEFAULT '',
                    size_bytes INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT,
                    modified_at TEXT,
                    is_directory INTEGER NOT NULL,
                    attributes TEXT NOT NULL DEFAULT '',
                    fingerprint TEXT,
                    indexed_at TEXT DEFAULT CURRENT_TIMESTAMP
                )
                """
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_files_name ON files(name)")
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_files_parent ON files(parent_directory)"
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS scan_history (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    scan_id TEXT NOT NULL,
                    roots TEXT NOT NULL,
                    concurrency INTEGER NOT NULL,
                    fingerprint_enabled INTEGER NOT NULL,
                    status TEXT NOT NULL,
                    total INTEGER NOT NULL,
                    processed INTEGER NOT NULL,
                    error_count INTEGER NOT NULL,
                    started_at TEXT NOT NULL,
                    ended_at TEXT,
                    duration_ms INTEGER NOT NULL
                )
                """
            )

    def write_batch(
        self,
        records: Iterable[IndexRecord],
        *,
        on_error: Optional[WriteErrorCallback] = None,
    ) -> int:
        """Upsert records in a single transaction, keyed by ``full_path``.

        A record that fails to write is logged and skipped; the rest of the
        batch is still committed. Returns the number of records written.
        """
        written = 0
        with self.transaction() as conn:
            for record in records:
                try:
                    conn.execute(
                        """
                        INSERT INTO files(
                            full_path, parent_directory, name, extension, size_bytes,
                            created_at, modified_at, is_directory, attributes, fingerprint
                        )
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                        ON CONFLICT(full_path) DO UPDATE SET
                            parent_directory = excluded.parent_directory,
                            name = excluded.name,
                            extension = excluded.extension,
                            size_bytes = excluded.size_bytes,
                            created_at = excluded.created_at,
                            modified_at = excluded.modified_at,
                            is_directory = excluded.is_directory,
                            attributes = excluded.attributes,
                            fingerprint = excluded.fingerprint,
                            indexed_at = CURRENT_TIMESTAMP
                        """,
                        (
                            record.full_path,
                            record.parent_directory,
                            record.name,
                            record.extension,
                            record.size_bytes,
                            record.created_at,
                            record.modified_at,
                            int(record.is_directory),
                            record.attributes,
                            record.fingerprint,
                        ),
                    )
                except sqlite3.Error as exc:
                    LOGGER.error("Failed to persist %s: %s", record.full_path, exc)
                    if on_error is not None:
                        on_error(record, exc)
                    continue
                written += 1
        return written

    def _filters(self, prefix: str | None, search: str | None) -> tuple[str, list]:
        clauses: List[str] = []
        params: list = []
        if prefix:
            base = prefix.rstrip("/\\") or prefix
            pattern = _escape_like(base)
            if not base.endswith(("/", "\\")):
                pattern += _escape_like(os.sep)
            clauses.append("(full_path = ? OR full_path LIKE ? ESCAPE '\\')")
            params.extend([base, pattern + "%"])
        if search:
            like = f"%{_escape_like(search)}%"
            clauses.append(
                "(name LIKE ? ESCAPE '\\' OR full_path LIKE ? ESCAPE '\\' "
                "OR extension LIKE ? ESCAPE '\\' OR fingerprint LIKE ? ESCAPE '\\')"
            )
            params.extend([like, like, like, like])
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        return where, params

    def query_records(
        self,
        *,
        prefix: str | None = None,
        search: str | None = None,
        skip: int = 0,
        limit: int | None = 100,
    ) -> List[IndexRecord]:
        """List records, directories first and then by name."""
        where, params = self._filters(prefix, search)
        sql = (
            f"SELECT {_RECORD_COLUMNS} FROM files{where} "
            "ORDER BY is_directory DESC, name COLLATE NOCASE ASC, full_path ASC"
        )
        if limit is not None:
            sql += " LIMIT ? OFFSET ?"
            params.extend([limit, skip])
        with self._lock:
            rows = self._conn.execute(sql, params).fetchall()
        return [_row_to_record(row) for row in rows]

    def count_records(self, *, prefix: str | None = None, search: str | None = None) -> int:
        where, params = self._filters(prefix, search)
        with self._lock:
            row = self._conn.execute(f"SELECT COUNT(*) FROM files{where}", params).fetchone()
        return int(row[0])

    def get_record(self, record_id: int) -> IndexRecord | None:
        with self._lock:
            row = self._conn.execute(
                f"SELECT {_RECORD_COLUMNS} FROM files WHERE id = ?", (record_id,)
            ).fetchone()
        return _row_to_record(row) if row else None

    def get_record_by_path(self, full_path: str) -> IndexRecord | None:
        with self._lock:
            row = self._conn.execute(
                f"SELECT {_RECORD_COLUMNS} FROM files WHERE full_path = ?", (full_path,)
            ).fetchone()
        return _row_to_record(row) if row else None

    def delete_record(self, record_id: int) -> bool:
        with self.transaction() as conn:
            cursor = conn.execute("DELETE FROM files WHERE id = ?", (record_id,))
        return cursor.rowcount > 0

    def clear(self) -> int:
        """Delete every index record. History is kept."""
        with self.transaction() as conn:
            cursor = conn.execute("DELETE FROM files")
        return cursor.rowcount

    def get_stats(self) -> dict:
        with self._lock:
            row = self._conn.execute(
                """
                SELECT
                    COUNT(CASE WHEN is_directory = 0 THEN 1 END) AS total_files,
                    COUNT(CASE WHEN is_directory = 1 THEN 1 END) AS total_directories,
                    COALESCE(SUM(CASE WHEN is_directory = 0 THEN size_bytes ELSE 0 END), 0)
                        AS total_size_bytes,
                    COUNT(fingerprint) AS fingerprinted_files
                FROM files
                """
            ).fetchone()
        return {
            "total_files": row["total_files"],
            "total_directories": row["total_directories"],
            "total_size_bytes": row["total_size_bytes"],
            "fingerprinted_files": row["fingerprinted_files"],
        }

    def remove_missing_files(self) -> int:
        """Remove records whose paths no longer exist."""
        with self.transaction() as conn:
            rows = conn.execute("SELECT id, full_path FROM files").fetchall()
            missing = [row for row in rows if not os.path.lexists(row["full_path"])]
            for row in missing:
                conn.execute("DELETE FROM files WHERE id = ?", (row["id"],))
        return len(missing)

    def append_history(self, entry: ScanHistoryEntry) -> None:
        """Append a history entry, evicting the oldest beyond ``history_limit``."""
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO scan_history(
                    scan_id, roots, concurrency, fingerprint_enabled, status, total,
                    processed, error_count, started_at, ended_at, duration_ms
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entry.scan_id,
                    json.dumps(list(entry.roots), ensure_ascii=True),
                    entry.concurrency,
                    int(entry.fingerprint_enabled),
                    entry.status,
                    entry.total,
                    entry.processed,
                    entry.error_count,
                    entry.started_at,
                    entry.ended_at,
                    entry.duration_ms,
                ),
            )
            conn.execute(
                """
                DELETE FROM scan_history WHERE seq NOT IN (
                    SELECT seq FROM scan_history ORDER BY seq DESC LIMIT ?
                )
                """,
                (self.history_limit,),
            )

    def list_history(self, limit: int | None = None) -> List[ScanHistoryEntry]:
        """Return history entries, newest first."""
        sql = "SELECT * FROM scan_history ORDER BY seq DESC"
        params: list = []
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        with self._lock:
            rows = self._conn.execute(sql, params).fetchall()
        return [_row_to_history(row) for row in rows]
