"""
SQLite persistence for customer header records.

Each record keeps the original (pre-escape) data tree, the compiled PDF
bytes and a version counter advanced on every successful re-render.
Connections are opened per operation; writes commit or roll back as a
unit.
"""

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

from pdfservice.app.core.errors import PersistenceFailure


DEFAULT_DB_PATH = Path("data/customer_headers.db")

STATUS_SAVED = "saved"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _serialize_datetime(dt: datetime) -> str:
    return dt.isoformat()


def _deserialize_datetime(s: str) -> datetime:
    return datetime.fromisoformat(s)


class CustomerHeaderDatabase:
    """
    SQLite database for customer header records.

    Thread-safe: every call opens its own connection; WAL mode lets
    readers proceed while a writer commits.
    """

    def __init__(self, db_path: Path = DEFAULT_DB_PATH):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Get a database connection with proper settings."""
        try:
            conn = sqlite3.connect(str(self.db_path), timeout=30.0)
        except sqlite3.Error as exc:
            raise PersistenceFailure(f"Database unavailable: {exc}") from exc

        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA journal_mode=WAL")
            yield conn
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            raise PersistenceFailure(f"Database operation failed: {exc}") from exc
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        with self._get_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS customer_headers (
                    id TEXT PRIMARY KEY,
                    data TEXT NOT NULL,
                    pdf BLOB NOT NULL,
                    size_bytes INTEGER NOT NULL,
                    version INTEGER NOT NULL,
                    status TEXT NOT NULL DEFAULT 'saved',
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

            columns = {
                row["name"]
                for row in conn.execute("PRAGMA table_info(customer_headers)")
            }
            if "status" not in columns:
                conn.execute(
                    "ALTER TABLE customer_headers "
                    "ADD COLUMN status TEXT NOT NULL DEFAULT 'saved'"
                )

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_customer_headers_created_at
                ON customer_headers(created_at DESC)
            """)

    def insert(self, record_id: str, data: Dict[str, Any], pdf: bytes) -> Dict[str, Any]:
        now = _serialize_datetime(_utcnow())
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT INTO customer_headers (
                    id, data, pdf, size_bytes, version, status, created_at, updated_at
                ) VALUES (?, ?, ?, ?, 1, ?, ?, ?)
                """,
                (
                    record_id,
                    json.dumps(data),
                    sqlite3.Binary(pdf),
                    len(pdf),
                    STATUS_SAVED,
                    now,
                    now,
                ),
            )
        record = self.get(record_id)
        if record is None:
            raise PersistenceFailure(f"Record {record_id} vanished after insert.")
        return record

    def replace(
        self,
        record_id: str,
        expected_version: int,
        data: Dict[str, Any],
        pdf: bytes,
    ) -> bool:
        """
        Overwrite data and PDF if the stored version still matches.

        Returns False when no row matched (deleted or concurrently updated).
        """
        with self._get_connection() as conn:
            cursor = conn.execute(
                """
                UPDATE customer_headers
                SET data = ?, pdf = ?, size_bytes = ?,
                    version = version + 1, updated_at = ?
                WHERE id = ? AND version = ?
                """,
                (
                    json.dumps(data),
                    sqlite3.Binary(pdf),
                    len(pdf),
                    _serialize_datetime(_utcnow()),
                    record_id,
                    expected_version,
                ),
            )
            return cursor.rowcount == 1

    def set_status(self, record_id: str, status: str) -> bool:
        """
        Change the workflow status without touching data, PDF or version.

        Returns False when no row matched.
        """
        with self._get_connection() as conn:
            cursor = conn.execute(
                "UPDATE customer_headers SET status = ?, updated_at = ? WHERE id = ?",
                (status, _serialize_datetime(_utcnow()), record_id),
            )
            return cursor.rowcount == 1

    def get(self, record_id: str) -> Optional[Dict[str, Any]]:
        with self._get_connection() as conn:
            row = conn.execute(
                """
                SELECT id, data, size_bytes, version, status, created_at, updated_at
                FROM customer_headers WHERE id = ?
                """,
                (record_id,),
            ).fetchone()
            return self._row_to_dict(row) if row else None

    def get_pdf(self, record_id: str) -> Optional[bytes]:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT pdf FROM customer_headers WHERE id = ?", (record_id,)
            ).fetchone()
            return bytes(row["pdf"]) if row else None

    def list(self, offset: int, limit: int) -> Tuple[int, List[Dict[str, Any]]]:
        """Newest first. Returns (total, page of records)."""
        with self._get_connection() as conn:
            total = conn.execute("SELECT COUNT(*) FROM customer_headers").fetchone()[0]
            rows = conn.execute(
                """
                SELECT id, data, size_bytes, version, status, created_at, updated_at
                FROM customer_headers
                ORDER BY created_at DESC, rowid DESC
                LIMIT ? OFFSET ?
                """,
                (limit, offset),
            ).fetchall()
            return total, [self._row_to_dict(row) for row in rows]

    def _row_to_dict(self, row: sqlite3.Row) -> Dict[str, Any]:
        return {
            "id": row["id"],
            "data": json.loads(row["data"]),
            "size_bytes": row["size_bytes"],
            "version": row["version"],
            "status": row["status"],
            "created_at": _deserialize_datetime(row["created_at"]),
            "updated_at": _deserialize_datetime(row["updated_at"]),
        }
