"""
Persistent ledger of transfer outcomes, keyed by Zoom recording file ID
"""

from __future__ import annotations

import logging
import sqlite3
from abc import ABC, abstractmethod
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

from zoomvault.exceptions import LedgerError
from zoomvault.models import LedgerStatus, TransferRecord

logger = logging.getLogger(__name__)

# SQLite's default SQLITE_MAX_VARIABLE_NUMBER on older builds
_MAX_QUERY_PARAMS = 900


class TransferLedger(ABC):
    """Point lookup, bulk lookup and upsert over TransferRecords"""

    @abstractmethod
    def find_completed(self, file_id: str) -> TransferRecord | None:
        """Return the completed record for ``file_id``, if any"""

    @abstractmethod
    def find_completed_bulk(self, file_ids: Iterable[str]) -> dict[str, TransferRecord]:
        """Return completed records for any of ``file_ids`` in one round trip"""

    @abstractmethod
    def record_outcome(self, record: TransferRecord) -> None:
        """Upsert ``record``; the last terminal state written for a file wins"""

    @abstractmethod
    def list_records(
        self,
        meeting_ids: Iterable[str] | None = None,
        status: LedgerStatus | None = None,
    ) -> list[TransferRecord]:
        """List records, optionally restricted to some meetings and/or a status"""


class SQLiteTransferLedger(TransferLedger):
    """TransferLedger stored in a local SQLite database.

    Every operation opens its own short-lived connection, so the ledger can be
    shared by transfer worker threads. ``path`` must be a file; ``:memory:``
    would give every operation a fresh, empty database.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._init_schema()

    def __repr__(self) -> str:
        return f"SQLiteTransferLedger(path={str(self.path)!r})"

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = sqlite3.connect(self.path, timeout=30)
        except sqlite3.Error as e:
            raise LedgerError(f"Cannot open transfer ledger at {self.path}", details=str(e)) from e
        conn.row_factory = sqlite3.Row
        try:
            with conn:
                yield conn
        except sqlite3.Error as e:
            raise LedgerError("Transfer ledger operation failed", details=str(e)) from e
        finally:
            conn.close()

    def _init_schema(self) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise LedgerError(f"Cannot create ledger directory {self.path.parent}", str(e)) from e

        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS transfer_records (
                    file_id TEXT PRIMARY KEY,
                    meeting_id TEXT NOT NULL,
                    destination_name TEXT NOT NULL,
                    size_bytes INTEGER NOT NULL,
                    status TEXT NOT NULL CHECK (status IN ('completed', 'failed')),
                    destination_ref TEXT,
                    error TEXT,
                    completed_at TEXT NOT NULL,
                    file_type TEXT NOT NULL DEFAULT ''
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_transfer_records_meeting
                ON transfer_records(meeting_id)
            """)

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> TransferRecord:
        return TransferRecord(
            file_id=row["file_id"],
            meeting_id=row["meeting_id"],
            destination_name=row["destination_name"],
            size_bytes=int(row["size_bytes"]),
            status=LedgerStatus(row["status"]),
            destination_ref=row["destination_ref"],
            error=row["error"],
            completed_at=datetime.fromisoformat(row["completed_at"]),
            file_type=row["file_type"] or "",
        )

    def find_completed(self, file_id: str) -> TransferRecord | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM transfer_records WHERE file_id = ? AND status = ?",
                (file_id, LedgerStatus.COMPLETED.value),
            ).fetchone()
        return self._row_to_record(row) if row else None

    def find_completed_bulk(self, file_ids: Iterable[str]) -> dict[str, TransferRecord]:
        ids = list(dict.fromkeys(file_ids))
        found: dict[str, TransferRecord] = {}
        if not ids:
            return found

        with self._connect() as conn:
            for start in range(0, len(ids), _MAX_QUERY_PARAMS):
                batch = ids[start : start + _MAX_QUERY_PARAMS]
                placeholders = ",".join("?" for _ in batch)
                rows = conn.execute(
                    f"SELECT * FROM transfer_records "
                    f"WHERE status = ? AND file_id IN ({placeholders})",
                    (LedgerStatus.COMPLETED.value, *batch),
                ).fetchall()
                for row in rows:
                    record = self._row_to_record(row)
                    found[record.file_id] = record
        return found

    def record_outcome(self, record: TransferRecord) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO transfer_records (
                    file_id, meeting_id, destination_name, size_bytes, status,
                    destination_ref, error, completed_at, file_type
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(file_id) DO UPDATE SET
                    meeting_id = excluded.meeting_id,
                    destination_name = excluded.destination_name,
                    size_bytes = excluded.size_bytes,
                    status = excluded.status,
                    destination_ref = excluded.destination_ref,
                    error = excluded.error,
                    completed_at = excluded.completed_at,
                    file_type = excluded.file_type
                """,
                (
                    record.file_id,
                    record.meeting_id,
                    record.destination_name,
                    record.size_bytes,
                    record.status.value,
                    record.destination_ref,
                    record.error,
                    record.completed_at.isoformat(),
                    record.file_type,
                ),
            )
        logger.debug("Ledger: %s -> %s", record.file_id, record.status.value)

    def list_records(
        self,
        meeting_ids: Iterable[str] | None = None,
        status: LedgerStatus | None = None,
    ) -> list[TransferRecord]:
        clauses: list[str] = []
        params: list[str] = []
        if meeting_ids is not None:
            ids = [str(m) for m in meeting_ids]
            if not ids:
                return []
            clauses.append(f"meeting_id IN ({','.join('?' for _ in ids)})")
            params.extend(ids)
        if status is not None:
            clauses.append("status = ?")
            params.append(status.value)

        query = "SELECT * FROM transfer_records"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY completed_at DESC"

        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_record(row) for row in rows]
