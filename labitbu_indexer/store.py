"""SQLite persistence for labitbu records and the block cursor."""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config import DEFAULT_DB_PATH
from .model import LabitbuRecord

_RECORD_COLUMNS = "id, txid, vin, sat, checksum, inscription_id"


class RecordStore:
    """Interface for storing labitbu records and the indexing cursor."""

    def insert_if_absent(self, record: LabitbuRecord) -> bool:
        raise NotImplementedError

    def find_by_txid(self, txid: str) -> List[LabitbuRecord]:
        raise NotImplementedError

    def find_by_sat(self, sat: int) -> List[LabitbuRecord]:
        raise NotImplementedError

    def find_txids_for_sat(self, sat: int) -> List[str]:
        raise NotImplementedError

    def find_unresolved_sat(self) -> List[LabitbuRecord]:
        raise NotImplementedError

    def find_resolved_sat_no_inscription(self) -> List[LabitbuRecord]:
        raise NotImplementedError

    def find_with_inscription(self) -> List[LabitbuRecord]:
        raise NotImplementedError

    def update_sat(self, record_id: int, sat: int) -> None:
        raise NotImplementedError

    def update_inscription(self, record_id: int, inscription_id: Optional[str]) -> None:
        raise NotImplementedError

    def get_cursor(self) -> int:
        raise NotImplementedError

    def set_cursor(self, height: int) -> None:
        raise NotImplementedError

    def checkpoint(self) -> None:
        raise NotImplementedError

    def close(self) -> None:
        raise NotImplementedError


class SQLiteRecordStore(RecordStore):
    """Persist labitbu records to a local SQLite database in WAL mode."""

    def __init__(self, db_path: str | Path | None = None) -> None:
        self.db_path = Path(db_path) if db_path else DEFAULT_DB_PATH
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(self.db_path)
        self.conn.row_factory = sqlite3.Row
        self.init_schema()

    def init_schema(self) -> None:
        cursor = self.conn.cursor()
        cursor.execute("PRAGMA journal_mode = WAL")
        cursor.execute("PRAGMA synchronous = NORMAL")
        cursor.execute("PRAGMA cache_size = 10000")
        cursor.execute("PRAGMA temp_store = MEMORY")
        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS labitbus (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                txid TEXT NOT NULL,
                vin INTEGER NOT NULL,
                sat INTEGER,
                checksum TEXT NOT NULL,
                inscription_id TEXT
            )
            """
        )
        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS indexer_state (
                id INTEGER PRIMARY KEY CHECK (id = 1),
                last_block_height INTEGER NOT NULL
            )
            """
        )
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_labitbus_txid ON labitbus(txid)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_labitbus_sat ON labitbus(sat)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_labitbus_checksum ON labitbus(checksum)")
        cursor.execute(
            "CREATE INDEX IF NOT EXISTS idx_labitbus_inscription_id ON labitbus(inscription_id)"
        )
        cursor.execute("CREATE UNIQUE INDEX IF NOT EXISTS idx_labitbus_unique ON labitbus(txid, vin)")
        cursor.execute("INSERT OR IGNORE INTO indexer_state (id, last_block_height) VALUES (1, 0)")
        self.conn.commit()

    def close(self) -> None:
        self.conn.close()

    def __enter__(self) -> "SQLiteRecordStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # pragma: no cover - convenience
        self.close()

    # Records ----------------------------------------------------------------

    def insert_if_absent(self, record: LabitbuRecord) -> bool:
        """Insert ``record`` unless ``(txid, vin)`` exists; return whether a row was added."""

        cursor = self.conn.cursor()
        cursor.execute(
            "INSERT INTO labitbus (txid, vin, checksum, sat, inscription_id) "
            "VALUES (:txid, :vin, :checksum, :sat, :inscription_id) "
            "ON CONFLICT (txid, vin) DO NOTHING",
            {
                "txid": record.txid,
                "vin": record.input_index,
                "checksum": record.checksum,
                "sat": record.sat,
                "inscription_id": record.inscription_id,
            },
        )
        self.conn.commit()
        return cursor.rowcount > 0

    def find_by_txid(self, txid: str) -> List[LabitbuRecord]:
        return self._select(f"SELECT {_RECORD_COLUMNS} FROM labitbus WHERE txid = ? ORDER BY vin", (txid,))

    def find_by_sat(self, sat: int) -> List[LabitbuRecord]:
        return self._select(f"SELECT {_RECORD_COLUMNS} FROM labitbus WHERE sat = ? ORDER BY id", (sat,))

    def find_txids_for_sat(self, sat: int) -> List[str]:
        cursor = self.conn.cursor()
        cursor.execute("SELECT DISTINCT txid FROM labitbus WHERE sat = ?", (sat,))
        return [row["txid"] for row in cursor.fetchall()]

    def find_unresolved_sat(self) -> List[LabitbuRecord]:
        return self._select(f"SELECT {_RECORD_COLUMNS} FROM labitbus WHERE sat IS NULL ORDER BY id")

    def find_resolved_sat_no_inscription(self) -> List[LabitbuRecord]:
        return self._select(
            f"SELECT {_RECORD_COLUMNS} FROM labitbus "
            "WHERE sat IS NOT NULL AND inscription_id IS NULL ORDER BY id"
        )

    def find_with_inscription(self) -> List[LabitbuRecord]:
        return self._select(
            f"SELECT {_RECORD_COLUMNS} FROM labitbus WHERE inscription_id IS NOT NULL ORDER BY id"
        )

    def all_records(self, limit: int | None = None) -> List[LabitbuRecord]:
        sql = f"SELECT {_RECORD_COLUMNS} FROM labitbus ORDER BY id DESC"
        if limit is not None:
            return self._select(sql + " LIMIT ?", (limit,))
        return self._select(sql)

    def update_sat(self, record_id: int, sat: int) -> None:
        self.conn.execute("UPDATE labitbus SET sat = ? WHERE id = ?", (sat, record_id))
        self.conn.commit()

    def update_inscription(self, record_id: int, inscription_id: Optional[str]) -> None:
        self.conn.execute(
            "UPDATE labitbus SET inscription_id = ? WHERE id = ?", (inscription_id, record_id)
        )
        self.conn.commit()

    def stats(self) -> Dict[str, Any]:
        cursor = self.conn.cursor()
        cursor.execute(
            """
            SELECT
                COUNT(*) AS total_entries,
                COUNT(sat) AS entries_with_sat,
                COUNT(inscription_id) AS entries_with_inscription,
                COUNT(DISTINCT checksum) AS unique_checksums
            FROM labitbus
            """
        )
        return dict(cursor.fetchone())

    # Cursor -----------------------------------------------------------------

    def get_cursor(self) -> int:
        cursor = self.conn.cursor()
        cursor.execute("SELECT last_block_height FROM indexer_state WHERE id = 1")
        row = cursor.fetchone()
        return int(row["last_block_height"]) if row else 0

    def set_cursor(self, height: int) -> None:
        # MAX() keeps the cursor monotonic even if a stale caller writes late.
        self.conn.execute(
            "UPDATE indexer_state SET last_block_height = MAX(last_block_height, ?) WHERE id = 1",
            (height,),
        )
        self.conn.commit()

    def checkpoint(self) -> None:
        self.conn.commit()
        self.conn.execute("PRAGMA wal_checkpoint(FULL)")

    def _select(self, sql: str, params: tuple = ()) -> List[LabitbuRecord]:
        cursor = self.conn.cursor()
        cursor.execute(sql, params)
        return [self._row_to_record(row) for row in cursor.fetchall()]

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> LabitbuRecord:
        return LabitbuRecord(
            id=row["id"],
            txid=row["txid"],
            input_index=row["vin"],
            checksum=row["checksum"],
            sat=row["sat"],
            inscription_id=row["inscription_id"],
        )

    def to_export_rows(self) -> List[Dict[str, Any]]:
        return [
            {
                "id": record.id,
                "txid": record.txid,
                "vin": record.input_index,
                "sat": record.sat,
                "checksum": record.checksum,
                "inscription_id": record.inscription_id,
            }
            for record in self.all_records()
        ]


def reset_database(db_path: str | Path) -> SQLiteRecordStore:
    """Delete the database at ``db_path`` (and its WAL files) and recreate the schema."""

    path = Path(db_path)
    for candidate in (path, path.with_name(path.name + "-wal"), path.with_name(path.name + "-shm")):
        candidate.unlink(missing_ok=True)
    return SQLiteRecordStore(path)


__all__ = ["RecordStore", "SQLiteRecordStore", "reset_database"]
