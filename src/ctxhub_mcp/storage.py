from __future__ import annotations

import json
import sqlite3
import threading
import time
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from ctxhub_config.settings import storage_path
from ctxhub_mcp.domain.models import Connection
from ctxhub_mcp.domain.ports import ConnectionStoragePort


class InMemoryConnectionStorage:
    """Process-local storage; dict insertion order is registration order."""

    def __init__(self) -> None:
        self._rows: Dict[str, Connection] = {}

    def get(self, connection_id: str) -> Optional[Connection]:
        return self._rows.get(connection_id)

    def put(self, connection: Connection) -> None:
        self._rows[connection.id] = connection

    def delete(self, connection_id: str) -> bool:
        return self._rows.pop(connection_id, None) is not None

    def values(self) -> Iterable[Connection]:
        return list(self._rows.values())


class SqliteConnectionStorage:
    """SQLite-backed storage. Credentials are stored as plain JSON (no encryption)."""

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        with self._lock:
            con = sqlite3.connect(str(self.db_path))
            try:
                con.execute("PRAGMA journal_mode=WAL;")
                con.execute(
                    """
                    CREATE TABLE IF NOT EXISTS connections (
                        id TEXT PRIMARY KEY,
                        service_type TEXT NOT NULL,
                        owner_id TEXT NOT NULL,
                        credentials_json TEXT NOT NULL,
                        created_at REAL NOT NULL      -- unix epoch seconds
                    );
                    """
                )
                con.execute("CREATE INDEX IF NOT EXISTS idx_connections_owner ON connections(owner_id);")
                con.commit()
            finally:
                con.close()

    @staticmethod
    def _row_to_connection(row: tuple) -> Connection:
        cid, service_type, owner_id, creds = row
        return Connection(id=cid, service_type=service_type, owner_id=owner_id, credentials=json.loads(creds))

    def get(self, connection_id: str) -> Optional[Connection]:
        with self._lock:
            con = sqlite3.connect(str(self.db_path))
            try:
                row = con.execute(
                    "SELECT id, service_type, owner_id, credentials_json FROM connections WHERE id = ?",
                    (connection_id,),
                ).fetchone()
            finally:
                con.close()
        return self._row_to_connection(row) if row else None

    def put(self, connection: Connection) -> None:
        with self._lock:
            con = sqlite3.connect(str(self.db_path))
            try:
                con.execute(
                    """
                    INSERT INTO connections (id, service_type, owner_id, credentials_json, created_at)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                      service_type=excluded.service_type,
                      owner_id=excluded.owner_id,
                      credentials_json=excluded.credentials_json
                    """,
                    (
                        connection.id,
                        connection.service_type,
                        connection.owner_id,
                        json.dumps(connection.credentials, ensure_ascii=False),
                        time.time(),
                    ),
                )
                con.commit()
            finally:
                con.close()

    def delete(self, connection_id: str) -> bool:
        with self._lock:
            con = sqlite3.connect(str(self.db_path))
            try:
                cur = con.execute("DELETE FROM connections WHERE id = ?", (connection_id,))
                con.commit()
                return cur.rowcount > 0
            finally:
                con.close()

    def values(self) -> Iterable[Connection]:
        with self._lock:
            con = sqlite3.connect(str(self.db_path))
            try:
                rows: List[tuple] = con.execute(
                    "SELECT id, service_type, owner_id, credentials_json FROM connections ORDER BY created_at, rowid"
                ).fetchall()
            finally:
                con.close()
        return [self._row_to_connection(r) for r in rows]


def build_storage() -> ConnectionStoragePort:
    """SQLite when CTXHUB_STORAGE_PATH is set, in-memory otherwise."""
    p = storage_path()
    if p is None:
        return InMemoryConnectionStorage()
    return SqliteConnectionStorage(p)
