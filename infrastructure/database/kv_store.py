"""Key/value stores backing the heating coordination state.

The coordination layer only needs ``get(key)`` and ``set(key, value)`` with
JSON-compatible values. There is deliberately no compare-and-swap: callers
treat every read-check-write over the store as advisory.
"""

from __future__ import annotations

import json
import logging
import shutil
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Iterator, Optional, Protocol

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    """Minimal persistent store contract."""

    def get(self, key: str) -> Any | None: ...

    def set(self, key: str, value: Any) -> None: ...


class InMemoryKeyValueStore:
    """Process-local store. Values are copied through JSON like the SQLite store."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Any | None:
        with self._lock:
            raw = self._data.get(key)
        return None if raw is None else json.loads(raw)

    def set(self, key: str, value: Any) -> None:
        encoded = json.dumps(value)
        with self._lock:
            if value is None:
                self._data.pop(key, None)
            else:
                self._data[key] = encoded


class SQLiteKeyValueStore:
    """SQLite-backed store: one ``HeatingState`` table of JSON documents.

    A single connection is shared between threads and guarded by a lock, so
    ``":memory:"`` behaves the same as a file database inside one process.
    """

    def __init__(self, database_path: str) -> None:
        self._database_path = database_path
        self._lock = threading.RLock()
        self._connection: Optional[sqlite3.Connection] = None

        if database_path != ":memory:":
            db_path = Path(database_path)
            if not db_path.parent.exists():
                db_path.parent.mkdir(parents=True, exist_ok=True)
                logger.info("Created state store directory: %s", db_path.parent)

        self.create_tables()

    # --- Lifecycle ------------------------------------------------------------
    def get_db(self) -> sqlite3.Connection:
        if self._connection is None:
            try:
                self._connection = self._open_connection()
            except sqlite3.DatabaseError as exc:
                if self._is_corruption_error(exc):
                    logger.error("State store appears corrupt (%s). Recreating a fresh database.", exc)
                    self._quarantine_corrupt_db()
                    self._connection = self._open_connection()
                else:
                    raise
        return self._connection

    def _open_connection(self) -> sqlite3.Connection:
        connection = sqlite3.connect(self._database_path, check_same_thread=False)
        try:
            connection.row_factory = sqlite3.Row
            if self._database_path != ":memory:":
                connection.execute("PRAGMA journal_mode=WAL")
                connection.execute("PRAGMA synchronous=NORMAL")
            connection.commit()
            return connection
        except Exception:
            connection.close()
            raise

    def _is_corruption_error(self, exc: sqlite3.Error) -> bool:
        message = str(exc).lower()
        return "malformed" in message or "is not a database" in message

    def _quarantine_corrupt_db(self) -> Optional[Path]:
        db_path = Path(self._database_path)
        if not db_path.exists():
            return None

        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        quarantine_dir = db_path.parent / "corrupt"
        quarantine_dir.mkdir(parents=True, exist_ok=True)
        quarantined = quarantine_dir / f"{db_path.stem}_corrupt_{timestamp}{db_path.suffix or '.db'}"
        try:
            shutil.move(str(db_path), str(quarantined))
            logger.warning("Quarantined corrupt state store to %s", quarantined)
            return quarantined
        except OSError as exc:
            logger.error("Failed to quarantine corrupt state store %s: %s", db_path, exc)
            return None

    def close(self) -> None:
        with self._lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            conn = self.get_db()
            try:
                yield conn
            finally:
                conn.commit()

    def create_tables(self) -> None:
        with self.connection() as db:
            db.execute(
                """
                CREATE TABLE IF NOT EXISTS HeatingState (
                    state_key TEXT PRIMARY KEY,
                    state_value TEXT NOT NULL,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
                """
            )

    # --- Store contract -------------------------------------------------------
    def get(self, key: str) -> Any | None:
        with self.connection() as db:
            row = db.execute("SELECT state_value FROM HeatingState WHERE state_key = ?", (key,)).fetchone()
        if row is None:
            return None
        try:
            return json.loads(row["state_value"])
        except json.JSONDecodeError:
            logger.warning("Discarding unreadable state for key %s", key)
            return None

    def set(self, key: str, value: Any) -> None:
        with self.connection() as db:
            if value is None:
                db.execute("DELETE FROM HeatingState WHERE state_key = ?", (key,))
                return
            db.execute(
                """
                INSERT INTO HeatingState (state_key, state_value, updated_at)
                VALUES (?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(state_key) DO UPDATE SET
                    state_value = excluded.state_value,
                    updated_at = CURRENT_TIMESTAMP
                """,
                (key, json.dumps(value)),
            )
