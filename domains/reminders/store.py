"""Persistent key-value store for reminders and activity state.

Backed by a local SQLite file in WAL mode so pending reminders survive
process restarts. Reminders are kept as one JSON list under a single key;
every mutation is a read-modify-write inside one IMMEDIATE transaction.
"""

import json
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Optional

from logger import logger
from . import config
from .models import Reminder


class StoreUnavailableError(RuntimeError):
    """The persistence layer could not be read or written."""


class KeyValueStore:
    """Thread-safe JSON key-value store on SQLite."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._connection: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()

    def _get_connection(self) -> sqlite3.Connection:
        """Get or create database connection with WAL mode."""
        if self._connection is not None:
            return self._connection

        try:
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(
                self.db_path,
                check_same_thread=False,  # APScheduler callbacks run on worker threads
                timeout=10.0,
                isolation_level=None
            )
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA busy_timeout=5000")
            conn.execute("""
                CREATE TABLE IF NOT EXISTS kv (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
            """)
        except (sqlite3.Error, OSError) as e:
            raise StoreUnavailableError(f"Cannot open store {self.db_path}: {e}") from e

        self._connection = conn
        logger.info(f"Reminder store initialized: {self.db_path}")
        return conn

    @contextmanager
    def _transaction(self):
        """Serialize writers in-process and across processes."""
        with self._lock:
            conn = self._get_connection()
            try:
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as e:
                raise StoreUnavailableError(f"Store busy or unavailable: {e}") from e
            try:
                yield conn
                conn.execute("COMMIT")
            except sqlite3.Error as e:
                conn.execute("ROLLBACK")
                raise StoreUnavailableError(f"Store write failed: {e}") from e
            except Exception:
                conn.execute("ROLLBACK")
                raise

    @staticmethod
    def _read(conn: sqlite3.Connection, key: str, default: Any) -> Any:
        row = conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        if row is None:
            return default
        try:
            return json.loads(row[0])
        except json.JSONDecodeError:
            logger.warning(f"Discarding corrupt value for key '{key}'")
            return default

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            try:
                return self._read(self._get_connection(), key, default)
            except sqlite3.Error as e:
                raise StoreUnavailableError(f"Store read failed: {e}") from e

    def set(self, key: str, value: Any) -> None:
        self.update(key, lambda _: value)

    def update(self, key: str, fn: Callable[[Any], Any], default: Any = None) -> Any:
        """Atomically replace the value at `key` with fn(current).

        Returns:
            The new value
        """
        with self._transaction() as conn:
            new_value = fn(self._read(conn, key, default))
            conn.execute(
                "INSERT INTO kv (key, value) VALUES (?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                (key, json.dumps(new_value))
            )
            return new_value

    def delete(self, key: str) -> None:
        with self._transaction() as conn:
            conn.execute("DELETE FROM kv WHERE key = ?", (key,))

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None


class ReminderStore:
    """Pending reminders plus the last-activity timestamp."""

    def __init__(self, kv: KeyValueStore):
        self.kv = kv

    def put(self, reminder: Reminder) -> None:
        """Insert or replace a reminder by id."""
        record = reminder.to_record()

        def _upsert(records):
            kept = [r for r in records if r.get("id") != reminder.id]
            kept.append(record)
            return kept

        self.kv.update(config.REMINDERS_KEY, _upsert, default=[])
        logger.debug(f"Stored reminder {reminder.id}")

    def remove(self, reminder_id: str) -> bool:
        """Remove a reminder. Safe to call when it is already gone.

        Returns:
            True if a reminder was removed
        """
        removed = False

        def _drop(records):
            nonlocal removed
            kept = [r for r in records if r.get("id") != reminder_id]
            removed = len(kept) != len(records)
            return kept

        self.kv.update(config.REMINDERS_KEY, _drop, default=[])
        if removed:
            logger.debug(f"Removed reminder {reminder_id}")
        return removed

    def get(self, reminder_id: str) -> Optional[Reminder]:
        for reminder in self.list_all():
            if reminder.id == reminder_id:
                return reminder
        return None

    def list_all(self) -> list[Reminder]:
        """Snapshot of every stored reminder (malformed records skipped)."""
        reminders = []
        for record in self.kv.get(config.REMINDERS_KEY, []):
            reminder = Reminder.from_record(record) if isinstance(record, dict) else None
            if reminder is None:
                logger.warning(f"Skipping malformed reminder record: {record!r}")
                continue
            reminders.append(reminder)
        return reminders

    def get_last_activity(self) -> Optional[int]:
        value = self.kv.get(config.LAST_ACTIVITY_KEY)
        return int(value) if value is not None else None

    def set_last_activity(self, epoch_ms: int) -> None:
        self.kv.set(config.LAST_ACTIVITY_KEY, int(epoch_ms))
