"""
Reminder Storage Module

Abstract reminder store plus in-memory (testing) and SQLite (persistence)
backends. The scheduler only ever issues the four core operations
(delete scheduled rows, delete by id, list by invoice, insert many) inside
``atomic()``; the delivery worker uses ``list_due`` and ``update_status``.

Backend failures surface as ``StoreUnavailable`` so callers deal with one
error type regardless of backend. Rows that cannot be decoded are skipped
with a warning rather than failing the whole read.
"""

from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional, Any, Union
from datetime import date
import sqlite3
import threading
from pathlib import Path
from contextlib import contextmanager
import logging

from .errors import StoreUnavailable
from .models import ScheduledReminder, ReminderStatus


logger = logging.getLogger("reminder_engine.storage")

REMINDERS_TABLE = "invoice_reminders"


def decode_rows(rows: Iterable[Dict[str, Any]]) -> List[ScheduledReminder]:
    """Decode stored rows, skipping any row the engine cannot read"""
    reminders = []
    for row in rows:
        try:
            reminders.append(ScheduledReminder.from_dict(dict(row)))
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Skipping unreadable reminder row {row.get('id')!r}: {e}")
    return reminders


class ReminderStore(ABC):
    """Abstract interface for reminder storage backends"""

    @abstractmethod
    def delete_scheduled(self, invoice_id: str) -> int:
        """Delete every ``scheduled`` row for an invoice; returns rows removed"""
        pass

    @abstractmethod
    def delete_by_ids(self, reminder_ids: Iterable[str]) -> int:
        """Delete rows by id; returns rows removed"""
        pass

    @abstractmethod
    def list_by_invoice(self, invoice_id: str) -> List[ScheduledReminder]:
        """All rows for an invoice, oldest first"""
        pass

    @abstractmethod
    def insert_many(self, reminders: List[ScheduledReminder]) -> None:
        """Insert new rows"""
        pass

    @abstractmethod
    def list_due(self, as_of: date) -> List[ScheduledReminder]:
        """``scheduled`` rows whose date is on or before ``as_of``, earliest first"""
        pass

    @abstractmethod
    def list_all(self) -> List[ScheduledReminder]:
        """Every stored row"""
        pass

    @abstractmethod
    def update_status(self, reminder_id: str, status: ReminderStatus,
                      email_id: Optional[str] = None) -> bool:
        """Record a delivery outcome; returns False if the row does not exist"""
        pass

    @abstractmethod
    def close(self) -> None:
        """Close storage connection"""
        pass

    def begin_transaction(self) -> None:
        """Start a transaction (default no-op)"""
        pass

    def commit(self) -> None:
        """Commit current transaction (default no-op)"""
        pass

    def rollback(self) -> None:
        """Rollback current transaction (default no-op)"""
        pass

    @contextmanager
    def atomic(self):
        """Context manager running the enclosed operations as one unit"""
        self.begin_transaction()
        try:
            yield
        except Exception:
            self.rollback()
            raise
        self.commit()


class InMemoryReminderStore(ReminderStore):
    """In-memory reminder store for tests and single-process use"""

    def __init__(self):
        self._rows: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.RLock()
        self._snapshot: Optional[Dict[str, Dict[str, Any]]] = None
        self._depth = 0

    def _ordered(self, rows: Iterable[Dict[str, Any]]) -> List[ScheduledReminder]:
        reminders = decode_rows(rows)
        reminders.sort(key=lambda r: (r.created_at, r.id))
        return reminders

    def delete_scheduled(self, invoice_id: str) -> int:
        with self._lock:
            doomed = [
                reminder_id for reminder_id, row in self._rows.items()
                if row["invoice_id"] == invoice_id and row["status"] == ReminderStatus.SCHEDULED.value
            ]
            for reminder_id in doomed:
                del self._rows[reminder_id]
            return len(doomed)

    def delete_by_ids(self, reminder_ids: Iterable[str]) -> int:
        with self._lock:
            removed = 0
            for reminder_id in set(reminder_ids):
                if self._rows.pop(reminder_id, None) is not None:
                    removed += 1
            return removed

    def list_by_invoice(self, invoice_id: str) -> List[ScheduledReminder]:
        with self._lock:
            return self._ordered(row for row in self._rows.values() if row["invoice_id"] == invoice_id)

    def insert_many(self, reminders: List[ScheduledReminder]) -> None:
        with self._lock:
            seen = set()
            for reminder in reminders:
                if reminder.id in self._rows or reminder.id in seen:
                    raise StoreUnavailable(f"Reminder {reminder.id} already exists")
                seen.add(reminder.id)
            for reminder in reminders:
                self._rows[reminder.id] = reminder.to_dict()

    def list_due(self, as_of: date) -> List[ScheduledReminder]:
        with self._lock:
            due = [
                reminder for reminder in self._ordered(self._rows.values())
                if reminder.is_scheduled and reminder.scheduled_at <= as_of
            ]
            due.sort(key=lambda r: (r.scheduled_at, r.created_at, r.id))
            return due

    def list_all(self) -> List[ScheduledReminder]:
        with self._lock:
            return self._ordered(self._rows.values())

    def update_status(self, reminder_id: str, status: ReminderStatus,
                      email_id: Optional[str] = None) -> bool:
        with self._lock:
            row = self._rows.get(reminder_id)
            if row is None:
                return False
            row["status"] = status.value
            if email_id is not None:
                row["email_id"] = email_id
            return True

    def count(self) -> int:
        with self._lock:
            return len(self._rows)

    def begin_transaction(self) -> None:
        """Hold the store lock and snapshot rows so a failure can be undone"""
        self._lock.acquire()
        if self._depth == 0:
            self._snapshot = {key: dict(row) for key, row in self._rows.items()}
        self._depth += 1

    def commit(self) -> None:
        self._depth -= 1
        if self._depth == 0:
            self._snapshot = None
        self._lock.release()

    def rollback(self) -> None:
        self._depth -= 1
        if self._depth == 0 and self._snapshot is not None:
            self._rows = self._snapshot
            self._snapshot = None
        self._lock.release()

    def close(self) -> None:
        """Close storage (no-op for in-memory)"""
        pass


class SQLiteReminderStore(ReminderStore):
    """SQLite reminder store for persistence"""

    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        self.db_path = str(db_path)
        self._lock = threading.RLock()
        self._in_transaction = False
        try:
            # isolation_level='DEFERRED' keeps writes pending until commit
            self._connection = sqlite3.connect(self.db_path, check_same_thread=False, isolation_level='DEFERRED')
            self._connection.row_factory = sqlite3.Row
            if self.db_path != ":memory:":
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")
            self._ensure_schema()
        except sqlite3.Error as e:
            raise StoreUnavailable(f"Cannot open reminder database {self.db_path}: {e}") from e

    def _ensure_schema(self) -> None:
        with self._lock:
            self._connection.execute(f"""
                CREATE TABLE IF NOT EXISTS {REMINDERS_TABLE} (
                    id TEXT PRIMARY KEY,
                    invoice_id TEXT NOT NULL,
                    reminder_kind TEXT NOT NULL,
                    overdue_days INTEGER NOT NULL,
                    scheduled_at TEXT NOT NULL,
                    status TEXT NOT NULL,
                    email_id TEXT,
                    created_at TEXT NOT NULL
                )
            """)
            self._connection.execute(f"""
                CREATE INDEX IF NOT EXISTS idx_{REMINDERS_TABLE}_invoice_status
                ON {REMINDERS_TABLE}(invoice_id, status)
            """)
            self._connection.execute(f"""
                CREATE INDEX IF NOT EXISTS idx_{REMINDERS_TABLE}_status_scheduled
                ON {REMINDERS_TABLE}(status, scheduled_at)
            """)
            self._connection.commit()

    @contextmanager
    def _guard(self, operation: str):
        """Serialize access and translate SQLite errors"""
        with self._lock:
            if self._connection is None:
                raise StoreUnavailable(f"Reminder store is closed ({operation})")
            try:
                yield self._connection
            except sqlite3.Error as e:
                if not self._in_transaction:
                    self._connection.rollback()
                raise StoreUnavailable(f"Reminder store {operation} failed: {e}") from e

    def _maybe_commit(self) -> None:
        # Only commit if not in transaction
        if not self._in_transaction:
            self._connection.commit()

    def delete_scheduled(self, invoice_id: str) -> int:
        with self._guard("delete_scheduled") as conn:
            cursor = conn.execute(f"""
                DELETE FROM {REMINDERS_TABLE} WHERE invoice_id = ? AND status = ?
            """, (invoice_id, ReminderStatus.SCHEDULED.value))
            self._maybe_commit()
            return cursor.rowcount

    def delete_by_ids(self, reminder_ids: Iterable[str]) -> int:
        ids = sorted(set(reminder_ids))
        if not ids:
            return 0
        with self._guard("delete_by_ids") as conn:
            placeholders = ", ".join("?" for _ in ids)
            cursor = conn.execute(f"""
                DELETE FROM {REMINDERS_TABLE} WHERE id IN ({placeholders})
            """, ids)
            self._maybe_commit()
            return cursor.rowcount

    def list_by_invoice(self, invoice_id: str) -> List[ScheduledReminder]:
        with self._guard("list_by_invoice") as conn:
            cursor = conn.execute(f"""
                SELECT * FROM {REMINDERS_TABLE} WHERE invoice_id = ?
                ORDER BY created_at, id
            """, (invoice_id,))
            return decode_rows(dict(row) for row in cursor.fetchall())

    def insert_many(self, reminders: List[ScheduledReminder]) -> None:
        if not reminders:
            return
        with self._guard("insert_many") as conn:
            conn.executemany(f"""
                INSERT INTO {REMINDERS_TABLE}
                    (id, invoice_id, reminder_kind, overdue_days, scheduled_at, status, email_id, created_at)
                VALUES (:id, :invoice_id, :reminder_kind, :overdue_days, :scheduled_at, :status, :email_id, :created_at)
            """, [reminder.to_dict() for reminder in reminders])
            self._maybe_commit()

    def list_due(self, as_of: date) -> List[ScheduledReminder]:
        with self._guard("list_due") as conn:
            cursor = conn.execute(f"""
                SELECT * FROM {REMINDERS_TABLE}
                WHERE status = ? AND scheduled_at <= ?
                ORDER BY scheduled_at, created_at, id
            """, (ReminderStatus.SCHEDULED.value, as_of.isoformat()))
            return decode_rows(dict(row) for row in cursor.fetchall())

    def list_all(self) -> List[ScheduledReminder]:
        with self._guard("list_all") as conn:
            cursor = conn.execute(f"""
                SELECT * FROM {REMINDERS_TABLE} ORDER BY created_at, id
            """)
            return decode_rows(dict(row) for row in cursor.fetchall())

    def update_status(self, reminder_id: str, status: ReminderStatus,
                      email_id: Optional[str] = None) -> bool:
        with self._guard("update_status") as conn:
            cursor = conn.execute(f"""
                UPDATE {REMINDERS_TABLE}
                SET status = ?, email_id = COALESCE(?, email_id)
                WHERE id = ?
            """, (status.value, email_id, reminder_id))
            self._maybe_commit()
            return cursor.rowcount > 0

    def begin_transaction(self) -> None:
        """Start a database transaction, holding the lock until commit or rollback"""
        self._lock.acquire()
        # SQLite with isolation_level='DEFERRED' opens the transaction on first write
        self._in_transaction = True

    def commit(self) -> None:
        """Commit current transaction"""
        try:
            if self._in_transaction and self._connection is not None:
                self._connection.commit()
        except sqlite3.Error as e:
            raise StoreUnavailable(f"Reminder store commit failed: {e}") from e
        finally:
            self._in_transaction = False
            self._lock.release()

    def rollback(self) -> None:
        """Rollback current transaction"""
        try:
            if self._in_transaction and self._connection is not None:
                self._connection.rollback()
        finally:
            self._in_transaction = False
            self._lock.release()

    def close(self) -> None:
        """Close SQLite connection"""
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None


def create_store(database_path: Optional[str] = None) -> ReminderStore:
    """
    Factory function to create a reminder store.

    ``memory`` selects the in-memory backend; anything else is a SQLite
    path. Defaults to ``database_path`` from the engine configuration.
    """
    if database_path is None:
        from .config import get_config
        database_path = get_config().database_path

    if database_path.lower() == "memory":
        return InMemoryReminderStore()
    return SQLiteReminderStore(database_path)
