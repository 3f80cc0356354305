"""
Tests for reminder storage backends and transaction support
"""

import pytest
import tempfile
from datetime import datetime, timezone, date, timedelta
from pathlib import Path

from reminder_engine.errors import StoreUnavailable
from reminder_engine.models import ScheduledReminder, ReminderKind, ReminderStatus
from reminder_engine.storage import InMemoryReminderStore, SQLiteReminderStore, decode_rows


BASE_TIME = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


def make_reminder(reminder_id: str, invoice_id: str = "INV001", kind: ReminderKind = ReminderKind.FRIENDLY,
                  scheduled_at: date = date(2024, 3, 10), status: ReminderStatus = ReminderStatus.SCHEDULED,
                  minutes: int = 0) -> ScheduledReminder:
    return ScheduledReminder(
        id=reminder_id,
        invoice_id=invoice_id,
        reminder_kind=kind,
        overdue_days=1,
        scheduled_at=scheduled_at,
        status=status,
        created_at=BASE_TIME + timedelta(minutes=minutes)
    )


@pytest.fixture(params=["memory", "sqlite"])
def store(request):
    """Each test runs against both backends"""
    if request.param == "memory":
        backend = InMemoryReminderStore()
        yield backend
        backend.close()
    else:
        with tempfile.TemporaryDirectory() as temp_dir:
            backend = SQLiteReminderStore(Path(temp_dir) / "reminders.db")
            yield backend
            backend.close()


class TestReminderStoreOperations:
    """Test the core store operations on every backend"""
    
    def test_insert_and_list_by_invoice(self, store):
        """Test rows come back per invoice, oldest first"""
        store.insert_many([
            make_reminder("R2", minutes=2),
            make_reminder("R1", minutes=1),
            make_reminder("R3", invoice_id="INV002"),
        ])
        
        rows = store.list_by_invoice("INV001")
        assert [r.id for r in rows] == ["R1", "R2"]
        assert rows[0].scheduled_at == date(2024, 3, 10)
        assert rows[0].created_at == BASE_TIME + timedelta(minutes=1)
        assert store.list_by_invoice("missing") == []
    
    def test_delete_scheduled_keeps_history(self, store):
        """Test that only scheduled rows of the invoice are removed"""
        store.insert_many([
            make_reminder("R1"),
            make_reminder("R2", status=ReminderStatus.SENT),
            make_reminder("R3", status=ReminderStatus.FAILED),
            make_reminder("R4", invoice_id="INV002"),
        ])
        
        assert store.delete_scheduled("INV001") == 1
        assert [r.id for r in store.list_by_invoice("INV001")] == ["R2", "R3"]
        assert len(store.list_by_invoice("INV002")) == 1
    
    def test_delete_by_ids(self, store):
        store.insert_many([make_reminder("R1"), make_reminder("R2"), make_reminder("R3")])
        
        assert store.delete_by_ids(["R1", "R3", "nope"]) == 2
        assert [r.id for r in store.list_all()] == ["R2"]
        assert store.delete_by_ids([]) == 0
    
    def test_list_due(self, store):
        """Test the delivery queue: scheduled rows on or before the date"""
        store.insert_many([
            make_reminder("LATE", scheduled_at=date(2024, 3, 12)),
            make_reminder("EARLY", scheduled_at=date(2024, 3, 5)),
            make_reminder("TODAY", scheduled_at=date(2024, 3, 10)),
            make_reminder("SENT", scheduled_at=date(2024, 3, 1), status=ReminderStatus.SENT),
        ])
        
        due = store.list_due(date(2024, 3, 10))
        assert [r.id for r in due] == ["EARLY", "TODAY"]
    
    def test_update_status(self, store):
        """Test recording a delivery outcome"""
        store.insert_many([make_reminder("R1")])
        
        assert store.update_status("R1", ReminderStatus.SENT, email_id="email-123")
        row = store.list_by_invoice("INV001")[0]
        assert row.status == ReminderStatus.SENT
        assert row.email_id == "email-123"
        assert not store.update_status("missing", ReminderStatus.FAILED)
    
    def test_duplicate_id_rejected(self, store):
        store.insert_many([make_reminder("R1")])
        with pytest.raises(StoreUnavailable):
            store.insert_many([make_reminder("R1")])


class TestAtomic:
    """Test transactional behaviour"""
    
    def test_rollback_restores_deleted_rows(self, store):
        """Test that a failure inside atomic() undoes earlier deletes"""
        store.insert_many([make_reminder("R1"), make_reminder("R2")])
        
        with pytest.raises(StoreUnavailable):
            with store.atomic():
                store.delete_scheduled("INV001")
                store.insert_many([make_reminder("R3"), make_reminder("R3")])
        
        assert sorted(r.id for r in store.list_all()) == ["R1", "R2"]
    
    def test_commit(self, store):
        store.insert_many([make_reminder("R1")])
        
        with store.atomic():
            store.delete_scheduled("INV001")
            store.insert_many([make_reminder("R2")])
        
        assert [r.id for r in store.list_all()] == ["R2"]


class TestSQLiteReminderStore:
    """SQLite specific behaviour"""
    
    def test_persistence_across_connections(self):
        """Test rows survive reopening the database file"""
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = Path(temp_dir) / "reminders.db"
            
            first = SQLiteReminderStore(db_path)
            first.insert_many([make_reminder("R1", kind=ReminderKind.URGENT)])
            first.close()
            
            second = SQLiteReminderStore(db_path)
            rows = second.list_all()
            second.close()
            
            assert len(rows) == 1
            assert rows[0].reminder_kind == ReminderKind.URGENT
    
    def test_closed_store_raises_store_unavailable(self):
        store = SQLiteReminderStore()
        store.close()
        
        with pytest.raises(StoreUnavailable):
            store.list_by_invoice("INV001")


class TestDecodeRows:
    """Test decoding of stored rows"""
    
    def test_unreadable_rows_skipped(self):
        good = make_reminder("R1").to_dict()
        bad_kind = dict(make_reminder("R2").to_dict(), reminder_kind="gentle")
        bad_status = dict(make_reminder("R3").to_dict(), status="bounced")
        no_date = dict(make_reminder("R4").to_dict(), scheduled_at="someday")
        
        reminders = decode_rows([good, bad_kind, bad_status, no_date])
        
        assert [r.id for r in reminders] == ["R1"]
    
    def test_naive_created_at_read_as_utc(self):
        row = dict(make_reminder("R1").to_dict(), created_at="2024-03-01 09:00:00")
        
        assert decode_rows([row])[0].created_at == BASE_TIME
