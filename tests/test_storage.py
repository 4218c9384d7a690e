"""
Unit tests for storage layer.

Tests schema creation, record serialization and persistence across store
instances.
"""

import os
import tempfile
import threading
from datetime import date, datetime, timezone

import pytest

from ai_quota_gate.core.ledger import UsageLedger
from ai_quota_gate.storage.db import get_connection
from ai_quota_gate.storage.models import UsageRecord
from ai_quota_gate.storage.repository import (
    InMemoryUsageStore,
    SQLiteUsageStore,
    get_store,
    initialize_schema,
)

from conftest import FakeClock


class TestStorageSchema:
    """Test database schema creation and structure."""

    def test_schema_creation(self):
        """Verify table is created correctly."""
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = os.path.join(temp_dir, "test.db")
            initialize_schema(db_path)

            conn = get_connection(db_path)
            try:
                cursor = conn.execute("PRAGMA table_info(usage_record)")
                column_names = [col[1] for col in cursor.fetchall()]
                assert column_names == ["key", "payload"]
            finally:
                conn.close()

    def test_schema_creation_is_idempotent(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = os.path.join(temp_dir, "test.db")
            initialize_schema(db_path)
            initialize_schema(db_path)


class TestUsageRecord:
    """Test record serialization."""

    def test_round_trip(self):
        record = UsageRecord(
            date=date(2026, 3, 10),
            daily_count=4,
            recent_timestamps=(
                datetime(2026, 3, 10, 18, 0, tzinfo=timezone.utc),
                datetime(2026, 3, 10, 18, 1, tzinfo=timezone.utc),
            ),
            limit_hits=1,
        )

        assert UsageRecord.from_dict(record.to_dict()) == record

    def test_empty_data_is_fresh_record(self):
        assert UsageRecord.from_dict(None) == UsageRecord()
        assert UsageRecord.from_dict({}) == UsageRecord()

    def test_negative_count_rejected(self):
        with pytest.raises(ValueError, match="daily_count must be >= 0"):
            UsageRecord(daily_count=-1)


class TestSQLiteUsageStore:
    """Test SQLite persistence."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.temp_dir, "usage.db")

    def teardown_method(self):
        """Clean up test environment."""
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_load_missing_key(self):
        assert SQLiteUsageStore(self.db_path).load("api_usage") is None

    def test_save_and_load(self):
        store = SQLiteUsageStore(self.db_path)
        store.save("api_usage", {"daily_count": 3})
        store.save("api_usage", {"daily_count": 4})

        assert store.load("api_usage") == {"daily_count": 4}

    def test_update_applies_mutation(self):
        store = SQLiteUsageStore(self.db_path)

        store.update("k", lambda current: {"n": 1})
        result = store.update("k", lambda current: {"n": current["n"] + 1})

        assert result == {"n": 2}
        assert store.load("k") == {"n": 2}

    def test_failed_update_rolls_back(self):
        store = SQLiteUsageStore(self.db_path)
        store.save("k", {"n": 1})

        def explode(current):
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            store.update("k", explode)
        assert store.load("k") == {"n": 1}

    def test_concurrent_updates_lose_nothing(self):
        """Writers on separate connections never lose an increment."""
        def bump():
            store = SQLiteUsageStore(self.db_path)
            for _ in range(20):
                store.update("k", lambda current: {"n": (current or {"n": 0})["n"] + 1})

        threads = [threading.Thread(target=bump) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert SQLiteUsageStore(self.db_path).load("k") == {"n": 80}

    def test_ledger_survives_restart(self):
        """Counts read after reopening the database match those before."""
        clock = FakeClock()
        before = UsageLedger(SQLiteUsageStore(self.db_path), clock=clock)
        for _ in range(3):
            before.record_call()
        expected = before.snapshot()

        after = UsageLedger(SQLiteUsageStore(self.db_path), clock=clock)

        assert after.snapshot() == expected
        assert after.current_record() == before.current_record()

    def test_get_store_per_path(self):
        other_path = os.path.join(self.temp_dir, "other.db")

        assert get_store(self.db_path) is get_store(self.db_path)
        assert get_store(self.db_path) is not get_store(other_path)


class TestInMemoryUsageStore:
    def test_update_and_load(self):
        store = InMemoryUsageStore()
        store.update("k", lambda current: {"n": 1})
        assert store.load("k") == {"n": 1}
        assert store.load("missing") is None
