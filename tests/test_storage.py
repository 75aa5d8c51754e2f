"""
Tests for storage.py - SQL-backed snapshot, marker and backlog store.
"""

import pytest
from sqlalchemy.exc import OperationalError

from hackertracker.errors import PersistenceError
from hackertracker.storage import SqlStore


class TestSnapshots:
    """Test snapshot set replacement."""

    def test_missing_key_is_empty(self, sql_store):
        assert sql_store.load_members("reputation_poll_last_data") == []

    def test_replace_overwrites_previous_members(self, sql_store):
        sql_store.replace_members("k", ["a", "b", "c"])
        sql_store.replace_members("k", ["c", "d"])
        assert sorted(sql_store.load_members("k")) == ["c", "d"]

    def test_replace_with_duplicates_stores_set(self, sql_store):
        sql_store.replace_members("k", ["a", "a", "b"])
        assert sorted(sql_store.load_members("k")) == ["a", "b"]

    def test_keys_are_independent(self, sql_store):
        sql_store.replace_members("reputation_poll_last_data", ["r"])
        sql_store.replace_members("reports_poll_last_data", ["x", "y"])
        sql_store.replace_members("reports_poll_last_data", [])
        assert sql_store.load_members("reputation_poll_last_data") == ["r"]
        assert sql_store.load_members("reports_poll_last_data") == []

    def test_data_survives_reopen(self, tmp_path):
        """A new store on the same file sees the last snapshot."""
        path = tmp_path / "tracker.db"
        first = SqlStore(path)
        first.replace_members("k", ["a"])
        first.set_marker("m", 123)
        first.close()

        second = SqlStore(path)
        assert second.load_members("k") == ["a"]
        assert second.get_marker("m") == 123
        second.close()


class TestMarkers:
    """Test last-run markers."""

    def test_missing_marker(self, sql_store):
        assert sql_store.get_marker("reputation_poll_last_run_time") is None

    def test_set_and_overwrite(self, sql_store):
        sql_store.set_marker("m", 1_700_000_000_000)
        sql_store.set_marker("m", 1_700_000_060_000)
        assert sql_store.get_marker("m") == 1_700_000_060_000


class TestBacklog:
    """Test the time-ordered backlog."""

    def test_read_orders_by_score(self, sql_store):
        """Entries inserted as 100, 50, 75 come back as 50, 75, 100."""
        sql_store.append_backlog("q", "item-100", 100)
        sql_store.append_backlog("q", "item-50", 50)
        sql_store.append_backlog("q", "item-75", 75)
        assert sql_store.read_backlog("q", 10) == ["item-50", "item-75", "item-100"]

    def test_read_is_bounded_to_oldest(self, sql_store):
        for score in range(5):
            sql_store.append_backlog("q", f"item-{score}", score)
        assert sql_store.read_backlog("q", 2) == ["item-0", "item-1"]

    def test_append_same_member_updates_score(self, sql_store):
        sql_store.append_backlog("q", "a", 10)
        sql_store.append_backlog("q", "b", 20)
        sql_store.append_backlog("q", "a", 30)
        assert sql_store.read_backlog("q", 10) == ["b", "a"]

    def test_remove(self, sql_store):
        sql_store.append_backlog("q", "a", 1)
        assert sql_store.remove_backlog("q", "a") is True
        assert sql_store.remove_backlog("q", "a") is False
        assert sql_store.read_backlog("q", 10) == []

    def test_clear_returns_count(self, sql_store):
        sql_store.append_backlog("q", "a", 1)
        sql_store.append_backlog("q", "b", 2)
        sql_store.append_backlog("other", "c", 3)
        assert sql_store.clear_backlog("q") == 2
        assert sql_store.read_backlog("q", 10) == []
        assert sql_store.read_backlog("other", 10) == ["c"]


class TestErrors:
    """Test backend errors are wrapped."""

    def test_sqlalchemy_error_becomes_persistence_error(self, sql_store, monkeypatch):
        def broken_session():
            raise OperationalError("SELECT 1", {}, Exception("database is locked"))

        class BrokenSession:
            def query(self, *args, **kwargs):
                broken_session()

            def rollback(self):
                pass

            def close(self):
                pass

        monkeypatch.setattr(sql_store, "_Session", BrokenSession)

        with pytest.raises(PersistenceError, match="load snapshot failed"):
            sql_store.load_members("k")
