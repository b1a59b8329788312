"""Tests for shared adapter behaviour: error wrapping and handle recovery."""
import psycopg2
import pytest

from db_resolver.dialects.postgres import PostgresAdapter
from db_resolver.dialects.sqlite import SQLiteAdapter
from db_resolver.errors import BackendError


class RecordingAdapter(SQLiteAdapter):
    """SQLite adapter that counts recoveries."""

    def __init__(self, conn):
        super().__init__(conn)
        self.recovered = 0

    def recover(self):
        self.recovered += 1


class FailingCursor:
    description = None

    def execute(self, *args):
        raise psycopg2.Error("current transaction is aborted")

    def close(self):
        pass


class FakeConnection:
    """Connection double recording rollbacks."""
    autocommit = False

    def __init__(self):
        self.rollbacks = 0

    def cursor(self):
        return FailingCursor()

    def rollback(self):
        self.rollbacks += 1


def test_failed_read_recovers_the_handle(people):
    adapter = RecordingAdapter(people)
    with pytest.raises(BackendError):
        adapter.probe("SELECT missing FROM people")
    assert adapter.recovered == 1

    assert adapter.query_one("SELECT COUNT(*) FROM people") == (6,)


def test_failed_write_rolls_back_without_recovery(people):
    """Test that errors inside a transaction are left to its rollback."""
    adapter = RecordingAdapter(people)
    with pytest.raises(BackendError):
        with adapter.transaction() as cur:
            adapter.execute(cur, "UPDATE people SET missing = 1")
    assert adapter.recovered == 0
    assert adapter._transactions == 0


def test_postgres_read_failure_rolls_back():
    conn = FakeConnection()
    adapter = PostgresAdapter(conn)

    with pytest.raises(BackendError):
        adapter.query("SELECT 1")
    assert conn.rollbacks == 1

    conn.autocommit = True
    with pytest.raises(BackendError):
        adapter.query("SELECT 1")
    assert conn.rollbacks == 1
