"""Shared fixtures: in-memory SQLite databases seeded for the resolver tests."""
import sqlite3

import pytest

from db_resolver.dialects.sqlite import SQLiteAdapter


@pytest.fixture
def conn():
    """Create an empty in-memory database."""
    connection = sqlite3.connect(":memory:")
    yield connection
    connection.close()


@pytest.fixture
def adapter(conn):
    return SQLiteAdapter(conn)


@pytest.fixture
def people(conn):
    """Table used by the find-next and paging tests."""
    conn.executescript("""
        CREATE TABLE people (
            id INTEGER PRIMARY KEY,
            name TEXT NOT NULL,
            age INTEGER
        );
        INSERT INTO people (id, name, age) VALUES
            (1, 'Ann', 30), (2, 'Bob', 25), (3, 'Cid', 30),
            (4, 'Dee', 25), (5, 'Eve', 35), (6, 'Fay', 25);
        CREATE VIEW people_view AS SELECT id, name, age FROM people;
        CREATE VIEW people_next AS SELECT id, age + 1 AS next_age FROM people;
    """)
    return conn


@pytest.fixture
def shop(conn):
    """Users, orders and a few views on top of them."""
    conn.executescript("""
        CREATE TABLE users (
            id INTEGER PRIMARY KEY,
            name TEXT NOT NULL,
            email TEXT
        );
        CREATE TABLE orders (
            id INTEGER PRIMARY KEY,
            user_id INTEGER REFERENCES users(id),
            total REAL
        );
        CREATE TABLE notes (
            id INTEGER PRIMARY KEY,
            author INTEGER REFERENCES users,
            body TEXT
        );
        INSERT INTO users (id, name, email) VALUES
            (1, 'ann', 'ann@example.com'), (2, 'bob', NULL);
        INSERT INTO orders (id, user_id, total) VALUES
            (10, 1, 50.0), (11, 1, 150.0), (12, 2, 300.0), (13, NULL, 5.0);

        CREATE VIEW user_stats AS
            SELECT u.name, COUNT(*) c FROM users u GROUP BY u.name;
        CREATE VIEW user_orders AS
            SELECT o.id, u.name, o.total
            FROM orders o JOIN users u ON u.id = o.user_id;
        CREATE VIEW big_orders AS
            SELECT id, total FROM user_orders WHERE total > 100;
        CREATE VIEW active_users AS
            SELECT id, name FROM users WHERE email IS NOT NULL;
    """)
    return conn
