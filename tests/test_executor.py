"""Tests for paging, search and write paths of the query executor."""
import pytest

from db_resolver.config import EMPTY_CELL_VALUE, NULL_GLYPH
from db_resolver.dialects.sqlite import SQLiteAdapter
from db_resolver.errors import MissingKey, NoRowsUpdated, NotEditable
from db_resolver.executor import QueryExecutor
from db_resolver.models import DATABASE_FEATURES, DatabaseType, SortColumn
from db_resolver.relation import new_relation, new_relation_from_sql


@pytest.fixture
def executor(people):
    """Create an executor over the people table."""
    return QueryExecutor(people, new_relation(people, "sqlite", "people"))


@pytest.fixture
def mysql_like(people):
    """Create an executor whose adapter lacks RETURNING, like MySQL."""
    adapter = SQLiteAdapter(people, features=DATABASE_FEATURES[DatabaseType.MYSQL])
    return QueryExecutor(people, new_relation(people, "sqlite", "people"), adapter)


def ids(rows):
    return [row[0] for row in rows]


def test_find_next_below(executor):
    assert executor.find_next_row("age", "25", current_key=[1]) == ([2], True)


def test_find_next_wraps(executor):
    assert executor.find_next_row(2, "25", current_key=[6]) == ([4], False)


def test_find_not_found(executor):
    assert executor.find_next_row("age", "99", current_key=[1]) == (None, False)


def test_find_without_current_row(executor):
    assert executor.find_next_row("name", "Eve") == ([5], True)


def test_find_next_with_sort(executor):
    """Test that search follows the (sort, key) order."""
    sort = SortColumn("name", asc=False)
    # order: Fay(6) Eve(5) Dee(4) Cid(3) Bob(2) Ann(1)
    assert executor.find_next_row("age", "30", sort=sort, sort_value="Eve", current_key=[5]) == ([3], True)
    assert executor.find_next_row("age", "35", sort=sort, sort_value="Dee", current_key=[4]) == ([5], False)


def test_pages_forward_and_back(executor):
    first = executor.query_rows(limit=2)
    assert ids(first) == [1, 2]

    second = executor.query_rows(boundary=executor.boundary(first[-1]), limit=2)
    assert ids(second) == [3, 4]

    back = executor.query_rows(boundary=executor.boundary(second[0]), scroll_down=False, limit=2)
    assert ids(back) == [1, 2]

    again = executor.query_rows(boundary=executor.boundary(first[-1]), inclusive=True,
                                scroll_down=False, limit=2)
    assert again == first


def test_pages_sorted(executor):
    sort = SortColumn("age")
    first = executor.query_rows(sort=sort, limit=3)
    assert ids(first) == [2, 4, 6]
    assert executor.boundary(first[-1], sort) == [25, 6]

    second = executor.query_rows(sort=sort, boundary=executor.boundary(first[-1], sort), limit=3)
    assert ids(second) == [1, 3, 5]


def test_pages_sorted_descending(executor):
    """Test the lexicographic expansion for a descending sort."""
    sort = SortColumn("age", asc=False)
    first = executor.query_rows(sort=sort, limit=2)
    assert ids(first) == [5, 1]

    second = executor.query_rows(sort=sort, boundary=executor.boundary(first[-1], sort), limit=2)
    assert ids(second) == [3, 2]

    back = executor.query_rows(sort=sort, boundary=executor.boundary(second[0], sort),
                               scroll_down=False, limit=2)
    assert ids(back) == [5, 1]


def test_projection(executor):
    rows = executor.query_rows(columns=["name"], limit=1)
    assert rows == [("Ann",)]


def test_custom_sql_pages(people):
    relation = new_relation_from_sql(people, "sqlite", "SELECT id, name FROM people WHERE age = 25")
    executor = QueryExecutor(people, relation)
    assert ids(executor.query_rows()) == [2, 4, 6]
    assert ids(executor.query_rows(boundary=[2])) == [4, 6]


def test_update_with_returning(executor, people):
    row = (1, "Ann", 30)
    assert executor.update_db_value(row, "age", "41") == (1, "Ann", 41)
    assert executor.update_db_value(row, 2, NULL_GLYPH) == (1, "Ann", None)
    assert people.execute("SELECT age FROM people WHERE id = 1").fetchone() == (None,)


def test_update_missing_row(executor):
    with pytest.raises(NoRowsUpdated):
        executor.update_db_value((99, "Nobody", 1), "age", "2")


def test_update_without_returning(mysql_like, people):
    """Test the transactional UPDATE then SELECT path."""
    assert mysql_like.update_db_value((2, "Bob", 25), "name", "Bobby") == (2, "Bobby", 25)
    assert mysql_like.update_db_value((2, "Bobby", 25), "name", "Bobby") == (2, "Bobby", 25)
    assert mysql_like.update_db_value((2, "Bobby", 25), "id", "20") == (20, "Bobby", 25)
    assert people.execute("SELECT name FROM people WHERE id = 20").fetchone() == ("Bobby",)

    with pytest.raises(NoRowsUpdated):
        mysql_like.update_db_value((2, "Bobby", 25), "name", "x")


def test_update_through_view(people):
    relation = new_relation(people, "sqlite", "people_view")
    executor = QueryExecutor(people, relation)

    assert executor.update_db_value((3, "Cid", 30), "name", "Cyd") == (3, "Cyd", 30)
    assert people.execute("SELECT name FROM people WHERE id = 3").fetchone() == ("Cyd",)


def test_update_derived_view_column(people):
    relation = new_relation(people, "sqlite", "people_next")
    executor = QueryExecutor(people, relation)

    with pytest.raises(NotEditable):
        executor.update_db_value((1, 31), "next_age", "50")


def test_insert(executor):
    assert executor.insert_db_record([None, "Gus", "44"]) == (7, "Gus", 44)
    assert executor.insert_db_record([None, "Hal", EMPTY_CELL_VALUE]) == (8, "Hal", None)
    assert executor.insert_db_record(["12", "Ivy", ""]) == (12, "Ivy", None)


def test_insert_without_returning(mysql_like, people):
    assert mysql_like.insert_db_record([None, "Gus", "44"]) == (7, "Gus", 44)
    assert mysql_like.insert_db_record(["30", "Jo", "1"]) == (30, "Jo", 1)
    assert people.execute("SELECT COUNT(*) FROM people").fetchone() == (8,)


def test_insert_default_values(conn):
    conn.execute("CREATE TABLE counters (id INTEGER PRIMARY KEY, note TEXT)")
    executor = QueryExecutor(conn, new_relation(conn, "sqlite", "counters"))
    assert executor.insert_db_record([None, None]) == (1, None)


def test_insert_composite_key_needs_all_parts(conn):
    conn.execute("CREATE TABLE pairs (a INTEGER NOT NULL, b INTEGER NOT NULL, PRIMARY KEY (a, b))")
    executor = QueryExecutor(conn, new_relation(conn, "sqlite", "pairs"))
    with pytest.raises(MissingKey):
        executor.insert_db_record(["1", None])
    assert executor.insert_db_record(["1", "2"]) == (1, 2)


def test_insert_into_view_is_refused(people):
    executor = QueryExecutor(people, new_relation(people, "sqlite", "people_view"))
    with pytest.raises(NotEditable):
        executor.insert_db_record([None, "x", "1"])


def test_delete(executor, people):
    executor.delete_db_record((3, "Cid", 30))
    assert people.execute("SELECT COUNT(*) FROM people WHERE id = 3").fetchone() == (0,)
    with pytest.raises(NoRowsUpdated):
        executor.delete_db_record((3, "Cid", 30))


def test_foreign_row(shop):
    orders = new_relation(shop, "sqlite", "orders")
    executor = QueryExecutor(shop, orders)

    assert executor.get_foreign_row(0, (10, 1, 50.0)) == {
        "id": 1, "name": "ann", "email": "ann@example.com"}
    assert executor.get_foreign_row(orders.references[0], (13, None, 5.0)) is None
    assert executor.get_foreign_row(0, (14, 9, 1.0)) is None


def test_compare_row_position(executor):
    assert executor.compare_row_position([5], [2], [4]) == (False, True)
    assert executor.compare_row_position([1], [2], [4]) == (True, False)
    assert executor.compare_row_position([3], [2], [4]) == (False, False)

    sort = SortColumn("age")
    assert executor.compare_row_position([20, 5], [25, 2], [30, 1], sort) == (True, False)


@pytest.fixture
def unknown_ages(people):
    people.execute("UPDATE people SET age = NULL WHERE id IN (2, 4)")
    return people


def walk(executor, sort, limit=2):
    """Page forward through the whole relation."""
    seen, boundary = [], None
    while True:
        page = executor.query_rows(sort=sort, boundary=boundary, limit=limit)
        if not page:
            return seen
        seen.extend(ids(page))
        boundary = executor.boundary(page[-1], sort)


def test_pages_over_null_sort_values(executor, unknown_ages):
    """Test that NULL sort values page like the lowest value."""
    assert walk(executor, SortColumn("age")) == [2, 4, 6, 1, 3, 5]
    assert walk(executor, SortColumn("age", asc=False)) == [5, 1, 3, 6, 2, 4]

    sort = SortColumn("age")
    back = executor.query_rows(sort=sort, boundary=[25, 6], scroll_down=False, limit=2)
    assert ids(back) == [2, 4]
    assert ids(executor.query_rows(sort=sort, boundary=[None, 4], scroll_down=False)) == [2]
    assert ids(executor.query_rows(sort=sort, boundary=[None, 4], inclusive=True,
                                   scroll_down=False)) == [2, 4]


def test_find_next_from_null_sort_value(executor, unknown_ages):
    sort = SortColumn("age")
    assert executor.find_next_row("name", "Dee", sort=sort, sort_value=None, current_key=[2]) == ([4], True)
    assert executor.find_next_row("name", "Ann", sort=sort, sort_value=None, current_key=[4]) == ([1], True)
    assert executor.find_next_row("name", "Bob", sort=sort, sort_value=25, current_key=[6]) == ([2], False)


def test_repeated_find_next_wraps_to_nearest_preceding_match(executor):
    """Test the search sequence started from a non-matching row."""
    visited, current = [], [1]
    for _ in range(4):
        keys, _ = executor.find_next_row("age", "25", current_key=current)
        visited.append(keys[0])
        current = keys
    assert visited == [2, 4, 6, 4]


def test_update_through_join_view(shop):
    """Test that an edit of a joined view writes the owning table and merges back."""
    executor = QueryExecutor(shop, new_relation(shop, "sqlite", "user_orders"))

    assert executor.update_db_value((10, "ann", 50.0), "total", "75") == (10, "ann", 75.0)
    assert shop.execute("SELECT total FROM orders WHERE id = 10").fetchone() == (75.0,)

    with pytest.raises(NotEditable):
        executor.update_db_value((10, "ann", 75.0), "name", "anna")


def test_custom_sql_with_trailing_comment(people):
    relation = new_relation_from_sql(people, "sqlite", "SELECT id, name FROM people -- the crew")
    assert relation.sql == "SELECT id, name FROM people"

    executor = QueryExecutor(people, relation)
    assert ids(executor.query_rows(limit=3)) == [1, 2, 3]
    assert ids(executor.query_rows(boundary=[3])) == [4, 5, 6]
