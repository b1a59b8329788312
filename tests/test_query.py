"""Tests for the generated keyset SQL."""
import pytest

from db_resolver.dialects.mysql import MySQLAdapter
from db_resolver.dialects.postgres import PostgresAdapter
from db_resolver.errors import ColumnNotFound, IndexOutOfRange
from db_resolver.models import DATABASE_FEATURES, DatabaseType, Features, SortColumn
from db_resolver.query import (OrderTerm, Params, find_next_sql, keyset_predicate,
                               order_by, order_terms, select_page)
from db_resolver.relation import new_relation


@pytest.fixture
def relation(people):
    return new_relation(people, "sqlite", "people")


def test_placeholders(adapter):
    assert adapter.placeholders(3) == ["?", "?", "?"]
    assert PostgresAdapter(None).placeholder(2) == "%s"


def test_order_terms(relation):
    assert order_terms(relation, None) == [("id", True, False)]
    assert order_terms(relation, None, forward=False) == [("id", False, False)]
    assert order_terms(relation, SortColumn("age", asc=False)) == [("age", False, True), ("id", True, False)]
    assert order_terms(relation, SortColumn("id", asc=False)) == [("id", False, False)]
    with pytest.raises(ColumnNotFound):
        order_terms(relation, SortColumn("missing"))


def test_row_value_predicate(adapter):
    params = Params(adapter)
    sql = keyset_predicate(params, [("a", True), ("b", True)], [1, 2], inclusive=True)
    assert sql == "(a, b) >= (?, ?)"
    assert params.values == [1, 2]


def test_lexicographic_predicate(adapter):
    """Test the OR expansion when directions are mixed."""
    params = Params(adapter)
    sql = keyset_predicate(params, [("a", False), ("b", True)], [1, 2], inclusive=True)
    assert sql == "(a < ?) OR (a = ? AND b > ?) OR (a = ? AND b = ?)"
    assert params.values == [1, 1, 2, 1, 2]


def test_predicate_without_row_values(people):
    adapter = MySQLAdapter(people, features=Features(row_values=False))
    params = Params(adapter)
    sql = keyset_predicate(params, [("a", True), ("b", True)], ["x", "y"])
    assert sql == "(a > %s) OR (a = %s AND b > %s)"
    with pytest.raises(IndexOutOfRange):
        keyset_predicate(params, [("a", True)], [])


def test_select_page_sql(relation, adapter):
    sql, params = select_page(adapter, relation, ["id", "name"], SortColumn("age"), [25, 6],
                              forward=False, limit=10)
    assert sql == ("SELECT id, name FROM people WHERE (age < ? OR age IS NULL) OR (age = ? AND id < ?)"
                   " ORDER BY age DESC, id DESC LIMIT 10")
    assert params == [25, 25, 6]

    sql, params = select_page(adapter, relation, ["id"], SortColumn("age"), [25, 6])
    assert sql == "SELECT id FROM people WHERE (age, id) > (?, ?) ORDER BY age ASC, id ASC"
    assert params == [25, 6]


def test_custom_sql_is_wrapped_and_escaped(relation):
    adapter = PostgresAdapter(None)
    relation.is_custom_sql = True
    relation.sql = "SELECT * FROM people WHERE name LIKE 'A%'"
    sql, params = select_page(adapter, relation, [], None, None)
    assert sql == "SELECT * FROM (SELECT * FROM people WHERE name LIKE 'A%%') AS q ORDER BY id ASC"
    assert params == []


def test_find_next_sql(relation, adapter):
    sql, params = find_next_sql(adapter, relation, "age", None, None, [3], forward=False)
    assert sql == "SELECT id FROM people WHERE (id < ?) AND age IS NULL ORDER BY id DESC LIMIT 1"
    assert params == [3]


def test_feature_table():
    assert DATABASE_FEATURES[DatabaseType.MYSQL].returning is False
    assert DATABASE_FEATURES[DatabaseType.POSTGRESQL].returning is True
    assert not DATABASE_FEATURES[DatabaseType.SNOWFLAKE].implemented
    assert DatabaseType.parse("Postgres") is DatabaseType.POSTGRESQL


def test_null_boundary_predicates(adapter):
    """Test that NULL sorts lowest in both directions."""
    up = [OrderTerm("age", True, True), OrderTerm("id", True)]
    params = Params(adapter)
    assert keyset_predicate(params, up, [None, 4]) == "(age IS NOT NULL) OR (age IS NULL AND id > ?)"
    assert params.values == [4]

    down = [OrderTerm("age", False, True), OrderTerm("id", False)]
    params = Params(adapter)
    assert keyset_predicate(params, down, [None, 4], inclusive=True) == (
        "(age IS NULL AND id < ?) OR (age IS NULL AND id = ?)")
    assert params.values == [4, 4]

    params = Params(adapter)
    assert keyset_predicate(params, down[:1], [None]) == "1 = 0"


def test_mixed_directions_over_nullable_key(adapter):
    terms = [OrderTerm("a", True), OrderTerm("b", False, True)]
    params = Params(adapter)
    assert keyset_predicate(params, terms, [1, 2]) == "(a > ?) OR (a = ? AND (b < ? OR b IS NULL))"
    assert params.values == [1, 1, 2]


def test_null_order_is_explicit_where_needed(adapter):
    terms = [OrderTerm("age", True, True), OrderTerm("id", False)]
    assert order_by(adapter, terms) == "age ASC, id DESC"
    assert order_by(PostgresAdapter(None), terms) == "age ASC NULLS FIRST, id DESC"
    assert order_by(PostgresAdapter(None), [OrderTerm("age", False, True)]) == "age DESC NULLS LAST"
