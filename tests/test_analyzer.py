"""Tests for SELECT lineage analysis."""
import pytest

from db_resolver.analyzer import NON_TRIVIAL_EXPR, SqlAnalyzer, analyze_sql
from db_resolver.dialects.base import DialectAdapter
from db_resolver.errors import ParseError
from db_resolver.models import ColumnLineage, DatabaseType


class CatalogStub(DialectAdapter):
    """Adapter answering catalog questions from dictionaries."""
    dialect = DatabaseType.SQLITE

    def __init__(self, tables, views):
        super().__init__(conn=None)
        self.tables = tables
        self.views = views

    def is_view(self, name):
        return name in self.views

    def raw_view_definition(self, name):
        return self.views[name][1]

    def column_names(self, name):
        if name in self.views:
            return self.views[name][0]
        return self.tables[name]


def lineage(analysis):
    return [(c.name, c.source_table, c.source_column, c.derived) for c in analysis.columns]


def test_view_lineage_with_group_by(adapter, shop):
    """Test lineage of an aggregating view."""
    analysis = SqlAnalyzer(adapter).analyze_view("user_stats")

    assert analysis.columns[0] == ColumnLineage("name", "users", "name", False)
    assert analysis.columns[1].derived
    assert analysis.columns[1].name == "c"
    assert analysis.has_group_by
    assert analysis.group_by == ["u.name"]
    assert analysis.tables == ["users"]


def test_join_with_aliases(adapter, shop):
    analysis = analyze_sql(adapter, """
        SELECT o.id, u.name AS customer, o.total
        FROM orders o
        JOIN users u ON u.id = o.user_id
        WHERE o.total > 10
        ORDER BY o.id
    """)
    assert lineage(analysis) == [
        ("id", "orders", "id", False),
        ("customer", "users", "name", False),
        ("total", "orders", "total", False),
    ]
    assert analysis.tables == ["orders", "users"]
    assert not analysis.has_group_by
    assert not analysis.has_distinct


def test_lineage_through_nested_views(adapter, shop):
    """Test that lineage follows views defined on other views."""
    analysis = analyze_sql(adapter, "SELECT id, total FROM big_orders")

    assert lineage(analysis) == [
        ("id", "orders", "id", False),
        ("total", "orders", "total", False),
    ]
    assert "orders" in analysis.tables
    assert analysis.dependencies.base_tables("<query>") == ["orders", "users"]


def test_unqualified_column_in_join(adapter, shop):
    analysis = analyze_sql(adapter, "SELECT email, total FROM users u JOIN orders o ON o.user_id = u.id")
    assert lineage(analysis) == [
        ("email", "users", "email", False),
        ("total", "orders", "total", False),
    ]


def test_ambiguous_column_is_derived(adapter, shop):
    analysis = analyze_sql(adapter, "SELECT id FROM users u JOIN orders o ON o.user_id = u.id")
    assert analysis.columns[0].derived


def test_wildcards(adapter, shop):
    """Test that * and alias.* expand to the catalog columns in order."""
    analysis = analyze_sql(adapter, "SELECT * FROM users")
    assert [c.name for c in analysis.columns] == ["id", "name", "email"]
    assert all(c.source_table == "users" for c in analysis.columns)

    analysis = analyze_sql(adapter, "SELECT u.*, o.total FROM users u JOIN orders o ON o.user_id = u.id")
    assert lineage(analysis) == [
        ("id", "users", "id", False),
        ("name", "users", "name", False),
        ("email", "users", "email", False),
        ("total", "orders", "total", False),
    ]


def test_cte_and_expressions(adapter, shop):
    analysis = analyze_sql(adapter, """
        WITH recent AS (SELECT id, total FROM orders WHERE id > 10)
        SELECT r.id, r.total * 2 AS doubled, upper('x') FROM recent r
    """)
    assert analysis.columns[0] == ColumnLineage("id", "orders", "id", False)
    assert analysis.columns[1].derived
    assert analysis.columns[1].name == "doubled"
    assert analysis.columns[2].derived
    assert list(analysis.ctes) == ["recent"]
    assert analysis.tables == ["orders"]


def test_cte_column_list(adapter, shop):
    analysis = analyze_sql(adapter, "WITH t(a, b) AS (SELECT id, name FROM users) SELECT b FROM t")
    assert lineage(analysis) == [("b", "users", "name", False)]


def test_derived_table(adapter, shop):
    analysis = analyze_sql(adapter, "SELECT s.name FROM (SELECT name FROM users) AS s")
    assert lineage(analysis) == [("name", "users", "name", False)]


def test_distinct_and_group_by_forms(adapter, shop):
    analysis = analyze_sql(adapter, "SELECT DISTINCT name FROM users")
    assert analysis.has_distinct

    analysis = analyze_sql(adapter, "SELECT name, COUNT(*) FROM users GROUP BY 1")
    assert analysis.group_by == ["1"]

    analysis = analyze_sql(adapter, "SELECT lower(name), COUNT(*) FROM users GROUP BY lower(name), email")
    assert analysis.group_by == [NON_TRIVIAL_EXPR, "email"]


def test_set_operations_are_rejected(adapter, shop):
    with pytest.raises(ParseError):
        analyze_sql(adapter, "SELECT id FROM users UNION SELECT id FROM orders")


def test_view_cycle_is_derived():
    """Test that mutually dependent views break the cycle as derived."""
    stub = CatalogStub(
        tables={"base": ["x"]},
        views={
            "a": (["x"], "CREATE VIEW a AS SELECT x FROM b"),
            "b": (["x"], "CREATE VIEW b AS SELECT x FROM a"),
            "c": (["x"], "CREATE VIEW c AS SELECT x FROM base"),
        },
    )
    analysis = analyze_sql(stub, "SELECT x FROM a")
    assert analysis.columns[0].derived

    analysis = analyze_sql(stub, "SELECT x FROM c")
    assert analysis.columns[0] == ColumnLineage("x", "base", "x", False)
    assert analysis.dependencies.get_relation_details("c")["depends_on"] == ["base"]


def test_unparseable_view_degrades(caplog):
    stub = CatalogStub(tables={}, views={"broken": (["x"], "CREATE VIEW broken AS VALUES (1)")})
    analysis = analyze_sql(stub, "SELECT x FROM broken")
    assert analysis.columns[0].derived
    assert "broken" in caplog.text
