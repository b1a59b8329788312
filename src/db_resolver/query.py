"""SELECT and keyset predicate builders used by the executor."""
from typing import Any, List, NamedTuple, Optional, Sequence, Tuple

from .coerce import to_db_value
from .dialects import DialectAdapter
from .errors import IndexOutOfRange
from .models import SortColumn
from .relation import Relation


class OrderTerm(NamedTuple):
    """One ORDER BY term. NULLs of a nullable term sort as the lowest value."""
    name: str
    asc: bool
    nullable: bool = False


class Params:
    """Collects bound values while SQL text is assembled left to right."""

    def __init__(self, adapter: DialectAdapter):
        self.adapter = adapter
        self.values: List[Any] = []

    def add(self, value: Any) -> str:
        self.values.append(value)
        return self.adapter.placeholder(len(self.values))

    def __len__(self):
        return len(self.values)


def source_sql(adapter: DialectAdapter, relation: Relation) -> str:
    """FROM target of a relation; ad-hoc SQL is wrapped as a derived table."""
    if relation.is_custom_sql:
        return f"({adapter.embed_sql(relation.sql)}) AS q"
    return adapter.quote_name(relation.name)


def select_list(adapter: DialectAdapter, names: Sequence[str]) -> str:
    return ", ".join(adapter.quote(n) for n in names) if names else "*"


def order_terms(relation: Relation, sort: Optional[SortColumn], forward: bool = True) -> List[OrderTerm]:
    """Sort column followed by the key, flipped when reading backwards.

    A key column that is also the sort column appears only once, in the
    sort position.
    """
    terms: List[OrderTerm] = []
    if sort is not None:
        column = relation.column(sort.name)
        terms.append(OrderTerm(sort.name, sort.asc == forward, column.nullable))
    for name in relation.key_names:
        if sort is not None and name == sort.name:
            continue
        terms.append(OrderTerm(name, forward, relation.column(name).nullable))
    return terms


def boundary_values(relation: Relation, row: Sequence, sort: Optional[SortColumn]) -> List[Any]:
    """Values of ``row`` aligned with :func:`order_terms`."""
    indices = [relation.index_of(term.name) for term in order_terms(relation, sort)]
    return Relation.values_at(row, indices)


def order_by(adapter: DialectAdapter, terms: Sequence[OrderTerm]) -> str:
    parts = []
    for term in terms:
        part = f"{adapter.quote(term.name)} {'ASC' if term.asc else 'DESC'}"
        if term.nullable and adapter.explicit_null_order:
            part += " NULLS FIRST" if term.asc else " NULLS LAST"
        parts.append(part)
    return ", ".join(parts)


def _equal(params: Params, term: OrderTerm, value: Any) -> str:
    column = params.adapter.quote(term.name)
    if value is None:
        return f"{column} IS NULL"
    return f"{column} = {params.add(value)}"


def _beyond(params: Params, term: OrderTerm, value: Any) -> str:
    """Rows strictly after ``value`` in the direction of one term."""
    column = params.adapter.quote(term.name)
    if value is None:
        return f"{column} IS NOT NULL"
    condition = f"{column} {'>' if term.asc else '<'} {params.add(value)}"
    if term.nullable and not term.asc:
        condition += f" OR {column} IS NULL"
    return condition


def keyset_predicate(params: Params, terms: Sequence[OrderTerm], values: Sequence[Any],
                     inclusive: bool = False) -> str:
    """Condition selecting rows after ``values`` in the order given by ``terms``.

    Uniform directions use a row-value comparison where the dialect has
    one. Mixed directions and NULL-sensitive comparisons use the
    lexicographic expansion.
    """
    if len(values) != len(terms):
        raise IndexOutOfRange(f"expected {len(terms)} boundary values, got {len(values)}")
    adapter = params.adapter
    terms = [OrderTerm(*term) for term in terms]
    lefts = [adapter.quote(term.name) for term in terms]

    simple = (len({term.asc for term in terms}) == 1
              and all(v is not None for v in values)
              and not any(term.nullable and not term.asc for term in terms))
    if simple:
        op = ">" if terms[0].asc else "<"
        if inclusive:
            op += "="
        if len(terms) == 1:
            return f"{lefts[0]} {op} {params.add(values[0])}"
        if adapter.features.row_values:
            rights = [params.add(v) for v in values]
            return f"({', '.join(lefts)}) {op} ({', '.join(rights)})"

    branches = []
    for i, term in enumerate(terms):
        if values[i] is None and not term.asc:
            # nothing sorts below NULL
            continue
        parts = [_equal(params, terms[j], values[j]) for j in range(i)]
        strict = _beyond(params, term, values[i])
        if parts and values[i] is not None and term.nullable and not term.asc:
            strict = f"({strict})"
        parts.append(strict)
        branches.append(" AND ".join(parts))
    if inclusive:
        branches.append(" AND ".join(_equal(params, term, v) for term, v in zip(terms, values)))
    if not branches:
        return "1 = 0"
    return " OR ".join(f"({b})" for b in branches)


def key_where(params: Params, names: Sequence[str], values: Sequence[Any]) -> str:
    """Equality on each named column; NULL compares with IS NULL."""
    adapter = params.adapter
    parts = []
    for name, value in zip(names, values):
        if value is None:
            parts.append(f"{adapter.quote(name)} IS NULL")
        else:
            parts.append(f"{adapter.quote(name)} = {params.add(value)}")
    return " AND ".join(parts)


def select_page(adapter: DialectAdapter, relation: Relation, columns: Sequence[str],
                sort: Optional[SortColumn] = None, boundary: Optional[Sequence[Any]] = None,
                inclusive: bool = False, forward: bool = True,
                limit: Optional[int] = None) -> Tuple[str, List[Any]]:
    """Build one keyset page query.

    Args:
        adapter: Dialect adapter
        relation: Relation being paged
        columns: Projected column names, all columns when empty
        sort: Optional user sort column
        boundary: Values of the (sort, key) tuple to continue from
        inclusive: Whether the boundary row itself is returned
        forward: Scroll direction, False reads the preceding rows
        limit: Maximum number of rows

    Returns:
        SQL text and bound parameters
    """
    params = Params(adapter)
    terms = order_terms(relation, sort, forward)
    sql = f"SELECT {select_list(adapter, columns)} FROM {source_sql(adapter, relation)}"
    if boundary is not None:
        sql += f" WHERE {keyset_predicate(params, terms, boundary, inclusive)}"
    sql += f" ORDER BY {order_by(adapter, terms)}"
    if limit is not None:
        sql += f" LIMIT {int(limit)}"
    return sql, params.values


def find_next_sql(adapter: DialectAdapter, relation: Relation, target: str, value: Any,
                  sort: Optional[SortColumn], current: Optional[Sequence[Any]],
                  forward: bool) -> Tuple[str, List[Any]]:
    """Single-row search for ``target = value`` after (or before) the current row."""
    params = Params(adapter)
    terms = order_terms(relation, sort, forward)
    conditions = []
    if current:
        conditions.append(f"({keyset_predicate(params, terms, current)})")
    conditions.append(key_where(params, [target], [value]))
    sql = (f"SELECT {select_list(adapter, relation.key_names)} FROM {source_sql(adapter, relation)}"
           f" WHERE {' AND '.join(conditions)}"
           f" ORDER BY {order_by(adapter, terms)} LIMIT 1")
    return sql, params.values


def select_by_key(adapter: DialectAdapter, table: str, columns: Sequence[str],
                  key: Sequence[str], values: Sequence[Any]) -> Tuple[str, List[Any]]:
    params = Params(adapter)
    sql = (f"SELECT {select_list(adapter, columns)} FROM {adapter.quote_name(table)}"
           f" WHERE {key_where(params, key, values)}")
    return sql, params.values


def insert_values(relation: Relation, row: Sequence[Any]) -> List[Tuple[int, Any]]:
    """Columns and coerced values an INSERT of ``row`` would write.

    Skips the empty-cell marker, generated columns, and nullable columns
    whose value is NULL or empty. A missing single-column key is left to
    the backend.
    """
    if len(row) != len(relation.columns):
        raise IndexOutOfRange(f"row has {len(row)} values, relation has {len(relation.columns)} columns")
    sentinels = relation.sentinels
    auto_key = relation.key[0] if len(relation.key) == 1 else None
    values = []
    for i, (col, raw) in enumerate(zip(relation.columns, row)):
        if raw == sentinels.empty_cell or col.generated:
            continue
        value = to_db_value(raw, col.type, sentinels, empty_is_null=True)
        if value is None and (col.nullable or i == auto_key):
            continue
        values.append((i, value))
    return values
