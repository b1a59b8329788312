"""Human-readable SQL previews with literals inlined.

Previews are for display only; the executor never runs them.
"""
import math
from typing import Any, List, Sequence, Tuple, Union

from .coerce import to_db_value
from .dialects import DialectAdapter
from .models import DatabaseType
from .query import insert_values
from .relation import Relation


def format_literal(value: Any, column_type: str = "", dialect: DatabaseType = DatabaseType.SQLITE) -> str:
    """Render ``value`` as an SQL literal for ``dialect``.

    Strings are first coerced by ``column_type`` so numbers and booleans
    typed into an editor come out unquoted.
    """
    if isinstance(value, str):
        value = to_db_value(value, column_type)
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        if dialect is DatabaseType.POSTGRESQL:
            return "TRUE" if value else "FALSE"
        return "1" if value else "0"
    if isinstance(value, float) and not math.isfinite(value):
        return _non_finite(value, dialect)
    if isinstance(value, (int, float)):
        return repr(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        value = bytes(value).decode("utf-8", errors="replace")
    return "'" + str(value).replace("'", "''") + "'"


def _non_finite(value: float, dialect: DatabaseType) -> str:
    if dialect is DatabaseType.SQLITE:
        # SQLite reads an overflowing literal as infinity and stores NaN as NULL
        if math.isnan(value):
            return "NULL"
        return "9e999" if value > 0 else "-9e999"
    if math.isnan(value):
        return "'NaN'"
    return "'Infinity'" if value > 0 else "'-Infinity'"


def _literal(adapter: DialectAdapter, relation: Relation, index: int, raw: Any) -> str:
    col = relation.columns[index]
    value = to_db_value(raw, col.type, relation.sentinels)
    return format_literal(value, col.type, adapter.dialect)


def _where(adapter: DialectAdapter, pairs: Sequence[Tuple[str, str]]) -> str:
    parts = []
    for name, literal in pairs:
        if literal == "NULL":
            parts.append(f"{adapter.quote(name)} IS NULL")
        else:
            parts.append(f"{adapter.quote(name)} = {literal}")
    return " AND ".join(parts)


def _target(relation: Relation, index: int) -> Tuple[str, List[Tuple[str, int]]]:
    """Table an edit of column ``index`` lands in, and its key as (base name, outer index)."""
    if relation.is_base_table:
        return relation.name, [(relation.columns[i].name, i) for i in relation.key]
    col = relation.columns[index]
    key = relation.tables[col.source_table].key
    return col.source_table, [(relation.columns[i].source_column, i) for i in key]


def build_update_preview(adapter: DialectAdapter, relation: Relation, row: Sequence[Any],
                         column: Union[int, str], new_value: Any) -> str:
    """UPDATE statement an edit of one cell would run, or "" if the cell is read-only."""
    index = relation.resolve_index(column)
    if not relation.is_column_editable(index):
        return ""
    table, key = _target(relation, index)
    col = relation.columns[index]
    name = col.name if relation.is_base_table else col.source_column
    where = _where(adapter, [(key_name, format_literal(row[i], relation.columns[i].type, adapter.dialect))
                             for key_name, i in key])
    return (f"UPDATE {adapter.quote_name(table)} SET {adapter.quote(name)} = "
            f"{_literal(adapter, relation, index, new_value)} WHERE {where};")


def build_insert_preview(adapter: DialectAdapter, relation: Relation, row: Sequence[Any]) -> str:
    """INSERT statement for a new row, or "" when nothing was entered."""
    if not relation.is_base_table:
        return ""
    sentinels = relation.sentinels
    if all(raw is None or raw in ("", sentinels.empty_cell) for raw in row):
        return ""
    target = adapter.quote_name(relation.name)
    values = insert_values(relation, row)
    if values:
        names = ", ".join(adapter.quote(relation.columns[i].name) for i, _ in values)
        literals = ", ".join(format_literal(v, relation.columns[i].type, adapter.dialect) for i, v in values)
        sql = f"INSERT INTO {target} ({names}) VALUES ({literals})"
    else:
        sql = f"INSERT INTO {target} {adapter.default_values}"
    if adapter.features.returning:
        sql += " RETURNING *"
    return sql + ";"


def build_delete_preview(adapter: DialectAdapter, relation: Relation, row: Sequence[Any]) -> str:
    if not relation.is_base_table:
        return ""
    where = _where(adapter, [(relation.columns[i].name,
                              format_literal(row[i], relation.columns[i].type, adapter.dialect))
                             for i in relation.key])
    return f"DELETE FROM {adapter.quote_name(relation.name)} WHERE {where};"
