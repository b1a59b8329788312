"""Reads and writes against a Relation: paging, edits, inserts, deletes, search."""
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from .coerce import to_db_value
from .dialects import DialectAdapter, get_adapter
from .errors import (BackendError, IndexOutOfRange, MissingKey,
                     NoRowsUpdated, NotEditable)
from .models import Reference, SortColumn
from .query import (Params, find_next_sql, key_where, keyset_predicate,
                    insert_values, order_terms, select_by_key, select_list,
                    select_page)
from .relation import Relation, RelationBuilder

logger = logging.getLogger(__name__)


class QueryExecutor:
    """Runs the statements of one Relation on a connection.

    Nothing is cached between calls except the metadata of base tables
    that view edits are routed to.
    """

    def __init__(self, conn, relation: Relation, adapter: Optional[DialectAdapter] = None):
        self.relation = relation
        self.adapter = adapter or get_adapter(conn, relation.dialect)
        self._base_relations: Dict[str, Relation] = {}

    # -- reads --------------------------------------------------------

    def query_rows(self, columns: Optional[Sequence[str]] = None, sort: Optional[SortColumn] = None,
                   boundary: Optional[Sequence[Any]] = None, inclusive: bool = False,
                   scroll_down: bool = True, limit: Optional[int] = None) -> List[tuple]:
        """Fetch one page of rows in (sort, key) order.

        Args:
            columns: Column names to project, all columns by default
            sort: Optional sort column; the key breaks ties
            boundary: (sort, key) values to continue from, see ``boundary``
            inclusive: Include the boundary row itself
            scroll_down: Read rows after the boundary, otherwise before it
            limit: Maximum page size

        Returns:
            Rows in ascending logical order regardless of direction
        """
        if columns is None:
            columns = [c.name for c in self.relation.columns]
        for name in columns:
            self.relation.index_of(name)
        sql, params = select_page(self.adapter, self.relation, columns, sort, boundary,
                                  inclusive, scroll_down, limit)
        rows = self.adapter.query(sql, params)
        if not scroll_down:
            rows.reverse()
        return rows

    def boundary(self, row: Sequence[Any], sort: Optional[SortColumn] = None) -> List[Any]:
        """(sort, key) values of a full row, for use as a paging boundary."""
        return [row[self.relation.index_of(term.name)] for term in order_terms(self.relation, sort)]

    def find_next_row(self, column: Union[int, str], value: Any, sort: Optional[SortColumn] = None,
                      sort_value: Any = None,
                      current_key: Sequence[Any] = ()) -> Tuple[Optional[List[Any]], bool]:
        """Find the next row whose ``column`` equals ``value``.

        Searches after the current row first and wraps around to the
        closest preceding match.

        Returns:
            Key values of the match (or None) and whether it was found
            after the current row
        """
        relation = self.relation
        index = relation.resolve_index(column)
        target = relation.columns[index]
        value = to_db_value(value, target.type, relation.sentinels)

        current = None
        if current_key:
            if len(current_key) != len(relation.key):
                raise IndexOutOfRange(f"expected {len(relation.key)} key values, got {len(current_key)}")
            by_name = dict(zip(relation.key_names, current_key))
            if sort is not None:
                by_name[sort.name] = sort_value
            current = [by_name[term.name] for term in order_terms(relation, sort)]

        sql, params = find_next_sql(self.adapter, relation, target.name, value, sort, current, True)
        row = self.adapter.query_one(sql, params)
        if row is not None:
            return list(row), True
        if current is None:
            return None, False

        sql, params = find_next_sql(self.adapter, relation, target.name, value, sort, current, False)
        row = self.adapter.query_one(sql, params)
        if row is not None:
            return list(row), False
        return None, False

    def get_foreign_row(self, reference: Union[int, Reference], row: Sequence[Any]) -> Optional[Dict[str, Any]]:
        """Referenced row of a foreign key, as a column name -> value dict."""
        if isinstance(reference, int):
            reference = self.relation.references[reference]
        local = sorted(reference.columns.items())
        values = self.relation.values_at(row, [i for i, _ in local])
        if any(v is None for v in values):
            return None
        sql, params = select_by_key(self.adapter, reference.table, [],
                                    [ref for _, ref in local], values)
        with self.adapter.cursor() as cur:
            self.adapter.execute(cur, sql, params)
            names = [d[0] for d in cur.description or []]
            rows = self.adapter.fetchall(cur)
        if not rows:
            return None
        return dict(zip(names, rows[0]))

    def compare_row_position(self, updated: Sequence[Any], first: Sequence[Any], last: Sequence[Any],
                             sort: Optional[SortColumn] = None) -> Tuple[bool, bool]:
        """Whether a row now sorts above the first or below the last visible row.

        All three arguments are (sort, key) tuples as returned by
        :meth:`boundary`.
        """
        adapter = self.adapter
        terms = order_terms(self.relation, sort)
        params = Params(adapter)
        above = keyset_predicate(params, order_terms(self.relation, sort, forward=False), first)
        below = keyset_predicate(params, terms, last)
        derived = Params(adapter)
        probe = ", ".join(f"{derived.add(v)} AS {adapter.quote(term.name)}"
                          for term, v in zip(terms, updated))
        sql = (f"SELECT CASE WHEN {above} THEN 1 ELSE 0 END,"
               f" CASE WHEN {below} THEN 1 ELSE 0 END FROM (SELECT {probe}) AS u")
        row = adapter.query_one(sql, params.values + derived.values)
        return bool(row[0]), bool(row[1])

    # -- writes -------------------------------------------------------

    def update_db_value(self, row: Sequence[Any], column: Union[int, str], new_value: Any) -> tuple:
        """Write one cell and return the row as it is now stored.

        For views and ad-hoc queries the write goes to the base table the
        column comes from and the result is merged back into the outer row.
        """
        relation = self.relation
        index = relation.resolve_index(column)
        col = relation.columns[index]
        value = to_db_value(new_value, col.type, relation.sentinels)
        if relation.is_base_table:
            return self._update_base(relation, col.name, value, relation.key_values(row))
        return self._update_view_column(row, index, value)

    def _update_view_column(self, row: Sequence[Any], index: int, value: Any) -> tuple:
        relation = self.relation
        if not relation.is_column_editable(index):
            raise NotEditable(f"column {relation.columns[index].name!r} is not editable")
        col = relation.columns[index]
        base = self._base_relation(col.source_table)
        key_values = relation.values_at(row, relation.tables[col.source_table].key)
        base_row = self._update_base(base, col.source_column, value, key_values)

        merged = list(row)
        for i, outer in enumerate(relation.columns):
            if outer.source_table == col.source_table and outer.source_column in base.column_index:
                merged[i] = base_row[base.index_of(outer.source_column)]
        return tuple(merged)

    def _update_base(self, base: Relation, column: str, value: Any, key_values: Sequence[Any]) -> tuple:
        adapter = self.adapter
        key = base.key_names
        all_columns = select_list(adapter, [c.name for c in base.columns])
        params = Params(adapter)
        sql = (f"UPDATE {adapter.quote_name(base.name)} SET {adapter.quote(column)} = {params.add(value)}"
               f" WHERE {key_where(params, key, key_values)}")

        if adapter.features.returning:
            sql += f" RETURNING {all_columns}"
            with adapter.transaction() as cur:
                adapter.execute(cur, sql, params.values)
                rows = adapter.fetchall(cur)
                if len(rows) != 1:
                    raise NoRowsUpdated(f"update of {base.name} matched {len(rows)} rows")
            return rows[0]

        new_key = [value if name == column else v for name, v in zip(key, key_values)]
        select_sql, select_params = select_by_key(adapter, base.name, [c.name for c in base.columns],
                                                  key, new_key)
        with adapter.transaction() as cur:
            adapter.execute(cur, sql, params.values)
            affected = adapter.affected_rows(cur)
            if affected != 1:
                raise NoRowsUpdated(f"update of {base.name} affected {affected} rows")
            adapter.execute(cur, select_sql, select_params)
            updated = adapter.fetchone(cur)
            if updated is None:
                raise NoRowsUpdated(f"updated row of {base.name} could not be read back")
        return updated

    def insert_db_record(self, row: Sequence[Any]) -> tuple:
        """Insert a full row of a base table and return it as stored."""
        relation = self.relation
        if not relation.is_base_table:
            raise NotEditable("rows can only be inserted into base tables")
        adapter = self.adapter
        sentinels = relation.sentinels
        values = insert_values(relation, row)
        missing = [i for i in relation.key if self._is_missing(row[i])]
        if len(relation.key) > 1 and missing:
            names = ", ".join(relation.columns[i].name for i in missing)
            raise MissingKey(f"missing key values for {names}")

        params = Params(adapter)
        target = adapter.quote_name(relation.name)
        if values:
            names = ", ".join(adapter.quote(relation.columns[i].name) for i, _ in values)
            marks = ", ".join(params.add(v) for _, v in values)
            sql = f"INSERT INTO {target} ({names}) VALUES ({marks})"
        else:
            sql = f"INSERT INTO {target} {adapter.default_values}"

        all_columns = [c.name for c in relation.columns]
        if adapter.features.returning:
            sql += f" RETURNING {select_list(adapter, all_columns)}"
            with adapter.transaction() as cur:
                adapter.execute(cur, sql, params.values)
                rows = adapter.fetchall(cur)
            if not rows:
                raise BackendError(f"insert into {relation.name} returned no row")
            return rows[0]

        with adapter.transaction() as cur:
            adapter.execute(cur, sql, params.values)
            if missing:
                last_id = adapter.last_insert_id(cur)
                if last_id is None:
                    raise MissingKey(f"backend did not report a generated key for {relation.name}")
                key_values = [last_id]
            else:
                key_values = [to_db_value(row[i], relation.columns[i].type, sentinels, empty_is_null=True)
                              for i in relation.key]
            select_sql, select_params = select_by_key(adapter, relation.name, all_columns,
                                                      relation.key_names, key_values)
            adapter.execute(cur, select_sql, select_params)
            inserted = adapter.fetchone(cur)
            if inserted is None:
                raise BackendError(f"inserted row of {relation.name} could not be read back")
        return inserted

    def delete_db_record(self, row: Sequence[Any]):
        relation = self.relation
        if not relation.is_base_table:
            raise NotEditable("rows can only be deleted from base tables")
        adapter = self.adapter
        params = Params(adapter)
        sql = (f"DELETE FROM {adapter.quote_name(relation.name)}"
               f" WHERE {key_where(params, relation.key_names, relation.key_values(row))}")
        with adapter.transaction() as cur:
            adapter.execute(cur, sql, params.values)
            if adapter.affected_rows(cur) == 0:
                raise NoRowsUpdated(f"no row of {relation.name} matched the key")

    # -- helpers ------------------------------------------------------

    def _is_missing(self, value: Any) -> bool:
        sentinels = self.relation.sentinels
        return value is None or value in ("", sentinels.null_glyph, sentinels.empty_cell)

    def _base_relation(self, name: str) -> Relation:
        base = self._base_relations.get(name)
        if base is None:
            builder = RelationBuilder(self.adapter.conn, self.relation.dialect,
                                      self.relation.sentinels, adapter=self.adapter)
            base = builder.build(name)
            self._base_relations[name] = base
            logger.debug("Loaded base table %s for view edits", name)
        return base
