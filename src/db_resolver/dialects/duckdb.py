"""DuckDB catalog access through information_schema and duckdb_constraints()."""
from contextlib import contextmanager
from typing import Dict, List

import duckdb

from ..errors import BackendError
from ..models import Column, DatabaseType, ForeignKeyPart, UniqueIndex
from .base import DialectAdapter, parse_enum_values


class DuckDBAdapter(DialectAdapter):
    dialect = DatabaseType.DUCKDB
    error_types = (duckdb.Error,)
    explicit_null_order = True

    @contextmanager
    def cursor(self):
        # conn.cursor() opens a second connection with its own transaction
        yield self.conn

    def begin(self):
        self.conn.begin()

    def affected_rows(self, cur) -> int:
        row = self.fetchone(cur)
        return int(row[0]) if row else 0

    def last_insert_id(self, cur):
        return None

    def is_view(self, name: str) -> bool:
        row = self.query_one(
            "SELECT COUNT(*) FROM information_schema.views WHERE table_name = ?", [name])
        return bool(row and row[0])

    def load_columns(self, name: str) -> List[Column]:
        rows = self.query("""
            SELECT column_name, data_type, is_nullable,
                   COALESCE(character_maximum_length, -1), ordinal_position
            FROM information_schema.columns
            WHERE table_name = ?
            ORDER BY ordinal_position
        """, [name])
        return [
            Column(name=col, type=dtype, nullable=str(nullable).upper() == 'YES',
                   source_table=name, source_column=col,
                   length=int(length), ordinal=ordinal)
            for col, dtype, nullable, length, ordinal in rows
        ]

    def _key_constraints(self, name: str, constraint_type: str) -> Dict[str, List[str]]:
        rows = self.query("""
            SELECT tc.constraint_name, kcu.column_name
            FROM information_schema.table_constraints tc
            JOIN information_schema.key_column_usage kcu
              ON kcu.constraint_name = tc.constraint_name
             AND kcu.table_name = tc.table_name
             AND kcu.table_schema = tc.table_schema
            WHERE tc.table_name = ? AND tc.constraint_type = ?
            ORDER BY tc.constraint_name, kcu.ordinal_position
        """, [name, constraint_type])
        grouped: Dict[str, List[str]] = {}
        for constraint_name, column_name in rows:
            grouped.setdefault(constraint_name, []).append(column_name)
        return grouped

    def primary_key_columns(self, name: str) -> List[str]:
        for cols in self._key_constraints(name, 'PRIMARY KEY').values():
            return cols
        return []

    def unique_indexes(self, name: str) -> List[UniqueIndex]:
        return [UniqueIndex(name=cname, columns=cols)
                for cname, cols in self._key_constraints(name, 'UNIQUE').items()]

    def foreign_keys(self, name: str) -> List[ForeignKeyPart]:
        rows = self.query("""
            SELECT constraint_index, constraint_column_names,
                   referenced_table, referenced_column_names
            FROM duckdb_constraints()
            WHERE table_name = ? AND constraint_type = 'FOREIGN KEY'
            ORDER BY constraint_index
        """, [name])
        parts = []
        for index, cols, ref_table, ref_cols in rows:
            ref_cols = list(ref_cols or [])
            for ordinal, col in enumerate(cols or [], start=1):
                ref_col = ref_cols[ordinal - 1] if ordinal <= len(ref_cols) else ""
                parts.append(ForeignKeyPart(constraint=str(index), ordinal=ordinal, column=col,
                                            ref_table=ref_table, ref_column=ref_col))
        return parts

    def enum_and_custom_types(self, name: str, columns: List[Column]) -> List[Column]:
        for col in columns:
            if col.type.upper().startswith("ENUM"):
                col.custom_type = "ENUM"
                col.enum_values = parse_enum_values(col.type)
        return columns

    def raw_view_definition(self, name: str) -> str:
        row = self.query_one(
            "SELECT view_definition FROM information_schema.views WHERE table_name = ?", [name])
        if row is None or not row[0]:
            raise BackendError(f"view {name} not found")
        return row[0]
