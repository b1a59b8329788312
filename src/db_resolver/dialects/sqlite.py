"""SQLite catalog access through PRAGMA statements."""
import sqlite3
from typing import List

from ..errors import BackendError
from ..models import Column, DatabaseType, ForeignKeyPart, UniqueIndex
from .base import DialectAdapter


class SQLiteAdapter(DialectAdapter):
    dialect = DatabaseType.SQLITE
    error_types = (sqlite3.Error,)

    def _pragma(self, pragma: str, name: str) -> List[tuple]:
        if "." in name:
            schema, rel = name.split(".", 1)
            sql = f"PRAGMA {self.quote(schema)}.{pragma}({self.quote(rel)})"
        else:
            sql = f"PRAGMA {pragma}({self.quote(name)})"
        return self.query(sql)

    def is_view(self, name: str) -> bool:
        row = self.query_one(
            "SELECT type FROM sqlite_master WHERE name = ? AND type IN ('table', 'view')",
            [name.split(".")[-1]])
        return row is not None and row[0] == 'view'

    def _table_info(self, name: str) -> List[tuple]:
        # cid, name, type, notnull, dflt_value, pk, hidden
        return self._pragma("table_xinfo", name)

    def load_columns(self, name: str) -> List[Column]:
        info = self._table_info(name)
        # a single INTEGER PRIMARY KEY aliases the rowid and is never NULL
        pk = [row for row in info if row[5]]
        rowid_alias = pk[0][1] if len(pk) == 1 and (pk[0][2] or "").upper() == "INTEGER" else None
        columns = []
        for row in info:
            hidden = row[6] if len(row) > 6 else 0
            if hidden == 1:
                continue
            columns.append(Column(
                name=row[1],
                type=row[2] or "",
                nullable=not row[3] and row[1] != rowid_alias,
                generated=hidden in (2, 3),
                source_table=name,
                source_column=row[1],
                ordinal=row[0] + 1,
            ))
        return columns

    def primary_key_columns(self, name: str) -> List[str]:
        pk = sorted((row[5], row[1]) for row in self._table_info(name) if row[5])
        return [col for _, col in pk]

    def unique_indexes(self, name: str) -> List[UniqueIndex]:
        indexes = []
        # seq, name, unique, origin, partial
        for row in self._pragma("index_list", name):
            index_name, unique, origin = row[1], row[2], row[3]
            partial = row[4] if len(row) > 4 else 0
            if not unique or origin == 'pk' or partial:
                continue
            info = sorted(self._pragma("index_info", index_name))
            cols = [r[2] for r in info]
            if not cols or None in cols:
                # expression index
                continue
            indexes.append(UniqueIndex(name=index_name, columns=cols))
        return indexes

    def foreign_keys(self, name: str) -> List[ForeignKeyPart]:
        # id, seq, table, from, to, on_update, on_delete, match
        return [
            ForeignKeyPart(constraint=str(row[0]), ordinal=row[1], column=row[3],
                           ref_table=row[2], ref_column=row[4] or "")
            for row in self._pragma("foreign_key_list", name)
        ]

    def raw_view_definition(self, name: str) -> str:
        row = self.query_one("SELECT sql FROM sqlite_master WHERE type = 'view' AND name = ?",
                             [name.split(".")[-1]])
        if row is None or row[0] is None:
            raise BackendError(f"view {name} not found")
        return row[0]
