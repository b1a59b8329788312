"""PostgreSQL catalog access (pg_catalog and information_schema)."""
import logging
from typing import Dict, List

import psycopg2

from ..config import DEFAULT_SCHEMA
from ..errors import BackendError
from ..models import Column, DatabaseType, ForeignKeyPart, UniqueIndex
from .base import DialectAdapter, SAFE_IDENTIFIER, split_schema

logger = logging.getLogger(__name__)


class PostgresAdapter(DialectAdapter):
    dialect = DatabaseType.POSTGRESQL
    paramstyle = "format"
    explicit_null_order = True
    error_types = (psycopg2.Error,)

    def __init__(self, conn, features=None):
        super().__init__(conn, features)
        self._type_names: Dict[int, str] = {}

    def quote(self, identifier: str) -> str:
        # Unquoted identifiers fold to lower case on the server
        if (SAFE_IDENTIFIER.match(identifier) and identifier == identifier.lower()
                and identifier.upper() not in self.reserved_words):
            return identifier
        return '"' + identifier.replace('"', '""') + '"'

    def fold(self, identifier: str) -> str:
        return identifier.lower()

    def recover(self):
        if not getattr(self.conn, "autocommit", False):
            self.rollback()

    def type_name(self, type_code) -> str:
        if type_code is None:
            return ""
        if type_code not in self._type_names:
            row = self.query_one("SELECT format_type(%s, NULL)", [type_code])
            self._type_names[type_code] = row[0] if row and row[0] else str(type_code)
        return self._type_names[type_code]

    def is_view(self, name: str) -> bool:
        schema, rel = split_schema(name, DEFAULT_SCHEMA)
        row = self.query_one("""
            SELECT EXISTS (
                SELECT 1 FROM pg_views
                WHERE schemaname = %s AND viewname = %s
            )
        """, [schema, rel])
        return bool(row and row[0])

    def load_columns(self, name: str) -> List[Column]:
        schema, rel = split_schema(name, DEFAULT_SCHEMA)
        rows = self.query("""
            SELECT column_name, data_type, is_nullable,
                   COALESCE(character_maximum_length, -1),
                   ordinal_position,
                   COALESCE(is_generated, 'NEVER')
            FROM information_schema.columns
            WHERE table_schema = %s AND table_name = %s
            ORDER BY ordinal_position
        """, [schema, rel])
        return [
            Column(name=col, type=dtype, nullable=nullable.lower() == 'yes',
                   generated=generated.upper() == 'ALWAYS', source_table=name,
                   source_column=col, length=length, ordinal=ordinal)
            for col, dtype, nullable, length, ordinal, generated in rows
        ]

    def primary_key_columns(self, name: str) -> List[str]:
        schema, rel = split_schema(name, DEFAULT_SCHEMA)
        rows = self.query("""
            SELECT a.attname
            FROM pg_index i
            JOIN pg_class c ON c.oid = i.indrelid
            JOIN pg_namespace n ON n.oid = c.relnamespace
            JOIN LATERAL unnest(i.indkey) WITH ORDINALITY AS k(attnum, ord) ON TRUE
            JOIN pg_attribute a ON a.attrelid = i.indrelid AND a.attnum = k.attnum
            WHERE n.nspname = %s AND c.relname = %s AND i.indisprimary
            ORDER BY k.ord
        """, [schema, rel])
        return [row[0] for row in rows]

    _UNIQUE_SQL = """
        SELECT i.relname,
               array_agg(a.attname::text ORDER BY k.ord),
               {nulls_not_distinct}
        FROM pg_index idx
        JOIN pg_class c ON c.oid = idx.indrelid
        JOIN pg_namespace n ON n.oid = c.relnamespace
        JOIN pg_class i ON i.oid = idx.indexrelid
        JOIN LATERAL unnest(idx.indkey) WITH ORDINALITY AS k(attnum, ord) ON TRUE
        JOIN pg_attribute a ON a.attrelid = idx.indrelid AND a.attnum = k.attnum
        WHERE n.nspname = %s AND c.relname = %s
          AND idx.indisunique AND NOT idx.indisprimary
          AND idx.indpred IS NULL
        GROUP BY i.relname, idx.indexrelid{group_nulls}
        ORDER BY i.relname
    """

    def unique_indexes(self, name: str) -> List[UniqueIndex]:
        schema, rel = split_schema(name, DEFAULT_SCHEMA)
        try:
            rows = self.query(self._UNIQUE_SQL.format(
                nulls_not_distinct="idx.indnullsnotdistinct",
                group_nulls=", idx.indnullsnotdistinct"), [schema, rel])
        except BackendError as exc:
            # indnullsnotdistinct only exists from PostgreSQL 15 on
            logger.debug("Retrying unique index query without NULLS NOT DISTINCT: %s", exc)
            self.recover()
            rows = self.query(self._UNIQUE_SQL.format(
                nulls_not_distinct="false", group_nulls=""), [schema, rel])
        indexes = []
        for index_name, cols, nulls_not_distinct in rows:
            if isinstance(cols, str):
                cols = [c for c in cols.strip("{}").split(",") if c]
            indexes.append(UniqueIndex(name=index_name, columns=list(cols),
                                       nulls_not_distinct=bool(nulls_not_distinct)))
        return indexes

    def foreign_keys(self, name: str) -> List[ForeignKeyPart]:
        schema, rel = split_schema(name, DEFAULT_SCHEMA)
        rows = self.query("""
            SELECT con.oid::text AS id, att.attname AS col, u.ord AS ord,
                   frel.relname AS ref_table, fatt.attname AS ref_col
            FROM pg_constraint con
            JOIN unnest(con.conkey) WITH ORDINALITY AS u(attnum, ord) ON true
            JOIN pg_class rel ON rel.oid = con.conrelid
            JOIN pg_namespace nsp ON nsp.oid = rel.relnamespace
            JOIN pg_attribute att ON att.attrelid = rel.oid AND att.attnum = u.attnum
            JOIN pg_class frel ON frel.oid = con.confrelid
            JOIN unnest(con.confkey) WITH ORDINALITY AS fu(attnum, ord) ON fu.ord = u.ord
            JOIN pg_attribute fatt ON fatt.attrelid = frel.oid AND fatt.attnum = fu.attnum
            WHERE con.contype = 'f' AND rel.relname = %s AND nsp.nspname = %s
            ORDER BY con.oid, u.ord
        """, [rel, schema])
        return [
            ForeignKeyPart(constraint=cid, ordinal=ord_, column=col,
                           ref_table=ref_table, ref_column=ref_col)
            for cid, col, ord_, ref_table, ref_col in rows
        ]

    def enum_and_custom_types(self, name: str, columns: List[Column]) -> List[Column]:
        schema, rel = split_schema(name, DEFAULT_SCHEMA)
        rows = self.query("""
            SELECT c.column_name, c.udt_name, e.enumlabel
            FROM information_schema.columns c
            LEFT JOIN pg_type t ON t.typname = c.udt_name
            LEFT JOIN pg_enum e ON e.enumtypid = t.oid
            WHERE c.table_schema = %s AND c.table_name = %s
              AND c.data_type = 'USER-DEFINED'
            ORDER BY c.ordinal_position, e.enumsortorder
        """, [schema, rel])
        by_name = {c.name: c for c in columns}
        for col_name, udt_name, label in rows:
            col = by_name.get(col_name)
            if col is None:
                continue
            col.custom_type = udt_name
            if label is not None:
                col.enum_values.append(label)
        return columns

    def raw_view_definition(self, name: str) -> str:
        row = self.query_one("SELECT pg_get_viewdef(%s::regclass, true)", [name])
        if row is None or row[0] is None:
            raise BackendError(f"view {name} not found")
        return row[0]

