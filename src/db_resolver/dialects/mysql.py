"""MySQL / MariaDB catalog access through information_schema."""
from typing import Dict, List

import pymysql
from pymysql.constants import FIELD_TYPE

from ..errors import BackendError
from ..models import Column, DatabaseType, ForeignKeyPart, UniqueIndex
from .base import DialectAdapter, parse_enum_values

_FIELD_TYPE_NAMES: Dict[int, str] = {
    value: name.lower() for name, value in vars(FIELD_TYPE).items()
    if name.isupper() and isinstance(value, int)
}


class MySQLAdapter(DialectAdapter):
    dialect = DatabaseType.MYSQL
    quote_char = "`"
    paramstyle = "format"
    default_values = "() VALUES ()"
    error_types = (pymysql.err.Error,)

    def type_name(self, type_code) -> str:
        if type_code is None:
            return ""
        return _FIELD_TYPE_NAMES.get(type_code, str(type_code))

    def is_view(self, name: str) -> bool:
        row = self.query_one("""
            SELECT COUNT(*) FROM information_schema.views
            WHERE table_schema = DATABASE() AND table_name = %s
        """, [name])
        return bool(row and row[0])

    def load_columns(self, name: str) -> List[Column]:
        rows = self.query("""
            SELECT column_name, data_type, is_nullable,
                   COALESCE(character_maximum_length, -1),
                   ordinal_position, extra
            FROM information_schema.columns
            WHERE table_schema = DATABASE() AND table_name = %s
            ORDER BY ordinal_position
        """, [name])
        return [
            Column(name=col, type=dtype, nullable=nullable.upper() == 'YES',
                   generated='GENERATED' in (extra or '').upper(),
                   source_table=name, source_column=col,
                   length=int(length), ordinal=ordinal)
            for col, dtype, nullable, length, ordinal, extra in rows
        ]

    def primary_key_columns(self, name: str) -> List[str]:
        rows = self.query("""
            SELECT column_name
            FROM information_schema.key_column_usage
            WHERE table_schema = DATABASE() AND table_name = %s
              AND constraint_name = 'PRIMARY'
            ORDER BY ordinal_position
        """, [name])
        return [row[0] for row in rows]

    def unique_indexes(self, name: str) -> List[UniqueIndex]:
        rows = self.query("""
            SELECT index_name, column_name, seq_in_index
            FROM information_schema.statistics
            WHERE table_schema = DATABASE() AND table_name = %s
              AND non_unique = 0 AND index_name != 'PRIMARY'
            ORDER BY index_name, seq_in_index
        """, [name])
        grouped: Dict[str, List[str]] = {}
        skipped = set()
        for index_name, column_name, _ in rows:
            if column_name is None:
                # functional key part
                skipped.add(index_name)
                continue
            grouped.setdefault(index_name, []).append(column_name)
        return [UniqueIndex(name=index_name, columns=cols)
                for index_name, cols in grouped.items() if index_name not in skipped]

    def foreign_keys(self, name: str) -> List[ForeignKeyPart]:
        rows = self.query("""
            SELECT constraint_name, column_name, ordinal_position,
                   referenced_table_name, referenced_column_name
            FROM information_schema.key_column_usage
            WHERE table_schema = DATABASE() AND table_name = %s
              AND referenced_table_name IS NOT NULL
            ORDER BY constraint_name, ordinal_position
        """, [name])
        return [
            ForeignKeyPart(constraint=cname, ordinal=ordinal, column=col,
                           ref_table=ref_table, ref_column=ref_col or "")
            for cname, col, ordinal, ref_table, ref_col in rows
        ]

    def enum_and_custom_types(self, name: str, columns: List[Column]) -> List[Column]:
        rows = self.query("""
            SELECT column_name, column_type
            FROM information_schema.columns
            WHERE table_schema = DATABASE() AND table_name = %s
              AND data_type IN ('enum', 'set')
        """, [name])
        by_name = {c.name: c for c in columns}
        for col_name, column_type in rows:
            col = by_name.get(col_name)
            if col is None:
                continue
            if isinstance(column_type, bytes):
                column_type = column_type.decode()
            col.custom_type = column_type.split("(", 1)[0]
            col.enum_values = parse_enum_values(column_type.replace("set(", "enum(", 1))
        return columns

    def raw_view_definition(self, name: str) -> str:
        row = self.query_one("""
            SELECT view_definition FROM information_schema.views
            WHERE table_schema = DATABASE() AND table_name = %s
        """, [name])
        if row is None or not row[0]:
            raise BackendError(f"view {name} not found")
        return row[0]
