"""Dialect adapters.

Driver modules are imported on first use so that optional drivers
(PyMySQL, DuckDB) are only needed for the backends actually opened.
"""
from typing import Optional, Union

from ..errors import BackendError
from ..models import DatabaseType, Features
from .base import DialectAdapter


def adapter_class(dialect: Union[DatabaseType, str]) -> type:
    dialect = DatabaseType.parse(dialect)
    if dialect is DatabaseType.SQLITE:
        from .sqlite import SQLiteAdapter
        return SQLiteAdapter
    if dialect is DatabaseType.POSTGRESQL:
        from .postgres import PostgresAdapter
        return PostgresAdapter
    if dialect is DatabaseType.MYSQL:
        from .mysql import MySQLAdapter
        return MySQLAdapter
    if dialect is DatabaseType.DUCKDB:
        from .duckdb import DuckDBAdapter
        return DuckDBAdapter
    raise BackendError(f"database type {dialect.value} is not supported yet")


def get_adapter(conn, dialect: Union[DatabaseType, str],
                features: Optional[Features] = None) -> DialectAdapter:
    """Return the adapter for ``dialect`` bound to ``conn``."""
    return adapter_class(dialect)(conn, features)


__all__ = ["DialectAdapter", "adapter_class", "get_adapter"]
