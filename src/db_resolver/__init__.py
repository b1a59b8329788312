"""Relation resolver: keyset pagination, view lineage, key selection and write propagation."""
from .errors import (BackendError, ColumnCountMismatch, ColumnNotFound,
                     DisallowedStatement, IndexOutOfRange, MissingKey,
                     NoKeyableColumns, NoRowsUpdated, NotEditable, ParseError,
                     ResolverError)
from .executor import QueryExecutor
from .models import DatabaseType, SortColumn
from .relation import (Relation, RelationBuilder, get_best_key, new_relation,
                       new_relation_from_sql)

__version__ = "0.1.0"

__all__ = [
    "BackendError", "ColumnCountMismatch", "ColumnNotFound", "DatabaseType",
    "DisallowedStatement", "IndexOutOfRange", "MissingKey", "NoKeyableColumns",
    "NoRowsUpdated", "NotEditable", "ParseError", "QueryExecutor", "Relation",
    "RelationBuilder", "ResolverError", "SortColumn", "get_best_key",
    "new_relation", "new_relation_from_sql",
]
