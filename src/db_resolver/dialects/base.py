"""Shared behaviour of the dialect adapters."""
import logging
import re
from contextlib import contextmanager
from typing import Any, Iterator, List, Optional, Sequence, Tuple

from .. import keys
from ..errors import BackendError
from ..models import (Column, DATABASE_FEATURES, DatabaseType, Features,
                      ForeignKeyPart, UniqueIndex)
from ..statements import strip_create_view

logger = logging.getLogger(__name__)

SAFE_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

RESERVED_WORDS = frozenset("""
    ALL ALTER AND ANY ARRAY AS ASC BETWEEN BOTH BY CASE CAST CHECK COLLATE
    COLUMN CONSTRAINT CREATE CROSS CURRENT_DATE CURRENT_TIME CURRENT_TIMESTAMP
    CURRENT_USER DEFAULT DELETE DESC DISTINCT DO DROP ELSE END EXCEPT EXISTS
    FALSE FETCH FOR FOREIGN FROM FULL GRANT GROUP HAVING IN INDEX INNER INSERT
    INTERSECT INTO IS JOIN KEY LEADING LEFT LIKE LIMIT NATURAL NOT NULL OFFSET
    ON OR ORDER OUTER PRIMARY REFERENCES RETURNING RIGHT ROW ROWS SELECT
    SESSION_USER SOME TABLE THEN TO TRAILING TRUE UNION UNIQUE UPDATE USER
    USING VALUES VIEW WHEN WHERE WINDOW WITH
""".split())


class DialectAdapter:
    """Catalog introspection and SQL spelling for one backend.

    Subclasses implement the catalog queries; everything that only depends
    on quoting, paramstyle or DB-API behaviour lives here.
    """

    dialect: DatabaseType = None
    quote_char = '"'
    paramstyle = "qmark"
    default_values = "DEFAULT VALUES"
    # emit NULLS FIRST/LAST so that NULL sorts lowest like SQLite and MySQL
    explicit_null_order = False
    error_types: Tuple[type, ...] = ()
    reserved_words = RESERVED_WORDS

    def __init__(self, conn, features: Optional[Features] = None):
        """Bind the adapter to an open DB-API connection.

        Args:
            conn: Open database connection
            features: Capability override, defaults to the dialect's flags
        """
        self.conn = conn
        self.features = features or DATABASE_FEATURES[self.dialect]
        self._transactions = 0

    # -- SQL spelling -------------------------------------------------

    def quote(self, identifier: str) -> str:
        """Quote an identifier unless it is plainly safe to emit bare."""
        if SAFE_IDENTIFIER.match(identifier) and identifier.upper() not in self.reserved_words:
            return identifier
        q = self.quote_char
        return q + identifier.replace(q, q + q) + q

    def quote_name(self, name: str) -> str:
        """Quote a possibly schema-qualified relation name part by part."""
        return ".".join(self.quote(part) for part in name.split("."))

    def placeholder(self, position: int) -> str:
        """Placeholder for the 1-based parameter ``position``."""
        return "%s" if self.paramstyle == "format" else "?"

    def placeholders(self, count: int, start: int = 1) -> List[str]:
        return [self.placeholder(start + i) for i in range(count)]

    def embed_sql(self, sql: str) -> str:
        """Prepare user SQL for embedding into a parameterized statement."""
        sql = sql.strip().rstrip(";").strip()
        if self.paramstyle == "format":
            sql = sql.replace("%", "%%")
        return sql

    def fold(self, identifier: str) -> str:
        """Case folding the server applies to unquoted identifiers."""
        return identifier

    # -- execution ----------------------------------------------------

    @contextmanager
    def backend_errors(self, action: str):
        """Wrap driver errors in BackendError.

        Outside of :meth:`transaction` the handle is recovered first, so a
        failed read does not poison later statements on the same connection.
        """
        try:
            yield
        except self.error_types as exc:
            if not self._transactions:
                self.recover()
            raise BackendError(f"{action}: {exc}") from exc

    @contextmanager
    def cursor(self) -> Iterator[Any]:
        with self.backend_errors("open cursor"):
            cur = self.conn.cursor()
        try:
            yield cur
        finally:
            cur.close()

    def execute(self, cur, sql: str, params: Optional[Sequence] = None):
        logger.debug("SQL: %s params=%r", sql, params)
        with self.backend_errors("query failed"):
            if params is None or (not params and self.paramstyle != "format"):
                cur.execute(sql)
            else:
                cur.execute(sql, tuple(params))

    def fetchall(self, cur) -> List[tuple]:
        with self.backend_errors("fetch failed"):
            return [tuple(row) for row in cur.fetchall()]

    def fetchone(self, cur) -> Optional[tuple]:
        with self.backend_errors("fetch failed"):
            row = cur.fetchone()
        return tuple(row) if row is not None else None

    def query(self, sql: str, params: Optional[Sequence] = None) -> List[tuple]:
        with self.cursor() as cur:
            self.execute(cur, sql, params)
            return self.fetchall(cur)

    def query_one(self, sql: str, params: Optional[Sequence] = None) -> Optional[tuple]:
        rows = self.query(sql, params)
        return rows[0] if rows else None

    def begin(self):
        """Start an explicit transaction where the driver does not do so implicitly."""

    def rollback(self):
        try:
            self.conn.rollback()
        except self.error_types as exc:
            logger.warning("Rollback failed: %s", exc)

    def recover(self):
        """Make the handle usable again after a failed statement."""

    @contextmanager
    def transaction(self) -> Iterator[Any]:
        """Yield a cursor inside a transaction; commit on success, roll back on any error."""
        with self.backend_errors("begin transaction"):
            self.begin()
        self._transactions += 1
        try:
            with self.cursor() as cur:
                yield cur
        except Exception:
            self.rollback()
            raise
        finally:
            self._transactions -= 1
        with self.backend_errors("commit failed"):
            self.conn.commit()

    def affected_rows(self, cur) -> int:
        return cur.rowcount

    def last_insert_id(self, cur) -> Optional[int]:
        value = getattr(cur, "lastrowid", None)
        if isinstance(value, int) and value > 0:
            return value
        return None

    # -- schema probe -------------------------------------------------

    def type_name(self, type_code) -> str:
        return "" if type_code is None else str(type_code)

    def probe(self, sql: str) -> List[Column]:
        """Run ``sql`` for zero rows and return its output columns in server order."""
        probe_sql = f"SELECT * FROM ({self.embed_sql(sql)}) AS q LIMIT 0"
        with self.cursor() as cur:
            self.execute(cur, probe_sql, [])
            description = cur.description or []
            self.fetchall(cur)
        columns = []
        for ordinal, desc in enumerate(description, start=1):
            null_ok = desc[6] if len(desc) > 6 else None
            columns.append(Column(
                name=desc[0],
                type=self.type_name(desc[1]),
                nullable=null_ok is not False,
                ordinal=ordinal,
            ))
        return columns

    def probe_relation(self, name: str) -> List[Column]:
        return self.probe(f"SELECT * FROM {self.quote_name(name)}")

    # -- catalog ------------------------------------------------------

    def is_view(self, name: str) -> bool:
        raise NotImplementedError

    def load_columns(self, name: str) -> List[Column]:
        raise NotImplementedError

    def primary_key_columns(self, name: str) -> List[str]:
        raise NotImplementedError

    def unique_indexes(self, name: str) -> List[UniqueIndex]:
        raise NotImplementedError

    def foreign_keys(self, name: str) -> List[ForeignKeyPart]:
        return []

    def enum_and_custom_types(self, name: str, columns: List[Column]) -> List[Column]:
        return columns

    def raw_view_definition(self, name: str) -> str:
        raise NotImplementedError

    def view_definition(self, name: str) -> str:
        """SQL text of the view's defining SELECT."""
        return strip_create_view(self.raw_view_definition(name))

    def fallback_key(self, name: str, columns: List[Column]) -> List[str]:
        return []

    def best_key(self, name: str, columns: Optional[List[Column]] = None) -> List[str]:
        """Select the lookup key of a base table."""
        if columns is None:
            columns = self.load_columns(name)
        return keys.best_key(
            self.primary_key_columns(name),
            self.unique_indexes(name),
            columns,
            fallback=self.fallback_key(name, columns),
        )

    def column_names(self, name: str) -> List[str]:
        return [c.name for c in self.load_columns(name)]


def split_schema(name: str, default: str) -> Tuple[str, str]:
    """Split ``schema.relation`` into its parts."""
    if "." in name:
        schema, rel = name.split(".", 1)
        return schema, rel
    return default, name


_ENUM_LABEL = re.compile(r"'((?:[^']|'')*)'")


def parse_enum_values(column_type: str) -> List[str]:
    """Extract labels from ``enum('a','b')`` style type strings."""
    start = column_type.find("(")
    if start == -1 or not column_type.lower().startswith("enum"):
        return []
    return [m.group(1).replace("''", "'") for m in _ENUM_LABEL.finditer(column_type[start:])]
