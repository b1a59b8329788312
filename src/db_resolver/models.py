"""Relation metadata models."""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union


class DatabaseType(Enum):
    """Supported and declared database backends."""
    SQLITE = "sqlite"
    POSTGRESQL = "postgresql"
    MYSQL = "mysql"
    DUCKDB = "duckdb"
    CLICKHOUSE = "clickhouse"
    SNOWFLAKE = "snowflake"
    COCKROACHDB = "cockroachdb"
    BIGQUERY = "bigquery"
    REDSHIFT = "redshift"

    @classmethod
    def parse(cls, value: Union["DatabaseType", str]) -> "DatabaseType":
        """Accept an enum member or a (case-insensitive) dialect name."""
        if isinstance(value, cls):
            return value
        name = str(value).strip().lower()
        name = _DIALECT_ALIASES.get(name, name)
        try:
            return cls(name)
        except ValueError:
            raise ValueError(f"Unknown database type: {value!r}") from None


_DIALECT_ALIASES = {
    'sqlite3': 'sqlite',
    'postgres': 'postgresql',
    'pg': 'postgresql',
    'mariadb': 'mysql',
    'cockroach': 'cockroachdb',
}


@dataclass(frozen=True)
class Features:
    """Per-dialect capability flags."""
    returning: bool = False
    row_values: bool = True
    implemented: bool = False


DATABASE_FEATURES: Dict[DatabaseType, Features] = {
    DatabaseType.SQLITE: Features(returning=True, implemented=True),
    DatabaseType.POSTGRESQL: Features(returning=True, implemented=True),
    DatabaseType.MYSQL: Features(implemented=True),
    DatabaseType.DUCKDB: Features(returning=True, implemented=True),
    DatabaseType.CLICKHOUSE: Features(),
    DatabaseType.SNOWFLAKE: Features(returning=False),
    DatabaseType.COCKROACHDB: Features(returning=True),
    DatabaseType.BIGQUERY: Features(),
    DatabaseType.REDSHIFT: Features(),
}


@dataclass
class Column:
    """A relation column with its type metadata and lineage."""
    name: str
    type: str = ""
    nullable: bool = True
    generated: bool = False
    source_table: str = ""
    source_column: str = ""
    enum_values: List[str] = field(default_factory=list)
    custom_type: str = ""
    reference: int = -1
    length: int = -1
    ordinal: int = 0


@dataclass
class Reference:
    """Foreign key: referenced table and local column index -> referenced column."""
    table: str
    columns: Dict[int, str] = field(default_factory=dict)


@dataclass
class BaseTable:
    """A base table behind a view, with its key mapped into the outer columns."""
    name: str
    key: List[int] = field(default_factory=list)

    @property
    def has_key(self) -> bool:
        return bool(self.key)


@dataclass
class SortColumn:
    name: str
    asc: bool = True

    def __str__(self):
        return f"{self.name} {'ASC' if self.asc else 'DESC'}"


@dataclass
class UniqueIndex:
    name: str
    columns: List[str]
    nulls_not_distinct: bool = False


@dataclass
class KeyCandidate:
    """A primary key or unique index competing to become the lookup key."""
    name: str
    columns: List[str]
    is_primary: bool = False
    width: int = 0
    min_ordinal: int = 0


@dataclass
class ForeignKeyPart:
    """One column of a (possibly composite) foreign key constraint."""
    constraint: str
    ordinal: int
    column: str
    ref_table: str
    ref_column: str = ""


@dataclass
class ColumnLineage:
    """Origin of one output column of a SELECT."""
    name: str
    source_table: str = ""
    source_column: str = ""
    derived: bool = False

    @classmethod
    def derived_column(cls, name: str) -> "ColumnLineage":
        return cls(name=name, derived=True)


@dataclass
class ViewAnalysis:
    """Result of analysing one SELECT statement."""
    columns: List[ColumnLineage] = field(default_factory=list)
    tables: List[str] = field(default_factory=list)
    has_distinct: bool = False
    has_group_by: bool = False
    group_by: List[str] = field(default_factory=list)
    ctes: Dict[str, "ViewAnalysis"] = field(default_factory=dict)
    dependencies: Optional[Any] = None

    def add_table(self, name: str):
        if name and name not in self.tables:
            self.tables.append(name)

    def column(self, name: str) -> Optional[ColumnLineage]:
        """Find an output column by name, case-insensitively as a fallback."""
        for col in self.columns:
            if col.name == name:
                return col
        lowered = name.lower()
        for col in self.columns:
            if col.name.lower() == lowered:
                return col
        return None
