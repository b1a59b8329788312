"""Relation construction: columns, lookup key, lineage and editability."""
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Union

from .analyzer import SqlAnalyzer
from .config import DEFAULT_SENTINELS, Sentinels
from .dialects import DialectAdapter, get_adapter
from .errors import (BackendError, ColumnCountMismatch, ColumnNotFound,
                     IndexOutOfRange, NoKeyableColumns, ParseError)
from .models import (BaseTable, Column, DatabaseType, ForeignKeyPart,
                     Reference, ViewAnalysis)
from .statements import validate_select

logger = logging.getLogger(__name__)


@dataclass
class Relation:
    """An addressable record set: a base table, a view or an ad-hoc SELECT."""
    dialect: DatabaseType
    name: str = ""
    is_view: bool = False
    is_custom_sql: bool = False
    sql: str = ""
    columns: List[Column] = field(default_factory=list)
    column_index: Dict[str, int] = field(default_factory=dict)
    key: List[int] = field(default_factory=list)
    tables: Dict[str, BaseTable] = field(default_factory=dict)
    references: List[Reference] = field(default_factory=list)
    analysis: Optional[ViewAnalysis] = None
    sentinels: Sentinels = DEFAULT_SENTINELS

    @property
    def is_base_table(self) -> bool:
        return not (self.is_view or self.is_custom_sql)

    @property
    def key_columns(self) -> List[Column]:
        return [self.columns[i] for i in self.key]

    @property
    def key_names(self) -> List[str]:
        return [c.name for c in self.key_columns]

    def index_of(self, name: str) -> int:
        try:
            return self.column_index[name]
        except KeyError:
            raise ColumnNotFound(f"column {name!r} not found in {self.name or 'query'}") from None

    def column(self, name: str) -> Column:
        return self.columns[self.index_of(name)]

    def resolve_index(self, column: Union[int, str]) -> int:
        """Accept a column name or index and return a checked index."""
        if isinstance(column, str):
            return self.index_of(column)
        if not 0 <= column < len(self.columns):
            raise IndexOutOfRange(f"column index {column} out of range (0..{len(self.columns) - 1})")
        return column

    def key_values(self, row: Sequence) -> List:
        """Values of the lookup key taken from a full row."""
        return self.values_at(row, self.key)

    @staticmethod
    def values_at(row: Sequence, indices: Sequence[int]) -> List:
        values = []
        for i in indices:
            if not 0 <= i < len(row):
                raise IndexOutOfRange(f"key index {i} out of range for row of {len(row)} values")
            values.append(row[i])
        return values

    def is_column_editable(self, index: int) -> bool:
        """Whether writes to column ``index`` can be routed to a base table."""
        if not 0 <= index < len(self.columns):
            return False
        if self.is_base_table:
            return True
        col = self.columns[index]
        if col.generated or not col.source_table or not col.source_column:
            return False
        table = self.tables.get(col.source_table)
        if table is None or not table.has_key:
            return False
        for key_index in table.key:
            if not 0 <= key_index < len(self.columns):
                return False
            if self.columns[key_index].source_table != col.source_table:
                return False
        return True


def _index(columns: Sequence[Column]) -> Dict[str, int]:
    index: Dict[str, int] = {}
    for i, col in enumerate(columns):
        index.setdefault(col.name, i)
    return index


class RelationBuilder:
    """Builds Relations from catalog metadata and SQL analysis."""

    def __init__(self, conn, dialect: Union[DatabaseType, str],
                 sentinels: Sentinels = DEFAULT_SENTINELS,
                 adapter: Optional[DialectAdapter] = None):
        """Bind the builder to a connection.

        Args:
            conn: Open DB-API connection
            dialect: Backend dialect of ``conn``
            sentinels: Null glyph and empty-cell markers carried by built relations
            adapter: Adapter to use instead of the dialect default
        """
        self.dialect = DatabaseType.parse(dialect)
        self.adapter = adapter or get_adapter(conn, self.dialect)
        self.sentinels = sentinels

    def build(self, name: str) -> Relation:
        """Build a Relation for a base table or view."""
        cache: Dict[str, Relation] = {}
        if self.adapter.is_view(name):
            return self._build_view(name, cache)
        return self._build_table(name, cache)

    def build_from_sql(self, sql: str) -> Relation:
        """Build a Relation for an ad-hoc SELECT statement."""
        cleaned = validate_select(sql)
        probe = self.adapter.probe(cleaned)
        analysis = SqlAnalyzer(self.adapter).analyze(cleaned)
        if len(analysis.columns) != len(probe):
            raise ColumnCountMismatch(
                f"query returns {len(probe)} columns but {len(analysis.columns)} were analysed")
        relation = self._assemble(probe, analysis, {})
        relation.is_custom_sql = True
        relation.sql = cleaned
        return relation

    def best_key(self, name: str) -> List[str]:
        """Lookup key columns of a base table (empty if none qualifies)."""
        return self.adapter.best_key(name)

    # -- base tables --------------------------------------------------

    def _build_table(self, name: str, cache: Dict[str, Relation], require_key: bool = True) -> Relation:
        relation = cache.get(name)
        if relation is None:
            relation = self._load_table(name)
            cache[name] = relation
        if require_key and not relation.key:
            raise NoKeyableColumns(f"table {name} has no primary key or usable unique index")
        return relation

    def _load_table(self, name: str) -> Relation:
        columns = self.adapter.load_columns(name)
        if not columns:
            raise BackendError(f"relation {name} does not exist or has no columns")
        for col in columns:
            col.source_table = name
            col.source_column = col.name
        column_index = _index(columns)

        key = [column_index[k] for k in self.adapter.best_key(name, columns) if k in column_index]

        try:
            columns = self.adapter.enum_and_custom_types(name, columns)
        except BackendError as exc:
            logger.warning("Could not load enum/custom types of %s: %s", name, exc)
            self.adapter.recover()

        references = self._load_references(name, columns, column_index)
        return Relation(dialect=self.dialect, name=name, columns=columns,
                        column_index=column_index, key=key, references=references,
                        sentinels=self.sentinels)

    def _load_references(self, name: str, columns: List[Column],
                         column_index: Dict[str, int]) -> List[Reference]:
        try:
            parts = self.adapter.foreign_keys(name)
        except BackendError as exc:
            logger.warning("Could not load foreign keys of %s: %s", name, exc)
            self.adapter.recover()
            return []

        grouped: Dict[str, List[ForeignKeyPart]] = {}
        for part in parts:
            grouped.setdefault(part.constraint, []).append(part)

        references = []
        for constraint, group in grouped.items():
            group.sort(key=lambda p: p.ordinal)
            ref_table = group[0].ref_table
            ref_columns = [p.ref_column for p in group]
            if not all(ref_columns):
                # implicit reference to the parent's primary key
                try:
                    parent_key = self.adapter.primary_key_columns(ref_table)
                except BackendError as exc:
                    logger.warning("Could not resolve key of %s referenced by %s: %s",
                                   ref_table, name, exc)
                    self.adapter.recover()
                    continue
                if len(parent_key) != len(group):
                    logger.warning("Foreign key %s of %s does not match the key of %s",
                                   constraint, name, ref_table)
                    continue
                ref_columns = parent_key
            mapping = {}
            for part, ref_column in zip(group, ref_columns):
                if part.column not in column_index:
                    break
                mapping[column_index[part.column]] = ref_column
            else:
                ref_index = len(references)
                references.append(Reference(table=ref_table, columns=mapping))
                for local in mapping:
                    if columns[local].reference == -1:
                        columns[local].reference = ref_index
        return references

    # -- views and ad-hoc SQL -----------------------------------------

    def _build_view(self, name: str, cache: Dict[str, Relation]) -> Relation:
        probe = self.adapter.probe_relation(name)
        analysis: Optional[ViewAnalysis]
        try:
            analysis = SqlAnalyzer(self.adapter).analyze_view(name)
        except (ParseError, BackendError) as exc:
            logger.warning("Could not analyse view %s, its columns are read-only: %s", name, exc)
            self.adapter.recover()
            analysis = None
        if analysis is not None and len(analysis.columns) != len(probe):
            logger.warning("View %s returns %d columns but %d were analysed; treating all as derived",
                           name, len(probe), len(analysis.columns))
            analysis = None

        try:
            catalog = {c.name: c for c in self.adapter.load_columns(name)}
        except BackendError as exc:
            logger.debug("No catalog columns for view %s: %s", name, exc)
            self.adapter.recover()
            catalog = {}

        relation = self._assemble(probe, analysis, cache, catalog)
        relation.name = name
        relation.is_view = True
        return relation

    def _assemble(self, probe: List[Column], analysis: Optional[ViewAnalysis],
                  cache: Dict[str, Relation],
                  catalog: Optional[Dict[str, Column]] = None) -> Relation:
        catalog = catalog or {}
        columns = []
        for i, probed in enumerate(probe):
            col = Column(name=probed.name, type=probed.type, nullable=probed.nullable, ordinal=i + 1)
            declared = catalog.get(probed.name)
            if declared is not None:
                col.type = declared.type or col.type
                col.nullable = declared.nullable
                col.length = declared.length
            lineage = analysis.columns[i] if analysis is not None else None
            if lineage is None or lineage.derived:
                col.generated = True
            else:
                col.source_table = lineage.source_table
                col.source_column = lineage.source_column
                base = self._base_relation(lineage.source_table, cache)
                if base is not None and lineage.source_column in base.column_index:
                    origin = base.column(lineage.source_column)
                    col.type = origin.type or col.type
                    col.nullable = origin.nullable
                    col.length = origin.length
                    col.generated = origin.generated
                    col.enum_values = list(origin.enum_values)
                    col.custom_type = origin.custom_type
            columns.append(col)

        tables: Dict[str, BaseTable] = {}
        for table_name in (analysis.tables if analysis is not None else []):
            tables[table_name] = BaseTable(table_name, self._map_key(table_name, columns, cache))

        relation = Relation(dialect=self.dialect, columns=columns, column_index=_index(columns),
                            tables=tables, analysis=analysis, sentinels=self.sentinels)
        relation.key = view_key(columns, analysis, tables)
        return relation

    def _base_relation(self, name: str, cache: Dict[str, Relation]) -> Optional[Relation]:
        try:
            return self._build_table(name, cache, require_key=False)
        except BackendError as exc:
            logger.warning("Could not load base table %s: %s", name, exc)
            self.adapter.recover()
            return None

    def _map_key(self, table_name: str, columns: List[Column],
                 cache: Dict[str, Relation]) -> List[int]:
        """Map a base table's key onto outer column indices; [] unless every part maps."""
        base = self._base_relation(table_name, cache)
        if base is None or not base.key:
            return []
        mapped = []
        for base_column in base.key_names:
            for i, col in enumerate(columns):
                if col.source_table == table_name and col.source_column == base_column:
                    mapped.append(i)
                    break
            else:
                return []
        return mapped


def _matches_group_by(col: Column, index: int, expressions: Sequence[str]) -> bool:
    names = {col.name.lower()}
    if col.source_column:
        names.add(col.source_column.lower())
    for expr in expressions:
        if expr.isdigit():
            if int(expr) == index + 1:
                return True
            continue
        if expr.lower() in names or expr.rsplit(".", 1)[-1].lower() in names:
            return True
    return False


def view_key(columns: Sequence[Column], analysis: Optional[ViewAnalysis],
             tables: Dict[str, BaseTable]) -> List[int]:
    """Lookup key of a view or ad-hoc query, as indices into ``columns``."""
    everything = list(range(len(columns)))
    if analysis is None:
        key = everything
    elif analysis.has_group_by:
        grouped = [i for i, col in enumerate(columns)
                   if _matches_group_by(col, i, analysis.group_by)]
        grouped_set = set(grouped)
        if tables and all(t.has_key and set(t.key) <= grouped_set for t in tables.values()):
            key = [i for t in tables.values() for i in t.key]
        else:
            key = grouped
    elif analysis.has_distinct:
        key = everything
    elif len(tables) == 1:
        key = list(next(iter(tables.values())).key)
    else:
        key = everything
    key = list(dict.fromkeys(key))
    return key or everything


def new_relation(conn, dialect: Union[DatabaseType, str], name: str, **kwargs) -> Relation:
    return RelationBuilder(conn, dialect, **kwargs).build(name)


def new_relation_from_sql(conn, dialect: Union[DatabaseType, str], sql: str, **kwargs) -> Relation:
    return RelationBuilder(conn, dialect, **kwargs).build_from_sql(sql)


def get_best_key(conn, dialect: Union[DatabaseType, str], name: str) -> List[str]:
    return RelationBuilder(conn, dialect).best_key(name)
