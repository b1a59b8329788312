"""Column lineage analysis of SELECT statements.

sqlparse groups tokens (identifiers, parentheses, functions, WHERE) but
does not build a syntax tree. The analyzer walks the grouped top-level
tokens of a statement clause by clause:

    [WITH ctes] SELECT [DISTINCT] items FROM sources [WHERE ...] [GROUP BY items] ...

Every output column gets a lineage. A plain column reference resolves
through table aliases, CTEs, derived tables and views down to a base
table column; anything else is derived.
"""
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from sqlparse import sql as S
from sqlparse import tokens as T

from .dialects.base import DialectAdapter, RESERVED_WORDS, SAFE_IDENTIFIER
from .errors import BackendError, ParseError
from .graph import DependencyGraph
from .models import ColumnLineage, ViewAnalysis
from .statements import is_significant, split_statements

logger = logging.getLogger(__name__)

QUERY_NODE = "<query>"
NON_TRIVIAL_EXPR = "<expr>"

CLAUSE_END = frozenset({
    'WHERE', 'GROUP BY', 'HAVING', 'ORDER BY', 'LIMIT', 'OFFSET', 'WINDOW',
    'FETCH', 'FOR', 'QUALIFY', 'INTO', 'RETURNING',
})
SET_OPERATIONS = frozenset({
    'UNION', 'UNION ALL', 'UNION DISTINCT', 'INTERSECT', 'INTERSECT ALL',
    'EXCEPT', 'EXCEPT ALL', 'MINUS',
})
_EXPANDABLE = (S.Identifier, S.IdentifierList)


def _norm(token) -> str:
    return " ".join(token.value.upper().split())


def _is_keyword(token, *words) -> bool:
    return token.ttype in T.Keyword and _norm(token) in words


def _is_punct(token, value: str) -> bool:
    return token.ttype in T.Punctuation and token.value == value


def _is_word(token) -> bool:
    """Any token that can spell an identifier, reserved or not."""
    if token.is_group:
        return False
    if token.ttype in T.Name.Placeholder:
        return False
    if token.ttype in T.Name or token.ttype in T.String.Symbol:
        return True
    return token.ttype in T.Keyword and bool(SAFE_IDENTIFIER.match(token.value))


def _is_name(token) -> bool:
    """A token usable as an identifier where a keyword would also fit."""
    if not _is_word(token):
        return False
    if token.ttype in T.Keyword:
        return token.value.upper() not in RESERVED_WORDS
    return True


def _ends_operand(token) -> bool:
    return (_is_name(token) or token.ttype in T.Literal
            or _is_punct(token, ')') or _is_keyword(token, 'END'))


def _is_clause_end(token) -> bool:
    if isinstance(token, S.Where):
        return True
    if token.ttype in T.Keyword:
        word = _norm(token)
        return word in CLAUSE_END or word in SET_OPERATIONS
    return False


def _is_join(token) -> bool:
    return token.ttype in T.Keyword and _norm(token).endswith('JOIN')


def _significant(tokens) -> List:
    return [tok for tok in tokens if is_significant(tok) and not isinstance(tok, S.Comment)]


def _expand(tokens) -> List:
    """Dissolve identifier groupings so aliases and dots become plain tokens."""
    out = []
    for tok in tokens:
        if isinstance(tok, _EXPANDABLE) or type(tok) is S.TokenList:
            out.extend(_expand(tok.tokens))
        elif is_significant(tok) and not isinstance(tok, S.Comment):
            out.append(tok)
    return out


def _leaves(tokens) -> List:
    out = []
    for tok in tokens:
        out.extend(leaf for leaf in tok.flatten() if is_significant(leaf))
    return out


def _split_commas(tokens) -> List[List]:
    items, current = [], []
    for tok in tokens:
        if _is_punct(tok, ','):
            if current:
                items.append(current)
            current = []
        else:
            current.append(tok)
    if current:
        items.append(current)
    return items


def _inner(paren: S.Parenthesis) -> List:
    """Tokens between the brackets of a parenthesis group."""
    return _significant(paren.tokens[1:-1])


def _split_alias(leaves: List) -> Tuple[List, Optional[object]]:
    if len(leaves) >= 3 and _is_keyword(leaves[-2], 'AS') and _is_word(leaves[-1]):
        return leaves[:-2], leaves[-1]
    if len(leaves) >= 2 and _is_name(leaves[-1]) and _ends_operand(leaves[-2]):
        return leaves[:-1], leaves[-1]
    return leaves, None


def _dotted(leaves: Sequence) -> Optional[List]:
    """Return the name tokens of ``a``, ``a.b`` or ``a.b.c``, else None."""
    if not leaves or len(leaves) % 2 == 0 or len(leaves) > 5:
        return None
    if not _is_name(leaves[0]):
        return None
    names = [leaves[0]]
    for i in range(1, len(leaves), 2):
        if not _is_punct(leaves[i], '.') or not _is_word(leaves[i + 1]):
            return None
        names.append(leaves[i + 1])
    return names


@dataclass
class _Source:
    """A relation visible in a FROM clause."""
    name: str
    analysis: Optional[ViewAnalysis] = None
    opaque: bool = False


class SqlAnalyzer:
    """Derives a ViewAnalysis from SELECT text.

    One analyzer serves one parse: its view cache and dependency graph are
    not meant to be reused for a later, unrelated analysis.
    """

    def __init__(self, adapter: DialectAdapter):
        self.adapter = adapter
        self.graph = DependencyGraph()
        self._views: Dict[str, Optional[ViewAnalysis]] = {}
        self._kinds: Dict[str, bool] = {}
        self._columns: Dict[str, List[str]] = {}
        self._resolving: List[str] = []

    # -- entry points -------------------------------------------------

    def analyze(self, sql: str) -> ViewAnalysis:
        """Analyse ad-hoc SQL; unsupported constructs raise ParseError."""
        self.graph.add_relation(QUERY_NODE, "query")
        self._resolving.append(QUERY_NODE)
        try:
            analysis = self._analyze_sql(sql)
        finally:
            self._resolving.pop()
        analysis.dependencies = self.graph
        return analysis

    def analyze_view(self, name: str) -> ViewAnalysis:
        """Analyse the stored definition of view ``name``."""
        self.graph.add_relation(name, "view")
        self._kinds[name] = True
        self._resolving.append(name)
        try:
            analysis = self._analyze_sql(self.adapter.view_definition(name))
        finally:
            self._resolving.pop()
        self._views[name] = analysis
        analysis.dependencies = self.graph
        return analysis

    # -- statement walk -----------------------------------------------

    def _analyze_sql(self, sql: str) -> ViewAnalysis:
        statements = split_statements(sql)
        if len(statements) != 1:
            raise ParseError("expected exactly one SELECT statement")
        tokens = _significant(statements[0].tokens)
        while tokens and _is_punct(tokens[-1], ';'):
            tokens.pop()
        return self._analyze_tokens(tokens, {})

    def _analyze_tokens(self, tokens: List, outer_ctes: Dict[str, ViewAnalysis]) -> ViewAnalysis:
        analysis = ViewAnalysis()
        ctes = dict(outer_ctes)
        i, n = 0, len(tokens)

        if i < n and tokens[i].ttype in T.Keyword.CTE:
            i += 1
            start = i
            while i < n and not (tokens[i].ttype in T.Keyword.DML):
                i += 1
            for name, column_names, body in self._parse_ctes(tokens[start:i]):
                sub = self._analyze_tokens(_inner(body), ctes)
                if column_names:
                    if len(column_names) != len(sub.columns):
                        raise ParseError(f"CTE {name} declares {len(column_names)} columns "
                                         f"but selects {len(sub.columns)}")
                    for lineage, col_name in zip(sub.columns, column_names):
                        lineage.name = col_name
                ctes[name.lower()] = sub
                analysis.ctes[name] = sub

        if i >= n or not _is_keyword(tokens[i], 'SELECT'):
            raise ParseError("expected SELECT")
        i += 1

        for tok in tokens[i:]:
            if tok.ttype in T.Keyword and _norm(tok) in SET_OPERATIONS:
                raise ParseError(f"{_norm(tok)} queries are not supported")

        if i < n and _is_keyword(tokens[i], 'DISTINCT'):
            analysis.has_distinct = True
            i += 1
            if i + 1 < n and _is_keyword(tokens[i], 'ON') and isinstance(tokens[i + 1], S.Parenthesis):
                i += 2
        elif i < n and _is_keyword(tokens[i], 'ALL'):
            i += 1

        start = i
        while i < n and not _is_keyword(tokens[i], 'FROM') and not _is_clause_end(tokens[i]):
            i += 1
        items = _split_commas(_expand(tokens[start:i]))
        if not items:
            raise ParseError("SELECT has no output columns")

        sources: List[Tuple[str, _Source]] = []
        if i < n and _is_keyword(tokens[i], 'FROM'):
            i += 1
            start = i
            while i < n and not _is_clause_end(tokens[i]):
                i += 1
            sources = self._parse_from(_expand(tokens[start:i]), ctes, analysis)

        while i < n:
            if _is_keyword(tokens[i], 'GROUP BY'):
                i += 1
                start = i
                while i < n and not _is_clause_end(tokens[i]):
                    i += 1
                analysis.has_group_by = True
                analysis.group_by = [self._format_group_item(item)
                                     for item in _split_commas(_expand(tokens[start:i]))]
            else:
                i += 1

        for item in items:
            analysis.columns.extend(self._select_item(item, sources))
        for lineage in analysis.columns:
            if not lineage.derived:
                analysis.add_table(lineage.source_table)
        return analysis

    def _parse_ctes(self, tokens: List):
        toks = _expand(tokens)
        k, n = 0, len(toks)
        if k < n and _is_keyword(toks[k], 'RECURSIVE'):
            k += 1
        while k < n:
            tok = toks[k]
            if _is_punct(tok, ','):
                k += 1
                continue
            column_names: List[str] = []
            if isinstance(tok, S.Function):
                name = self._unquote(next(leaf for leaf in tok.flatten() if is_significant(leaf)))
                params = [t for t in tok.tokens if isinstance(t, S.Parenthesis)]
                if params:
                    column_names = [self._unquote(leaf) for leaf in _leaves(_inner(params[0]))
                                    if _is_word(leaf)]
                k += 1
            elif _is_word(tok):
                name = self._unquote(tok)
                k += 1
                if k < n and isinstance(toks[k], S.Parenthesis):
                    column_names = [self._unquote(leaf) for leaf in _leaves(_inner(toks[k]))
                                    if _is_word(leaf)]
                    k += 1
            else:
                raise ParseError(f"unexpected token in WITH clause: {tok.value!r}")
            if k >= n or not _is_keyword(toks[k], 'AS'):
                raise ParseError(f"expected AS after CTE {name}")
            k += 1
            while k < n and _is_keyword(toks[k], 'NOT', 'MATERIALIZED', 'NOT MATERIALIZED'):
                k += 1
            if k >= n or not isinstance(toks[k], S.Parenthesis):
                raise ParseError(f"expected a parenthesised query for CTE {name}")
            yield name, column_names, toks[k]
            k += 1

    def _parse_from(self, toks: List, ctes: Dict[str, ViewAnalysis],
                    analysis: ViewAnalysis) -> List[Tuple[str, _Source]]:
        """Walk FROM left to right, flattening joins into an alias list."""
        sources: List[Tuple[str, _Source]] = []
        expect_source = True
        k, n = 0, len(toks)
        while k < n:
            tok = toks[k]
            if _is_join(tok) or _is_punct(tok, ','):
                expect_source = True
                k += 1
                continue
            if not expect_source or _is_keyword(tok, 'LATERAL', 'ONLY'):
                # ON / USING conditions
                k += 1
                continue

            keys: List[str] = []
            if isinstance(tok, S.Parenthesis):
                sub = self._analyze_tokens(_inner(tok), ctes)
                source = _Source(name="", analysis=sub)
                for table in sub.tables:
                    analysis.add_table(table)
                k += 1
            elif isinstance(tok, S.Function):
                source = _Source(name=tok.get_name() or "", opaque=True)
                keys.append(source.name.lower())
                k += 1
            elif _is_name(tok):
                parts = [self._unquote(tok)]
                k += 1
                while k + 1 < n and _is_punct(toks[k], '.') and _is_word(toks[k + 1]):
                    parts.append(self._unquote(toks[k + 1]))
                    k += 2
                source = self._relation_source(parts, ctes, analysis)
                keys.extend(dict.fromkeys([".".join(parts).lower(), parts[-1].lower()]))
            else:
                raise ParseError(f"unsupported FROM item: {tok.value!r}")

            alias = None
            if k + 1 < n and _is_keyword(toks[k], 'AS') and (_is_word(toks[k + 1])
                                                            or isinstance(toks[k + 1], S.Function)):
                alias = toks[k + 1]
                k += 2
            elif k < n and not _is_join(toks[k]) and (_is_name(toks[k]) or isinstance(toks[k], S.Function)):
                alias = toks[k]
                k += 1
            if alias is not None:
                if isinstance(alias, S.Function):
                    # alias(col, ...) renames columns; keep only the alias
                    alias_name = alias.get_name() or ""
                else:
                    alias_name = self._unquote(alias)
                # MySQL stores view bodies with table-qualified columns even when aliased
                keys = [alias_name.lower()] + [key for key in keys if key != alias_name.lower()]

            for key in keys:
                sources.append((key, source))
            if not keys:
                sources.append(("", source))
            expect_source = False
        return sources

    def _relation_source(self, parts: List[str], ctes: Dict[str, ViewAnalysis],
                         analysis: ViewAnalysis) -> _Source:
        name = ".".join(parts)
        if len(parts) == 1 and name.lower() in ctes:
            cte = ctes[name.lower()]
            for table in cte.tables:
                analysis.add_table(table)
            return _Source(name=name, analysis=cte)
        owner = self._resolving[-1]
        if self._is_view(name):
            view = self._view_analysis(name, owner)
            if view is not None:
                for table in view.tables:
                    analysis.add_table(table)
        else:
            self.graph.add_dependency(owner, name, "table")
            analysis.add_table(name)
        return _Source(name=name)

    # -- select items -------------------------------------------------

    def _select_item(self, item: List, sources: List[Tuple[str, _Source]]) -> List[ColumnLineage]:
        leaves = _leaves(item)
        if leaves and leaves[-1].ttype in T.Wildcard:
            qualifier = _dotted(leaves[:-2]) if len(leaves) > 1 else []
            if qualifier is None or (len(leaves) > 1 and not _is_punct(leaves[-2], '.')):
                raise ParseError(f"unsupported wildcard: {''.join(t.value for t in leaves)}")
            return self._expand_wildcard(qualifier, sources)

        expr, alias = _split_alias(leaves)
        alias_name = self._unquote(alias) if alias is not None else None
        names = _dotted(expr)
        if names is None:
            text = alias_name or "".join(t.value for t in expr)
            return [ColumnLineage.derived_column(text)]

        column = self._unquote(names[-1])
        table_ref = self._unquote(names[-2]) if len(names) >= 2 else ""
        output_name = alias_name or column
        return [self._resolve_reference(table_ref, column, output_name, sources)]

    def _expand_wildcard(self, qualifier: List, sources: List[Tuple[str, _Source]]) -> List[ColumnLineage]:
        if qualifier:
            key = self._unquote(qualifier[-1]).lower()
            matched = [src for alias, src in sources if alias == key]
            if not matched:
                raise ParseError(f"unknown table in wildcard: {key}")
            targets = matched[:1]
        else:
            targets = []
            for _, src in sources:
                if not any(src is seen for seen in targets):
                    targets.append(src)
        lineages = []
        for src in targets:
            for col_name in self._source_columns(src):
                lineages.append(self._resolve_in_source(src, col_name, col_name))
        return lineages

    def _resolve_reference(self, table_ref: str, column: str, output_name: str,
                           sources: List[Tuple[str, _Source]]) -> ColumnLineage:
        if table_ref:
            matched = [src for alias, src in sources if alias == table_ref.lower()]
            if not matched:
                return ColumnLineage.derived_column(output_name)
            return self._resolve_in_source(matched[0], column, output_name)

        distinct_sources = []
        for _, src in sources:
            if not any(src is seen for seen in distinct_sources):
                distinct_sources.append(src)
        if len(distinct_sources) == 1:
            return self._resolve_in_source(distinct_sources[0], column, output_name)
        owners = [src for src in distinct_sources
                  if column.lower() in (c.lower() for c in self._source_columns(src))]
        if len(owners) == 1:
            return self._resolve_in_source(owners[0], column, output_name)
        return ColumnLineage.derived_column(output_name)

    def _resolve_in_source(self, source: _Source, column: str, output_name: str) -> ColumnLineage:
        if source.opaque:
            return ColumnLineage.derived_column(output_name)
        if source.analysis is not None:
            inner = source.analysis.column(column)
            if inner is None or inner.derived:
                return ColumnLineage.derived_column(output_name)
            return ColumnLineage(output_name, inner.source_table, inner.source_column)
        resolved = self.resolve_column_lineage(source.name, column)
        if resolved is None:
            return ColumnLineage.derived_column(output_name)
        return ColumnLineage(output_name, resolved[0], resolved[1])

    def _source_columns(self, source: _Source) -> List[str]:
        if source.analysis is not None:
            return [c.name for c in source.analysis.columns]
        if source.opaque:
            raise ParseError(f"cannot expand columns of table function {source.name}")
        return self._relation_columns(source.name)

    def _format_group_item(self, item: List) -> str:
        leaves = _leaves(item)
        if len(leaves) == 1 and leaves[0].ttype in T.Number.Integer:
            return leaves[0].value
        names = _dotted(leaves)
        if names is None:
            return NON_TRIVIAL_EXPR
        return ".".join(self._unquote(t) for t in names[-2:])

    # -- lineage through views ----------------------------------------

    def resolve_column_lineage(self, table: str, column: str) -> Optional[Tuple[str, str]]:
        """Follow ``table.column`` down to a base table column.

        Returns:
            (base table, base column), or None when the column is derived
        """
        if not self._is_view(table):
            return table, column
        analysis = self._view_analysis(table, self._resolving[-1])
        if analysis is None:
            return None
        declared = self._relation_columns(table)
        lineage = None
        if len(declared) == len(analysis.columns):
            lowered = [c.lower() for c in declared]
            if column.lower() in lowered:
                lineage = analysis.columns[lowered.index(column.lower())]
        if lineage is None:
            lineage = analysis.column(column)
        if lineage is None or lineage.derived:
            return None
        return lineage.source_table, lineage.source_column

    def _view_analysis(self, view: str, owner: str) -> Optional[ViewAnalysis]:
        if view in self._resolving or not self.graph.add_dependency(owner, view, "view"):
            logger.warning("View %s depends on itself; its columns are treated as derived", view)
            return None
        if view in self._views:
            return self._views[view]
        self._resolving.append(view)
        try:
            analysis = self._analyze_sql(self.adapter.view_definition(view))
        except (ParseError, BackendError) as exc:
            logger.warning("Could not analyse view %s, its columns are read-only: %s", view, exc)
            self.adapter.recover()
            analysis = None
        finally:
            self._resolving.pop()
        self._views[view] = analysis
        return analysis

    def _is_view(self, name: str) -> bool:
        if name not in self._kinds:
            self._kinds[name] = self.adapter.is_view(name)
        return self._kinds[name]

    def _relation_columns(self, name: str) -> List[str]:
        if name not in self._columns:
            columns = self.adapter.column_names(name)
            if not columns:
                columns = [c.name for c in self.adapter.probe_relation(name)]
            self._columns[name] = columns
        return self._columns[name]

    def _unquote(self, token) -> str:
        value = token.value
        if len(value) >= 2 and value[0] == value[-1] and value[0] in '"`':
            quote = value[0]
            return value[1:-1].replace(quote * 2, quote)
        if len(value) >= 2 and value[0] == '[' and value[-1] == ']':
            return value[1:-1]
        return self.adapter.fold(value)


def analyze_sql(adapter: DialectAdapter, sql: str) -> ViewAnalysis:
    """Analyse one SELECT statement with a fresh view cache."""
    return SqlAnalyzer(adapter).analyze(sql)
