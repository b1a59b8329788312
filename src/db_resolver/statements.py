"""Lexical checks on user supplied SQL, built on sqlparse's tokenizer."""
import re
from typing import List

import sqlparse
from sqlparse import tokens as T

from .errors import DisallowedStatement, ParseError

FORBIDDEN_KEYWORDS = frozenset({
    'INSERT', 'UPDATE', 'DELETE', 'DROP', 'CREATE',
    'ALTER', 'TRUNCATE', 'GRANT', 'REVOKE',
})

_READ_ONLY_START = re.compile(r"^\s*(SELECT|WITH)\b", re.IGNORECASE)


def is_significant(token) -> bool:
    return not token.is_whitespace and token.ttype not in T.Comment


def _has_content(statement) -> bool:
    for token in statement.flatten():
        if is_significant(token) and token.value != ';':
            return True
    return False


def split_statements(sql: str) -> List[sqlparse.sql.Statement]:
    """Parse ``sql`` and drop statements holding only comments or semicolons."""
    return [stmt for stmt in sqlparse.parse(sql) if _has_content(stmt)]


def validate_select(sql: str) -> str:
    """Check that ad-hoc SQL is a single read-only SELECT.

    Args:
        sql: Statement typed by the user

    Returns:
        The statement without comments, surrounding whitespace or trailing
        semicolons, ready to be wrapped as a derived table

    Raises:
        DisallowedStatement: if the statement does not pass the allow-list
    """
    if not _READ_ONLY_START.match(sql or ""):
        raise DisallowedStatement("only SELECT or WITH statements are allowed")

    statements = split_statements(sql)
    if len(statements) > 1:
        raise DisallowedStatement("multiple statements are not allowed")

    for token in statements[0].flatten():
        if token.ttype in T.Literal or token.ttype in T.Comment:
            continue
        word = token.value.upper()
        if word in FORBIDDEN_KEYWORDS:
            raise DisallowedStatement(f"{word} is not allowed in a query")

    stripped = sqlparse.format(sql, strip_comments=True)
    return stripped.strip().rstrip(';').strip()


def strip_create_view(sql: str) -> str:
    """Return the SELECT part of a stored ``CREATE VIEW ... AS ...`` text.

    Text that is already a bare query is returned unchanged apart from a
    trailing semicolon.
    """
    text = (sql or "").strip()
    statements = split_statements(text)
    if not statements:
        raise ParseError("empty view definition")

    leaves = [tok for tok in statements[0].flatten()]
    significant = [i for i, tok in enumerate(leaves) if is_significant(tok)]
    first = leaves[significant[0]]
    if not (first.ttype in T.Keyword.DDL and first.value.upper() == 'CREATE'):
        return text.rstrip(';').strip()

    depth = 0
    for pos, i in enumerate(significant):
        tok = leaves[i]
        if tok.ttype in T.Punctuation and tok.value == '(':
            depth += 1
        elif tok.ttype in T.Punctuation and tok.value == ')':
            depth -= 1
        elif depth == 0 and tok.ttype in T.Keyword and tok.value.upper() == 'AS':
            if pos + 1 >= len(significant):
                break
            nxt = leaves[significant[pos + 1]]
            if nxt.ttype in T.Keyword.DML or nxt.ttype in T.Keyword.CTE or nxt.value == '(':
                body = "".join(t.value for t in leaves[i + 1:])
                return body.strip().rstrip(';').strip()
    raise ParseError("could not find the query of the view definition")
