"""Lookup key selection.

Candidates are the primary key plus every unique index that can actually
identify a row. They are ranked by a strict total order:

    primary key first, then fewer columns, then smaller byte width,
    then earlier declaration, then index name.
"""
import re
from typing import Dict, Iterable, List, Optional, Sequence

from .models import Column, KeyCandidate, UniqueIndex

MIB = 1024 * 1024
_UNKNOWN_ORDINAL = 1 << 62
_LENGTH_RE = re.compile(r"\(\s*(\d+)\s*\)")


def size_of(type_name: str, length: int = -1) -> int:
    """Estimate the byte width of a declared column type.

    Args:
        type_name: Type string as reported by the backend
        length: Declared character length, or a non-positive value if unknown

    Returns:
        Estimated width in bytes
    """
    t = (type_name or "").strip().lower()
    if length is None or length <= 0:
        match = _LENGTH_RE.search(t)
        length = int(match.group(1)) if match else -1

    if "tinyint" in t:
        return 1
    if "smallint" in t:
        return 2
    if t == "int" or "integer" in t:
        return 4
    if "bigint" in t:
        return 8
    if "real" in t or "double" in t or "float" in t:
        return 8
    if "bool" in t:
        return 1
    if "uuid" in t:
        return 16
    if "date" in t or "time" in t:
        return 8
    if "char" in t or "text" in t or "clob" in t:
        return length if length > 0 else MIB
    if "decimal" in t or "numeric" in t:
        return 16
    if "bytea" in t or "blob" in t or "binary" in t:
        return MIB
    return 8


def qualifies(index: UniqueIndex, columns: Dict[str, Column]) -> bool:
    """A unique index identifies rows iff its columns are NOT NULL or nulls compare equal."""
    if index.nulls_not_distinct:
        return True
    for name in index.columns:
        col = columns.get(name)
        if col is None or col.nullable:
            return False
    return True


def make_candidate(name: str, cols: Sequence[str], columns: Dict[str, Column],
                   is_primary: bool = False) -> KeyCandidate:
    width = 0
    min_ordinal = _UNKNOWN_ORDINAL
    for col_name in cols:
        col = columns.get(col_name)
        if col is None:
            continue
        width += size_of(col.type, col.length)
        min_ordinal = min(min_ordinal, col.ordinal)
    return KeyCandidate(name=name, columns=list(cols), is_primary=is_primary,
                        width=width, min_ordinal=min_ordinal)


def rank(candidate: KeyCandidate):
    return (
        not candidate.is_primary,
        len(candidate.columns),
        candidate.width,
        candidate.min_ordinal,
        candidate.name,
    )


def select_best_key(candidates: Iterable[KeyCandidate]) -> List[str]:
    """Return the columns of the best ranked candidate, or [] if there is none."""
    usable = [c for c in candidates if c.columns]
    if not usable:
        return []
    return list(min(usable, key=rank).columns)


def build_candidates(primary_key: Sequence[str], unique_indexes: Iterable[UniqueIndex],
                     columns: Sequence[Column]) -> List[KeyCandidate]:
    """Turn catalog facts into ranked-ready candidates.

    Non-qualifying unique indexes (nullable columns without NULLS NOT
    DISTINCT) are dropped here.
    """
    by_name = {c.name: c for c in columns}
    candidates = []
    if primary_key:
        candidates.append(make_candidate("PRIMARY", primary_key, by_name, is_primary=True))
    for index in unique_indexes:
        if index.columns and qualifies(index, by_name):
            candidates.append(make_candidate(index.name, index.columns, by_name))
    return candidates


def best_key(primary_key: Sequence[str], unique_indexes: Iterable[UniqueIndex],
             columns: Sequence[Column], fallback: Optional[Sequence[str]] = None) -> List[str]:
    key = select_best_key(build_candidates(primary_key, unique_indexes, columns))
    if not key and fallback:
        key = list(fallback)
    return key
