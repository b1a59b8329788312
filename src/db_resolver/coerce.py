"""Conversion of editor input strings into driver values."""
from typing import Any

from .config import DEFAULT_SENTINELS, Sentinels

INT64_MIN = -(2 ** 63)
INT64_MAX = 2 ** 63 - 1

_TRUE = ("1", "true", "t")
_FALSE = ("0", "false", "f")
_FLOAT_TYPES = ("real", "double", "float", "numeric", "decimal")


def to_db_value(raw: Any, column_type: str, sentinels: Sentinels = DEFAULT_SENTINELS,
                empty_is_null: bool = False) -> Any:
    """Convert a raw cell value to the Python value bound for ``column_type``.

    Args:
        raw: Value typed by the user; non-strings pass through unchanged
        column_type: Declared column type, matched by lowercase substring
        sentinels: Null glyph definition
        empty_is_null: Treat an empty string as NULL (insert path)

    Returns:
        None for SQL NULL, otherwise a bool, int, float or the raw string
    """
    if raw is None:
        return None
    if not isinstance(raw, str):
        return raw
    if raw == sentinels.null_glyph:
        return None
    if raw == "" and empty_is_null:
        return None

    kind = (column_type or "").lower()
    if "bool" in kind:
        lowered = raw.strip().lower()
        if lowered in _TRUE:
            return True
        if lowered in _FALSE:
            return False
        return raw
    if "int" in kind:
        try:
            value = int(raw.strip())
        except ValueError:
            return raw
        if INT64_MIN <= value <= INT64_MAX:
            return value
        return raw
    if any(name in kind for name in _FLOAT_TYPES):
        try:
            return float(raw.strip())
        except ValueError:
            return raw
    return raw
