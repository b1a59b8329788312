"""Exception hierarchy for the relation resolver."""


class ResolverError(Exception):
    """Base class for every error raised by db_resolver."""


class NoKeyableColumns(ResolverError):
    """No primary key or qualifying unique index could be resolved."""


class ParseError(ResolverError):
    """SQL text could not be parsed into a SELECT analysis."""


class DisallowedStatement(ParseError):
    """Ad-hoc SQL failed the read-only allow-list."""


class ColumnCountMismatch(ResolverError):
    """Schema probe and analysis disagree on the number of output columns."""


class ColumnNotFound(ResolverError):
    pass


class IndexOutOfRange(ResolverError):
    pass


class NotEditable(ResolverError):
    """Write attempted on a derived or unresolvable column."""


class NoRowsUpdated(ResolverError):
    pass


class MissingKey(ResolverError):
    """INSERT without every part of a composite key."""


class BackendError(ResolverError):
    """Wrapped driver level failure."""
