"""Command line entry point: inspect relations of a configured database."""
import argparse
import logging
import sys
from typing import List, Optional

from .analyzer import QUERY_NODE
from .config import NULL_DISPLAY
from .connection import DatabaseConnection
from .errors import ResolverError
from .executor import QueryExecutor
from .models import SortColumn
from .relation import Relation, RelationBuilder

logger = logging.getLogger(__name__)


def _display(value) -> str:
    return NULL_DISPLAY if value is None else str(value)


def describe(relation: Relation) -> List[str]:
    """Printable summary of a relation's columns, key and base tables."""
    kind = "query" if relation.is_custom_sql else "view" if relation.is_view else "table"
    lines = [f"{kind} {relation.name or '<sql>'}", f"key: {', '.join(relation.key_names)}"]
    graph = relation.analysis.dependencies if relation.analysis is not None else None
    if graph is not None:
        details = graph.get_relation_details(QUERY_NODE if relation.is_custom_sql else relation.name)
        if details and details["depends_on"]:
            node = details["name"]
            lines.append(f"depends on: {', '.join(details['depends_on'])}"
                         f" (tables: {', '.join(graph.base_tables(node))})")
    for i, col in enumerate(relation.columns):
        origin = f"{col.source_table}.{col.source_column}" if col.source_table else "derived"
        flags = []
        if not col.nullable:
            flags.append("not null")
        if relation.is_column_editable(i):
            flags.append("editable")
        if col.enum_values:
            flags.append("enum(" + ", ".join(col.enum_values) + ")")
        if col.reference >= 0:
            flags.append(f"-> {relation.references[col.reference].table}")
        lines.append(f"  {i}: {col.name} {col.type or '?'} [{origin}] {' '.join(flags)}".rstrip())
    for name, table in relation.tables.items():
        key = ", ".join(relation.columns[i].name for i in table.key) or "-"
        lines.append(f"  base {name}: key ({key})")
    return lines


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="db-resolver", description=__doc__)
    parser.add_argument("--config", "-c", default="config.ini", help="INI file with a [database] section")
    parser.add_argument("--verbose", "-v", action="store_true", help="log generated SQL")
    commands = parser.add_subparsers(dest="command", required=True)

    describe_cmd = commands.add_parser("describe", help="show columns, lineage and key")
    target = describe_cmd.add_mutually_exclusive_group(required=True)
    target.add_argument("name", nargs="?", help="table or view name")
    target.add_argument("--sql", help="ad-hoc SELECT statement")

    page_cmd = commands.add_parser("page", help="print the first page of a relation")
    page_cmd.add_argument("name")
    page_cmd.add_argument("--sort", help="sort column")
    page_cmd.add_argument("--desc", action="store_true", help="sort descending")
    page_cmd.add_argument("--limit", type=int, default=50)

    find_cmd = commands.add_parser("find", help="find the first row with COLUMN = VALUE")
    find_cmd.add_argument("name")
    find_cmd.add_argument("column")
    find_cmd.add_argument("value")
    return parser


def run(args: argparse.Namespace, out=None) -> int:
    out = out or sys.stdout
    database = DatabaseConnection(args.config)
    with database as conn:
        builder = RelationBuilder(conn, database.dialect, database.sentinels)
        if args.command == "describe":
            relation = builder.build_from_sql(args.sql) if args.sql else builder.build(args.name)
            print("\n".join(describe(relation)), file=out)
            return 0

        relation = builder.build(args.name)
        executor = QueryExecutor(conn, relation, builder.adapter)
        if args.command == "page":
            sort = SortColumn(args.sort, asc=not args.desc) if args.sort else None
            print("\t".join(c.name for c in relation.columns), file=out)
            for row in executor.query_rows(sort=sort, limit=args.limit):
                print("\t".join(_display(v) for v in row), file=out)
            return 0

        keys, _ = executor.find_next_row(args.column, args.value)
        if keys is None:
            print("not found", file=out)
            return 0
        print(", ".join(f"{name}={_display(v)}" for name, v in zip(relation.key_names, keys)), file=out)
        return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING,
                        format="%(levelname)s %(name)s: %(message)s")
    try:
        return run(args)
    except ResolverError as exc:
        logger.error("%s", exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())
