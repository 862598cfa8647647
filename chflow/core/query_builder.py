"""SQL text builders for the transfer engine.

Every builder is a pure function returning a :class:`Statement`. Identifiers
are validated and quoted; row values are bound parameters, never inlined.
"""

from dataclasses import dataclass
from typing import Any, List, Mapping, Optional, Sequence, Tuple

from chflow.core.errors import ValidationError
from chflow.core.models import JoinSpec
from chflow.logging import get_logger
from chflow.utils.sql_security import ParameterizedQueryBuilder, SQLSafeFormatter

logger = get_logger(__name__)


@dataclass(frozen=True)
class Dialect:
    """Per-store differences the builders need to know about."""

    name: str
    string_type: str
    create_table_suffix: str = ""


DIALECTS = {
    "clickhouse": Dialect(
        name="clickhouse",
        string_type="String",
        create_table_suffix=" ENGINE = MergeTree() ORDER BY tuple()",
    ),
    "duckdb": Dialect(name="duckdb", string_type="VARCHAR"),
}


def get_dialect(name: str) -> Dialect:
    try:
        return DIALECTS[name.lower()]
    except KeyError:
        raise ValidationError(f"Unsupported SQL dialect: {name}")


@dataclass(frozen=True)
class Statement:
    """SQL text plus the values bound to its placeholders."""

    sql: str
    parameters: Tuple[Any, ...] = ()

    def __str__(self) -> str:
        return self.sql


def _check_columns(columns: Sequence[str]) -> List[str]:
    """Reject duplicate column names; returns the columns as a list."""
    seen = set()
    duplicates = []
    for column in columns:
        if column in seen and column not in duplicates:
            duplicates.append(column)
        seen.add(column)
    if duplicates:
        raise ValidationError(
            f"Duplicate columns in selection: {', '.join(duplicates)}"
        )
    return list(columns)


def build_select(
    table: str,
    columns: Sequence[str],
    predicate: Optional[str] = None,
    limit: Optional[int] = None,
    dialect: str = "clickhouse",
) -> Statement:
    """Build ``SELECT <cols> FROM <table> [WHERE ...] [LIMIT n]``.

    Output columns keep the input order. No columns (or ``["*"]``) selects all.
    """
    formatter = SQLSafeFormatter(dialect)
    columns = _check_columns(columns or [])

    sql = f"SELECT {formatter.format_column_list(columns)} FROM {formatter.quote_qualified(table)}"
    if predicate:
        sql += f" WHERE {formatter.check_predicate(predicate)}"
    sql += formatter.format_limit(limit)

    logger.debug("Built select: %s", sql)
    return Statement(sql)


def build_join_select(
    tables: Sequence[str],
    predicates: Sequence[str],
    columns: Sequence[str],
    predicate: Optional[str] = None,
    limit: Optional[int] = None,
    dialect: str = "clickhouse",
) -> Statement:
    """Build a select over ``tables`` joined in order.

    ``tables[0]`` is the main table; each following table is joined with
    ``JOIN tables[i] ON predicates[i - 1]``. The arity check runs before any
    text is built.
    """
    JoinSpec.of(tables, predicates).validate()

    formatter = SQLSafeFormatter(dialect)
    columns = _check_columns(columns or [])

    parts = [
        f"SELECT {formatter.format_column_list(columns)}",
        f"FROM {formatter.quote_qualified(tables[0])}",
    ]
    for table, join_predicate in zip(tables[1:], predicates):
        parts.append(
            f"JOIN {formatter.quote_qualified(table)} "
            f"ON {formatter.check_predicate(join_predicate, clause='JOIN')}"
        )
    if predicate:
        parts.append(f"WHERE {formatter.check_predicate(predicate)}")

    sql = " ".join(parts) + formatter.format_limit(limit)
    logger.debug("Built join select: %s", sql)
    return Statement(sql)


def build_create_table(
    table: str, columns: Sequence[str], dialect: str = "clickhouse"
) -> Statement:
    """Build the fallback ``CREATE TABLE`` with every column typed as a string."""
    spec = get_dialect(dialect)
    formatter = SQLSafeFormatter(spec.name)
    columns = _check_columns(columns)
    if not columns:
        raise ValidationError("Cannot create a table without columns")

    column_definitions = ", ".join(
        f"{formatter.quote_identifier(column)} {spec.string_type}" for column in columns
    )
    sql = (
        f"CREATE TABLE IF NOT EXISTS {formatter.quote_qualified(table)} "
        f"({column_definitions}){spec.create_table_suffix}"
    )
    logger.debug("Built create table: %s", sql)
    return Statement(sql)


def build_batch_insert(
    table: str,
    columns: Sequence[str],
    rows: Sequence[Mapping[str, Any]],
    dialect: str = "clickhouse",
) -> Statement:
    """Build one multi-row ``INSERT`` for a batch.

    Values are bound in row-major order. A field missing from a row binds as
    NULL.
    """
    columns = _check_columns(columns)
    if not columns:
        raise ValidationError("Columns list cannot be empty for INSERT")
    if not rows:
        raise ValidationError("Cannot build an INSERT for an empty batch")

    builder = ParameterizedQueryBuilder(dialect)
    formatter = builder.formatter
    column_str = ", ".join(formatter.quote_identifier(column) for column in columns)
    values = ", ".join(
        builder.build_values_row([row.get(column) for column in columns])
        for row in rows
    )

    sql, parameters = builder.get_query_and_parameters(
        f"INSERT INTO {formatter.quote_qualified(table)} ({column_str}) VALUES {values}"
    )
    logger.debug(
        "Built insert into %s: %d rows, %d parameters", table, len(rows), len(parameters)
    )
    return Statement(sql, tuple(parameters))


def build_list_tables(dialect: str = "clickhouse") -> Statement:
    """List tables of the session's current database.

    ClickHouse and DuckDB both answer ``SHOW TABLES`` with a ``name`` column.
    """
    get_dialect(dialect)
    return Statement("SHOW TABLES")


def build_describe_table(table: str, dialect: str = "clickhouse") -> Statement:
    """Describe a table's columns in declaration order."""
    spec = get_dialect(dialect)
    formatter = SQLSafeFormatter(spec.name)
    keyword = "DESCRIBE TABLE" if spec.name == "clickhouse" else "DESCRIBE"
    return Statement(f"{keyword} {formatter.quote_qualified(table)}")
