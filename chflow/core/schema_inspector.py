"""Table listing and description against an open session."""

from typing import Any, List, Mapping

from chflow.connectors.base.session import ConnectionSession
from chflow.core.errors import ErrorKind, ValidationError
from chflow.core.models import ColumnDescriptor, TableDescriptor
from chflow.core.query_builder import build_describe_table, build_list_tables
from chflow.core.results import Result
from chflow.logging import get_logger

logger = get_logger(__name__)

# Result column names differ between stores
NAME_KEYS = ("name", "column_name")
TYPE_KEYS = ("type", "column_type")


def _first_present(row: Mapping[str, Any], keys) -> Any:
    for key in keys:
        if key in row:
            return row[key]
    return None


class SchemaInspector:
    """Reads table metadata through a session."""

    def list_tables(self, session: ConnectionSession) -> Result:
        """List the tables of the session's database.

        Returns:
            Result with ``data`` as a list of :class:`TableDescriptor`
        """
        result = session.query(build_list_tables(session.dialect).sql)
        if not result.success:
            return result

        tables = [
            TableDescriptor(name=str(_first_present(row, NAME_KEYS)))
            for row in result.data
        ]
        logger.debug("Found %d tables", len(tables))
        return Result.ok(f"Found {len(tables)} tables", data=tables, count=len(tables))

    def describe_table(self, session: ConnectionSession, table: str) -> Result:
        """Describe a table's columns in the order the store reports them.

        A missing table fails with ``SCHEMA_ABSENT``.

        Returns:
            Result with ``data`` as a list of :class:`ColumnDescriptor`
        """
        try:
            statement = build_describe_table(table, session.dialect)
        except ValidationError as e:
            return Result.from_error(e)

        result = session.query(statement.sql)
        if not result.success:
            return result

        columns: List[ColumnDescriptor] = [
            ColumnDescriptor(
                name=str(_first_present(row, NAME_KEYS)),
                type_name=str(_first_present(row, TYPE_KEYS)),
            )
            for row in result.data
        ]
        if not columns:
            return Result.fail(ErrorKind.SCHEMA_ABSENT, f"Table '{table}' has no columns")
        return Result.ok(
            f"Table '{table}' has {len(columns)} columns",
            data=columns,
            count=len(columns),
            schema=[column.name for column in columns],
        )

    def table_exists(self, session: ConnectionSession, table: str) -> bool:
        """Whether ``describe_table`` succeeds for ``table``."""
        return self.describe_table(session, table).success
