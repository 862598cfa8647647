from __future__ import annotations

import os
from typing import Any, List, Optional, Sequence, Tuple

import duckdb

from chflow.connectors.base.session import ConnectionSession
from chflow.core.errors import ErrorKind
from chflow.logging import get_logger

logger = get_logger(__name__)


class DuckDBSession(ConnectionSession):
    """
    Session against an embedded DuckDB database file.

    ``descriptor.database`` is the database file path, or ``:memory:`` for a
    throwaway in-process database. Host, port and credentials are ignored.
    """

    dialect = "duckdb"
    driver_errors = (duckdb.Error,)

    def __init__(self, descriptor):
        super().__init__(descriptor)
        self._connection: Optional[duckdb.DuckDBPyConnection] = None

    def _connect(self) -> None:
        database = self.descriptor.database
        if database != ":memory:":
            directory = os.path.dirname(os.path.abspath(database))
            if not os.path.isdir(directory):
                raise FileNotFoundError(f"Database directory does not exist: {directory}")
        logger.debug("Opening DuckDB database %s", database)
        self._connection = duckdb.connect(database=database)

    def _disconnect(self) -> None:
        if self._connection is not None:
            connection, self._connection = self._connection, None
            connection.close()

    def _execute(
        self, sql: str, parameters: Optional[Sequence[Any]]
    ) -> Tuple[List[str], List[Tuple[Any, ...]]]:
        logger.debug("DuckDB query: %s", sql)
        cursor = self._connection.execute(sql, list(parameters) if parameters else None)
        columns = [column[0] for column in cursor.description or []]
        return columns, cursor.fetchall()

    def _execute_command(self, sql: str, parameters: Optional[Sequence[Any]]) -> None:
        logger.debug("DuckDB command: %s (%d parameters)", sql[:200], len(parameters or ()))
        self._connection.execute(sql, list(parameters) if parameters else None)

    def _classify_error(self, exc: Exception) -> ErrorKind:
        if isinstance(exc, duckdb.CatalogException):
            return ErrorKind.SCHEMA_ABSENT
        return ErrorKind.QUERY
