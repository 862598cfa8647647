"""Pytest configuration for chflow tests."""

import re
import tempfile
from typing import Any, Callable, Dict, Generator, List, Optional, Sequence, Tuple

import pytest

from chflow.config import Settings
from chflow.connectors.base.session import ConnectionSession
from chflow.core.errors import ErrorKind
from chflow.core.models import ConnectionDescriptor


class FakeDriverError(Exception):
    """Stands in for a driver's statement error."""


class RecordingSession(ConnectionSession):
    """In-memory session that records every statement it is given.

    ``tables`` maps table names to ``(column, type)`` pairs for SHOW/DESCRIBE,
    ``select_rows`` maps table names to the rows a SELECT returns, and
    ``fail_command`` decides which commands raise a driver error.
    """

    dialect = "clickhouse"
    driver_errors = (FakeDriverError,)

    def __init__(
        self,
        descriptor: ConnectionDescriptor,
        tables: Optional[Dict[str, List[Tuple[str, str]]]] = None,
        select_rows: Optional[Dict[str, List[Dict[str, Any]]]] = None,
        fail_command: Optional[Callable[[str, int], bool]] = None,
        fail_connect: bool = False,
    ):
        super().__init__(descriptor)
        self.tables = dict(tables or {})
        self.select_rows = dict(select_rows or {})
        self.fail_command = fail_command
        self.fail_connect = fail_connect
        self.queries: List[str] = []
        self.commands: List[Tuple[str, Sequence[Any]]] = []
        self.connected = False
        self.disconnect_calls = 0

    @property
    def inserts(self) -> List[Tuple[str, Sequence[Any]]]:
        return [command for command in self.commands if command[0].startswith("INSERT")]

    def _connect(self) -> None:
        if self.fail_connect:
            raise OSError("Connection refused")
        self.connected = True

    def _disconnect(self) -> None:
        self.disconnect_calls += 1
        self.connected = False

    def _execute(self, sql, parameters):
        self.queries.append(sql)
        if sql == "SELECT 1":
            return ["1"], [(1,)]
        if sql == "SHOW TABLES":
            return ["name"], [(name,) for name in self.tables]

        describe = re.match(r'DESCRIBE TABLE "(\w+)"', sql)
        if describe:
            name = describe.group(1)
            if name not in self.tables:
                raise FakeDriverError(f"Code: 60. Table default.{name} doesn't exist")
            return ["name", "type"], list(self.tables[name])

        source = re.search(r'FROM "(\w+)"', sql)
        if source and source.group(1) in self.select_rows:
            rows = self.select_rows[source.group(1)]
            columns = list(rows[0].keys()) if rows else []
            return columns, [tuple(row[column] for column in columns) for row in rows]
        raise FakeDriverError(f"Code: 62. Syntax error in {sql}")

    def _execute_command(self, sql, parameters):
        index = len(self.commands)
        self.commands.append((sql, tuple(parameters or ())))
        if self.fail_command is not None and self.fail_command(sql, index):
            raise FakeDriverError("Code: 241. Memory limit exceeded")

    def _classify_error(self, exc):
        if "Code: 60." in str(exc):
            return ErrorKind.SCHEMA_ABSENT
        return ErrorKind.QUERY


@pytest.fixture
def temp_dir() -> Generator[str, None, None]:
    """Create a temporary directory for tests.

    Yields
    ------
        Path to the temporary directory

    """
    with tempfile.TemporaryDirectory() as tmp_dir:
        yield tmp_dir


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings with the data directory inside the test's temp dir."""
    return Settings(data_dir=str(tmp_path), batch_size=1000, preview_limit=100)


@pytest.fixture
def descriptor() -> ConnectionDescriptor:
    """A complete ClickHouse connection descriptor."""
    return ConnectionDescriptor(
        host="localhost", port=8123, database="default", auth_token="secret-token"
    )


@pytest.fixture
def connection_params() -> Dict[str, Any]:
    """Request-style connection fields."""
    return {
        "host": "localhost",
        "port": "8123",
        "database": "default",
        "jwt": "secret-token",
    }


@pytest.fixture
def recording_session_cls():
    """The :class:`RecordingSession` class, for tests that build their own."""
    return RecordingSession


@pytest.fixture
def sample_csv_data() -> str:
    """Return sample CSV data for testing."""
    return "id,name,value\n1,Alice,100\n2,Bob,200\n3,Charlie,300\n"
