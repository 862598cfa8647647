from abc import ABC, abstractmethod
from enum import Enum, auto
from typing import Any, List, Optional, Sequence, Tuple

from chflow.core.errors import (
    ErrorKind,
    QueryError,
    SchemaAbsentError,
    SessionConnectionError,
)
from chflow.core.models import ConnectionDescriptor, Row
from chflow.core.results import Result
from chflow.logging import get_logger

logger = get_logger(__name__)

PROBE_QUERY = "SELECT 1"


class SessionState(Enum):
    """State of a connection session."""

    CREATED = auto()
    OPEN = auto()
    CLOSED = auto()
    ERROR = auto()


class ConnectionSession(ABC):
    """One connect/disconnect cycle against the analytical store.

    A session belongs to exactly one job. ``open`` and the statement methods
    return :class:`Result` objects; ``close`` is idempotent and safe to call
    on a session that never opened. Subclasses implement the ``_``-prefixed
    transport hooks and may raise from them freely.
    """

    dialect: str = ""
    # Exceptions the driver raises for rejected statements
    driver_errors: Tuple[type, ...] = ()

    def __init__(self, descriptor: ConnectionDescriptor):
        self.descriptor = descriptor
        self.state = SessionState.CREATED

    @property
    def is_open(self) -> bool:
        return self.state is SessionState.OPEN

    def open(self) -> Result:
        """Connect and run a probe statement. Never raises."""
        if self.is_open:
            return Result.ok("Session already open")
        try:
            self._connect()
            self._execute(PROBE_QUERY, None)
        except Exception as e:
            self.state = SessionState.ERROR
            self._release_quietly()
            error = SessionConnectionError(
                f"Connection failed: {e}",
                host=self.descriptor.host,
                port=self.descriptor.port,
            )
            logger.warning(
                "Could not open session to %s: %s", self.descriptor.display_name, e
            )
            return Result.from_error(error)

        self.state = SessionState.OPEN
        logger.info("Connected to %s", self.descriptor.display_name)
        return Result.ok(f"Connected to {self.descriptor.display_name}")

    def close(self) -> None:
        """Release the underlying handle. Idempotent."""
        if self.state is SessionState.CLOSED:
            return
        was_open = self.is_open
        self._release_quietly()
        self.state = SessionState.CLOSED
        if was_open:
            logger.info("Session to %s closed", self.descriptor.display_name)

    def query(self, sql: str, parameters: Optional[Sequence[Any]] = None) -> Result:
        """Run a statement that returns rows.

        Returns:
            Result with ``data`` as a list of rows and ``schema`` as the
            result column names
        """
        try:
            self._require_open()
            columns, records = self._execute(sql, parameters)
        except (SessionConnectionError, *self.driver_errors) as e:
            return self._statement_failure(sql, e)

        rows: List[Row] = [dict(zip(columns, record)) for record in records]
        return Result.ok(data=rows, count=len(rows), schema=list(columns))

    def command(self, sql: str, parameters: Optional[Sequence[Any]] = None) -> Result:
        """Run a statement that returns no rows (DDL, INSERT)."""
        try:
            self._require_open()
            self._execute_command(sql, parameters)
        except (SessionConnectionError, *self.driver_errors) as e:
            return self._statement_failure(sql, e)
        return Result.ok()

    def _require_open(self) -> None:
        if not self.is_open:
            raise SessionConnectionError(
                f"Session to {self.descriptor.display_name} is not open"
            )

    def _statement_failure(self, sql: str, exc: Exception) -> Result:
        if isinstance(exc, SessionConnectionError):
            return Result.from_error(exc)
        kind = self._classify_error(exc)
        error_cls = SchemaAbsentError if kind is ErrorKind.SCHEMA_ABSENT else QueryError
        logger.warning("Statement failed on %s: %s", self.descriptor.display_name, exc)
        return Result.from_error(error_cls(f"Query failed: {exc}", query=sql))

    def _release_quietly(self) -> None:
        try:
            self._disconnect()
        except Exception as e:
            logger.debug("Ignoring error while releasing session: %s", e)

    def __enter__(self) -> "ConnectionSession":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def _classify_error(self, exc: Exception) -> ErrorKind:
        """Map a driver exception to an error kind. Override per driver."""
        return ErrorKind.QUERY

    @abstractmethod
    def _connect(self) -> None:
        """Create the transport handle."""

    @abstractmethod
    def _disconnect(self) -> None:
        """Release the transport handle, if any."""

    @abstractmethod
    def _execute(
        self, sql: str, parameters: Optional[Sequence[Any]]
    ) -> Tuple[List[str], List[Tuple[Any, ...]]]:
        """Run a row-returning statement; return (column names, records)."""

    @abstractmethod
    def _execute_command(self, sql: str, parameters: Optional[Sequence[Any]]) -> None:
        """Run a statement that returns no rows."""
