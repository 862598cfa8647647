from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence, Tuple

import clickhouse_connect
from clickhouse_connect.driver.exceptions import ClickHouseError

from chflow.connectors.base.session import ConnectionSession
from chflow.core.errors import ErrorKind
from chflow.logging import get_logger

logger = get_logger(__name__)

# Server error codes meaning the referenced table or database is missing
MISSING_OBJECT_CODES = ("Code: 60.", "Code: 81.", "UNKNOWN_TABLE", "UNKNOWN_DATABASE")


class ClickHouseSession(ConnectionSession):
    """
    Session against ClickHouse over its HTTP interface using clickhouse-connect.

    Values are bound client side, so statements use ``%s`` placeholders.
    """

    dialect = "clickhouse"
    driver_errors = (ClickHouseError,)

    def __init__(self, descriptor):
        super().__init__(descriptor)
        self._client = None

    def _get_client_args(self) -> Dict[str, Any]:
        """Build clickhouse-connect client arguments from the descriptor."""
        descriptor = self.descriptor
        client_args: Dict[str, Any] = {
            "host": descriptor.host,
            "port": descriptor.port,
            "database": descriptor.database,
            "secure": descriptor.secure,
            "connect_timeout": descriptor.connect_timeout,
        }

        # A bare token authenticates as an access token; otherwise the
        # username/password pair is used
        if descriptor.auth_token and not descriptor.password:
            client_args["access_token"] = descriptor.auth_token
        else:
            client_args["username"] = descriptor.username or "default"
            client_args["password"] = descriptor.password or ""

        return client_args

    def _connect(self) -> None:
        client_args = self._get_client_args()
        logger.debug(
            "Creating ClickHouse client for %s (secure=%s)",
            self.descriptor.display_name,
            self.descriptor.secure,
        )
        self._client = clickhouse_connect.get_client(**client_args)

    def _disconnect(self) -> None:
        if self._client is not None:
            client, self._client = self._client, None
            client.close()

    def _execute(
        self, sql: str, parameters: Optional[Sequence[Any]]
    ) -> Tuple[List[str], List[Tuple[Any, ...]]]:
        logger.debug("ClickHouse query: %s", sql)
        result = self._client.query(sql, parameters=tuple(parameters) if parameters else None)
        return list(result.column_names), [tuple(row) for row in result.result_rows]

    def _execute_command(self, sql: str, parameters: Optional[Sequence[Any]]) -> None:
        logger.debug(
            "ClickHouse command: %s (%d parameters)", sql[:200], len(parameters or ())
        )
        self._client.command(sql, parameters=tuple(parameters) if parameters else None)

    def _classify_error(self, exc: Exception) -> ErrorKind:
        message = str(exc)
        if any(marker in message for marker in MISSING_OBJECT_CODES):
            return ErrorKind.SCHEMA_ABSENT
        return ErrorKind.QUERY
