"""Store sessions and flat file codec for chflow.

This package provides:
- ClickHouse sessions over HTTP (clickhouse_connect)
- Embedded DuckDB sessions (duckdb)
- Delimited flat file reading and writing (csv)
"""

from typing import Dict, Type

from chflow.connectors.base.session import ConnectionSession
from chflow.connectors.clickhouse import ClickHouseSession
from chflow.connectors.duckdb import DuckDBSession
from chflow.core.errors import ValidationError
from chflow.core.models import ConnectionDescriptor

SESSION_TYPES: Dict[str, Type[ConnectionSession]] = {
    "clickhouse": ClickHouseSession,
    "duckdb": DuckDBSession,
}


def create_session(descriptor: ConnectionDescriptor) -> ConnectionSession:
    """Create an unopened session for the descriptor's driver.

    Raises:
        ValidationError: If the driver is unknown
    """
    try:
        session_cls = SESSION_TYPES[descriptor.driver]
    except KeyError:
        raise ValidationError(
            f"Unsupported driver '{descriptor.driver}'. "
            f"Expected one of: {', '.join(sorted(SESSION_TYPES))}"
        )
    return session_cls(descriptor)


__all__ = [
    "ConnectionSession",
    "ClickHouseSession",
    "DuckDBSession",
    "SESSION_TYPES",
    "create_session",
]
