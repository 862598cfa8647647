"""chflow - move data between ClickHouse and delimited flat files."""

__version__ = "0.1.0"
__package_name__ = "chflow"

from chflow.core.errors import (
    ErrorKind,
    FlatFileIOError,
    FlatFileNotFoundError,
    ImportBatchError,
    QueryError,
    SchemaAbsentError,
    SessionConnectionError,
    TransferError,
    ValidationError,
)
from chflow.core.results import Result

__all__ = [
    "ErrorKind",
    "FlatFileIOError",
    "FlatFileNotFoundError",
    "ImportBatchError",
    "QueryError",
    "Result",
    "SchemaAbsentError",
    "SessionConnectionError",
    "TransferError",
    "ValidationError",
]
