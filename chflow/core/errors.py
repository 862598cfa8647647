"""Error kinds and exceptions for chflow.

Every failure a caller can branch on has an :class:`ErrorKind`. Components
raise the exceptions below internally and convert them into a failed
:class:`~chflow.core.results.Result` at their boundary, so callers never see
them for expected failures.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorKind(str, Enum):
    """Programmatic category of a failed result."""

    CONNECTION = "connection"
    VALIDATION = "validation"
    QUERY = "query"
    IMPORT_BATCH = "import_batch"
    FILE_NOT_FOUND = "file_not_found"
    FILE_IO = "file_io"
    SCHEMA_ABSENT = "schema_absent"
    INTERNAL = "internal"

    @property
    def client_correctable(self) -> bool:
        """Whether the caller can fix the failure by changing its input."""
        return self in (
            ErrorKind.VALIDATION,
            ErrorKind.FILE_NOT_FOUND,
            ErrorKind.SCHEMA_ABSENT,
        )


class TransferError(Exception):
    """Base exception for all chflow errors.

    Carries the error kind plus context that ends up in result diagnostics.
    """

    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        suggested_actions: Optional[List[str]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.context = context or {}
        self.suggested_actions = suggested_actions or []
        self.timestamp = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for serialization."""
        return {
            "error_type": self.__class__.__name__,
            "kind": self.kind.value,
            "message": self.message,
            "context": self.context,
            "suggested_actions": self.suggested_actions,
            "timestamp": self.timestamp.isoformat(),
        }

    def __str__(self) -> str:
        base_message = self.message
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            base_message += f" (Context: {context_str})"
        return base_message


class SessionConnectionError(TransferError):
    """The store could not be reached or rejected the credentials."""

    kind = ErrorKind.CONNECTION

    def __init__(self, message: str, host: Optional[str] = None, port: Any = None):
        context = {}
        if host:
            context["host"] = host
        if port:
            context["port"] = port
        super().__init__(
            message,
            context=context,
            suggested_actions=[
                "Check host, port and the secure flag",
                "Verify the username, password or access token",
            ],
        )


class ValidationError(TransferError):
    """Missing or malformed input, detected before touching the store."""

    kind = ErrorKind.VALIDATION


class CoercionError(ValidationError):
    """A value could not be cast in strict mode."""

    def __init__(self, message: str, row_index: int, field_name: str, value: Any):
        super().__init__(
            message,
            context={"row": row_index, "field": field_name, "value": repr(value)},
        )
        self.row_index = row_index
        self.field_name = field_name
        self.value = value


class QueryError(TransferError):
    """The store rejected a generated or supplied statement."""

    kind = ErrorKind.QUERY

    def __init__(self, message: str, query: Optional[str] = None):
        context = {}
        if query:
            # Truncate long queries for readability
            context["query"] = query[:300] + "..." if len(query) > 300 else query
        super().__init__(message, context=context)


class SchemaAbsentError(QueryError):
    """The referenced table does not exist."""

    kind = ErrorKind.SCHEMA_ABSENT


class ImportBatchError(TransferError):
    """One batch of an import failed after earlier batches were committed."""

    kind = ErrorKind.IMPORT_BATCH

    def __init__(self, message: str, batch_index: int, inserted_count: int):
        super().__init__(
            message,
            context={"batch_index": batch_index, "inserted_count": inserted_count},
            suggested_actions=[
                "Rows from earlier batches are already stored",
                "Re-run with only the rows from the failing batch onwards",
            ],
        )
        self.batch_index = batch_index
        self.inserted_count = inserted_count


class FlatFileNotFoundError(TransferError):
    """The flat file to read does not exist."""

    kind = ErrorKind.FILE_NOT_FOUND

    def __init__(self, path: str):
        super().__init__(f"File not found: {path}", context={"path": path})
        self.path = path


class FlatFileIOError(TransferError):
    """A flat file could not be parsed, serialized or accessed."""

    kind = ErrorKind.FILE_IO

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message, context={"path": path} if path else None)
        self.path = path
