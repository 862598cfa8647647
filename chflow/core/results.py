"""Uniform result envelope returned by every chflow operation.

Expected failures (bad input, unreachable store, missing file, rejected query)
come back as ``Result(success=False, error_kind=...)`` instead of exceptions.
"""

import traceback
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from chflow.core.errors import ErrorKind, TransferError


@dataclass(frozen=True)
class Result:
    """Outcome of a chflow operation.

    Attributes:
        success: Whether the operation completed
        message: Human readable summary
        data: Payload (rows, table names, column descriptors, ...)
        count: Number of rows read, written or inserted
        error_kind: Category of the failure when ``success`` is False
        schema: Field names, for flat file reads and query results
        inserted_count: Rows committed by an import, also on partial failure
        failing_batch_index: 0-based index of the batch that failed an import
        file_path: File written or read
        details: Diagnostics, withheld in production mode
    """

    success: bool
    message: Optional[str] = None
    data: Any = None
    count: Optional[int] = None
    error_kind: Optional[ErrorKind] = None
    schema: Optional[List[str]] = None
    inserted_count: Optional[int] = None
    failing_batch_index: Optional[int] = None
    file_path: Optional[str] = None
    details: Optional[Dict[str, Any]] = None

    @classmethod
    def ok(cls, message: Optional[str] = None, **kwargs) -> "Result":
        """Create a successful result."""
        return cls(success=True, message=message, **kwargs)

    @classmethod
    def fail(cls, kind: ErrorKind, message: str, **kwargs) -> "Result":
        """Create a failed result of the given kind."""
        return cls(success=False, message=message, error_kind=kind, **kwargs)

    @classmethod
    def from_error(
        cls, error: TransferError, production: bool = False, **kwargs
    ) -> "Result":
        """Convert a chflow exception into a failed result."""
        details = None
        if not production:
            details = error.to_dict()
        return cls.fail(error.kind, error.message, details=details, **kwargs)

    @classmethod
    def from_exception(
        cls,
        exc: BaseException,
        kind: ErrorKind = ErrorKind.INTERNAL,
        message: Optional[str] = None,
        production: bool = False,
    ) -> "Result":
        """Convert an unexpected exception into a failed result.

        Outside production mode the exception type and traceback are kept in
        ``details``.
        """
        if isinstance(exc, TransferError):
            return cls.from_error(exc, production=production)

        details = None
        if not production:
            details = {
                "error_type": type(exc).__name__,
                "error": str(exc),
                "traceback": traceback.format_exception(
                    type(exc), exc, exc.__traceback__
                ),
            }
        return cls.fail(kind, message or f"Internal error: {exc}", details=details)

    @property
    def client_correctable(self) -> bool:
        """Whether the failure is the caller's to fix (maps to a 4xx upstream)."""
        return bool(self.error_kind and self.error_kind.client_correctable)

    def to_dict(self) -> Dict[str, Any]:
        """Convert the result to a JSON-friendly dictionary.

        Unset optional fields are omitted.
        """
        payload: Dict[str, Any] = {"success": self.success}
        if self.message is not None:
            payload["message"] = self.message
        if self.data is not None:
            payload["data"] = self.data
        if self.count is not None:
            payload["count"] = self.count
        if self.error_kind is not None:
            payload["error_kind"] = self.error_kind.value
        if self.schema is not None:
            payload["schema"] = self.schema
        if self.inserted_count is not None:
            payload["inserted_count"] = self.inserted_count
        if self.failing_batch_index is not None:
            payload["failing_batch_index"] = self.failing_batch_index
        if self.file_path is not None:
            payload["file_path"] = self.file_path
        if self.details is not None:
            payload["details"] = self.details
        return payload
