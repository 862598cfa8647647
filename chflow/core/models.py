"""Data model shared by the chflow components."""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum, auto
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from chflow.config import DEFAULT_BATCH_SIZE, DEFAULT_CONNECT_TIMEOUT
from chflow.core.errors import ValidationError

if TYPE_CHECKING:
    from chflow.core.transform import TransformPlan

# A row value. The union is closed: scalar_kind() names every member.
Scalar = Union[None, bool, int, float, str, date, datetime]
Row = Dict[str, Scalar]

SUPPORTED_DRIVERS = ("clickhouse", "duckdb")


class ScalarKind(Enum):
    """Tag of a :data:`Scalar` value."""

    NULL = auto()
    BOOLEAN = auto()
    INTEGER = auto()
    FLOAT = auto()
    STRING = auto()
    DATE = auto()
    DATETIME = auto()


def scalar_kind(value: Any) -> ScalarKind:
    """Return the tag of a row value.

    Raises:
        TypeError: If the value is not a supported scalar
    """
    if value is None:
        return ScalarKind.NULL
    # bool before int, datetime before date: both are subclasses
    if isinstance(value, bool):
        return ScalarKind.BOOLEAN
    if isinstance(value, int):
        return ScalarKind.INTEGER
    if isinstance(value, float):
        return ScalarKind.FLOAT
    if isinstance(value, str):
        return ScalarKind.STRING
    if isinstance(value, datetime):
        return ScalarKind.DATETIME
    if isinstance(value, date):
        return ScalarKind.DATE
    raise TypeError(f"Unsupported row value type: {type(value).__name__}")


def _parse_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return bool(value)


@dataclass(frozen=True)
class ConnectionDescriptor:
    """How to reach the analytical store for one job."""

    host: Optional[str] = None
    port: Optional[int] = None
    database: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = field(default=None, repr=False)
    secure: bool = False
    auth_token: Optional[str] = field(default=None, repr=False)
    driver: str = "clickhouse"
    connect_timeout: int = DEFAULT_CONNECT_TIMEOUT

    @classmethod
    def from_dict(cls, params: Mapping[str, Any]) -> "ConnectionDescriptor":
        """Build a descriptor from request-style fields.

        ``jwt`` and ``token`` are accepted as aliases of ``auth_token``, and
        ``secure`` may be a bool or the string "true".
        """
        port = params.get("port")
        if port not in (None, ""):
            try:
                port = int(port)
            except (TypeError, ValueError):
                raise ValidationError(f"Port must be an integer, got {port!r}")
        else:
            port = None

        token = params.get("auth_token") or params.get("jwt") or params.get("token")
        return cls(
            host=params.get("host") or None,
            port=port,
            database=params.get("database") or None,
            username=params.get("username") or params.get("user") or None,
            password=params.get("password") or None,
            secure=_parse_bool(params.get("secure", False)),
            auth_token=token or None,
            driver=(params.get("driver") or "clickhouse").lower(),
            connect_timeout=int(
                params.get("connect_timeout") or DEFAULT_CONNECT_TIMEOUT
            ),
        )

    def missing_fields(self) -> List[str]:
        """Names of required fields that are not set for this driver."""
        if self.driver == "duckdb":
            required = {"database": self.database}
        else:
            required = {
                "host": self.host,
                "port": self.port,
                "database": self.database,
                "auth_token": self.auth_token,
            }
        return [name for name, value in required.items() if value in (None, "")]

    def validate(self) -> None:
        """Raise ValidationError unless the descriptor can open a session."""
        if self.driver not in SUPPORTED_DRIVERS:
            raise ValidationError(
                f"Unsupported driver '{self.driver}'. "
                f"Expected one of: {', '.join(SUPPORTED_DRIVERS)}"
            )
        missing = self.missing_fields()
        if missing:
            raise ValidationError(
                f"Missing required connection fields: {', '.join(missing)}"
            )

    @property
    def display_name(self) -> str:
        """Connection target without credentials, for logs and messages."""
        if self.driver == "duckdb":
            return f"duckdb:{self.database}"
        scheme = "https" if self.secure else "http"
        return f"{scheme}://{self.host}:{self.port}/{self.database}"


@dataclass(frozen=True)
class ColumnDescriptor:
    """A column as reported by the store."""

    name: str
    type_name: str

    def to_dict(self) -> Dict[str, str]:
        return {"name": self.name, "type": self.type_name}


@dataclass(frozen=True)
class TableDescriptor:
    """A table and, when described, its ordered columns."""

    name: str
    columns: Tuple[ColumnDescriptor, ...] = ()

    @property
    def column_names(self) -> List[str]:
        return [column.name for column in self.columns]


@dataclass(frozen=True)
class JoinSpec:
    """Tables to join in order, and the predicate joining each one.

    ``predicates[i]`` joins ``tables[i + 1]`` onto the result accumulated so
    far, so there is always one predicate fewer than tables.
    """

    tables: Tuple[str, ...]
    predicates: Tuple[str, ...] = ()

    @classmethod
    def of(cls, tables: Sequence[str], predicates: Sequence[str] = ()) -> "JoinSpec":
        return cls(tuple(tables), tuple(predicates))

    def validate(self) -> None:
        if not self.tables:
            raise ValidationError("A join needs at least one table")
        if len(self.predicates) != len(self.tables) - 1:
            raise ValidationError(
                f"A join of {len(self.tables)} tables needs "
                f"{len(self.tables) - 1} join predicates, got {len(self.predicates)}"
            )
        for index, predicate in enumerate(self.predicates):
            if not predicate or not str(predicate).strip():
                raise ValidationError(
                    f"Join predicate for table '{self.tables[index + 1]}' is empty"
                )


class TransferDirection(Enum):
    """Which way a transfer job moves data."""

    EXPORT = "export"
    IMPORT = "import"
    JOIN_EXPORT = "join-export"


@dataclass
class JobOutcome:
    """Mutable outcome of a job, written only by the transfer engine."""

    inserted_count: int = 0
    failing_batch_index: Optional[int] = None
    created_table: bool = False
    row_count: int = 0


@dataclass
class TransferJob:
    """Everything the transfer engine needs to run one job."""

    direction: TransferDirection
    connection: ConnectionDescriptor
    file_path: str
    columns: List[str] = field(default_factory=list)
    table: Optional[str] = None
    join: Optional[JoinSpec] = None
    predicate: Optional[str] = None
    delimiter: str = ","
    has_header: bool = True
    batch_size: int = DEFAULT_BATCH_SIZE
    transform: Optional["TransformPlan"] = None
    outcome: JobOutcome = field(default_factory=JobOutcome)

    def validate(self) -> None:
        """Check the job's own fields; raises ValidationError."""
        self.connection.validate()

        if not self.file_path:
            raise ValidationError("A file path is required")
        if not self.columns:
            raise ValidationError("At least one column must be selected")
        if self.batch_size is None or self.batch_size <= 0:
            raise ValidationError(
                f"Batch size must be a positive integer, got {self.batch_size!r}"
            )

        if self.direction is TransferDirection.JOIN_EXPORT:
            if self.join is None:
                raise ValidationError("A join export needs a join specification")
            self.join.validate()
        elif not self.table:
            raise ValidationError("A table name is required")
