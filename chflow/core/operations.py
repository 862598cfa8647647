"""Operations exposed to callers of chflow.

Each operation takes a mapping of request fields, returns a
:class:`~chflow.core.results.Result` and never raises for expected failures.
Required fields are checked before any store interaction; relative file
names resolve against the configured data directory.
"""

import dataclasses
import functools
from typing import Any, Callable, List, Mapping, Optional

from chflow.config import Settings, resolve_settings
from chflow.core.errors import ErrorKind, TransferError, ValidationError
from chflow.core.models import (
    ConnectionDescriptor,
    JoinSpec,
    TransferDirection,
    TransferJob,
)
from chflow.core.results import Result
from chflow.core.transfer import TransferEngine
from chflow.core.transform import TransformPlan
from chflow.logging import get_logger

logger = get_logger(__name__)

Params = Mapping[str, Any]


def operation(func: Callable[..., Result]) -> Callable[..., Result]:
    """Convert anything an operation raises into a failed result."""

    @functools.wraps(func)
    def wrapper(
        params: Optional[Params] = None,
        settings: Optional[Settings] = None,
        engine: Optional[TransferEngine] = None,
    ) -> Result:
        settings = resolve_settings(settings)
        engine = engine or TransferEngine(settings)
        try:
            result = func(dict(params or {}), settings, engine)
        except TransferError as e:
            return Result.from_error(e, production=settings.production)
        except Exception as e:
            logger.exception("Operation %s failed with an internal error", func.__name__)
            return Result.from_exception(e, ErrorKind.INTERNAL, production=settings.production)

        if settings.production and result.details is not None:
            result = dataclasses.replace(result, details=None)
        return result

    return wrapper


def _require(params: Params, *names: str) -> None:
    missing = [name for name in names if params.get(name) in (None, "", [], ())]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")


def _first(params: Params, *names: str) -> Any:
    """Value of the first of ``names`` that is set."""
    for name in names:
        if params.get(name) not in (None, ""):
            return params[name]
    return None


def _descriptor(params: Params, settings: Settings) -> ConnectionDescriptor:
    fields = dict(params)
    fields.setdefault("connect_timeout", settings.connect_timeout)
    descriptor = ConnectionDescriptor.from_dict(fields)
    descriptor.validate()
    return descriptor


def _columns(value: Any) -> List[str]:
    """Accept a list of names or a comma-separated string."""
    if value is None:
        return []
    if isinstance(value, str):
        return [name.strip() for name in value.split(",") if name.strip()]
    return [str(name) for name in value]


def _flag(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return bool(value)


def _positive_int(value: Any, name: str, default: int) -> int:
    if value in (None, ""):
        return default
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be an integer, got {value!r}")
    if number < 0:
        raise ValidationError(f"{name} must not be negative, got {number}")
    return number


def _data_path(settings: Settings, file_name: str) -> str:
    try:
        return settings.resolve_data_path(file_name)
    except ValueError as e:
        raise ValidationError(str(e))


def _transform(params: Params) -> Optional[TransformPlan]:
    spec = params.get("transforms")
    if not spec:
        return None
    return TransformPlan.from_dict(spec)


@operation
def test_connection(params: Params, settings: Settings, engine: TransferEngine) -> Result:
    """Open a session, run the probe statement and close it."""
    descriptor = _descriptor(params, settings)
    with engine.open_session(descriptor):
        pass
    return Result.ok(f"Successfully connected to {descriptor.display_name}")


@operation
def list_tables(params: Params, settings: Settings, engine: TransferEngine) -> Result:
    """List table names. ``data`` is a list of strings."""
    descriptor = _descriptor(params, settings)
    with engine.open_session(descriptor) as session:
        result = engine.inspector.list_tables(session)
    if not result.success:
        return result
    names = [table.name for table in result.data]
    return Result.ok(result.message, data=names, count=len(names))


@operation
def describe_table(params: Params, settings: Settings, engine: TransferEngine) -> Result:
    """Describe a table. ``data`` is ``[{"name": ..., "type": ...}]`` in table order."""
    table = _first(params, "table", "table_name")
    _require({"table": table}, "table")
    descriptor = _descriptor(params, settings)
    with engine.open_session(descriptor) as session:
        result = engine.inspector.describe_table(session, table)
    if not result.success:
        return result
    return Result.ok(
        result.message,
        data=[column.to_dict() for column in result.data],
        count=result.count,
        schema=result.schema,
    )


@operation
def execute_query(params: Params, settings: Settings, engine: TransferEngine) -> Result:
    """Run caller-supplied SQL and return its rows."""
    _require(params, "query")
    descriptor = _descriptor(params, settings)
    with engine.open_session(descriptor) as session:
        result = session.query(params["query"])
    if not result.success:
        return result
    return Result.ok(
        "Query executed successfully",
        data=result.data,
        count=result.count,
        schema=result.schema,
    )


@operation
def preview_table(params: Params, settings: Settings, engine: TransferEngine) -> Result:
    """First rows of a table; all columns unless ``columns`` is given."""
    table = _first(params, "table", "table_name")
    _require({"table": table}, "table")
    limit = _positive_int(params.get("limit"), "limit", settings.preview_limit)
    columns = _columns(params.get("columns"))
    descriptor = _descriptor(params, settings)
    with engine.open_session(descriptor) as session:
        return engine.export_direction(session, table, columns, limit=limit)


@operation
def export_table(params: Params, settings: Settings, engine: TransferEngine) -> Result:
    """Export columns of one table to a flat file."""
    table = _first(params, "table", "table_name")
    file_name = _first(params, "file_name", "output_file")
    _require(
        {"table": table, "columns": params.get("columns"), "file_name": file_name},
        "table",
        "columns",
        "file_name",
    )
    job = TransferJob(
        direction=TransferDirection.EXPORT,
        connection=_descriptor(params, settings),
        file_path=_data_path(settings, file_name),
        columns=_columns(params["columns"]),
        table=table,
        predicate=_first(params, "where", "predicate"),
        delimiter=params.get("delimiter") or ",",
        transform=_transform(params),
    )
    return engine.run_export(job)


@operation
def export_join(params: Params, settings: Settings, engine: TransferEngine) -> Result:
    """Export columns of several joined tables to a flat file."""
    predicates = _first(params, "join_conditions", "predicates")
    file_name = _first(params, "file_name", "output_file")
    _require(
        {
            "tables": params.get("tables"),
            "join_conditions": predicates,
            "columns": params.get("columns"),
            "file_name": file_name,
        },
        "tables",
        "join_conditions",
        "columns",
        "file_name",
    )
    job = TransferJob(
        direction=TransferDirection.JOIN_EXPORT,
        connection=_descriptor(params, settings),
        file_path=_data_path(settings, file_name),
        columns=_columns(params["columns"]),
        join=JoinSpec.of(
            _columns(params["tables"]),
            [predicates] if isinstance(predicates, str) else list(predicates),
        ),
        predicate=_first(params, "where", "predicate"),
        delimiter=params.get("delimiter") or ",",
        transform=_transform(params),
    )
    return engine.run_join_export(job)


@operation
def import_file(params: Params, settings: Settings, engine: TransferEngine) -> Result:
    """Import a flat file into a table, creating the table when missing."""
    table = _first(params, "table", "table_name")
    _require(
        {"table": table, "columns": params.get("columns"), "file_path": params.get("file_path")},
        "table",
        "columns",
        "file_path",
    )
    job = TransferJob(
        direction=TransferDirection.IMPORT,
        connection=_descriptor(params, settings),
        file_path=_data_path(settings, params["file_path"]),
        columns=_columns(params["columns"]),
        table=table,
        delimiter=params.get("delimiter") or ",",
        has_header=_flag(params.get("has_header"), True),
        batch_size=_positive_int(params.get("batch_size"), "batch_size", settings.batch_size),
        transform=_transform(params),
    )
    return engine.run_import(job)


@operation
def preview_file(params: Params, settings: Settings, engine: TransferEngine) -> Result:
    """First rows of a flat file plus its field names."""
    _require(params, "file_path")
    limit = _positive_int(params.get("limit"), "limit", settings.preview_limit)
    return engine.codec.preview(
        _data_path(settings, params["file_path"]),
        delimiter=params.get("delimiter") or ",",
        has_header=_flag(params.get("has_header"), True),
        limit=limit,
    )
