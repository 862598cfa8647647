"""Transfer engine: moves rows between the analytical store and flat files.

A job runs synchronously in the calling thread, on exactly one session, in
the state order::

    IDLE -> CONNECTING -> (READING | QUERYING) -> TRANSFORMING -> WRITING -> DONE
                                                                 \\-> FAILED

Every transition is recorded on the job's :class:`JobHandle` and forwarded to
the optional progress callback.
"""

import dataclasses
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, Iterator, List, Optional, Sequence

from chflow.config import Settings, resolve_settings
from chflow.connectors import create_session
from chflow.connectors.base.session import ConnectionSession
from chflow.connectors.csv import FlatFileCodec
from chflow.core.errors import (
    ErrorKind,
    ImportBatchError,
    SessionConnectionError,
    TransferError,
    ValidationError,
)
from chflow.core.models import ConnectionDescriptor, Row, TransferDirection, TransferJob
from chflow.core.query_builder import (
    build_batch_insert,
    build_create_table,
    build_join_select,
    build_select,
)
from chflow.core.results import Result
from chflow.core.schema_inspector import SchemaInspector
from chflow.core.transform import TransformPlan
from chflow.logging import get_logger

logger = get_logger(__name__)


class JobState(Enum):
    """Lifecycle state of a transfer job."""

    IDLE = "idle"
    CONNECTING = "connecting"
    READING = "reading"
    QUERYING = "querying"
    TRANSFORMING = "transforming"
    WRITING = "writing"
    DONE = "done"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.DONE, JobState.FAILED)


ALLOWED_TRANSITIONS: Dict[JobState, Sequence[JobState]] = {
    JobState.IDLE: (JobState.CONNECTING,),
    JobState.CONNECTING: (JobState.READING, JobState.QUERYING),
    JobState.READING: (JobState.TRANSFORMING,),
    JobState.QUERYING: (JobState.TRANSFORMING,),
    JobState.TRANSFORMING: (JobState.WRITING,),
    JobState.WRITING: (JobState.DONE,),
}


@dataclasses.dataclass(frozen=True)
class JobProgress:
    """One progress event of a job."""

    job_id: str
    state: JobState
    message: Optional[str] = None
    batch_index: Optional[int] = None
    inserted_count: Optional[int] = None
    timestamp: datetime = dataclasses.field(default_factory=lambda: datetime.now(timezone.utc))


ProgressCallback = Callable[[JobProgress], None]


class JobHandle:
    """Tracks the state of one running job and reports its progress."""

    def __init__(self, progress: Optional[ProgressCallback] = None):
        self.job_id = uuid.uuid4().hex
        self.state = JobState.IDLE
        self.history: List[JobProgress] = []
        self._progress = progress

    def transition(self, state: JobState, message: Optional[str] = None) -> None:
        """Move to ``state``. FAILED is reachable from any non-terminal state.

        Raises:
            RuntimeError: On a transition the lifecycle does not allow
        """
        allowed = ALLOWED_TRANSITIONS.get(self.state, ())
        if state is not JobState.FAILED or self.state.is_terminal:
            if state not in allowed:
                raise RuntimeError(
                    f"Job {self.job_id}: invalid transition {self.state.value} -> {state.value}"
                )
        self.state = state
        logger.debug("Job %s: %s", self.job_id, state.value)
        self._emit(JobProgress(self.job_id, state, message=message))

    def report_batch(self, batch_index: int, inserted_count: int) -> None:
        """Report a committed import batch."""
        self._emit(
            JobProgress(
                self.job_id,
                self.state,
                message=f"Batch {batch_index} committed",
                batch_index=batch_index,
                inserted_count=inserted_count,
            )
        )

    @property
    def states(self) -> List[JobState]:
        """States entered so far, without repeated batch events."""
        return [event.state for event in self.history if event.batch_index is None]

    def _emit(self, event: JobProgress) -> None:
        self.history.append(event)
        if self._progress is not None:
            self._progress(event)


class TransferEngine:
    """Runs export, join export and import jobs."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        session_factory: Callable[[ConnectionDescriptor], ConnectionSession] = create_session,
        codec: Optional[FlatFileCodec] = None,
        inspector: Optional[SchemaInspector] = None,
    ):
        self.settings = resolve_settings(settings)
        self.session_factory = session_factory
        self.codec = codec or FlatFileCodec()
        self.inspector = inspector or SchemaInspector()

    @contextmanager
    def open_session(self, descriptor: ConnectionDescriptor) -> Iterator[ConnectionSession]:
        """Open one session and close it on every exit path.

        Raises:
            SessionConnectionError: If the session cannot be opened
        """
        session = self.session_factory(descriptor)
        try:
            opened = session.open()
            if not opened.success:
                raise SessionConnectionError(
                    opened.message or "Connection failed",
                    host=descriptor.host,
                    port=descriptor.port,
                )
            yield session
        finally:
            session.close()

    # ------------------------------------------------------------------
    # Directions: single steps on an open session
    # ------------------------------------------------------------------

    def export_direction(
        self,
        session: ConnectionSession,
        table: str,
        columns: Sequence[str],
        predicate: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> Result:
        """Select rows of one table.

        Returns:
            Result with ``data`` as rows and ``count``
        """
        try:
            statement = build_select(table, columns, predicate, limit, session.dialect)
        except ValidationError as e:
            return Result.from_error(e)
        return self._run_select(session, statement.sql)

    def export_join(
        self,
        session: ConnectionSession,
        tables: Sequence[str],
        predicates: Sequence[str],
        columns: Sequence[str],
        predicate: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> Result:
        """Select rows of ``tables`` joined in order."""
        try:
            statement = build_join_select(
                tables, predicates, columns, predicate, limit, session.dialect
            )
        except ValidationError as e:
            return Result.from_error(e)
        return self._run_select(session, statement.sql)

    def _run_select(self, session: ConnectionSession, sql: str) -> Result:
        result = session.query(sql)
        if not result.success:
            return result
        logger.info("Query returned %d rows", result.count)
        return Result.ok(
            f"Fetched {result.count} rows",
            data=result.data,
            count=result.count,
            schema=result.schema,
        )

    def import_direction(
        self,
        session: ConnectionSession,
        table: str,
        columns: Sequence[str],
        rows: Sequence[Row],
        batch_size: Optional[int] = None,
        on_batch: Optional[Callable[[int, int], None]] = None,
    ) -> Result:
        """Insert rows in sequential batches, creating the table if needed.

        The first failing batch stops the import. Batches before it stay
        committed and are reported in ``inserted_count``; the failing batch
        index is 0-based. Later batches are never attempted.

        Returns:
            Result with ``count`` and ``inserted_count``, plus
            ``failing_batch_index`` on a partial failure. ``data`` holds
            ``{"created_table": bool}``.
        """
        batch_size = self.settings.batch_size if batch_size is None else batch_size
        if isinstance(batch_size, bool) or not isinstance(batch_size, int) or batch_size <= 0:
            return Result.from_error(
                ValidationError(f"Batch size must be a positive integer, got {batch_size!r}")
            )

        created_table = False
        described = self.inspector.describe_table(session, table)
        if not described.success:
            if described.error_kind is ErrorKind.VALIDATION:
                return described
            logger.info(
                "Table %s not found (%s); creating it with string columns",
                table,
                described.message,
            )
            try:
                statement = build_create_table(table, columns, session.dialect)
            except ValidationError as e:
                return Result.from_error(e)
            created = session.command(statement.sql)
            if not created.success:
                return created
            created_table = True

        inserted = 0
        for batch_index, start in enumerate(range(0, len(rows), batch_size)):
            batch = rows[start : start + batch_size]
            try:
                statement = build_batch_insert(table, columns, batch, session.dialect)
            except ValidationError as e:
                return Result.from_error(e)

            result = session.command(statement.sql, statement.parameters)
            if not result.success:
                error = ImportBatchError(
                    f"Batch {batch_index} failed after {inserted} rows were inserted: "
                    f"{result.message}",
                    batch_index=batch_index,
                    inserted_count=inserted,
                )
                logger.error("Import into %s stopped: %s", table, error.message)
                return Result.from_error(
                    error,
                    count=inserted,
                    inserted_count=inserted,
                    failing_batch_index=batch_index,
                    data={"created_table": created_table},
                )

            inserted += len(batch)
            logger.debug("Batch %d committed, %d rows inserted so far", batch_index, inserted)
            if on_batch is not None:
                on_batch(batch_index, inserted)

        logger.info("Imported %d rows into %s", inserted, table)
        return Result.ok(
            f"Imported {inserted} rows into {table}",
            count=inserted,
            inserted_count=inserted,
            data={"created_table": created_table},
        )

    # ------------------------------------------------------------------
    # Job runners
    # ------------------------------------------------------------------

    def run(
        self,
        job: TransferJob,
        progress: Optional[ProgressCallback] = None,
        handle: Optional[JobHandle] = None,
    ) -> Result:
        """Run a job of any direction. Never raises."""
        if job.direction is TransferDirection.IMPORT:
            return self.run_import(job, progress, handle)
        if job.direction is TransferDirection.JOIN_EXPORT:
            return self.run_join_export(job, progress, handle)
        return self.run_export(job, progress, handle)

    def run_export(
        self,
        job: TransferJob,
        progress: Optional[ProgressCallback] = None,
        handle: Optional[JobHandle] = None,
    ) -> Result:
        """Export one table to a flat file."""
        return self._run_job(job, TransferDirection.EXPORT, self._export, progress, handle)

    def run_join_export(
        self,
        job: TransferJob,
        progress: Optional[ProgressCallback] = None,
        handle: Optional[JobHandle] = None,
    ) -> Result:
        """Export a join of several tables to a flat file."""
        return self._run_job(
            job, TransferDirection.JOIN_EXPORT, self._export, progress, handle
        )

    def run_import(
        self,
        job: TransferJob,
        progress: Optional[ProgressCallback] = None,
        handle: Optional[JobHandle] = None,
    ) -> Result:
        """Import a flat file into a table."""
        return self._run_job(job, TransferDirection.IMPORT, self._import, progress, handle)

    def _run_job(
        self,
        job: TransferJob,
        direction: TransferDirection,
        runner: Callable[[TransferJob, JobHandle], Result],
        progress: Optional[ProgressCallback],
        handle: Optional[JobHandle],
    ) -> Result:
        handle = handle or JobHandle(progress)
        if handle.state is not JobState.IDLE:
            return Result.from_error(
                ValidationError(
                    f"Job handle {handle.job_id} is already {handle.state.value}; "
                    "start each run with a new handle"
                ),
                production=self.settings.production,
            )
        logger.info(
            "Job %s: %s %s", handle.job_id, direction.value, job.table or job.file_path
        )
        try:
            if job.direction is not direction:
                raise ValidationError(
                    f"Expected a {direction.value} job, got {job.direction.value}"
                )
            job.validate()
            if job.transform is not None:
                job.transform.validate()
            result = runner(job, handle)
        except TransferError as e:
            result = Result.from_error(e)
        except Exception as e:
            logger.exception("Job %s failed with an internal error", handle.job_id)
            result = Result.from_exception(e, ErrorKind.INTERNAL)

        if self.settings.production and result.details is not None:
            result = dataclasses.replace(result, details=None)

        if result.success:
            handle.transition(JobState.DONE, result.message)
            logger.info("Job %s done: %s", handle.job_id, result.message)
        else:
            handle.transition(JobState.FAILED, result.message)
            logger.warning("Job %s failed: %s", handle.job_id, result.message)
        return result

    def _export(self, job: TransferJob, handle: JobHandle) -> Result:
        plan = job.transform or TransformPlan()

        handle.transition(JobState.CONNECTING)
        with self.open_session(job.connection) as session:
            handle.transition(JobState.QUERYING)
            if job.direction is TransferDirection.JOIN_EXPORT:
                fetched = self.export_join(
                    session,
                    job.join.tables,
                    job.join.predicates,
                    job.columns,
                    job.predicate,
                )
            else:
                checked = self._check_table_columns(session, job.table, job.columns)
                if not checked.success:
                    return checked
                fetched = self.export_direction(
                    session, job.table, job.columns, job.predicate
                )
            if not fetched.success:
                return fetched

        handle.transition(JobState.TRANSFORMING)
        rows = plan.apply(fetched.data)
        headers = plan.output_fields(fetched.schema or job.columns)

        handle.transition(JobState.WRITING)
        written = self.codec.write(rows, job.file_path, delimiter=job.delimiter, headers=headers)
        if not written.success:
            return written

        job.outcome.row_count = len(rows)
        return Result.ok(
            f"Exported {len(rows)} rows to {job.file_path}",
            count=len(rows),
            file_path=job.file_path,
            schema=headers,
        )

    def _check_table_columns(
        self, session: ConnectionSession, table: str, columns: Sequence[str]
    ) -> Result:
        """Reject selected columns that the table does not have."""
        described = self.inspector.describe_table(session, table)
        if not described.success:
            return described
        known = {column.name for column in described.data}
        unknown = [column for column in columns if column != "*" and column not in known]
        if unknown:
            return Result.from_error(
                ValidationError(
                    f"Columns not found in table '{table}': {', '.join(unknown)}"
                )
            )
        return described

    def _import(self, job: TransferJob, handle: JobHandle) -> Result:
        plan = job.transform or TransformPlan()

        handle.transition(JobState.CONNECTING)
        with self.open_session(job.connection) as session:
            handle.transition(JobState.READING)
            read = self.codec.read(job.file_path, delimiter=job.delimiter, has_header=job.has_header)
            if not read.success:
                return read

            missing = [column for column in job.columns if column not in read.schema]
            if missing:
                raise ValidationError(
                    f"Columns not found in file header: {', '.join(missing)}"
                )

            handle.transition(JobState.TRANSFORMING)
            selected = [{column: row.get(column) for column in job.columns} for row in read.data]
            rows = plan.apply(selected)
            columns = plan.output_fields(job.columns)

            handle.transition(JobState.WRITING)
            result = self.import_direction(
                session,
                job.table,
                columns,
                rows,
                batch_size=job.batch_size,
                on_batch=handle.report_batch,
            )

        job.outcome.row_count = len(rows)
        job.outcome.inserted_count = result.inserted_count or 0
        job.outcome.failing_batch_index = result.failing_batch_index
        if isinstance(result.data, dict):
            job.outcome.created_table = bool(result.data.get("created_table"))
        return result
