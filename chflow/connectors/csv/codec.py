import math
import os
import uuid
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Sequence

import pandas as pd

from chflow.config import DEFAULT_PREVIEW_LIMIT
from chflow.core.errors import (
    FlatFileIOError,
    FlatFileNotFoundError,
    TransferError,
    ValidationError,
)
from chflow.core.models import Row
from chflow.core.results import Result
from chflow.logging import get_logger

logger = get_logger(__name__)

LARGE_FILE_THRESHOLD_MB = 50  # Switch to PyArrow for files larger than this

# Spellings of the TAB delimiter accepted from callers
TAB_ALIASES = ("\t", "\\t", "tab", "TAB")


def normalize_delimiter(delimiter: Optional[str]) -> str:
    """Return a single-character delimiter.

    ``None`` or an empty value means comma; ``tab`` or a literal ``\\t`` means TAB.

    Raises:
        ValidationError: If the delimiter is longer than one character
    """
    if delimiter is None or delimiter == "":
        return ","
    if delimiter in TAB_ALIASES:
        return "\t"
    if len(delimiter) != 1:
        raise ValidationError(
            f"Delimiter must be a single character or 'tab', got {delimiter!r}"
        )
    return delimiter


def render_value(value: Any) -> str:
    """Render a row value as flat file text."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and math.isnan(value):
        return ""
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


class FlatFileCodec:
    """
    Reads and writes delimited text files as lists of rows.

    Both directions work on the whole file: reads materialize every row in
    memory and writes serialize every row before the file is swapped into
    place. Values are read back as strings; empty cells stay empty strings.
    """

    def __init__(self, encoding: str = "utf-8", engine: str = "auto"):
        self.encoding = encoding
        self.engine = engine  # 'pandas', 'pyarrow', or 'auto'

    def _should_use_pyarrow(self, file_path: str) -> bool:
        """Pick the PyArrow parser for large files unless told otherwise."""
        if self.engine == "pandas":
            return False
        elif self.engine == "pyarrow":
            return True
        try:
            file_size_mb = os.path.getsize(file_path) / (1024 * 1024)
            return file_size_mb >= LARGE_FILE_THRESHOLD_MB
        except OSError:
            return False

    def _read_frame(self, path: str, delimiter: str, has_header: bool) -> pd.DataFrame:
        read_options: Dict[str, Any] = {
            "sep": delimiter,
            "header": 0 if has_header else None,
            "dtype": str,
            "keep_default_na": False,
            "encoding": self.encoding,
        }
        if self._should_use_pyarrow(path):
            logger.debug("Reading %s with the pyarrow engine", path)
            try:
                return pd.read_csv(path, engine="pyarrow", **read_options)
            except pd.errors.ParserError as e:
                # Ragged rows follow the pandas parser: short rows pad, long rows fail
                logger.debug("PyArrow rejected %s (%s); retrying with pandas", path, e)
        return pd.read_csv(path, **read_options)

    def read(
        self, path: str, delimiter: Optional[str] = ",", has_header: bool = True
    ) -> Result:
        """Read a whole delimited file.

        Without a header the field names are positional indices ("0", "1", ...).

        Returns:
            Result with ``data`` as rows, ``schema`` as field names and ``count``
        """
        try:
            delimiter = normalize_delimiter(delimiter)
            if not os.path.exists(path):
                raise FlatFileNotFoundError(path)

            try:
                df = self._read_frame(path, delimiter, has_header)
            except pd.errors.EmptyDataError:
                logger.info("File %s is empty", path)
                return Result.ok("File is empty", data=[], schema=[], count=0, file_path=path)
            except (pd.errors.ParserError, UnicodeDecodeError, OSError) as e:
                raise FlatFileIOError(f"Error reading file: {e}", path=path)
        except TransferError as e:
            return Result.from_error(e, file_path=path)

        df.columns = [str(column) for column in df.columns]
        rows: List[Row] = df.to_dict(orient="records")
        schema = list(df.columns)
        logger.info("Read %d rows with %d fields from %s", len(rows), len(schema), path)
        return Result.ok(
            "File read successfully",
            data=rows,
            schema=schema,
            count=len(rows),
            file_path=path,
        )

    def preview(
        self,
        path: str,
        delimiter: Optional[str] = ",",
        has_header: bool = True,
        limit: int = DEFAULT_PREVIEW_LIMIT,
    ) -> Result:
        """Return the first ``limit`` rows, the full row count and field names."""
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 0:
            return Result.from_error(ValidationError("Row limit must be a non-negative integer"))

        result = self.read(path, delimiter=delimiter, has_header=has_header)
        if not result.success:
            return result
        return Result.ok(
            "File preview",
            data=result.data[:limit],
            schema=result.schema,
            count=result.count,
            file_path=path,
        )

    def _create_temp_path(self, base_path: str) -> str:
        """Create a temporary file path in the same directory as the target."""
        dir_path = os.path.dirname(base_path)
        base_name = os.path.basename(base_path)
        temp_name = f".tmp_{uuid.uuid4().hex[:8]}_{base_name}"
        return os.path.join(dir_path, temp_name)

    def write(
        self,
        rows: Sequence[Row],
        path: str,
        delimiter: Optional[str] = ",",
        headers: Optional[Sequence[str]] = None,
    ) -> Result:
        """
        Write rows to a delimited file, replacing it atomically.

        Headers come from ``headers`` or, if omitted, from the first row's
        field names. The destination directory is created when missing.

        Returns:
            Result with ``count`` rows written and ``file_path``
        """
        try:
            delimiter = normalize_delimiter(delimiter)
        except ValidationError as e:
            return Result.from_error(e, file_path=path)

        if headers is None:
            headers = list(rows[0].keys()) if rows else []
        headers = list(headers)

        records = [[render_value(row.get(header)) for header in headers] for row in rows]
        df = pd.DataFrame(records, columns=headers, dtype=object)

        temp_path = self._create_temp_path(path)
        try:
            directory = os.path.dirname(path)
            if directory:
                os.makedirs(directory, exist_ok=True)

            if headers:
                df.to_csv(
                    temp_path,
                    sep=delimiter,
                    index=False,
                    header=True,
                    encoding=self.encoding,
                )
            else:
                # Nothing to describe: leave an empty file
                open(temp_path, "w", encoding=self.encoding).close()

            os.replace(temp_path, path)
        except OSError as e:
            if os.path.exists(temp_path):
                try:
                    os.remove(temp_path)
                except OSError:
                    logger.warning("Failed to cleanup temporary file: %s", temp_path)
            return Result.from_error(
                FlatFileIOError(f"Failed to write file: {e}", path=path), file_path=path
            )

        logger.info("Wrote %d rows to %s", len(rows), path)
        return Result.ok(
            "File written successfully", count=len(rows), file_path=path, schema=headers
        )
