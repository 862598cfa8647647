"""
SQL security utilities for preventing SQL injection attacks.

Table and column names go through an allow-list and are always quoted. Values
are bound as parameters. WHERE and JOIN predicate fragments stay raw SQL text
because they are expressions, but fragments that could end the statement or
hide text in a comment are refused.
"""

import re
from typing import Any, List, Optional, Sequence, Tuple

from chflow.core.errors import ValidationError

# Placeholder used for bound values, per dialect
PLACEHOLDERS = {
    "clickhouse": "%s",
    "duckdb": "?",
}


class SQLIdentifierValidator:
    """Validator for SQL identifiers to prevent injection."""

    # Valid SQL identifier pattern: letters, numbers, underscores, no special chars
    VALID_IDENTIFIER_PATTERN = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")

    # Text that can terminate a statement or open a comment
    PREDICATE_BLOCKLIST = (";", "--", "/*", "*/")

    @classmethod
    def is_valid_identifier(cls, identifier: str) -> bool:
        """
        Check if a single identifier is safe to use in SQL.

        Args:
            identifier: The identifier to validate

        Returns:
            True if the identifier is safe, False otherwise
        """
        if not identifier or not isinstance(identifier, str):
            return False
        return bool(cls.VALID_IDENTIFIER_PATTERN.match(identifier))

    @classmethod
    def is_valid_qualified_identifier(cls, identifier: str) -> bool:
        """Check a possibly dot-qualified name such as ``orders.id``."""
        if not identifier or not isinstance(identifier, str):
            return False
        return all(cls.is_valid_identifier(part) for part in identifier.split("."))

    @classmethod
    def is_safe_predicate(cls, predicate: str) -> bool:
        """Check that a raw predicate fragment cannot break out of its clause."""
        if not isinstance(predicate, str) or not predicate.strip():
            return False
        if any(marker in predicate for marker in cls.PREDICATE_BLOCKLIST):
            return False
        # Unbalanced quotes would swallow the rest of the statement
        return predicate.count("'") % 2 == 0


class SQLSafeFormatter:
    """Safe SQL formatter that quotes identifiers for one dialect."""

    def __init__(self, dialect: str = "clickhouse"):
        """
        Initialize the formatter.

        Args:
            dialect: SQL dialect ("clickhouse" or "duckdb")
        """
        self.dialect = dialect.lower()
        if self.dialect not in PLACEHOLDERS:
            raise ValidationError(f"Unsupported SQL dialect: {dialect}")
        self.validator = SQLIdentifierValidator()

    @property
    def placeholder(self) -> str:
        """Bound-value placeholder for this dialect."""
        return PLACEHOLDERS[self.dialect]

    def quote_identifier(self, identifier: str) -> str:
        """
        Safely quote an SQL identifier (table name, column name, etc.).

        Both ClickHouse and DuckDB accept double-quoted identifiers.

        Raises:
            ValidationError: If the identifier is invalid or potentially malicious
        """
        if not self.validator.is_valid_identifier(identifier):
            raise ValidationError(
                f"Invalid or potentially malicious identifier: {identifier!r}"
            )
        return f'"{identifier}"'

    def quote_qualified(self, identifier: str) -> str:
        """Quote each part of a dot-qualified name: ``a.b`` -> ``"a"."b"``."""
        if not self.validator.is_valid_qualified_identifier(identifier):
            raise ValidationError(
                f"Invalid or potentially malicious identifier: {identifier!r}"
            )
        return ".".join(f'"{part}"' for part in identifier.split("."))

    def format_column(self, column: str) -> str:
        """Format one selected column.

        Qualified columns are aliased to their dotted name so the result set
        keys match the selection.
        """
        if "." in column:
            return f'{self.quote_qualified(column)} AS "{column}"'
        return self.quote_identifier(column)

    def format_column_list(self, columns: Sequence[str]) -> str:
        """
        Safely format a list of column names.

        Returns:
            Comma-separated, quoted column list, or ``*`` for no columns
        """
        if not columns or list(columns) == ["*"]:
            return "*"
        return ", ".join(self.format_column(col) for col in columns)

    def check_predicate(self, predicate: str, clause: str = "WHERE") -> str:
        """Return a stripped predicate or raise ValidationError."""
        if not self.validator.is_safe_predicate(predicate):
            raise ValidationError(
                f"Unsafe or empty {clause} predicate: {predicate!r}"
            )
        return predicate.strip()

    def format_limit(self, limit: Optional[int]) -> str:
        """Return a ``LIMIT n`` suffix, or an empty string."""
        if limit is None:
            return ""
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 0:
            raise ValidationError("LIMIT must be a non-negative integer")
        return f" LIMIT {limit}"


class ParameterizedQueryBuilder:
    """Collects bound values and hands out matching placeholders."""

    def __init__(self, dialect: str = "clickhouse"):
        """
        Initialize the query builder.

        Args:
            dialect: SQL dialect for parameter formatting
        """
        self.formatter = SQLSafeFormatter(dialect)
        self.parameters: List[Any] = []

    def reset(self) -> None:
        """Reset the parameter list."""
        self.parameters = []

    def add_parameter(self, value: Any) -> str:
        """
        Add a parameter value and return the placeholder.

        Args:
            value: The parameter value

        Returns:
            Parameter placeholder string
        """
        self.parameters.append(value)
        return self.formatter.placeholder

    def build_values_row(self, values: Sequence[Any]) -> str:
        """Return ``(p, p, ...)`` for one row, binding each value."""
        return "(" + ", ".join(self.add_parameter(value) for value in values) + ")"

    def get_query_and_parameters(self, query: str) -> Tuple[str, List[Any]]:
        """
        Get the final query and parameter list.

        Args:
            query: The query string with placeholders

        Returns:
            Tuple of (query_string, parameters_list)
        """
        return query, self.parameters.copy()


def validate_identifier(identifier: str) -> None:
    """
    Validate an SQL identifier and raise an exception if invalid.

    Raises:
        ValidationError: If the identifier is invalid
    """
    if not SQLIdentifierValidator.is_valid_identifier(identifier):
        raise ValidationError(f"Invalid SQL identifier: {identifier!r}")
