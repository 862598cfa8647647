"""Row transforms applied between reading and writing a transfer.

Three stages, always run in this order by :class:`TransformPlan`:

1. field mapping (rename or derive fields),
2. type casts,
3. row filters.

Each stage takes and returns a list of rows and never mutates its input.
Problems with the plan itself (unknown cast type, unknown operator, strict
cast failure) raise :class:`~chflow.core.errors.ValidationError`; the transfer
engine turns them into a failed result.
"""

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Union

import pandas as pd

from chflow.core.errors import CoercionError, ValidationError
from chflow.core.models import Row, Scalar
from chflow.logging import get_logger

logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Field mapping
# ---------------------------------------------------------------------------


class FieldDerivation(ABC):
    """Computes one output field from an input row.

    Derivations are plain objects rather than closures so a mapping can be
    logged, compared and serialized with :meth:`describe`.
    """

    kind: str = ""

    @abstractmethod
    def derive(self, row: Row) -> Scalar:
        """Return the value of the derived field for ``row``."""

    @abstractmethod
    def describe(self) -> Dict[str, Any]:
        """Return a JSON-friendly description, readable by ``derivation_from_dict``."""

    def consumes(self) -> List[str]:
        """Input fields that this derivation replaces in the output row."""
        return []

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, FieldDerivation):
            return NotImplemented
        return self.describe() == other.describe()

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.describe()!r})"


class FieldRename(FieldDerivation):
    """Copy a source field under a new name. The source is not passed through."""

    kind = "rename"

    def __init__(self, source: str):
        if not source:
            raise ValidationError("A renamed field needs a source field name")
        self.source = source

    def derive(self, row: Row) -> Scalar:
        return row.get(self.source)

    def describe(self) -> Dict[str, Any]:
        return {"type": self.kind, "source": self.source}

    def consumes(self) -> List[str]:
        return [self.source]


class ConstantValue(FieldDerivation):
    """Set a field to the same value on every row."""

    kind = "constant"

    def __init__(self, value: Scalar):
        self.value = value

    def derive(self, row: Row) -> Scalar:
        return self.value

    def describe(self) -> Dict[str, Any]:
        return {"type": self.kind, "value": self.value}


class ConcatFields(FieldDerivation):
    """Join the text of several fields with a separator. Missing fields are skipped."""

    kind = "concat"

    def __init__(self, fields: Sequence[str], separator: str = ""):
        if not fields:
            raise ValidationError("A concatenation needs at least one field")
        self.fields = list(fields)
        self.separator = separator

    def derive(self, row: Row) -> Scalar:
        parts = [_to_text(row.get(name)) for name in self.fields]
        return self.separator.join(part for part in parts if part is not None)

    def describe(self) -> Dict[str, Any]:
        return {"type": self.kind, "fields": list(self.fields), "separator": self.separator}


DERIVATION_TYPES: Dict[str, Callable[[Mapping[str, Any]], FieldDerivation]] = {
    "rename": lambda spec: FieldRename(spec.get("source")),
    "constant": lambda spec: ConstantValue(spec.get("value")),
    "concat": lambda spec: ConcatFields(spec.get("fields") or [], spec.get("separator", "")),
}

MappingSource = Union[str, FieldDerivation]


def derivation_from_dict(spec: Union[str, Mapping[str, Any], FieldDerivation]) -> FieldDerivation:
    """Build a derivation from a field name, a ``describe()`` dict or a derivation."""
    if isinstance(spec, FieldDerivation):
        return spec
    if isinstance(spec, str):
        return FieldRename(spec)
    if isinstance(spec, Mapping):
        kind = str(spec.get("type", "")).lower()
        if kind not in DERIVATION_TYPES:
            raise ValidationError(
                f"Unknown field derivation type {kind!r}. "
                f"Expected one of: {', '.join(sorted(DERIVATION_TYPES))}"
            )
        return DERIVATION_TYPES[kind](spec)
    raise ValidationError(f"Cannot build a field derivation from {spec!r}")


def apply_mapping(rows: Sequence[Row], field_map: Mapping[str, MappingSource]) -> List[Row]:
    """Rename and derive fields.

    Mapped fields come first, in ``field_map`` order. Every input field that
    is not the source of a rename is passed through after them.
    """
    if not field_map:
        return [dict(row) for row in rows]

    derivations = {target: derivation_from_dict(source) for target, source in field_map.items()}
    consumed = {name for derivation in derivations.values() for name in derivation.consumes()}

    mapped: List[Row] = []
    for row in rows:
        new_row: Row = {target: derivation.derive(row) for target, derivation in derivations.items()}
        for name, value in row.items():
            if name not in consumed:
                new_row[name] = value
        mapped.append(new_row)

    logger.debug("Mapped %d rows onto %d fields", len(mapped), len(derivations))
    return mapped


# ---------------------------------------------------------------------------
# Type casts
# ---------------------------------------------------------------------------

FALSE_STRINGS = ("", "false", "0")

CAST_ALIASES = {
    "number": "float",
    "float": "float",
    "double": "float",
    "integer": "integer",
    "int": "integer",
    "boolean": "boolean",
    "bool": "boolean",
    "string": "string",
    "date": "date",
    "datetime": "datetime",
}


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _to_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def _to_float(value: Any) -> float:
    if isinstance(value, bool):
        return float(value)
    if _is_blank(value):
        return math.nan
    if isinstance(value, str):
        value = value.strip()
    try:
        number = pd.to_numeric(value, errors="coerce")
    except (TypeError, ValueError):
        return math.nan
    return math.nan if pd.isna(number) else float(number)


def _to_timestamp(value: Any) -> Optional[pd.Timestamp]:
    if _is_blank(value):
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        # Numbers are epoch milliseconds
        if isinstance(value, float) and math.isnan(value):
            return None
        timestamp = pd.to_datetime(value, unit="ms", errors="coerce")
    else:
        timestamp = pd.to_datetime(value, errors="coerce")
    return None if pd.isna(timestamp) else timestamp


def cast_boolean(value: Any) -> bool:
    """``False``, the exact strings ``"false"`` and ``"0"``, empty and other falsy values are false."""
    if isinstance(value, str):
        return value not in FALSE_STRINGS
    if isinstance(value, float) and math.isnan(value):
        return False
    return bool(value)


def cast_float(value: Any) -> float:
    return _to_float(value)


def cast_integer(value: Any) -> Union[int, float]:
    """Truncate towards zero; unparsable values are ``nan``."""
    number = _to_float(value)
    if math.isnan(number) or math.isinf(number):
        return math.nan
    return int(number)


def cast_string(value: Any) -> Optional[str]:
    return _to_text(value)


def cast_date(value: Any) -> Optional[date]:
    timestamp = _to_timestamp(value)
    return None if timestamp is None else timestamp.date()


def cast_datetime(value: Any) -> Optional[datetime]:
    timestamp = _to_timestamp(value)
    return None if timestamp is None else timestamp.to_pydatetime()


CASTS: Dict[str, Callable[[Any], Scalar]] = {
    "float": cast_float,
    "integer": cast_integer,
    "boolean": cast_boolean,
    "string": cast_string,
    "date": cast_date,
    "datetime": cast_datetime,
}


def resolve_cast(type_name: str) -> str:
    """Return the canonical cast name for a type alias.

    Raises:
        ValidationError: If the type is not supported
    """
    canonical = CAST_ALIASES.get(str(type_name).strip().lower())
    if canonical is None:
        raise ValidationError(
            f"Unsupported cast type {type_name!r}. "
            f"Expected one of: {', '.join(sorted(CAST_ALIASES))}"
        )
    return canonical


def _cast_failed(original: Any, cast_value: Any) -> bool:
    """Whether a non-blank input produced the invalid marker."""
    if _is_blank(original):
        return False
    if cast_value is None:
        return True
    return isinstance(cast_value, float) and math.isnan(cast_value)


def apply_type_casts(
    rows: Sequence[Row], type_map: Mapping[str, str], strict: bool = False
) -> List[Row]:
    """Cast fields to the types named in ``type_map``.

    Only fields present in a row are cast. Unparsable numbers become ``nan``
    and unparsable dates ``None``; with ``strict`` the first such value raises
    :class:`CoercionError` instead. Blank values are treated as missing in
    both modes.
    """
    if not type_map:
        return [dict(row) for row in rows]

    casts = {name: resolve_cast(type_name) for name, type_name in type_map.items()}

    converted: List[Row] = []
    for index, row in enumerate(rows):
        new_row = dict(row)
        for name, cast_name in casts.items():
            if name not in new_row:
                continue
            original = new_row[name]
            value = CASTS[cast_name](original)
            if strict and cast_name not in ("boolean", "string") and _cast_failed(original, value):
                raise CoercionError(
                    f"Cannot cast value {original!r} of field '{name}' "
                    f"in row {index} to {cast_name}",
                    row_index=index,
                    field_name=name,
                    value=original,
                )
            new_row[name] = value
        converted.append(new_row)

    logger.debug("Cast %d fields on %d rows", len(casts), len(converted))
    return converted


# ---------------------------------------------------------------------------
# Filters
# ---------------------------------------------------------------------------


class FilterOperator(Enum):
    """Row filter operators."""

    EQ = "eq"
    NEQ = "neq"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    CONTAINS = "contains"
    STARTS_WITH = "starts with"
    ENDS_WITH = "ends with"
    IS_NULL = "is null"
    IS_NOT_NULL = "is not null"


OPERATOR_ALIASES = {
    "eq": FilterOperator.EQ,
    "=": FilterOperator.EQ,
    "==": FilterOperator.EQ,
    "equals": FilterOperator.EQ,
    "neq": FilterOperator.NEQ,
    "!=": FilterOperator.NEQ,
    "<>": FilterOperator.NEQ,
    "not equals": FilterOperator.NEQ,
    "gt": FilterOperator.GT,
    ">": FilterOperator.GT,
    "greater than": FilterOperator.GT,
    "gte": FilterOperator.GTE,
    ">=": FilterOperator.GTE,
    "greater than or equals": FilterOperator.GTE,
    "lt": FilterOperator.LT,
    "<": FilterOperator.LT,
    "less than": FilterOperator.LT,
    "lte": FilterOperator.LTE,
    "<=": FilterOperator.LTE,
    "less than or equals": FilterOperator.LTE,
    "contains": FilterOperator.CONTAINS,
    "starts with": FilterOperator.STARTS_WITH,
    "ends with": FilterOperator.ENDS_WITH,
    "is null": FilterOperator.IS_NULL,
    "is not null": FilterOperator.IS_NOT_NULL,
}


def parse_operator(name: Any) -> Optional[FilterOperator]:
    """Resolve an operator spelling, or return None if it is unknown.

    Matching ignores case, and spaces, underscores and hyphens are
    interchangeable (``starts_with`` == ``Starts-With`` == ``starts with``).
    """
    if isinstance(name, FilterOperator):
        return name
    if not isinstance(name, str):
        return None
    normalized = " ".join(name.lower().replace("_", " ").replace("-", " ").split())
    return OPERATOR_ALIASES.get(normalized)


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str) and value.strip():
        try:
            return float(value)
        except ValueError:
            return None
    return None


def loose_equals(left: Any, right: Any) -> bool:
    """Equality that treats numeric strings and numbers alike (``"30" == 30``)."""
    if left is None or right is None:
        return left is None and right is None
    if left == right:
        return True
    left_number, right_number = _as_number(left), _as_number(right)
    if left_number is not None and right_number is not None:
        return left_number == right_number
    return False


def _compare(left: Any, right: Any) -> Optional[int]:
    """Three-way compare, numerically when both sides are numeric."""
    if left is None or right is None:
        return None
    left_number, right_number = _as_number(left), _as_number(right)
    if left_number is not None and right_number is not None:
        left, right = left_number, right_number
    try:
        if left < right:
            return -1
        if left > right:
            return 1
        return 0 if left == right else None
    except TypeError:
        return None


def _text(value: Any) -> str:
    text = _to_text(value)
    return "" if text is None else text


PREDICATES: Dict[FilterOperator, Callable[[Any, Any], bool]] = {
    FilterOperator.EQ: loose_equals,
    FilterOperator.NEQ: lambda left, right: not loose_equals(left, right),
    FilterOperator.GT: lambda left, right: _compare(left, right) == 1,
    FilterOperator.GTE: lambda left, right: _compare(left, right) in (0, 1),
    FilterOperator.LT: lambda left, right: _compare(left, right) == -1,
    FilterOperator.LTE: lambda left, right: _compare(left, right) in (-1, 0),
    FilterOperator.CONTAINS: lambda left, right: _text(right) in _text(left),
    FilterOperator.STARTS_WITH: lambda left, right: _text(left).startswith(_text(right)),
    FilterOperator.ENDS_WITH: lambda left, right: _text(left).endswith(_text(right)),
    FilterOperator.IS_NULL: lambda left, right: left is None,
    FilterOperator.IS_NOT_NULL: lambda left, right: left is not None,
}


@dataclass(frozen=True)
class FilterCondition:
    """Keep rows whose ``field`` satisfies ``operator`` against ``value``."""

    field: str
    operator: Union[str, FilterOperator]
    value: Any = None

    @classmethod
    def from_dict(cls, spec: Mapping[str, Any]) -> "FilterCondition":
        if not spec.get("field") or not spec.get("operator"):
            raise ValidationError(f"A filter needs a field and an operator: {dict(spec)!r}")
        return cls(field=spec["field"], operator=spec["operator"], value=spec.get("value"))

    def to_dict(self) -> Dict[str, Any]:
        operator = self.operator.value if isinstance(self.operator, FilterOperator) else self.operator
        return {"field": self.field, "operator": operator, "value": self.value}


def filter_rows(
    rows: Sequence[Row], conditions: Sequence[FilterCondition], strict: bool = True
) -> List[Row]:
    """Keep the rows that satisfy every condition.

    An unknown operator raises :class:`ValidationError`; with ``strict=False``
    the condition is skipped with a warning and keeps every row.
    """
    if not conditions:
        return list(rows)

    checks = []
    for condition in conditions:
        operator = parse_operator(condition.operator)
        if operator is None:
            if strict:
                raise ValidationError(
                    f"Unknown filter operator {condition.operator!r} "
                    f"for field '{condition.field}'"
                )
            logger.warning(
                "Ignoring filter on '%s' with unknown operator %r",
                condition.field,
                condition.operator,
            )
            continue
        checks.append((condition.field, PREDICATES[operator], condition.value))

    kept = [
        row
        for row in rows
        if all(predicate(row.get(name), value) for name, predicate, value in checks)
    ]
    logger.debug("Filter kept %d of %d rows", len(kept), len(rows))
    return kept


# ---------------------------------------------------------------------------
# Plan
# ---------------------------------------------------------------------------


@dataclass
class TransformPlan:
    """Mapping, casts and filters to run on the rows of one job."""

    field_map: Dict[str, MappingSource] = field(default_factory=dict)
    type_map: Dict[str, str] = field(default_factory=dict)
    filters: List[FilterCondition] = field(default_factory=list)
    strict: bool = False
    # Skip filters with unknown operators instead of rejecting the plan
    lenient_filters: bool = False

    @property
    def is_empty(self) -> bool:
        return not (self.field_map or self.type_map or self.filters)

    def output_fields(self, fields: Sequence[str]) -> List[str]:
        """Field names of mapped rows whose input fields are ``fields``, in output order."""
        if not self.field_map:
            return list(fields)
        derivations = [derivation_from_dict(source) for source in self.field_map.values()]
        consumed = {name for derivation in derivations for name in derivation.consumes()}
        output = list(self.field_map)
        output.extend(name for name in fields if name not in consumed and name not in output)
        return output

    def validate(self) -> None:
        """Check the plan without any rows; raises ValidationError."""
        for source in self.field_map.values():
            derivation_from_dict(source)
        for type_name in self.type_map.values():
            resolve_cast(type_name)
        if not self.lenient_filters:
            for condition in self.filters:
                if parse_operator(condition.operator) is None:
                    raise ValidationError(
                        f"Unknown filter operator {condition.operator!r} "
                        f"for field '{condition.field}'"
                    )

    def apply(self, rows: Sequence[Row]) -> List[Row]:
        """Run mapping, then casts, then filters."""
        result = apply_mapping(rows, self.field_map)
        result = apply_type_casts(result, self.type_map, strict=self.strict)
        return filter_rows(result, self.filters, strict=not self.lenient_filters)

    @classmethod
    def from_dict(cls, spec: Optional[Mapping[str, Any]]) -> "TransformPlan":
        """Build a plan from ``field_map``, ``type_map``, ``filters`` and ``strict`` keys.

        ``mappings``, ``types`` and ``conditions`` are accepted as aliases.
        """
        if not spec:
            return cls()
        if isinstance(spec, TransformPlan):
            return spec

        field_map = spec.get("field_map") or spec.get("mappings") or {}
        type_map = spec.get("type_map") or spec.get("types") or {}
        filters = spec.get("filters") or spec.get("conditions") or []

        plan = cls(
            field_map={target: derivation_from_dict(source) for target, source in field_map.items()},
            type_map=dict(type_map),
            filters=[
                condition if isinstance(condition, FilterCondition) else FilterCondition.from_dict(condition)
                for condition in filters
            ],
            strict=bool(spec.get("strict", False)),
            lenient_filters=bool(spec.get("lenient_filters", False)),
        )
        plan.validate()
        return plan

    def to_dict(self) -> Dict[str, Any]:
        return {
            "field_map": {
                target: derivation_from_dict(source).describe()
                for target, source in self.field_map.items()
            },
            "type_map": dict(self.type_map),
            "filters": [condition.to_dict() for condition in self.filters],
            "strict": self.strict,
            "lenient_filters": self.lenient_filters,
        }
