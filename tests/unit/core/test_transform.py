"""Tests for row mapping, type casts and filters."""

import math
import unittest
from datetime import date, datetime

import pytest

from chflow.core.errors import CoercionError, ErrorKind, ValidationError
from chflow.core.transform import (
    ConcatFields,
    ConstantValue,
    FieldRename,
    FilterCondition,
    FilterOperator,
    TransformPlan,
    apply_mapping,
    apply_type_casts,
    cast_boolean,
    derivation_from_dict,
    filter_rows,
    loose_equals,
    parse_operator,
)


class TestApplyMapping(unittest.TestCase):
    def setUp(self):
        self.rows = [
            {"first": "Ann", "last": "Lee", "age": "30"},
            {"first": "Bo", "last": "Kim", "age": "41"},
        ]

    def test_rename_drops_source_and_keeps_other_fields(self):
        mapped = apply_mapping(self.rows, {"given_name": "first"})

        self.assertEqual(
            mapped[0], {"given_name": "Ann", "last": "Lee", "age": "30"}
        )
        self.assertEqual(list(mapped[0]), ["given_name", "last", "age"])

    def test_strategies(self):
        mapped = apply_mapping(
            self.rows,
            {
                "full_name": ConcatFields(["first", "last"], separator=" "),
                "source": ConstantValue("crm"),
            },
        )

        self.assertEqual(mapped[1]["full_name"], "Bo Kim")
        self.assertEqual(mapped[1]["source"], "crm")
        # Derived fields do not consume their inputs
        self.assertEqual(mapped[1]["first"], "Bo")

    def test_input_rows_are_not_mutated(self):
        apply_mapping(self.rows, {"given_name": "first"})
        self.assertIn("first", self.rows[0])

    def test_empty_mapping_copies_rows(self):
        mapped = apply_mapping(self.rows, {})
        self.assertEqual(mapped, self.rows)
        self.assertIsNot(mapped[0], self.rows[0])

    def test_missing_source_gives_none(self):
        mapped = apply_mapping([{"a": 1}], {"b": FieldRename("missing")})
        self.assertIsNone(mapped[0]["b"])

    def test_concat_skips_missing_fields(self):
        self.assertEqual(ConcatFields(["a", "b", "c"], "-").derive({"a": 1, "c": True}), "1-true")


class TestDerivations(unittest.TestCase):
    def test_describe_round_trips(self):
        for derivation in [
            FieldRename("first"),
            ConstantValue(7),
            ConcatFields(["a", "b"], ","),
        ]:
            self.assertEqual(derivation_from_dict(derivation.describe()), derivation)

    def test_plain_string_is_a_rename(self):
        self.assertEqual(derivation_from_dict("first"), FieldRename("first"))

    def test_unknown_type(self):
        with self.assertRaises(ValidationError):
            derivation_from_dict({"type": "lambda", "code": "row['a']"})


class TestTypeCasts:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("false", False),
            ("0", False),
            ("", False),
            ("true", True),
            ("1", True),
            (False, False),
            (0, False),
            (None, False),
            ("yes", True),
            ("FALSE", True),
            ("False", True),
            (" 0 ", True),
            (" ", True),
        ],
    )
    def test_boolean_cast(self, raw, expected):
        assert cast_boolean(raw) is expected
        assert apply_type_casts([{"flag": raw}], {"flag": "boolean"})[0]["flag"] is expected

    def test_numeric_casts(self):
        rows = [{"price": "12.5", "qty": "3", "bad": "abc", "trunc": "7.9"}]

        cast = apply_type_casts(
            rows, {"price": "number", "qty": "int", "bad": "float", "trunc": "integer"}
        )[0]

        assert cast["price"] == 12.5
        assert cast["qty"] == 3 and isinstance(cast["qty"], int)
        assert math.isnan(cast["bad"])
        assert cast["trunc"] == 7

    def test_date_and_datetime_casts(self):
        rows = [{"d": "2024-03-05", "ts": "2024-03-05T10:20:30", "bad": "not a date"}]

        cast = apply_type_casts(rows, {"d": "date", "ts": "datetime", "bad": "date"})[0]

        assert cast["d"] == date(2024, 3, 5)
        assert cast["ts"] == datetime(2024, 3, 5, 10, 20, 30)
        assert cast["bad"] is None

    def test_numbers_cast_to_dates_as_epoch_milliseconds(self):
        cast = apply_type_casts([{"d": 0}], {"d": "date"})[0]
        assert cast["d"] == date(1970, 1, 1)

    def test_string_cast(self):
        cast = apply_type_casts(
            [{"a": 5, "b": True, "c": None}], {"a": "string", "b": "string", "c": "string"}
        )[0]
        assert cast == {"a": "5", "b": "true", "c": None}

    def test_only_present_fields_are_cast(self):
        cast = apply_type_casts([{"a": "1"}], {"a": "int", "missing": "int"})
        assert cast == [{"a": 1}]

    def test_unknown_cast_type(self):
        with pytest.raises(ValidationError):
            apply_type_casts([{"a": "1"}], {"a": "decimal"})

    def test_strict_mode_names_row_and_field(self):
        rows = [{"age": "30"}, {"age": "thirty"}]

        with pytest.raises(CoercionError) as exc_info:
            apply_type_casts(rows, {"age": "int"}, strict=True)

        error = exc_info.value
        assert error.row_index == 1
        assert error.field_name == "age"
        assert error.kind is ErrorKind.VALIDATION

    def test_strict_mode_treats_blank_as_missing(self):
        cast = apply_type_casts([{"age": ""}, {"d": None}], {"age": "int", "d": "date"}, strict=True)
        assert math.isnan(cast[0]["age"])
        assert cast[1]["d"] is None


class TestFilters:
    ROWS = [
        {"name": "Ann", "age": "30", "city": "Amsterdam"},
        {"name": "Bo", "age": 30, "city": None},
        {"name": "Cy", "age": "41", "city": "Berlin"},
        {"name": "Di", "age": "abc", "city": "Bern"},
    ]

    def _names(self, rows):
        return [row["name"] for row in rows]

    def test_eq_is_numeric_string_tolerant(self):
        kept = filter_rows(self.ROWS, [FilterCondition("age", "eq", 30)])
        assert self._names(kept) == ["Ann", "Bo"]

        kept = filter_rows(self.ROWS, [FilterCondition("age", "=", "30")])
        assert self._names(kept) == ["Ann", "Bo"]

    def test_neq(self):
        kept = filter_rows(self.ROWS, [FilterCondition("age", "!=", 30)])
        assert self._names(kept) == ["Cy", "Di"]

    def test_comparisons_skip_incomparable_values(self):
        assert self._names(filter_rows(self.ROWS, [FilterCondition("age", "gt", 30)])) == ["Cy"]
        assert self._names(filter_rows(self.ROWS, [FilterCondition("age", ">=", 30)])) == [
            "Ann",
            "Bo",
            "Cy",
        ]
        assert self._names(filter_rows(self.ROWS, [FilterCondition("age", "less than", 41)])) == [
            "Ann",
            "Bo",
        ]

    def test_text_operators(self):
        kept = filter_rows(self.ROWS, [FilterCondition("city", "contains", "er")])
        assert self._names(kept) == ["Ann", "Cy", "Di"]
        kept = filter_rows(self.ROWS, [FilterCondition("city", "starts_with", "Ber")])
        assert self._names(kept) == ["Cy", "Di"]
        kept = filter_rows(self.ROWS, [FilterCondition("city", "Ends-With", "dam")])
        assert self._names(kept) == ["Ann"]

    def test_null_operators(self):
        assert self._names(filter_rows(self.ROWS, [FilterCondition("city", "is null")])) == ["Bo"]
        assert len(filter_rows(self.ROWS, [FilterCondition("city", "is_not_null")])) == 3

    def test_conditions_are_anded(self):
        kept = filter_rows(
            self.ROWS,
            [FilterCondition("age", "gte", 30), FilterCondition("city", "starts with", "B")],
        )
        assert self._names(kept) == ["Cy"]

    def test_unknown_operator_rejected_by_default(self):
        with pytest.raises(ValidationError):
            filter_rows(self.ROWS, [FilterCondition("age", "between", 30)])

    def test_unknown_operator_passes_when_lenient(self, caplog):
        kept = filter_rows(self.ROWS, [FilterCondition("age", "between", 30)], strict=False)
        assert len(kept) == len(self.ROWS)
        assert "unknown operator" in caplog.text

    def test_operator_spellings(self):
        assert parse_operator("GREATER_THAN_OR_EQUALS") is FilterOperator.GTE
        assert parse_operator("<>") is FilterOperator.NEQ
        assert parse_operator("not-equals") is FilterOperator.NEQ
        assert parse_operator("between") is None

    def test_loose_equals(self):
        assert loose_equals("30", 30)
        assert loose_equals(30.0, "30")
        assert not loose_equals("30", "31")
        assert not loose_equals(None, 0)
        assert loose_equals(None, None)

    def test_condition_from_dict_needs_field_and_operator(self):
        assert FilterCondition.from_dict({"field": "a", "operator": "eq", "value": 1}) == (
            FilterCondition("a", "eq", 1)
        )
        with pytest.raises(ValidationError):
            FilterCondition.from_dict({"field": "a"})


class TestTransformPlan(unittest.TestCase):
    def test_stages_run_in_order(self):
        plan = TransformPlan.from_dict(
            {
                "field_map": {"years": "age"},
                "type_map": {"years": "int"},
                "filters": [{"field": "years", "operator": "gt", "value": 35}],
            }
        )

        rows = plan.apply([{"name": "Ann", "age": "30"}, {"name": "Cy", "age": "41"}])

        self.assertEqual(rows, [{"years": 41, "name": "Cy"}])

    def test_output_fields(self):
        plan = TransformPlan(field_map={"given": "first", "tag": ConstantValue("x")})
        self.assertEqual(plan.output_fields(["first", "last"]), ["given", "tag", "last"])
        self.assertEqual(TransformPlan().output_fields(["a", "b"]), ["a", "b"])

    def test_from_dict_validates_up_front(self):
        with self.assertRaises(ValidationError):
            TransformPlan.from_dict({"type_map": {"a": "money"}})
        with self.assertRaises(ValidationError):
            TransformPlan.from_dict({"filters": [{"field": "a", "operator": "like", "value": 1}]})

    def test_lenient_filters(self):
        plan = TransformPlan.from_dict(
            {"filters": [{"field": "a", "operator": "like", "value": 1}], "lenient_filters": True}
        )
        self.assertEqual(plan.apply([{"a": 2}]), [{"a": 2}])

    def test_to_dict_round_trips(self):
        plan = TransformPlan(
            field_map={"full": ConcatFields(["a", "b"], " "), "x": "y"},
            type_map={"x": "int"},
            filters=[FilterCondition("x", FilterOperator.GT, 1)],
            strict=True,
        )

        rebuilt = TransformPlan.from_dict(plan.to_dict())

        self.assertEqual(rebuilt.to_dict(), plan.to_dict())
        self.assertTrue(rebuilt.strict)

    def test_empty_plan(self):
        self.assertTrue(TransformPlan.from_dict(None).is_empty)
        self.assertEqual(TransformPlan().apply([{"a": 1}]), [{"a": 1}])
