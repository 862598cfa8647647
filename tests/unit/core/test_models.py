"""Tests for the chflow data model."""

from datetime import date, datetime

import pytest

from chflow.core.errors import ValidationError
from chflow.core.models import (
    ColumnDescriptor,
    ConnectionDescriptor,
    JoinSpec,
    ScalarKind,
    TransferDirection,
    TransferJob,
    scalar_kind,
)


class TestScalarKind:
    @pytest.mark.parametrize(
        "value,kind",
        [
            (None, ScalarKind.NULL),
            (True, ScalarKind.BOOLEAN),
            (3, ScalarKind.INTEGER),
            (3.5, ScalarKind.FLOAT),
            ("x", ScalarKind.STRING),
            (date(2024, 1, 1), ScalarKind.DATE),
            (datetime(2024, 1, 1, 12), ScalarKind.DATETIME),
        ],
    )
    def test_every_member_is_tagged(self, value, kind):
        assert scalar_kind(value) is kind

    def test_unsupported_value(self):
        with pytest.raises(TypeError):
            scalar_kind([1, 2])


class TestConnectionDescriptor:
    def test_from_dict_accepts_aliases(self):
        descriptor = ConnectionDescriptor.from_dict(
            {
                "host": "ch.local",
                "port": "8443",
                "database": "analytics",
                "user": "reader",
                "jwt": "abc",
                "secure": "true",
            }
        )

        assert descriptor.port == 8443
        assert descriptor.username == "reader"
        assert descriptor.auth_token == "abc"
        assert descriptor.secure is True
        assert descriptor.driver == "clickhouse"
        assert descriptor.missing_fields() == []

    def test_bad_port(self):
        with pytest.raises(ValidationError):
            ConnectionDescriptor.from_dict({"port": "eighty"})

    def test_missing_fields(self):
        descriptor = ConnectionDescriptor.from_dict({"host": "ch.local"})

        assert descriptor.missing_fields() == ["port", "database", "auth_token"]
        with pytest.raises(ValidationError) as exc_info:
            descriptor.validate()
        assert "auth_token" in str(exc_info.value)

    def test_duckdb_only_needs_a_database(self):
        descriptor = ConnectionDescriptor(driver="duckdb", database=":memory:")
        descriptor.validate()
        assert descriptor.display_name == "duckdb::memory:"

    def test_unknown_driver(self):
        with pytest.raises(ValidationError):
            ConnectionDescriptor(driver="oracle", database="x").validate()

    def test_secrets_stay_out_of_repr(self, descriptor):
        text = repr(descriptor)
        assert "secret-token" not in text
        assert "secret-token" not in descriptor.display_name
        assert descriptor.display_name == "http://localhost:8123/default"


class TestJoinSpec:
    def test_valid(self):
        JoinSpec.of(["a", "b", "c"], ["a.id = b.id", "b.id = c.id"]).validate()

    def test_arity(self):
        with pytest.raises(ValidationError):
            JoinSpec.of(["a", "b"], []).validate()

    def test_blank_predicate(self):
        with pytest.raises(ValidationError) as exc_info:
            JoinSpec.of(["a", "b"], ["  "]).validate()
        assert "'b'" in str(exc_info.value)


class TestTransferJob:
    def _job(self, descriptor, **overrides):
        fields = dict(
            direction=TransferDirection.EXPORT,
            connection=descriptor,
            file_path="/tmp/out.csv",
            columns=["id"],
            table="users",
        )
        fields.update(overrides)
        return TransferJob(**fields)

    def test_valid_job(self, descriptor):
        self._job(descriptor).validate()

    @pytest.mark.parametrize(
        "overrides",
        [
            {"file_path": ""},
            {"columns": []},
            {"batch_size": 0},
            {"table": None},
            {"direction": TransferDirection.JOIN_EXPORT, "join": None},
            {"direction": TransferDirection.JOIN_EXPORT, "join": JoinSpec.of(["a", "b"])},
        ],
    )
    def test_invalid_jobs(self, descriptor, overrides):
        with pytest.raises(ValidationError):
            self._job(descriptor, **overrides).validate()

    def test_outcomes_are_not_shared(self, descriptor):
        first, second = self._job(descriptor), self._job(descriptor)
        first.outcome.inserted_count = 5
        assert second.outcome.inserted_count == 0


def test_column_descriptor_to_dict():
    assert ColumnDescriptor("id", "UInt64").to_dict() == {"name": "id", "type": "UInt64"}
