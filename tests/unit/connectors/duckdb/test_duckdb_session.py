"""Tests for the embedded DuckDB session."""

import pytest

from chflow.connectors import create_session
from chflow.connectors.duckdb import DuckDBSession
from chflow.core.errors import ErrorKind, ValidationError
from chflow.core.models import ConnectionDescriptor


@pytest.fixture
def session():
    session = DuckDBSession(ConnectionDescriptor(driver="duckdb", database=":memory:"))
    assert session.open().success
    yield session
    session.close()


def test_query_and_command_round_trip(session):
    assert session.command('CREATE TABLE "users" ("id" INTEGER, "name" VARCHAR)').success
    assert session.command('INSERT INTO "users" VALUES (?, ?), (?, ?)', (1, "Ann", 2, "Bo")).success

    result = session.query('SELECT "id", "name" FROM "users" ORDER BY "id"')

    assert result.success
    assert result.schema == ["id", "name"]
    assert result.data == [{"id": 1, "name": "Ann"}, {"id": 2, "name": "Bo"}]
    assert result.count == 2


def test_missing_table_is_schema_absent(session):
    result = session.query('DESCRIBE "missing"')

    assert not result.success
    assert result.error_kind is ErrorKind.SCHEMA_ABSENT


def test_syntax_error_is_query_error(session):
    result = session.query("SELEC 1")

    assert result.error_kind is ErrorKind.QUERY
    assert "SELEC 1" in result.details["context"]["query"]


def test_missing_database_directory(tmp_path):
    descriptor = ConnectionDescriptor(
        driver="duckdb", database=str(tmp_path / "no" / "such" / "dir" / "db.duckdb")
    )

    result = DuckDBSession(descriptor).open()

    assert result.error_kind is ErrorKind.CONNECTION


def test_database_file_persists_between_sessions(tmp_path):
    descriptor = ConnectionDescriptor(driver="duckdb", database=str(tmp_path / "db.duckdb"))

    with create_session(descriptor) as first:
        first.open()
        first.command('CREATE TABLE "t" ("a" VARCHAR)')

    with create_session(descriptor) as second:
        second.open()
        assert second.query('SELECT * FROM "t"').success


def test_create_session_rejects_unknown_driver():
    with pytest.raises(ValidationError):
        create_session(ConnectionDescriptor(driver="oracle", database="x"))
