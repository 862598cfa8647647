import pytest

from chflow.core.errors import ErrorKind
from chflow.core.models import ColumnDescriptor
from chflow.core.schema_inspector import SchemaInspector


@pytest.fixture
def session(recording_session_cls, descriptor):
    session = recording_session_cls(
        descriptor,
        tables={
            "users": [("id", "UInt64"), ("name", "String"), ("signup", "Date")],
            "orders": [("order_id", "UInt64")],
        },
    )
    session.open()
    yield session
    session.close()


def test_list_tables(session):
    result = SchemaInspector().list_tables(session)

    assert result.success
    assert [table.name for table in result.data] == ["users", "orders"]
    assert result.count == 2


def test_describe_keeps_table_order(session):
    result = SchemaInspector().describe_table(session, "users")

    assert result.success
    assert result.data == [
        ColumnDescriptor("id", "UInt64"),
        ColumnDescriptor("name", "String"),
        ColumnDescriptor("signup", "Date"),
    ]
    assert result.schema == ["id", "name", "signup"]


def test_describe_is_repeatable(session):
    inspector = SchemaInspector()

    first = inspector.describe_table(session, "users")
    second = inspector.describe_table(session, "users")

    assert first.data == second.data


def test_missing_table(session):
    result = SchemaInspector().describe_table(session, "ghosts")

    assert not result.success
    assert result.error_kind is ErrorKind.SCHEMA_ABSENT
    assert not SchemaInspector().table_exists(session, "ghosts")


def test_invalid_table_name_never_reaches_the_store(session):
    before = len(session.queries)

    result = SchemaInspector().describe_table(session, "users; DROP TABLE users")

    assert result.error_kind is ErrorKind.VALIDATION
    assert len(session.queries) == before


def test_duckdb_describe_columns(tmp_path):
    from chflow.connectors.duckdb import DuckDBSession
    from chflow.core.models import ConnectionDescriptor

    session = DuckDBSession(ConnectionDescriptor(driver="duckdb", database=":memory:"))
    session.open()
    try:
        session.command('CREATE TABLE "events" ("id" INTEGER, "label" VARCHAR)')

        result = SchemaInspector().describe_table(session, "events")

        assert result.schema == ["id", "label"]
        assert result.data[1].type_name == "VARCHAR"
        assert [table.name for table in SchemaInspector().list_tables(session).data] == ["events"]
    finally:
        session.close()
