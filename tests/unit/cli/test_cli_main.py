import json
from unittest.mock import patch

import duckdb
import pytest
from typer.testing import CliRunner

from chflow import __version__
from chflow.cli.main import app

runner = CliRunner()


@pytest.fixture(autouse=True)
def cli_environment(tmp_path, monkeypatch):
    """Keep the CLI away from the real logging setup and .env files."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("CHFLOW_DATA_DIR", str(tmp_path))
    with patch("chflow.cli.main.configure_logging"):
        yield


@pytest.fixture
def db_path(tmp_path):
    path = str(tmp_path / "store.duckdb")
    con = duckdb.connect(path)
    con.execute('CREATE TABLE "users" ("id" INTEGER, "name" VARCHAR)')
    con.execute("INSERT INTO \"users\" VALUES (1, 'Ann'), (2, 'Bo')")
    con.close()
    return path


def invoke(db_path, *args):
    return runner.invoke(app, ["--driver", "duckdb", "--database", db_path, *args])


def test_version():
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert f"chflow v{__version__}" in result.output


def test_help_without_command():
    result = runner.invoke(app, [])
    assert result.exit_code == 0
    assert "export" in result.output


def test_connect_test(db_path):
    result = invoke(db_path, "connect", "test")
    assert result.exit_code == 0
    assert "Successfully connected" in result.output


def test_connect_tables_json(db_path):
    result = invoke(db_path, "connect", "tables", "--format", "json")
    assert result.exit_code == 0
    assert json.loads(result.output) == ["users"]


def test_connect_describe_missing_table(db_path):
    result = invoke(db_path, "connect", "describe", "ghosts")
    assert result.exit_code == 1
    assert "schema_absent" in result.output


def test_query_json(db_path):
    result = invoke(db_path, "query", "SELECT 42 AS answer", "--format", "json")
    assert result.exit_code == 0
    assert json.loads(result.output) == [{"answer": 42}]


def test_export(db_path, tmp_path):
    output = tmp_path / "out" / "users.csv"

    result = invoke(db_path, "export", "users", "--columns", "id,name", "--output", str(output))

    assert result.exit_code == 0, result.output
    assert output.read_text().splitlines() == ["id,name", "1,Ann", "2,Bo"]


def test_export_requires_columns(db_path, tmp_path):
    result = invoke(db_path, "export", "users", "--output", str(tmp_path / "x.csv"))
    assert result.exit_code == 2


def test_import_creates_table(db_path, tmp_path):
    source = tmp_path / "people.csv"
    source.write_text("id,name\n1,Ann\n2,Bo\n3,Cy\n")

    result = invoke(
        db_path, "import", str(source), "--table", "people", "--columns", "id,name", "--batch-size", "2"
    )

    assert result.exit_code == 0, result.output
    assert "Created table people" in result.output
    con = duckdb.connect(db_path)
    try:
        rows = con.execute('SELECT "id", "name" FROM "people" ORDER BY "id"').fetchall()
    finally:
        con.close()
    assert rows == [("1", "Ann"), ("2", "Bo"), ("3", "Cy")]


def test_import_missing_file(db_path, tmp_path):
    result = invoke(
        db_path, "import", str(tmp_path / "nope.csv"), "--table", "people", "--columns", "id"
    )
    assert result.exit_code == 1
    assert "file_not_found" in result.output


def test_preview_file(tmp_path):
    source = tmp_path / "data.tsv"
    source.write_text("id\tname\n1\tAnn\n")

    result = runner.invoke(app, ["preview-file", str(source), "--delimiter", "tab"])

    assert result.exit_code == 0
    assert "Ann" in result.output
    assert "1 rows" in result.output


def test_env_masks_secrets(monkeypatch):
    monkeypatch.setenv("CLICKHOUSE_PASSWORD", "hunter2")
    monkeypatch.setenv("CLICKHOUSE_HOST", "ch.local")

    result = runner.invoke(app, ["env"])

    assert result.exit_code == 0
    assert "hunter2" not in result.output
    assert "ch.local" in result.output


def test_connection_options_reach_operations():
    with patch("chflow.cli.main.operations.test_connection") as mock_test:
        mock_test.return_value.success = True
        mock_test.return_value.message = "ok"

        result = runner.invoke(
            app, ["--host", "ch.local", "--port", "8443", "--token", "jwt", "--secure", "connect", "test"]
        )

    assert result.exit_code == 0
    params = mock_test.call_args.args[0]
    assert params["host"] == "ch.local"
    assert params["port"] == 8443
    assert params["auth_token"] == "jwt"
    assert params["secure"] is True
    assert params["driver"] == "clickhouse"
