"""Tests for the ingestion CLI using CliRunner with the store and decoder mocked."""

import subprocess
from unittest.mock import MagicMock, patch

import pytest
from click.testing import CliRunner

from axaou_server.cli import ingest
from axaou_server.cli.ingest import (
    ALL_TABLES,
    GENE_MODELS,
    IngestOptions,
    InitStrategy,
    cli,
    decoder_command,
    split_sql_statements,
)
from axaou_server.errors import DataTransform


def first_code_line(statement):
    for line in statement.splitlines():
        line = line.strip()
        if line and not line.startswith("--"):
            return line
    return ""


class FakeStore:
    """Tracks which tables exist and how many rows they hold."""

    def __init__(self, source_rows=62000):
        self.source_rows = source_rows
        self.tables = {}
        self.statements = []

    def execute(self, url, database, sql, client=None):
        self.statements.append(sql)
        head = first_code_line(sql)
        if head.startswith("DROP TABLE IF EXISTS"):
            self.tables.pop(head.split()[-1], None)
        elif head.startswith("CREATE TABLE IF NOT EXISTS"):
            name = head.split("CREATE TABLE IF NOT EXISTS", 1)[1].split()[0]
            self.tables.setdefault(name, 0)
        elif head.startswith("INSERT INTO") and "FROM staging_" in sql:
            target = head.split("INSERT INTO", 1)[1].split()[0]
            staging = sql.split("FROM staging_", 1)[1].split()[0]
            self.tables[target] = self.tables.get(target, 0) + self.tables[f"staging_{staging}"]
        return ""

    def count(self, url, database, table, client=None):
        return self.tables.get(table, 0)

    def decoder(self, argv, check=False):
        # argv: decoder export clickhouse <input> <url> <staging>
        self.tables[argv[argv.index("clickhouse") + 3]] = self.source_rows
        return subprocess.CompletedProcess(argv, 0)


@pytest.fixture
def store():
    fake = FakeStore()
    with patch.object(ingest, "execute_sync", side_effect=fake.execute), \
            patch.object(ingest, "count_rows_sync", side_effect=fake.count), \
            patch.object(ingest.subprocess, "run", side_effect=fake.decoder):
        yield fake


def test_split_sql_statements_drops_comment_only_chunks():
    sql = """
    -- header comment
    CREATE TABLE a (x Int32);

    -- derived table
    TRUNCATE TABLE a;
    -- trailing comment only
    """
    statements = split_sql_statements(sql)
    assert len(statements) == 2
    assert statements[0].endswith("CREATE TABLE a (x Int32)")
    assert statements[1].endswith("TRUNCATE TABLE a")


def test_bundled_sql_files_load():
    for table in ALL_TABLES:
        assert f"CREATE TABLE IF NOT EXISTS {table.name}" in table.ddl_sql
        assert f"INSERT INTO {table.name}" in table.transform_sql
        assert f"FROM {table.staging_name}" in table.transform_sql


@pytest.mark.parametrize("table", ALL_TABLES, ids=lambda t: t.name)
def test_bundled_sql_statements_start_with_keyword(table):
    keywords = ("CREATE", "INSERT", "TRUNCATE", "OPTIMIZE", "DROP", "ALTER")
    for sql in (table.ddl_sql, table.transform_sql):
        for statement in split_sql_statements(sql):
            head = first_code_line(statement)
            assert head.startswith(keywords), (table.name, head)


def test_split_sql_statements_semicolon_in_comment_breaks_statement():
    sql = "-- one; two\nCREATE TABLE a (x Int32);"
    assert first_code_line(split_sql_statements(sql)[0]) == "two"


def test_decoder_command_local():
    opts = IngestOptions(limit=100)
    argv = decoder_command(GENE_MODELS, opts, "gs://b/genes.ht")
    assert argv == [
        "hail-decoder", "export", "clickhouse", "gs://b/genes.ht",
        "http://localhost:8123", "staging_gene_models_raw", "--limit", "100",
    ]


def test_decoder_command_pool_uses_remote_url():
    opts = IngestOptions(pool="workers", force=True, batch_size=50, remote_clickhouse_url="http://10.0.0.5:8123")
    argv = decoder_command(GENE_MODELS, opts, "gs://b/genes.ht")
    assert argv[:6] == ["hail-decoder", "pool", "submit", "workers", "--force", "--batch-size"]
    assert argv[argv.index("--") + 1:] == [
        "export", "clickhouse", "gs://b/genes.ht", "http://10.0.0.5:8123", "staging_gene_models_raw",
    ]


def test_replace_load_is_idempotent(store):
    runner = CliRunner()
    first = runner.invoke(cli, ["gene-models", "--init-strategy", "replace"])
    assert first.exit_code == 0, first.output
    assert store.tables["gene_models"] == 62000
    assert "staging_gene_models_raw" not in store.tables

    second = runner.invoke(cli, ["gene-models", "--init-strategy", "replace"])
    assert second.exit_code == 0
    assert store.tables["gene_models"] == 62000
    assert "62,000 rows" in second.output


def test_append_keeps_existing_rows(store):
    runner = CliRunner()
    runner.invoke(cli, ["gene-models"])
    result = runner.invoke(cli, ["gene-models", "--init-strategy", "append"])
    assert result.exit_code == 0
    assert store.tables["gene_models"] == 124000


def test_keep_staging(store):
    result = CliRunner().invoke(cli, ["gene-models", "--keep-staging"])
    assert result.exit_code == 0
    assert store.tables["staging_gene_models_raw"] == 62000


def test_input_overrides_default_source(store):
    with patch.object(ingest.subprocess, "run", side_effect=store.decoder) as run:
        CliRunner().invoke(cli, ["gene-models", "--input", "gs://mine/genes.ht"])
    assert "gs://mine/genes.ht" in run.call_args[0][0]


def test_decoder_failure_exits_nonzero(store):
    failing = MagicMock(return_value=subprocess.CompletedProcess([], 3))
    with patch.object(ingest.subprocess, "run", failing):
        result = CliRunner().invoke(cli, ["gene-models"])
    assert result.exit_code == 1
    assert "failed with status: 3" in result.output


def test_missing_decoder_binary_exits_nonzero(store):
    with patch.object(ingest.subprocess, "run", side_effect=FileNotFoundError("hail-decoder")):
        result = CliRunner().invoke(cli, ["gene-models"])
    assert result.exit_code == 1


def test_all_continues_past_failures(store):
    def flaky(url, database, sql, client=None):
        if "exome_annotations" in sql:
            raise DataTransform("ClickHouse error (500): disk full")
        return store.execute(url, database, sql, client)

    with patch.object(ingest, "execute_sync", side_effect=flaky):
        result = CliRunner().invoke(cli, ["all", "--input", "gs://ignored"])
    assert result.exit_code == 0
    assert "--input is ignored" in result.output
    assert "Failed: exome_annotations" in result.output
    assert "genome_annotations, gene_models, analysis_metadata" in result.output
    assert "analysis_categories" in store.tables


def test_status_lists_every_table(store):
    store.tables["gene_models"] = 62000
    result = CliRunner().invoke(cli, ["status"])
    assert result.exit_code == 0
    lines = {line.split()[0]: line for line in result.output.splitlines() if line.startswith("  ")}
    assert set(lines) == {t for t, _ in ingest.STATUS_TABLES}
    assert "62,000 rows" in lines["gene_models"]
    assert "rows" not in lines["exome_annotations"]


def test_init_strategy_values():
    assert [s.value for s in InitStrategy] == ["create", "replace", "append"]
