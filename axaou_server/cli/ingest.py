"""Batch ingestion: load scientific tables into ClickHouse.

Each managed table is loaded in six steps:

1. prepare the target table according to ``--init-strategy``;
2. drop any leftover staging table;
3. run the external table decoder to export the source into staging;
4. run the transform SQL (staging -> target), one statement at a time;
5. log staging and target row counts;
6. drop staging unless ``--keep-staging``.

``all`` loads every table in a fixed order and keeps going when one fails.
"""

from __future__ import annotations

import functools
import logging
import subprocess
import sys
from dataclasses import dataclass
from enum import Enum
from importlib import resources
from typing import List, Optional

import click
import httpx

from axaou_server.clickhouse import count_rows_sync, execute_sync
from axaou_server.errors import AppError, TaskFailure

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s :: %(message)s",
)
log = logging.getLogger("axaou.ingest")

DEFAULT_CLICKHOUSE_URL = "http://localhost:8123"
DEFAULT_DECODER = "hail-decoder"

# ----------------------------------------------------------------------------
# Table configuration
# ----------------------------------------------------------------------------

class InitStrategy(str, Enum):
    CREATE = "create"
    REPLACE = "replace"
    APPEND = "append"


def load_sql(name: str) -> str:
    return resources.files("axaou_server").joinpath("sql", name).read_text(encoding="utf-8")


@dataclass(frozen=True)
class TableConfig:
    name: str
    staging_name: str
    default_source: str
    ddl_file: str
    transform_file: str

    @property
    def ddl_sql(self) -> str:
        return load_sql(self.ddl_file)

    @property
    def transform_sql(self) -> str:
        return load_sql(self.transform_file)


EXOME_ANNOTATIONS = TableConfig(
    name="exome_annotations",
    staging_name="staging_exome_raw",
    default_source="gs://aou_results/414k/utils/aou_all_exome_variant_info_pruned_414k_annotated_filtered.ht",
    ddl_file="exome_annotations.sql",
    transform_file="exome_annotations_transform.sql",
)
GENOME_ANNOTATIONS = TableConfig(
    name="genome_annotations",
    staging_name="staging_genome_raw",
    default_source="gs://aou_results/414k/utils/aou_all_ACAF_variant_info_pruned_414k_annotated_filtered.ht",
    ddl_file="genome_annotations.sql",
    transform_file="genome_annotations_transform.sql",
)
GENE_MODELS = TableConfig(
    name="gene_models",
    staging_name="staging_gene_models_raw",
    default_source="gs://axaou-browser-common/reference-data/genes_grch38_annotated_6.ht",
    ddl_file="gene_models.sql",
    transform_file="gene_models_transform.sql",
)
ANALYSIS_METADATA = TableConfig(
    name="analysis_metadata",
    staging_name="staging_analysis_metadata_raw",
    default_source="gs://aou_results/414k/utils/aou_phenotype_meta_info.ht",
    ddl_file="analysis_metadata.sql",
    transform_file="analysis_metadata_transform.sql",
)

ALL_TABLES = (EXOME_ANNOTATIONS, GENOME_ANNOTATIONS, GENE_MODELS, ANALYSIS_METADATA)

STATUS_TABLES = (
    ("exome_annotations", "Exome variant annotations"),
    ("genome_annotations", "Genome variant annotations"),
    ("gene_models", "Gene models"),
    ("analysis_metadata", "Analysis/phenotype metadata"),
    ("analysis_categories", "Analysis categories (derived)"),
    ("variant_annotations", "Legacy combined annotations"),
)


@dataclass
class IngestOptions:
    clickhouse_url: str = DEFAULT_CLICKHOUSE_URL
    remote_clickhouse_url: Optional[str] = None
    init_strategy: InitStrategy = InitStrategy.REPLACE
    input: Optional[str] = None
    limit: Optional[int] = None
    keep_staging: bool = False
    hail_decoder: str = DEFAULT_DECODER
    database: str = "default"
    pool: Optional[str] = None
    force: bool = False
    redeploy_binary: bool = False
    batch_size: Optional[int] = None

# ----------------------------------------------------------------------------
# SQL helpers
# ----------------------------------------------------------------------------

def split_sql_statements(sql: str) -> List[str]:
    """Split on ``;`` and drop chunks that are blank or only ``--`` comments."""
    statements: List[str] = []
    for chunk in sql.split(";"):
        chunk = chunk.strip()
        if not chunk:
            continue
        if all(not line.strip() or line.strip().startswith("--") for line in chunk.splitlines()):
            continue
        statements.append(chunk)
    return statements


def execute_sql(url: str, database: str, sql: str, client: Optional[httpx.Client] = None) -> None:
    for stmt in split_sql_statements(sql):
        log.debug("Executing: %s", stmt.splitlines()[0][:120])
        execute_sync(url, database, stmt, client=client)


def format_number(n: int) -> str:
    return f"{n:,}"

# ----------------------------------------------------------------------------
# Pipeline steps
# ----------------------------------------------------------------------------

def prepare_target(table: TableConfig, opts: IngestOptions, client: Optional[httpx.Client] = None) -> None:
    if opts.init_strategy is InitStrategy.REPLACE:
        log.info("  Dropping existing '%s' (replace)", table.name)
        execute_sync(opts.clickhouse_url, opts.database, f"DROP TABLE IF EXISTS {table.name}", client=client)
    elif opts.init_strategy is InitStrategy.APPEND:
        log.info("  Keeping existing rows in '%s' (append)", table.name)
    execute_sql(opts.clickhouse_url, opts.database, table.ddl_sql, client=client)


def decoder_command(table: TableConfig, opts: IngestOptions, input_path: str) -> List[str]:
    argv = [opts.hail_decoder]
    export_url = opts.clickhouse_url
    if opts.pool:
        export_url = opts.remote_clickhouse_url or opts.clickhouse_url
        argv += ["pool", "submit", opts.pool]
        if opts.force:
            argv.append("--force")
        if opts.redeploy_binary:
            argv.append("--redeploy-binary")
        if opts.batch_size is not None:
            argv += ["--batch-size", str(opts.batch_size)]
        argv.append("--")
    argv += ["export", "clickhouse", input_path, export_url, table.staging_name]
    if opts.limit is not None:
        argv += ["--limit", str(opts.limit)]
    return argv


def run_decoder(table: TableConfig, opts: IngestOptions, input_path: str) -> None:
    argv = decoder_command(table, opts, input_path)
    log.info("Running: %s", " ".join(argv))
    try:
        proc = subprocess.run(argv, check=False)
    except OSError as e:
        raise TaskFailure(f"Failed to run {opts.hail_decoder}: {e}")
    if proc.returncode != 0:
        raise TaskFailure(f"{opts.hail_decoder} export failed with status: {proc.returncode}")


def load_table(table: TableConfig, opts: IngestOptions, client: Optional[httpx.Client] = None) -> int:
    """Run the full staging/transform pipeline for one table; return the target row count."""
    input_path = opts.input or table.default_source
    url, db = opts.clickhouse_url, opts.database
    log.info("Loading %s from %s into %s", table.name, input_path, url)

    log.info("Step 1: Preparing target table '%s' (%s)...", table.name, opts.init_strategy.value)
    prepare_target(table, opts, client=client)

    log.info("Step 2: Dropping staging table '%s'...", table.staging_name)
    execute_sync(url, db, f"DROP TABLE IF EXISTS {table.staging_name}", client=client)

    log.info("Step 3: Exporting %s -> %s...", input_path, table.staging_name)
    run_decoder(table, opts, input_path)

    log.info("Step 4: Transforming staging -> target...")
    execute_sql(url, db, table.transform_sql, client=client)

    log.info("Step 5: Verifying row counts...")
    staging_count = count_rows_sync(url, db, table.staging_name, client=client)
    target_count = count_rows_sync(url, db, table.name, client=client)
    log.info("  Staging table '%s': %s rows", table.staging_name, format_number(staging_count))
    log.info("  Target table '%s': %s rows", table.name, format_number(target_count))

    if opts.keep_staging:
        log.info("Step 6: Keeping staging table '%s'", table.staging_name)
    else:
        log.info("Step 6: Dropping staging table '%s'...", table.staging_name)
        execute_sync(url, db, f"DROP TABLE IF EXISTS {table.staging_name}", client=client)

    log.info("Successfully loaded %s (%s rows)", table.name, format_number(target_count))
    return target_count

# ----------------------------------------------------------------------------
# CLI
# ----------------------------------------------------------------------------

def ingest_options(fn):
    """Flags shared by every load command."""

    @click.option("--clickhouse-url", default=DEFAULT_CLICKHOUSE_URL, show_default=True,
                  help="ClickHouse URL for DDL, transforms and counts")
    @click.option("--remote-clickhouse-url", default=None,
                  help="ClickHouse URL handed to pool workers (defaults to --clickhouse-url)")
    @click.option("--init-strategy", type=click.Choice([s.value for s in InitStrategy], case_sensitive=False),
                  default=InitStrategy.REPLACE.value, show_default=True)
    @click.option("--input", "input_path", default=None, help="Source table URI (defaults per table)")
    @click.option("--limit", type=int, default=None, help="Export at most N rows")
    @click.option("--keep-staging", is_flag=True, help="Keep the staging table after the transform")
    @click.option("--hail-decoder", default=DEFAULT_DECODER, show_default=True, help="Decoder binary")
    @click.option("--database", default="default", show_default=True)
    @click.option("--pool", default=None, help="Submit the export to this worker pool")
    @click.option("--force", is_flag=True, help="Pool: force submission")
    @click.option("--redeploy-binary", is_flag=True, help="Pool: redeploy the decoder binary")
    @click.option("--batch-size", type=int, default=None, help="Pool: rows per batch")
    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        opts = IngestOptions(
            clickhouse_url=kwargs.pop("clickhouse_url"),
            remote_clickhouse_url=kwargs.pop("remote_clickhouse_url"),
            init_strategy=InitStrategy(kwargs.pop("init_strategy").lower()),
            input=kwargs.pop("input_path"),
            limit=kwargs.pop("limit"),
            keep_staging=kwargs.pop("keep_staging"),
            hail_decoder=kwargs.pop("hail_decoder"),
            database=kwargs.pop("database"),
            pool=kwargs.pop("pool"),
            force=kwargs.pop("force"),
            redeploy_binary=kwargs.pop("redeploy_binary"),
            batch_size=kwargs.pop("batch_size"),
        )
        return fn(opts, *args, **kwargs)

    return wrapper


def _load_one(table: TableConfig, opts: IngestOptions) -> None:
    click.echo(click.style(f"=== Loading {table.name} ===", bold=True))
    try:
        count = load_table(table, opts)
    except AppError as e:
        click.echo(click.style(f"Failed to load {table.name}: {e}", fg="red"), err=True)
        sys.exit(1)
    click.echo(click.style(f"{table.name}: {format_number(count)} rows", fg="green"))


@click.group()
@click.option("--verbose", is_flag=True, help="Enable verbose logging (DEBUG level)")
def cli(verbose):
    """Load All-of-Us result tables into ClickHouse."""
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)


@cli.command("exome-annotations")
@ingest_options
def exome_annotations(opts: IngestOptions):
    """Load exome variant annotations."""
    _load_one(EXOME_ANNOTATIONS, opts)


@cli.command("genome-annotations")
@ingest_options
def genome_annotations(opts: IngestOptions):
    """Load genome (ACAF) variant annotations."""
    _load_one(GENOME_ANNOTATIONS, opts)


@cli.command("gene-models")
@ingest_options
def gene_models(opts: IngestOptions):
    """Load GRCh38 gene models."""
    _load_one(GENE_MODELS, opts)


@cli.command("analysis-metadata")
@ingest_options
def analysis_metadata(opts: IngestOptions):
    """Load phenotype metadata and rebuild analysis categories."""
    _load_one(ANALYSIS_METADATA, opts)


@cli.command("all")
@ingest_options
def load_all(opts: IngestOptions):
    """Load every managed table; failures are reported and skipped."""
    if opts.input:
        click.echo(click.style("--input is ignored by 'all'; each table uses its default source", fg="yellow"))
        opts.input = None
    loaded, failed = [], []
    for table in ALL_TABLES:
        click.echo(click.style(f"--- Loading {table.name} ---", bold=True))
        try:
            load_table(table, opts)
            loaded.append(table.name)
        except AppError as e:
            log.warning("Failed to load %s: %s", table.name, e)
            failed.append(table.name)
    click.echo()
    click.echo(click.style(f"Loaded: {', '.join(loaded) or '-'}", fg="green"))
    if failed:
        click.echo(click.style(f"Failed: {', '.join(failed)}", fg="yellow"))


@cli.command("status")
@click.option("--clickhouse-url", default=DEFAULT_CLICKHOUSE_URL, show_default=True)
@click.option("--database", default="default", show_default=True)
def status(clickhouse_url, database):
    """Show row counts for every managed table."""
    click.echo(click.style("=== ClickHouse Table Status ===", bold=True))
    click.echo()
    for table, description in STATUS_TABLES:
        count = count_rows_sync(clickhouse_url, database, table)
        shown = f"{format_number(count):>12} rows" if count > 0 else f"{'-':>12}"
        click.echo(f"  {table:<25} {shown} - {description}")
    click.echo()


def main():
    cli()


if __name__ == "__main__":
    main()
