"""Server entry points: run the API, or run asset discovery once."""

from __future__ import annotations

import asyncio
import logging
import sys
from collections import Counter
from typing import Optional, Set

import click

from axaou_server import __version__, config
from axaou_server.assets import discover_assets, save_assets
from axaou_server.clickhouse import ClickHouseClient
from axaou_server.errors import AppError
from axaou_server.metadata import get_valid_phenotypes, load_metadata

log = logging.getLogger("axaou.cli")


async def _valid_phenotypes() -> Optional[Set[str]]:
    client = ClickHouseClient()
    try:
        metadata = await load_metadata(client)
    finally:
        await client.aclose()
    return get_valid_phenotypes(metadata) if metadata else None


@click.group()
@click.version_option(__version__)
def cli():
    """AxAoU browser API server."""
    logging.basicConfig(
        level=config.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s :: %(message)s",
        stream=sys.stdout,
    )


@cli.command()
@click.option("--host", default="0.0.0.0", show_default=True)
@click.option("--port", type=int, default=3001, show_default=True)
@click.option("--assets-file", type=click.Path(exists=True, dir_okay=False), default=None,
              help="JSON snapshot written by 'discover'; seeds the asset cache")
def serve(host, port, assets_file):
    """Run the HTTP API."""
    import uvicorn

    from axaou_server.main import app

    app.state.assets_file = assets_file
    click.echo(click.style(f"Serving {config.APP_TITLE} {config.APP_VERSION} on {host}:{port}", bold=True))
    uvicorn.run(app, host=host, port=port, log_level=config.LOG_LEVEL.lower())


@cli.command()
@click.option("--output", "-o", type=click.Path(dir_okay=False), default="assets.json", show_default=True)
@click.option("--no-filter", is_flag=True, help="Keep phenotype directories with no metadata row")
@click.option("--bucket", default=None, help=f"Bucket to scan (default {config.ASSETS_BUCKET})")
@click.option("--root", default=None, help=f"Root prefix (default {config.ASSETS_ROOT})")
def discover(output, no_filter, bucket, root):
    """Discover per-phenotype result tables and write a JSON snapshot."""
    valid: Optional[Set[str]] = None
    if not no_filter:
        try:
            valid = asyncio.run(_valid_phenotypes())
        except AppError as e:
            click.echo(click.style(f"Metadata unavailable, scanning unfiltered: {e}", fg="yellow"))
        if valid is not None:
            click.echo(f"Filtering to {len(valid) // 2} known analyses")

    result = asyncio.run(discover_assets(bucket=bucket, root=root, valid_phenotypes=valid))
    save_assets(output, result)
    log.info("Discovery finished: %d assets, %d warnings", len(result.assets), len(result.warnings))

    click.echo(click.style(f"Wrote {len(result.assets)} assets to {output}", fg="green"))
    click.echo(click.style("By ancestry:", bold=True))
    for anc, n in sorted(Counter(a.ancestry_group.value for a in result.assets).items()):
        click.echo(f"  {anc:<6} {n:>8,}")
    click.echo(click.style("By type:", bold=True))
    for t, n in sorted(Counter(a.asset_type.value for a in result.assets).items()):
        click.echo(f"  {t:<18} {n:>8,}")
    for w in result.warnings:
        click.echo(click.style(f"warning: {w}", fg="yellow"))


def main():
    cli()


if __name__ == "__main__":
    main()
