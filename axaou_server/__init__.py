"""AxAoU browser server: read-only GWAS API over ClickHouse and GCS."""

__version__ = "0.4.0"
