"""
Runtime configuration
=====================

Everything is read once from the environment at import time. Nothing here
touches the network.

Column store
------------
CLICKHOUSE_URL        (default: http://localhost:8123)
CLICKHOUSE_DATABASE   (default: default)
CLICKHOUSE_USER       (optional, sent as X-ClickHouse-User)
CLICKHOUSE_PASSWORD   (optional, sent as X-ClickHouse-Key)
CLICKHOUSE_TIMEOUT_S  (default: 60 seconds)

Object store / asset discovery
------------------------------
ASSETS_BUCKET           (default: aou_results)
ASSETS_ROOT             (default: 414k/ht_results)
ASSETS_MAX_CONCURRENCY  (default: 50 in-flight phenotype listings per ancestry)
ASSETS_FILE             (optional JSON snapshot written by `axaou-server discover`)

HTTP surface
------------
PORT, LOG_LEVEL, CORS_ALLOW_ORIGINS, APP_TITLE, APP_VERSION, ROOT_PATH,
DOCS_URL, OPENAPI_URL
"""

from __future__ import annotations

import os
from typing import List, Optional

from axaou_server import __version__

# ----------------------------------------------------------------------------
# Helpers
# ----------------------------------------------------------------------------

def _float_env(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except Exception:
        return default

def _int_env(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except Exception:
        return default

def _list_env(name: str, default: str) -> List[str]:
    return [v.strip() for v in os.getenv(name, default).split(",") if v.strip()]

# ----------------------------------------------------------------------------
# Column store
# ----------------------------------------------------------------------------

CLICKHOUSE_URL: str = os.getenv("CLICKHOUSE_URL", "http://localhost:8123")
CLICKHOUSE_DATABASE: str = os.getenv("CLICKHOUSE_DATABASE", "default")
CLICKHOUSE_USER: Optional[str] = os.getenv("CLICKHOUSE_USER") or None
CLICKHOUSE_PASSWORD: Optional[str] = os.getenv("CLICKHOUSE_PASSWORD") or None
CLICKHOUSE_TIMEOUT_S: float = _float_env("CLICKHOUSE_TIMEOUT_S", 60.0)

# ----------------------------------------------------------------------------
# Object store
# ----------------------------------------------------------------------------

ASSETS_BUCKET: str = os.getenv("ASSETS_BUCKET", "aou_results")
ASSETS_ROOT: str = os.getenv("ASSETS_ROOT", "414k/ht_results").strip("/")
ASSETS_MAX_CONCURRENCY: int = _int_env("ASSETS_MAX_CONCURRENCY", 50)
ASSETS_FILE: Optional[str] = os.getenv("ASSETS_FILE") or None

# ----------------------------------------------------------------------------
# HTTP surface
# ----------------------------------------------------------------------------

LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
PORT: int = _int_env("PORT", 8000)
CORS_ALLOW_ORIGINS: List[str] = _list_env("CORS_ALLOW_ORIGINS", "*")

APP_TITLE: str = os.getenv("APP_TITLE", "AxAoU Browser API")
APP_VERSION: str = os.getenv("APP_VERSION", __version__)
ROOT_PATH: str = os.getenv("ROOT_PATH", "")
DOCS_URL: str = os.getenv("DOCS_URL", "/docs")
OPENAPI_URL: str = os.getenv("OPENAPI_URL", "/openapi.json")
