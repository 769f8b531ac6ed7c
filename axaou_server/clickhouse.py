from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx

from axaou_server import config
from axaou_server.errors import DataTransform

log = logging.getLogger("axaou.clickhouse")

USER_AGENT = "axaou-server (+clickhouse-http)"

DEFAULT_TIMEOUT = httpx.Timeout(config.CLICKHOUSE_TIMEOUT_S, connect=4.0)

Row = Dict[str, Any]

# Settings sent with every read: Int64/UInt64 come back as JSON numbers and
# unmatched LEFT JOIN columns come back as null rather than type defaults.
_READ_SETTINGS = {
    "join_use_nulls": "1",
    "output_format_json_quote_64bit_integers": "0",
    "output_format_json_quote_denormals": "0",
}


def _headers(user: Optional[str], password: Optional[str]) -> Dict[str, str]:
    base = {"User-Agent": USER_AGENT}
    if user:
        base["X-ClickHouse-User"] = user
    if password:
        base["X-ClickHouse-Key"] = password
    return base

# ----------------------------------------------------------------------------
# Positional parameter binding
# ----------------------------------------------------------------------------

def _escape_param(value: str) -> str:
    # HTTP query parameters are parsed in TSV-escaped form.
    return value.replace("\\", "\\\\").replace("\t", "\\t").replace("\n", "\\n")


def _param_type(value: Any) -> Tuple[str, str]:
    if isinstance(value, bool):
        return "Bool", "true" if value else "false"
    if isinstance(value, int):
        return "Int64", str(value)
    if isinstance(value, float):
        return "Float64", repr(value)
    if isinstance(value, str):
        return "String", _escape_param(value)
    raise TypeError(f"Unsupported bind value type: {type(value).__name__}")


def bind_positional(sql: str, params: Sequence[Any]) -> Tuple[str, Dict[str, str]]:
    """Rewrite ``?`` placeholders into typed ClickHouse query parameters.

    ``?`` inside single-quoted literals is left alone. The returned dict is
    sent as ``param_<name>`` URL parameters so values never enter the SQL
    text.
    """
    out: List[str] = []
    bound: Dict[str, str] = {}
    idx = 0
    in_literal = False
    i = 0
    while i < len(sql):
        ch = sql[i]
        if ch == "'" and (i == 0 or sql[i - 1] != "\\"):
            in_literal = not in_literal
            out.append(ch)
        elif ch == "?" and not in_literal:
            if idx >= len(params):
                raise ValueError("More placeholders than bound parameters")
            name = f"p{idx}"
            ch_type, rendered = _param_type(params[idx])
            out.append(f"{{{name}:{ch_type}}}")
            bound[f"param_{name}"] = rendered
            idx += 1
        else:
            out.append(ch)
        i += 1
    if idx != len(params):
        raise ValueError(f"{len(params)} parameters bound but {idx} placeholders found")
    return "".join(out), bound


def _parse_json_each_row(text: str) -> List[Row]:
    rows: List[Row] = []
    for line in text.splitlines():
        line = line.strip()
        if line:
            rows.append(json.loads(line))
    return rows

# ----------------------------------------------------------------------------
# Async client (request path)
# ----------------------------------------------------------------------------

class ClickHouseClient:
    """Shared async handle on the ClickHouse HTTP interface."""

    def __init__(
        self,
        url: Optional[str] = None,
        database: Optional[str] = None,
        user: Optional[str] = None,
        password: Optional[str] = None,
        timeout: Optional[httpx.Timeout] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = (url or config.CLICKHOUSE_URL).rstrip("/")
        self.database = database or config.CLICKHOUSE_DATABASE
        self._client = httpx.AsyncClient(
            timeout=timeout or DEFAULT_TIMEOUT,
            headers=_headers(user or config.CLICKHOUSE_USER, password or config.CLICKHOUSE_PASSWORD),
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _post(self, sql: str, params: Sequence[Any], settings: Dict[str, str]) -> str:
        text, bound = bind_positional(sql, params)
        query = {"database": self.database, **settings, **bound}
        try:
            r = await self._client.post(f"{self.url}/", params=query, content=text.encode("utf-8"))
        except httpx.HTTPError as e:
            log.warning("ClickHouse transport error: %s", e)
            raise DataTransform(f"ClickHouse query error: {e}")
        if r.status_code >= 400:
            body = r.text.strip()[:500]
            log.warning("ClickHouse returned %s: %s", r.status_code, body)
            raise DataTransform(f"ClickHouse query error: {body}")
        return r.text

    async def fetch_all(self, sql: str, params: Sequence[Any] = ()) -> List[Row]:
        text = await self._post(f"{sql.rstrip().rstrip(';')}\nFORMAT JSONEachRow", params, _READ_SETTINGS)
        try:
            return _parse_json_each_row(text)
        except ValueError as e:
            raise DataTransform(f"Malformed ClickHouse response: {e}")

    async def fetch_optional(self, sql: str, params: Sequence[Any] = ()) -> Optional[Row]:
        rows = await self.fetch_all(sql, params)
        return rows[0] if rows else None

    async def execute(self, sql: str, params: Sequence[Any] = ()) -> None:
        await self._post(sql, params, {})

    async def health_check(self) -> bool:
        rows = await self.fetch_all("SELECT 1 AS ok")
        return bool(rows) and int(rows[0].get("ok", 0)) == 1

# ----------------------------------------------------------------------------
# Sync helpers (ingestion CLI)
# ----------------------------------------------------------------------------

def execute_sync(url: str, database: str, sql: str, *, client: Optional[httpx.Client] = None) -> str:
    """POST one statement to ``{url}/?database={database}``; raise on failure."""
    own = client is None
    c = client or httpx.Client(timeout=httpx.Timeout(600.0, connect=4.0), headers=_headers(None, None))
    try:
        r = c.post(f"{url.rstrip('/')}/", params={"database": database}, content=sql.encode("utf-8"))
    except httpx.HTTPError as e:
        raise DataTransform(f"ClickHouse request failed: {e}")
    finally:
        if own:
            c.close()
    if r.status_code >= 400:
        raise DataTransform(f"ClickHouse error ({r.status_code}): {r.text.strip()[:500]}")
    return r.text


def count_rows_sync(url: str, database: str, table: str, *, client: Optional[httpx.Client] = None) -> int:
    # Missing tables and transport failures both read as 0.
    try:
        text = execute_sync(url, database, f"SELECT count() FROM {table}", client=client)
        return int(text.strip() or 0)
    except (DataTransform, ValueError) as e:
        log.debug("count(%s) failed: %s", table, e)
        return 0
