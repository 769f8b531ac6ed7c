from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from axaou_server import config
from axaou_server.assets import AssetCache, load_assets
from axaou_server.clickhouse import ClickHouseClient
from axaou_server.errors import AppError, app_error_handler
from axaou_server.metadata import load_metadata
from axaou_server.routers import analyses, genes, phenotype, variants
from axaou_server.state import AppState, get_state

# ------------------------------------------------------------------------------
# Logging
# ------------------------------------------------------------------------------
logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s :: %(message)s",
    stream=sys.stdout,
)
log = logging.getLogger("axaou.main")

# ------------------------------------------------------------------------------
# Startup
# ------------------------------------------------------------------------------

async def build_state(assets_file: Optional[str] = None) -> AppState:
    client = ClickHouseClient()
    state = AppState(clickhouse=client)

    try:
        state.metadata = await load_metadata(client)
    except AppError as e:
        log.warning("Analysis metadata unavailable, starting with none: %s", e)

    path = assets_file or config.ASSETS_FILE
    if path:
        try:
            snapshot = load_assets(path)
            state.assets = AssetCache(snapshot)
            log.info("Seeded asset cache with %d assets from %s", len(snapshot.assets), path)
        except (OSError, ValueError) as e:
            log.warning("Could not read assets file %s: %s", path, e)
    return state


@asynccontextmanager
async def lifespan(app: FastAPI):
    if getattr(app.state, "axaou", None) is None:
        app.state.axaou = await build_state(app.state.assets_file)
    log.info(
        "Serving %s %s (clickhouse=%s db=%s, %d analyses)",
        config.APP_TITLE, config.APP_VERSION,
        config.CLICKHOUSE_URL, config.CLICKHOUSE_DATABASE, len(app.state.axaou.metadata),
    )
    try:
        yield
    finally:
        close = getattr(app.state.axaou.clickhouse, "aclose", None)
        if close is not None:
            await close()

# ------------------------------------------------------------------------------
# FastAPI app
# ------------------------------------------------------------------------------

def create_app() -> FastAPI:
    app = FastAPI(
        title=config.APP_TITLE,
        version=config.APP_VERSION,
        docs_url=config.DOCS_URL,
        openapi_url=config.OPENAPI_URL,
        root_path=config.ROOT_PATH,
        lifespan=lifespan,
    )
    app.state.axaou = None
    app.state.assets_file = None

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ALLOW_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(AppError, app_error_handler)

    for r in (analyses.router, genes.router, phenotype.router, variants.router):
        app.include_router(r, prefix="/api")

    # --------------------------------------------------------------------------
    # Health
    # --------------------------------------------------------------------------
    @app.get("/healthz")
    @app.get("/api/healthz")
    async def healthz():
        return {"ok": True, "version": config.APP_VERSION}

    @app.get("/readyz")
    @app.get("/api/readyz")
    async def readyz(state: AppState = Depends(get_state)):
        try:
            clickhouse_ok = await state.clickhouse.health_check()
        except AppError as e:
            log.warning("readyz: ClickHouse health check failed: %s", e)
            clickhouse_ok = False
        snapshot = state.assets.snapshot
        return {
            "ok": clickhouse_ok,
            "clickhouse": clickhouse_ok,
            "analyses": len(state.metadata),
            "assets_loaded": snapshot is not None,
            "assets": len(snapshot.assets) if snapshot is not None else 0,
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("axaou_server.main:app", host="0.0.0.0", port=config.PORT, log_level=config.LOG_LEVEL.lower())
