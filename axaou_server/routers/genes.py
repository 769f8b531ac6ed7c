from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Path, Query

from axaou_server import queries
from axaou_server.errors import NotFound
from axaou_server.models import GeneModel, LookupResult
from axaou_server.shaping import gene_association_to_api, gene_model_from_row
from axaou_server.state import AppState, Timer, get_state
from axaou_server.xpos import parse_interval, split_interval

log = logging.getLogger("axaou.routers.genes")

router = APIRouter(prefix="/genes", tags=["Genes"])

# ------------------------------------------------------------------------------
# Gene models
# ------------------------------------------------------------------------------

@router.get("/model/interval/{interval}", response_model=LookupResult)
async def gene_models_in_interval(
    interval: str = Path(..., description="contig:start-stop, e.g. chr7:150000-250000"),
    limit: int = Query(queries.DEFAULT_LIMIT, ge=1, le=10000),
    state: AppState = Depends(get_state),
):
    timer = Timer()
    contig, start, stop = split_interval(interval)
    q = queries.gene_models_in_interval(contig, start, stop, limit)
    rows = await state.clickhouse.fetch_all(q.sql, q.params)
    return timer.lookup([gene_model_from_row(r) for r in rows])


@router.get("/model/{gene_id}", response_model=GeneModel)
async def gene_model(
    gene_id: str = Path(..., description="Ensembl gene id or gene symbol"),
    state: AppState = Depends(get_state),
):
    q = queries.gene_model(gene_id)
    row = await state.clickhouse.fetch_optional(q.sql, q.params)
    if row is None:
        raise NotFound(f"Gene '{gene_id}' not found")
    return gene_model_from_row(row)

# ------------------------------------------------------------------------------
# Gene associations
# ------------------------------------------------------------------------------

@router.get("/phewas/{gene_id}", response_model=LookupResult)
async def gene_phewas(
    gene_id: str = Path(..., description="Ensembl gene id or gene symbol"),
    ancestry: str = Query("meta"),
    annotation: Optional[str] = Query(None),
    state: AppState = Depends(get_state),
):
    timer = Timer()
    q = queries.gene_phewas(gene_id, ancestry, annotation)
    rows = await state.clickhouse.fetch_all(q.sql, q.params)
    return timer.lookup([gene_association_to_api(r) for r in rows])


@router.get("/top-associations", response_model=LookupResult)
async def top_gene_associations(
    ancestry: str = Query("meta"),
    annotation: Optional[str] = Query(None),
    min_p: float = Query(0.0, ge=0.0),
    max_p: float = Query(1e-6, ge=0.0),
    limit: int = Query(100, ge=1, le=10000),
    state: AppState = Depends(get_state),
):
    timer = Timer()
    q = queries.gene_top_associations(ancestry, annotation, min_p, max_p, limit)
    rows = await state.clickhouse.fetch_all(q.sql, q.params)
    return timer.lookup([gene_association_to_api(r) for r in rows])


@router.get("/all-symbols", response_model=LookupResult)
async def all_gene_symbols(state: AppState = Depends(get_state)):
    timer = Timer()
    q = queries.gene_all_symbols()
    rows = await state.clickhouse.fetch_all(q.sql, q.params)
    return timer.lookup([r["gene_symbol"] for r in rows])


@router.get("/associations", response_model=LookupResult)
async def gene_associations(
    gene_id: str = Query(...),
    analysis_id: str = Query(...),
    ancestry_group: str = Query("meta"),
    state: AppState = Depends(get_state),
):
    timer = Timer()
    q = queries.gene_associations_for(gene_id, analysis_id, ancestry_group)
    rows = await state.clickhouse.fetch_all(q.sql, q.params)
    return timer.lookup([gene_association_to_api(r) for r in rows])


@router.get("/associations/interval/{interval}", response_model=LookupResult)
async def gene_associations_in_interval(
    interval: str = Path(...),
    ancestry: str = Query("meta"),
    annotation: Optional[str] = Query(None),
    limit: int = Query(queries.DEFAULT_LIMIT, ge=1, le=100000),
    state: AppState = Depends(get_state),
):
    timer = Timer()
    xstart, xend = parse_interval(interval)
    q = queries.gene_associations_in_interval(xstart, xend, ancestry, annotation, limit)
    rows = await state.clickhouse.fetch_all(q.sql, q.params)
    log.debug("gene associations in %s: %d rows", interval, len(rows))
    return timer.lookup([gene_association_to_api(r) for r in rows])
