from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, List, Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Path, Query
from fastapi.responses import StreamingResponse

from axaou_server import queries
from axaou_server.errors import AppError, DataTransform, NotFound
from axaou_server.models import (
    GeneResultsResponse,
    LookupResult,
    ManhattanOverlay,
    ManhattanResponse,
    PlotRecord,
    UnifiedOverview,
)
from axaou_server.overview import BURDEN_THRESHOLD, OVERVIEW_N_PEAKS, build_overview
from axaou_server.peaks import DEFAULT_N_PEAKS, fetch_peaks
from axaou_server.shaping import (
    gene_result_to_api,
    locus_row_to_api,
    locus_variant_to_api,
    plot_row_to_api,
    qq_point_to_api,
    significant_hit_to_api,
)
from axaou_server.state import AppState, Timer, get_state
from axaou_server.storage import parse_gcs_uri

log = logging.getLogger("axaou.routers.phenotype")

router = APIRouter(prefix="/phenotype", tags=["Phenotype"])

DEFAULT_PLOT_TYPE = "genome_manhattan"
IMAGE_CACHE_CONTROL = "public, max-age=86400"

# ------------------------------------------------------------------------------
# Loci / significant / plots / QQ
# ------------------------------------------------------------------------------

@router.get("/{analysis_id}/loci", response_model=LookupResult)
async def phenotype_loci(
    analysis_id: str = Path(...),
    ancestry: str = Query("meta"),
    limit: int = Query(queries.DEFAULT_LIMIT, ge=1, le=100000),
    state: AppState = Depends(get_state),
):
    timer = Timer()
    q = queries.loci(analysis_id, ancestry, limit)
    rows = await state.clickhouse.fetch_all(q.sql, q.params)
    return timer.lookup([locus_row_to_api(r) for r in rows])


@router.get("/{analysis_id}/loci/{locus_id}/variants", response_model=LookupResult)
async def locus_variants(
    analysis_id: str = Path(...),
    locus_id: str = Path(...),
    ancestry: str = Query("meta"),
    sequencing_type: str = Query("genome"),
    state: AppState = Depends(get_state),
):
    timer = Timer()
    q = queries.locus_variants(analysis_id, locus_id, ancestry, sequencing_type)
    rows = await state.clickhouse.fetch_all(q.sql, q.params)
    return timer.lookup([locus_variant_to_api(r) for r in rows])


@router.get("/{analysis_id}/significant", response_model=LookupResult)
async def significant_variants(
    analysis_id: str = Path(...),
    ancestry: str = Query("meta"),
    sequencing_type: Optional[str] = Query(None),
    limit: int = Query(50000, ge=1, le=500000),
    state: AppState = Depends(get_state),
):
    timer = Timer()
    q = queries.significant_locus_variants(analysis_id, ancestry, sequencing_type, limit)
    rows = await state.clickhouse.fetch_all(q.sql, q.params)
    return timer.lookup([locus_variant_to_api(r) for r in rows])


@router.get("/{analysis_id}/plots", response_model=LookupResult)
async def phenotype_plots(
    analysis_id: str = Path(...),
    state: AppState = Depends(get_state),
):
    timer = Timer()
    q = queries.phenotype_plots(analysis_id)
    rows = await state.clickhouse.fetch_all(q.sql, q.params)
    return timer.lookup([plot_row_to_api(r) for r in rows])


@router.get("/{analysis_id}/qq", response_model=LookupResult)
async def qq_plot(
    analysis_id: str = Path(...),
    ancestry: str = Query("meta"),
    sequencing_type: str = Query("genomes"),
    contig: Optional[str] = Query(None),
    state: AppState = Depends(get_state),
):
    timer = Timer()
    q = queries.qq_points(analysis_id, ancestry, sequencing_type, contig)
    rows = await state.clickhouse.fetch_all(q.sql, q.params)
    return timer.lookup([qq_point_to_api(r) for r in rows])

# ------------------------------------------------------------------------------
# Manhattan
# ------------------------------------------------------------------------------

async def _plot_record(state: AppState, analysis_id: str, ancestry: str, plot_type: str) -> PlotRecord:
    q = queries.phenotype_plot(analysis_id, plot_type, ancestry)
    row = await state.clickhouse.fetch_optional(q.sql, q.params)
    if row is None:
        raise NotFound(
            f"Manhattan plot not found for phenotype '{analysis_id}' "
            f"with plot_type '{plot_type}' and ancestry '{ancestry}'"
        )
    return plot_row_to_api(row)


def _overlay_sequencing_type(plot_type: str) -> str:
    return "exome" if plot_type == "exome_manhattan" else "genome"


async def build_overlay(state: AppState, analysis_id: str, ancestry: str, plot_type: str) -> ManhattanOverlay:
    seq = _overlay_sequencing_type(plot_type)
    q = queries.manhattan_hits(analysis_id, ancestry, seq)
    rows = await state.clickhouse.fetch_all(q.sql, q.params)
    hits = [significant_hit_to_api(r) for r in rows]

    peaks = []
    if plot_type != "gene_manhattan" and hits:
        try:
            peaks = await fetch_peaks(state.clickhouse, analysis_id, ancestry, seq, DEFAULT_N_PEAKS)
        except AppError as e:
            log.warning("Peak annotation failed for %s/%s/%s: %s", analysis_id, ancestry, seq, e)
    return ManhattanOverlay(significant_hits=hits, hit_count=len(hits), peaks=peaks)


@router.get("/{analysis_id}/manhattan", response_model=ManhattanResponse)
async def manhattan(
    analysis_id: str = Path(...),
    ancestry: Optional[str] = Query(None),
    plot_type: Optional[str] = Query(None),
    state: AppState = Depends(get_state),
):
    anc = ancestry or "meta"
    pt = plot_type or DEFAULT_PLOT_TYPE
    await _plot_record(state, analysis_id, anc, pt)

    overlay: Optional[ManhattanOverlay]
    try:
        overlay = await build_overlay(state, analysis_id, anc, pt)
    except AppError as e:
        log.debug("Overlay query failed for %s: %s", analysis_id, e)
        overlay = None

    params = {k: v for k, v in (("ancestry", ancestry), ("plot_type", plot_type)) if v}
    image_url = f"/api/phenotype/{analysis_id}/manhattan/image"
    if params:
        image_url += "?" + urlencode(params)
    return ManhattanResponse(
        image_url=image_url,
        overlay=overlay,
        has_overlay=overlay is not None and overlay.hit_count > 0,
    )


@router.get("/{analysis_id}/manhattan/image")
async def manhattan_image(
    analysis_id: str = Path(...),
    ancestry: Optional[str] = Query(None),
    plot_type: Optional[str] = Query(None),
    state: AppState = Depends(get_state),
):
    plot = await _plot_record(state, analysis_id, ancestry or "meta", plot_type or DEFAULT_PLOT_TYPE)
    if not plot.gcs_uri.lower().endswith(".png"):
        raise DataTransform(f"Expected PNG file, got: {plot.gcs_uri}")
    parsed = parse_gcs_uri(plot.gcs_uri)
    if parsed is None:
        raise DataTransform(f"Invalid GCS URI: {plot.gcs_uri}")
    bucket, path = parsed
    store = await state.image_store(bucket)
    chunks = await asyncio.to_thread(store.open_stream, path)
    return StreamingResponse(
        chunks,
        media_type="image/png",
        headers={"Cache-Control": IMAGE_CACHE_CONTROL},
    )


@router.get("/{analysis_id}/manhattan/overlay", response_model=ManhattanOverlay)
async def manhattan_overlay(
    analysis_id: str = Path(...),
    ancestry: Optional[str] = Query(None),
    plot_type: Optional[str] = Query(None),
    state: AppState = Depends(get_state),
):
    return await build_overlay(state, analysis_id, ancestry or "meta", plot_type or DEFAULT_PLOT_TYPE)

# ------------------------------------------------------------------------------
# Overview
# ------------------------------------------------------------------------------

async def _or_empty(what: str, aw: Awaitable[List[Any]]) -> List[Any]:
    try:
        return await aw
    except AppError as e:
        log.warning("Overview %s fetch failed: %s", what, e)
        return []


@router.get("/{analysis_id}/overview", response_model=UnifiedOverview, response_model_exclude_none=True)
async def overview(
    analysis_id: str = Path(...),
    ancestry: str = Query("meta"),
    state: AppState = Depends(get_state),
):
    burden_q = queries.significant_burden(analysis_id, ancestry, BURDEN_THRESHOLD)
    genome_peaks, exome_peaks, burden_rows = await asyncio.gather(
        _or_empty("genome peaks", fetch_peaks(state.clickhouse, analysis_id, ancestry, "genome", OVERVIEW_N_PEAKS)),
        _or_empty("exome peaks", fetch_peaks(state.clickhouse, analysis_id, ancestry, "exome", OVERVIEW_N_PEAKS)),
        _or_empty("burden", state.clickhouse.fetch_all(burden_q.sql, burden_q.params)),
    )
    log.debug(
        "overview %s/%s: %d genome peaks, %d exome peaks, %d burden rows",
        analysis_id, ancestry, len(genome_peaks), len(exome_peaks), len(burden_rows),
    )
    return build_overview(analysis_id, ancestry, genome_peaks, exome_peaks, burden_rows)

# ------------------------------------------------------------------------------
# Gene burden results
# ------------------------------------------------------------------------------

@router.get("/{analysis_id}/genes", response_model=LookupResult)
async def phenotype_genes(
    analysis_id: str = Path(...),
    ancestry: str = Query("meta"),
    annotation: Optional[str] = Query(None),
    max_maf: float = Query(queries.DEFAULT_MAX_MAF),
    limit: int = Query(queries.DEFAULT_LIMIT, ge=1, le=100000),
    offset: int = Query(0, ge=0),
    state: AppState = Depends(get_state),
):
    timer = Timer()
    q = queries.phenotype_gene_results(analysis_id, ancestry, annotation, max_maf, limit, offset)
    rows = await state.clickhouse.fetch_all(q.sql, q.params)
    return timer.lookup([gene_result_to_api(r) for r in rows])


@router.get("/{analysis_id}/genes/{gene}", response_model=GeneResultsResponse)
async def phenotype_gene(
    analysis_id: str = Path(...),
    gene: str = Path(..., description="Ensembl gene id or gene symbol"),
    ancestry: str = Query("meta"),
    annotation: Optional[str] = Query(None),
    max_maf: float = Query(queries.DEFAULT_MAX_MAF),
    state: AppState = Depends(get_state),
):
    q = queries.phenotype_gene_result(analysis_id, gene, ancestry, annotation, max_maf)
    rows = await state.clickhouse.fetch_all(q.sql, q.params)
    if not rows:
        raise NotFound(f"No gene results for '{gene}' in analysis '{analysis_id}'")
    results = [gene_result_to_api(r) for r in rows]
    return GeneResultsResponse(
        gene_id=results[0].gene_id,
        gene_symbol=results[0].gene_symbol,
        results=results,
    )
