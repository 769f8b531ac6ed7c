from __future__ import annotations

import logging
from typing import Any, Callable, Dict

from fastapi import APIRouter, Depends, Path, Query

from axaou_server import queries
from axaou_server.errors import NotFound
from axaou_server.models import LookupResult, SequencingType, VariantAssociation
from axaou_server.shaping import (
    annotation_extended_to_api,
    annotation_to_api,
    gene_variant_to_api,
    locus_variant_to_api,
    significant_variant_to_api,
)
from axaou_server.state import AppState, Timer, get_state
from axaou_server.xpos import parse_interval, parse_variant_id

log = logging.getLogger("axaou.routers.variants")

router = APIRouter(prefix="/variants", tags=["Variants"])


def _annotation_shaper(extended: bool, sequencing_type: str) -> Callable[[Dict[str, Any]], Any]:
    if not extended:
        return annotation_to_api
    seq = SequencingType.parse(sequencing_type).singular
    return lambda row: annotation_extended_to_api(row, seq)

# ------------------------------------------------------------------------------
# Annotations
# ------------------------------------------------------------------------------

@router.get("/annotations/interval/{interval}", response_model=LookupResult)
async def annotations_in_interval(
    interval: str = Path(...),
    limit: int = Query(queries.DEFAULT_LIMIT, ge=1, le=100000),
    sequencing_type: str = Query("genome"),
    extended: bool = Query(False),
    state: AppState = Depends(get_state),
):
    timer = Timer()
    shape = _annotation_shaper(extended, sequencing_type)
    xstart, xend = parse_interval(interval)
    q = queries.annotations_in_interval(
        xstart, xend, limit=limit, extended=extended, sequencing_type=sequencing_type
    )
    rows = await state.clickhouse.fetch_all(q.sql, q.params)
    return timer.lookup([shape(r) for r in rows])


@router.get("/annotations/gene/{gene_id}", response_model=LookupResult)
async def annotations_in_gene(
    gene_id: str = Path(..., description="Ensembl gene id or gene symbol"),
    sequencing_type: str = Query("genome"),
    extended: bool = Query(False),
    state: AppState = Depends(get_state),
):
    timer = Timer()
    shape = _annotation_shaper(extended, sequencing_type)
    gq = queries.gene_exons(gene_id)
    gene = await state.clickhouse.fetch_optional(gq.sql, gq.params)
    if gene is None:
        return timer.lookup([])
    ranges = queries.exon_xpos_ranges(
        gene["chrom"], gene.get("exons.start") or [], gene.get("exons.stop") or []
    )
    if not ranges:
        return timer.lookup([])
    q = queries.annotations_in_ranges(ranges, extended=extended, sequencing_type=sequencing_type)
    rows = await state.clickhouse.fetch_all(q.sql, q.params)
    log.debug("annotations in %s: %d exon ranges, %d rows", gene_id, len(ranges), len(rows))
    return timer.lookup([shape(r) for r in rows])


@router.get("/annotations/{variant_id}")
async def annotation(
    variant_id: str = Path(..., description="contig-pos-ref-alt"),
    sequencing_type: str = Query("genome"),
    extended: bool = Query(False),
    state: AppState = Depends(get_state),
):
    shape = _annotation_shaper(extended, sequencing_type)
    xpos, ref, alt = parse_variant_id(variant_id)
    q = queries.annotation_by_variant(
        xpos, ref, alt, extended=extended, sequencing_type=sequencing_type
    )
    row = await state.clickhouse.fetch_optional(q.sql, q.params)
    if row is None:
        raise NotFound(f"Variant '{variant_id}' not found")
    return shape(row)

# ------------------------------------------------------------------------------
# Associations
# ------------------------------------------------------------------------------

@router.get("/associations/variant/{variant_id}", response_model=VariantAssociation)
async def association_by_variant(
    variant_id: str = Path(...),
    analysis_id: str = Query(...),
    state: AppState = Depends(get_state),
):
    xpos, ref, alt = parse_variant_id(variant_id)
    q = queries.association_by_variant(analysis_id, xpos, ref, alt)
    row = await state.clickhouse.fetch_optional(q.sql, q.params)
    if row is None:
        raise NotFound(f"Variant '{variant_id}' not found for analysis '{analysis_id}'")
    return significant_variant_to_api(row)


@router.get("/associations/interval/{interval}", response_model=LookupResult)
async def associations_in_interval(
    interval: str = Path(...),
    analysis_id: str = Query(...),
    limit: int = Query(queries.DEFAULT_LIMIT, ge=1, le=100000),
    state: AppState = Depends(get_state),
):
    timer = Timer()
    xstart, xend = parse_interval(interval)
    q = queries.associations_in_interval(analysis_id, xstart, xend, limit)
    rows = await state.clickhouse.fetch_all(q.sql, q.params)
    return timer.lookup([significant_variant_to_api(r) for r in rows])


@router.get("/associations/phewas/{variant_id}", response_model=LookupResult)
async def variant_phewas(
    variant_id: str = Path(...),
    state: AppState = Depends(get_state),
):
    timer = Timer()
    xpos, ref, alt = parse_variant_id(variant_id)
    q = queries.variant_phewas(xpos, ref, alt)
    rows = await state.clickhouse.fetch_all(q.sql, q.params)
    return timer.lookup([significant_variant_to_api(r) for r in rows])


@router.get("/associations/top", response_model=LookupResult)
async def top_variants(
    ancestry: str = Query("meta"),
    min_p: float = Query(1e-10, ge=0.0),
    max_p: float = Query(1e-6, ge=0.0),
    limit: int = Query(queries.DEFAULT_LIMIT, ge=1, le=100000),
    state: AppState = Depends(get_state),
):
    timer = Timer()
    q = queries.top_variants(ancestry, min_p, max_p, limit)
    rows = await state.clickhouse.fetch_all(q.sql, q.params)
    return timer.lookup([significant_variant_to_api(r) for r in rows])


@router.get("/associations/gene/{gene_id}", response_model=LookupResult)
async def gene_region_associations(
    gene_id: str = Path(..., description="Ensembl gene id or gene symbol"),
    analysis_id: str = Query(...),
    ancestry: str = Query("meta"),
    sequencing_type: str = Query("exomes"),
    limit: int = Query(10000, ge=1, le=100000),
    state: AppState = Depends(get_state),
):
    timer = Timer()
    gq = queries.gene_coordinates(gene_id)
    gene = await state.clickhouse.fetch_optional(gq.sql, gq.params)
    if gene is None:
        raise NotFound(f"Gene {gene_id} not found")
    xstart, xend = queries.gene_region_xpos(gene["chrom"], int(gene["start"]), int(gene["stop"]))
    q = queries.gene_region_variants(analysis_id, ancestry, sequencing_type, xstart, xend, limit)
    rows = await state.clickhouse.fetch_all(q.sql, q.params)
    return timer.lookup([gene_variant_to_api(r) for r in rows])


@router.get("/associations/manhattan/{analysis_id}/top", response_model=LookupResult)
async def manhattan_top(
    analysis_id: str = Path(...),
    ancestry: str = Query("meta"),
    sequencing_type: str = Query("genomes"),
    limit: int = Query(queries.DEFAULT_LIMIT, ge=1, le=100000),
    state: AppState = Depends(get_state),
):
    timer = Timer()
    q = queries.manhattan_top(analysis_id, ancestry, sequencing_type, limit)
    rows = await state.clickhouse.fetch_all(q.sql, q.params)
    return timer.lookup([locus_variant_to_api(r) for r in rows])
