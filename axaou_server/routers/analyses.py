from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Path, Query

from axaou_server.assets import filter_assets, summarize
from axaou_server.errors import NotFound
from axaou_server.metadata import CLIENT_CONFIG, build_categories, filter_by_ancestry, find_analysis
from axaou_server.models import AnalysisAsset, AnalysisAssets, AnalysisCategory, AnalysisMetadata, AssetSummary, LookupResult
from axaou_server.state import AppState, Timer, get_state

log = logging.getLogger("axaou.routers.analyses")

router = APIRouter(tags=["Analyses"])

# ------------------------------------------------------------------------------
# Metadata
# ------------------------------------------------------------------------------

@router.get("/analyses", response_model=List[AnalysisMetadata])
async def list_analyses(
    ancestry_group: Optional[str] = Query(None, description="Case-insensitive ancestry filter, e.g. 'meta'."),
    state: AppState = Depends(get_state),
):
    return filter_by_ancestry(state.metadata, ancestry_group)


@router.get("/analyses/{analysis_id}", response_model=List[AnalysisMetadata])
async def get_analysis(
    analysis_id: str = Path(...),
    state: AppState = Depends(get_state),
):
    found = find_analysis(state.metadata, analysis_id)
    if found is None:
        raise NotFound(f"Analysis '{analysis_id}' not found")
    return [found]


@router.get("/categories", response_model=List[AnalysisCategory], response_model_by_alias=True)
async def list_categories(state: AppState = Depends(get_state)):
    return build_categories(state.metadata)


@router.get("/config")
async def client_config() -> Dict[str, Any]:
    return CLIENT_CONFIG

# ------------------------------------------------------------------------------
# Assets
# ------------------------------------------------------------------------------

@router.get("/assets", response_model=LookupResult)
async def list_assets(
    ancestry: Optional[str] = Query(None),
    asset_type: Optional[str] = Query(None, description="Substring of the asset type, e.g. 'Expected'."),
    sequencing_type: Optional[str] = Query(None, description="'exomes', 'genomes' or '' for gene-level assets."),
    analysis_id: Optional[str] = Query(None),
    refresh: bool = Query(False, description="Force a fresh object-store discovery."),
    state: AppState = Depends(get_state),
):
    timer = Timer()
    inventory = await state.get_assets(refresh=refresh)
    hits: List[AnalysisAsset] = filter_assets(
        inventory.assets,
        ancestry=ancestry,
        asset_type=asset_type,
        sequencing_type=sequencing_type,
        analysis_id=analysis_id,
    )
    log.debug("assets: %d of %d match", len(hits), len(inventory.assets))
    return timer.lookup(hits)


@router.get("/assets/summary", response_model=AssetSummary)
async def assets_summary(
    ancestry: Optional[str] = Query(None),
    asset_type: Optional[str] = Query(None),
    sequencing_type: Optional[str] = Query(None),
    analysis_id: Optional[str] = Query(None),
    refresh: bool = Query(False),
    state: AppState = Depends(get_state),
):
    inventory = await state.get_assets(refresh=refresh)
    hits = filter_assets(
        inventory.assets,
        ancestry=ancestry,
        asset_type=asset_type,
        sequencing_type=sequencing_type,
        analysis_id=analysis_id,
    )
    return summarize(AnalysisAssets(assets=hits, warnings=inventory.warnings))
