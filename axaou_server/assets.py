"""
Asset discovery
===============

Per-phenotype result tables live under

    gs://{bucket}/{root}/{ANCESTRY}/{phenotype_dir}/{result}.ht/

Discovery walks that tree with delimited listings only:

* one task per ancestry, all running concurrently;
* one listing per ancestry for the phenotype directories;
* one listing per phenotype for its ``.ht`` directories, at most
  ``ASSETS_MAX_CONCURRENCY`` in flight per ancestry.

Each ``.ht`` leaf is matched against :data:`ASSET_FILES`. A failing listing
is logged and recorded as a warning; discovery always returns whatever it
found.

The process-wide :class:`AssetCache` holds the latest complete inventory.
A refresh builds a new inventory and then swaps the reference, so readers
always see a whole snapshot.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
from collections import Counter
from pathlib import Path
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Set, Tuple

from axaou_server import config
from axaou_server.metadata import normalize_analysis_id
from axaou_server.models import (
    AnalysisAsset,
    AnalysisAssets,
    AnalysisAssetType,
    AncestryGroup,
    AssetSummary,
    SequencingType,
    normalize_sequencing_type,
)
from axaou_server.storage import GcsBucket

log = logging.getLogger("axaou.assets")

PROGRESS_EVERY = 500

ASSET_FILES: Dict[str, Tuple[AnalysisAssetType, Optional[SequencingType]]] = {
    "exome_variant_results.ht": (AnalysisAssetType.VARIANT, SequencingType.EXOMES),
    "genome_variant_results.ht": (AnalysisAssetType.VARIANT, SequencingType.GENOMES),
    "exome_variant_results_approx_cdf_expected_p.ht": (AnalysisAssetType.VARIANT_EXPECTED_P, SequencingType.EXOMES),
    "genome_variant_results_approx_cdf_expected_p.ht": (AnalysisAssetType.VARIANT_EXPECTED_P, SequencingType.GENOMES),
    "gene_results.ht": (AnalysisAssetType.GENE, None),
}

# ----------------------------------------------------------------------------
# Records
# ----------------------------------------------------------------------------

def match_asset_file(name: str) -> Optional[Tuple[AnalysisAssetType, Optional[SequencingType]]]:
    return ASSET_FILES.get(name.rstrip("/"))


def asset_id(analysis_id: str, ancestry: AncestryGroup, sequencing_type: Optional[SequencingType]) -> str:
    seq = sequencing_type.value if sequencing_type else ""
    key = f"{analysis_id}|{ancestry.value}|{seq}"
    return hashlib.sha1(key.encode("utf-8")).hexdigest()[:12]


def make_asset(
    ancestry: AncestryGroup,
    analysis_id: str,
    asset_type: AnalysisAssetType,
    sequencing_type: Optional[SequencingType],
    uri: str,
) -> AnalysisAsset:
    return AnalysisAsset(
        id=asset_id(analysis_id, ancestry, sequencing_type),
        ancestry_group=ancestry,
        analysis_id=analysis_id,
        asset_type=asset_type,
        sequencing_type=sequencing_type,
        uri=uri,
    )


def _leaf(prefix: str) -> str:
    return prefix.rstrip("/").rsplit("/", 1)[-1]

# ----------------------------------------------------------------------------
# Discovery
# ----------------------------------------------------------------------------

async def _list_phenotype(
    store: GcsBucket,
    ancestry: AncestryGroup,
    phenotype_prefix: str,
    sem: asyncio.Semaphore,
    warnings: List[str],
) -> List[AnalysisAsset]:
    phenotype_dir = _leaf(phenotype_prefix)
    analysis_id = normalize_analysis_id(phenotype_dir)
    async with sem:
        try:
            children = await asyncio.to_thread(store.list_prefixes, phenotype_prefix)
        except Exception as e:
            msg = f"Failed to list {ancestry.dir_name}/{phenotype_dir}: {e}"
            log.warning(msg)
            warnings.append(msg)
            return []
    assets: List[AnalysisAsset] = []
    for child in children:
        hit = match_asset_file(_leaf(child))
        if hit is None:
            continue
        asset_type, seq = hit
        uri = f"gs://{store.bucket_name}/{child.rstrip('/')}"
        assets.append(make_asset(ancestry, analysis_id, asset_type, seq, uri))
    return assets


async def discover_ancestry(
    store: GcsBucket,
    root: str,
    ancestry: AncestryGroup,
    valid_phenotypes: Optional[Set[str]] = None,
    max_concurrency: int = 50,
) -> AnalysisAssets:
    prefix = f"{root.strip('/')}/{ancestry.dir_name}/" if root else f"{ancestry.dir_name}/"
    phenotype_prefixes = await asyncio.to_thread(store.list_prefixes, prefix)
    if valid_phenotypes is not None:
        phenotype_prefixes = [
            p for p in phenotype_prefixes
            if _leaf(p) in valid_phenotypes or normalize_analysis_id(_leaf(p)) in valid_phenotypes
        ]
    log.info("%s: %d phenotype directories to scan", ancestry.dir_name, len(phenotype_prefixes))

    sem = asyncio.Semaphore(max(1, max_concurrency))
    warnings: List[str] = []
    done = 0

    async def scan(p: str) -> List[AnalysisAsset]:
        nonlocal done
        found = await _list_phenotype(store, ancestry, p, sem, warnings)
        done += 1
        if done % PROGRESS_EVERY == 0:
            log.debug("%s: scanned %d/%d phenotypes", ancestry.dir_name, done, len(phenotype_prefixes))
        return found

    results = await asyncio.gather(*(scan(p) for p in phenotype_prefixes))
    assets = [a for batch in results for a in batch]
    log.info("%s: found %d assets", ancestry.dir_name, len(assets))
    return AnalysisAssets(assets=assets, warnings=warnings)


async def discover_assets(
    bucket: Optional[str] = None,
    root: Optional[str] = None,
    valid_phenotypes: Optional[Set[str]] = None,
    max_concurrency: Optional[int] = None,
    store: Optional[GcsBucket] = None,
    ancestries: Iterable[AncestryGroup] = tuple(AncestryGroup),
) -> AnalysisAssets:
    """Discover every asset under the configured root; partial success."""
    bucket = bucket or config.ASSETS_BUCKET
    root = config.ASSETS_ROOT if root is None else root
    limit = max_concurrency or config.ASSETS_MAX_CONCURRENCY
    if store is None:
        store = await asyncio.to_thread(GcsBucket, bucket)
    ancestries = list(ancestries)

    outcomes = await asyncio.gather(
        *(discover_ancestry(store, root, a, valid_phenotypes, limit) for a in ancestries),
        return_exceptions=True,
    )

    merged = AnalysisAssets()
    for ancestry, outcome in zip(ancestries, outcomes):
        if isinstance(outcome, BaseException):
            msg = f"Discovery failed for {ancestry.dir_name}: {outcome}"
            log.warning(msg)
            merged.warnings.append(msg)
            continue
        merged.assets.extend(outcome.assets)
        merged.warnings.extend(outcome.warnings)
    log.info(
        "Asset discovery complete: %d assets, %d warnings", len(merged.assets), len(merged.warnings)
    )
    return merged

# ----------------------------------------------------------------------------
# Snapshot file
# ----------------------------------------------------------------------------

def save_assets(path: str, assets: AnalysisAssets) -> None:
    data = [a.model_dump(mode="json") for a in assets.assets]
    Path(path).write_text(json.dumps(data, indent=2))


def load_assets(path: str) -> AnalysisAssets:
    data = json.loads(Path(path).read_text())
    records = data.get("assets", []) if isinstance(data, dict) else data
    assets = []
    for raw in records:
        a = AnalysisAsset(**raw)
        if not a.id:
            a.id = asset_id(a.analysis_id, a.ancestry_group, a.sequencing_type)
        assets.append(a)
    return AnalysisAssets(assets=assets)

# ----------------------------------------------------------------------------
# Cache
# ----------------------------------------------------------------------------

Discoverer = Callable[[], Awaitable[AnalysisAssets]]


class AssetCache:
    """Latest complete inventory; one discovery at a time."""

    def __init__(self, snapshot: Optional[AnalysisAssets] = None):
        self._snapshot = snapshot
        self._lock = asyncio.Lock()

    @property
    def snapshot(self) -> Optional[AnalysisAssets]:
        return self._snapshot

    @property
    def loaded(self) -> bool:
        return self._snapshot is not None

    async def get(self, discover: Discoverer, refresh: bool = False) -> AnalysisAssets:
        current = self._snapshot
        if current is not None and not refresh:
            return current
        async with self._lock:
            # Another request may have finished discovery while we waited.
            if self._snapshot is not None and not refresh:
                return self._snapshot
            fresh = await discover()
            self._snapshot = fresh
            return fresh

# ----------------------------------------------------------------------------
# Filtering / summary
# ----------------------------------------------------------------------------

def filter_assets(
    assets: Iterable[AnalysisAsset],
    ancestry: Optional[str] = None,
    asset_type: Optional[str] = None,
    sequencing_type: Optional[str] = None,
    analysis_id: Optional[str] = None,
) -> List[AnalysisAsset]:
    out: List[AnalysisAsset] = []
    for a in assets:
        if ancestry and a.ancestry_group.value != ancestry.lower():
            continue
        if asset_type and asset_type.lower() not in a.asset_type.value.lower():
            continue
        if sequencing_type is not None:
            if sequencing_type == "":
                if a.sequencing_type is not None:
                    continue
            elif a.sequencing_type is None or a.sequencing_type.singular != normalize_sequencing_type(sequencing_type):
                continue
        if analysis_id and a.analysis_id.lower() != analysis_id.lower():
            continue
        out.append(a)
    return out


def summarize(assets: AnalysisAssets) -> AssetSummary:
    items = assets.assets
    return AssetSummary(
        total_assets=len(items),
        total_phenotypes=len({a.analysis_id for a in items}),
        by_ancestry=dict(Counter(a.ancestry_group.value for a in items)),
        by_asset_type=dict(Counter(a.asset_type.value for a in items)),
        by_sequencing_type=dict(
            Counter(a.sequencing_type.value if a.sequencing_type else "none" for a in items)
        ),
        warnings=list(assets.warnings),
    )
