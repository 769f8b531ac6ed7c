"""
Analysis metadata: loading, normalization, category grouping and the
static client config blob.
"""

from __future__ import annotations

import colorsys
import hashlib
import logging
from typing import Any, Dict, Iterable, List, Optional, Set

from axaou_server.errors import DecodeError
from axaou_server.models import AnalysisCategory, AnalysisMetadata
from axaou_server.shaping import opt_float, opt_int

log = logging.getLogger("axaou.metadata")

PHENOTYPE_PREFIX = "phenotype_"
CATEGORY_PREFIX = "AxAoU > "

# ----------------------------------------------------------------------------
# Static client configuration
# ----------------------------------------------------------------------------

CLIENT_CONFIG: Dict[str, Any] = {
    "ancestry_codes": ["afr", "amr", "eas", "eur", "mid", "sas", "meta"],
    "burden_sets": ["pLoF", "missenseLC", "synonymous"],
    "burden_pvalue_fields": ["pvalue", "pvalue_burden", "pvalue_skat"],
    "default_max_maf": "0.001",
    "reference_genome": "GRCh38",
    "test_analyses": ["height"],
    "test_ancestry_codes": ["eur", "meta"],
    "test_gene_symbols": ["FGFR2", "GDF5", "SHOX"],
    "test_intervals": [
        "chr10:121478332-121598458",
        "chr20:35433347-35454746",
        "chrX:624344-659411",
    ],
    "variant_pvalue_threshold": 1.0,
    "top_gene_associations_threshold": 1e-6,
}

# ----------------------------------------------------------------------------
# Row transform
# ----------------------------------------------------------------------------

def normalize_analysis_id(raw_id: str) -> str:
    if raw_id.startswith(PHENOTYPE_PREFIX):
        return raw_id[len(PHENOTYPE_PREFIX):]
    return raw_id


def _first(row: Dict[str, Any], *keys: str) -> Any:
    for k in keys:
        v = row.get(k)
        if v is not None and v != "":
            return v
    return None


def _format_category(raw: Optional[str]) -> str:
    if raw and raw.startswith(CATEGORY_PREFIX):
        return raw
    return f"{CATEGORY_PREFIX}{raw or 'Unknown'}"


def transform_metadata_row(row: Dict[str, Any]) -> AnalysisMetadata:
    raw_id = _first(row, "analysis_id", "phenoname")
    if raw_id is None:
        raise DecodeError("Missing required field: analysis_id/phenoname")
    ancestry = _first(row, "ancestry_group", "ancestry", "pop")
    if ancestry is None:
        raise DecodeError("Missing required field: ancestry_group/ancestry/pop")

    analysis_id = normalize_analysis_id(str(raw_id))
    description = _first(row, "description") or analysis_id
    return AnalysisMetadata(
        analysis_id=analysis_id,
        ancestry_group=str(ancestry),
        category=_format_category(_first(row, "category", "phecode_category")),
        description=description,
        description_more=_first(row, "description_more") or description,
        pheno_sex=_first(row, "pheno_sex") or "both_sexes",
        trait_type=_first(row, "trait_type") or "unknown",
        n_cases=opt_int(row.get("n_cases")) or 0,
        n_controls=opt_int(row.get("n_controls")),
        lambda_gc_exome=opt_float(_first(row, "lambda_gc_exome_hq", "lambda_gc_exome")),
        lambda_gc_acaf=opt_float(_first(row, "lambda_gc_acaf_hq", "lambda_gc_acaf")),
        lambda_gc_gene_burden_001=opt_float(row.get("lambda_gc_gene_burden_001")),
    )


def transform_metadata_rows(rows: Iterable[Dict[str, Any]]) -> List[AnalysisMetadata]:
    out: List[AnalysisMetadata] = []
    for i, row in enumerate(rows):
        try:
            out.append(transform_metadata_row(row))
        except DecodeError as e:
            log.warning("Skipping metadata row %d: %s", i, e)
    return out


async def load_metadata(client) -> List[AnalysisMetadata]:
    rows = await client.fetch_all("SELECT * FROM analysis_metadata")
    metadata = transform_metadata_rows(rows)
    log.info("Loaded %d analysis metadata records (%d rows read)", len(metadata), len(rows))
    return metadata

# ----------------------------------------------------------------------------
# Lookups
# ----------------------------------------------------------------------------

def filter_by_ancestry(metadata: List[AnalysisMetadata], ancestry_group: Optional[str]) -> List[AnalysisMetadata]:
    if not ancestry_group:
        return list(metadata)
    want = ancestry_group.lower()
    return [m for m in metadata if m.ancestry_group.lower() == want]


def find_analysis(metadata: List[AnalysisMetadata], analysis_id: str) -> Optional[AnalysisMetadata]:
    want = analysis_id.lower()
    for m in metadata:
        if m.analysis_id.lower() == want:
            return m
    return None


def get_valid_phenotypes(metadata: Iterable[AnalysisMetadata]) -> Set[str]:
    """Both bare ids and their ``phenotype_`` directory form."""
    valid: Set[str] = set()
    for m in metadata:
        valid.add(m.analysis_id)
        valid.add(f"{PHENOTYPE_PREFIX}{m.analysis_id}")
    return valid

# ----------------------------------------------------------------------------
# Categories
# ----------------------------------------------------------------------------

def category_color(category: str) -> str:
    digest = hashlib.sha1(category.encode("utf-8")).digest()
    hue = int.from_bytes(digest[:8], "big") % 360
    r, g, b = colorsys.hls_to_rgb(hue / 360.0, 0.55, 0.65)
    return "#{:02X}{:02X}{:02X}".format(int(r * 255), int(g * 255), int(b * 255))


def build_categories(metadata: Iterable[AnalysisMetadata]) -> List[AnalysisCategory]:
    grouped: Dict[str, Set[str]] = {}
    for m in metadata:
        grouped.setdefault(m.category, set()).add(m.analysis_id)
    out: List[AnalysisCategory] = []
    for category in sorted(grouped):
        ids = sorted(grouped[category])
        out.append(
            AnalysisCategory(
                category=category,
                classification_group="axaou_category",
                color=category_color(category),
                analyses=ids,
                analysis_count=len(ids),
                phenocodes=list(ids),
                pheno_count=len(ids),
            )
        )
    return out
