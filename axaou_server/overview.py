"""
Unified overview: genome peaks, exome peaks and significant burden genes
merged into one list of loci keyed by 1 Mb bin.
"""

from __future__ import annotations

import math
from typing import Any, Dict, Iterable, List, Optional, Tuple

from axaou_server.models import (
    BurdenResult,
    CodingHits,
    Peak,
    PeakGene,
    UnifiedGene,
    UnifiedLocus,
    UnifiedOverview,
)
from axaou_server.shaping import opt_float

LOCUS_BIN_BP = 1_000_000
BURDEN_THRESHOLD = 2.5e-6
OVERVIEW_N_PEAKS = 10000

GENOME = "genome"
EXOME = "exome"

LocusKey = Tuple[str, int]


def locus_key(contig: str, position: int) -> LocusKey:
    return contig, int(position) // LOCUS_BIN_BP


def image_url(analysis_id: str, ancestry: str, plot_type: str) -> str:
    return f"/api/phenotype/{analysis_id}/manhattan/image?ancestry={ancestry}&plot_type={plot_type}"


def _coding_hits(gene: PeakGene) -> Optional[CodingHits]:
    if gene.lof_count > 0 or gene.missense_count > 0:
        return CodingHits(lof=gene.lof_count, missense=gene.missense_count)
    return None


def _merge_burden(target: List[BurdenResult], incoming: Iterable[BurdenResult]) -> None:
    seen = {b.annotation for b in target}
    for b in incoming:
        if b.annotation not in seen:
            target.append(b)
            seen.add(b.annotation)


def _unified_gene(gene: PeakGene, source: str) -> UnifiedGene:
    hits = _coding_hits(gene)
    return UnifiedGene(
        gene_symbol=gene.gene_symbol,
        gene_id=gene.gene_id,
        distance_kb=gene.distance_kb,
        genome_coding_hits=hits if source == GENOME else None,
        exome_coding_hits=hits if source == EXOME else None,
        burden_results=list(gene.burden_results),
    )


def _find_gene(genes: List[UnifiedGene], gene_id: str) -> Optional[UnifiedGene]:
    for g in genes:
        if g.gene_id == gene_id:
            return g
    return None


def merge_gene(genes: List[UnifiedGene], gene: PeakGene, source: str) -> None:
    existing = _find_gene(genes, gene.gene_id)
    if existing is None:
        genes.append(_unified_gene(gene, source))
        return
    hits = _coding_hits(gene)
    if hits is not None:
        if source == GENOME:
            existing.genome_coding_hits = hits
        else:
            existing.exome_coding_hits = hits
    _merge_burden(existing.burden_results, gene.burden_results)


def _peak_locus(peak: Peak, source: str) -> UnifiedLocus:
    return UnifiedLocus(
        contig=peak.contig,
        position=peak.position,
        pvalue_genome=peak.pvalue if source == GENOME else None,
        pvalue_exome=peak.pvalue if source == EXOME else None,
        genes=[_unified_gene(g, source) for g in peak.genes],
    )


def _burden_result(row: Dict[str, Any]) -> BurdenResult:
    return BurdenResult(
        annotation=row["annotation"],
        pvalue=opt_float(row.get("pvalue")),
        pvalue_burden=opt_float(row.get("pvalue_burden")),
        pvalue_skat=opt_float(row.get("pvalue_skat")),
        beta_burden=opt_float(row.get("beta_burden")),
    )


def _best_pvalue(locus: UnifiedLocus) -> float:
    g = locus.pvalue_genome if locus.pvalue_genome is not None else math.inf
    e = locus.pvalue_exome if locus.pvalue_exome is not None else math.inf
    return min(g, e)


def merge_overview(
    genome_peaks: List[Peak],
    exome_peaks: List[Peak],
    burden_rows: List[Dict[str, Any]],
) -> List[UnifiedLocus]:
    """Fold the three evidence streams into loci sorted by best p-value."""
    loci: Dict[LocusKey, UnifiedLocus] = {}

    for peak in genome_peaks:
        loci[locus_key(peak.contig, peak.position)] = _peak_locus(peak, GENOME)

    for peak in exome_peaks:
        key = locus_key(peak.contig, peak.position)
        existing = loci.get(key)
        if existing is None:
            loci[key] = _peak_locus(peak, EXOME)
            continue
        if existing.pvalue_exome is None or peak.pvalue < existing.pvalue_exome:
            existing.pvalue_exome = peak.pvalue
        for gene in peak.genes:
            merge_gene(existing.genes, gene, EXOME)

    by_gene: Dict[str, List[Dict[str, Any]]] = {}
    for row in burden_rows:
        by_gene.setdefault(row["gene_id"], []).append(row)

    for gene_id, rows in by_gene.items():
        first = rows[0]
        results = [_burden_result(r) for r in rows]
        key = locus_key(first["contig"], first["gene_start_position"])
        locus = loci.get(key)
        if locus is None:
            locus = UnifiedLocus(contig=first["contig"], position=int(first["gene_start_position"]))
            loci[key] = locus
        gene = _find_gene(locus.genes, gene_id)
        if gene is None:
            locus.genes.append(
                UnifiedGene(
                    gene_symbol=first.get("gene_symbol") or "",
                    gene_id=gene_id,
                    distance_kb=0.0,
                )
            )
            gene = locus.genes[-1]
        _merge_burden(gene.burden_results, results)

    # sorted() is stable: ties keep insertion order.
    return sorted(loci.values(), key=_best_pvalue)


def build_overview(
    analysis_id: str,
    ancestry: str,
    genome_peaks: List[Peak],
    exome_peaks: List[Peak],
    burden_rows: List[Dict[str, Any]],
) -> UnifiedOverview:
    return UnifiedOverview(
        genome_image_url=image_url(analysis_id, ancestry, "genome_manhattan"),
        exome_image_url=image_url(analysis_id, ancestry, "exome_manhattan"),
        unified_loci=merge_overview(genome_peaks, exome_peaks, burden_rows),
    )
