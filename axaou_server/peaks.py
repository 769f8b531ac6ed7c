"""
Peak annotation.

One multi-CTE ClickHouse query turns the significant variants of a
(phenotype, ancestry, sequencing type) into the top-N peaks with the genes
around them:

    peak_variants    significant variants LEFT JOIN their annotations
    peaks            1 Mb bins per contig, min p and its position
    locus_genes      genes overlapping peak +/- 200 kb
    coding_variants  per (contig, bin, gene_symbol) consequence counts
    burden           best pLoF burden test per gene

The result is flat, ordered by (peak p-value, peak, distance to gene), and
:func:`fold_peaks` regroups it into :class:`Peak` objects in one pass.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional

from axaou_server.models import BurdenResult, Peak, PeakGene
from axaou_server.queries import Query, annotations_table, seq_type
from axaou_server.shaping import opt_float, opt_int

log = logging.getLogger("axaou.peaks")

PEAK_BIN_BP = 1_000_000
GENE_WINDOW_BP = 200_000
DEFAULT_N_PEAKS = 100

LOF_CONSEQUENCES = (
    "stop_gained",
    "frameshift_variant",
    "splice_acceptor_variant",
    "splice_donor_variant",
)
MISSENSE_CONSEQUENCES = ("missense_variant",)


def _sql_list(values: Iterable[str]) -> str:
    return ", ".join(f"'{v}'" for v in values)


def peak_annotation_query(
    analysis_id: str,
    ancestry: str,
    sequencing_type: str,
    n_peaks: int = DEFAULT_N_PEAKS,
) -> Query:
    seq = seq_type(sequencing_type)
    table = annotations_table(seq)
    sql = f"""
    WITH
    peak_variants AS (
        SELECT
            sv.contig AS contig,
            sv.position AS position,
            sv.pvalue AS pvalue,
            ann.gene_symbol AS gene_symbol,
            ann.consequence AS consequence
        FROM significant_variants AS sv
        LEFT JOIN (
            SELECT xpos, ref, alt, gene_symbol, consequence
            FROM {table}
            WHERE xpos IN (
                SELECT xpos FROM significant_variants
                WHERE phenotype = ? AND ancestry = ? AND sequencing_type = ?
            )
        ) AS ann
            ON sv.xpos = ann.xpos AND sv.ref = ann.ref AND sv.alt = ann.alt
        WHERE sv.phenotype = ? AND sv.ancestry = ? AND sv.sequencing_type = ?
    ),
    peaks AS (
        SELECT
            contig,
            intDiv(position, {PEAK_BIN_BP}) AS bin,
            min(pvalue) AS peak_pvalue,
            argMin(position, pvalue) AS peak_position
        FROM peak_variants
        GROUP BY contig, bin
        ORDER BY peak_pvalue ASC
        LIMIT ?
    ),
    locus_genes AS (
        SELECT
            p.contig AS contig,
            p.bin AS bin,
            p.peak_position AS peak_position,
            p.peak_pvalue AS peak_pvalue,
            gm.symbol AS gene_symbol,
            gm.gene_id AS gene_id,
            abs(intDiv(toInt64(gm.start) + toInt64(gm.stop), 2) - toInt64(p.peak_position)) / 1000.0 AS distance_kb
        FROM peaks AS p
        INNER JOIN gene_models AS gm
            ON replaceRegexpOne(gm.chrom, '^chr', '') = replaceRegexpOne(p.contig, '^chr', '')
        WHERE toInt64(gm.start) <= toInt64(p.peak_position) + ?
          AND toInt64(gm.stop) >= toInt64(p.peak_position) - ?
          AND gm.symbol != ''
          AND NOT startsWith(gm.symbol, 'ENSG')
    ),
    coding_variants AS (
        SELECT
            contig,
            intDiv(position, {PEAK_BIN_BP}) AS bin,
            gene_symbol,
            count() AS coding_variant_count,
            countIf(consequence IN ({_sql_list(LOF_CONSEQUENCES)})) AS lof_count,
            countIf(consequence IN ({_sql_list(MISSENSE_CONSEQUENCES)})) AS missense_count
        FROM peak_variants
        WHERE gene_symbol IS NOT NULL AND gene_symbol != ''
        GROUP BY contig, bin, gene_symbol
    ),
    burden AS (
        SELECT
            gene_id,
            min(pvalue_burden) AS burden_pvalue,
            argMin(beta_burden, pvalue_burden) AS burden_beta
        FROM gene_associations
        WHERE phenotype = ? AND ancestry = ? AND annotation = 'pLoF'
        GROUP BY gene_id
    )
    SELECT
        lg.contig AS contig,
        lg.peak_position AS peak_position,
        lg.peak_pvalue AS peak_pvalue,
        lg.gene_symbol AS gene_symbol,
        lg.gene_id AS gene_id,
        lg.distance_kb AS distance_kb,
        coalesce(cv.coding_variant_count, 0) AS coding_variant_count,
        coalesce(cv.lof_count, 0) AS lof_count,
        coalesce(cv.missense_count, 0) AS missense_count,
        b.burden_pvalue AS burden_pvalue,
        b.burden_beta AS burden_beta
    FROM locus_genes AS lg
    LEFT JOIN coding_variants AS cv
        ON lg.contig = cv.contig AND lg.bin = cv.bin AND lg.gene_symbol = cv.gene_symbol
    LEFT JOIN burden AS b
        ON lg.gene_id = b.gene_id
    ORDER BY lg.peak_pvalue ASC, lg.contig ASC, lg.peak_position ASC, lg.distance_kb ASC
    """
    params: List[Any] = [
        analysis_id, ancestry, seq,
        analysis_id, ancestry, seq,
        int(n_peaks),
        GENE_WINDOW_BP, GENE_WINDOW_BP,
        analysis_id, ancestry,
    ]
    return Query(sql, params)


def _peak_gene(row: Dict[str, Any]) -> PeakGene:
    burden_pvalue = opt_float(row.get("burden_pvalue"))
    burden_beta = opt_float(row.get("burden_beta"))
    burden_results: List[BurdenResult] = []
    if burden_pvalue is not None:
        burden_results.append(
            BurdenResult(annotation="pLoF", pvalue_burden=burden_pvalue, beta_burden=burden_beta)
        )
    return PeakGene(
        gene_symbol=row["gene_symbol"],
        gene_id=row["gene_id"],
        distance_kb=float(row.get("distance_kb") or 0.0),
        coding_variant_count=opt_int(row.get("coding_variant_count")) or 0,
        lof_count=opt_int(row.get("lof_count")) or 0,
        missense_count=opt_int(row.get("missense_count")) or 0,
        burden_pvalue=burden_pvalue,
        burden_beta=burden_beta,
        burden_results=burden_results,
    )


def fold_peaks(rows: Iterable[Dict[str, Any]]) -> List[Peak]:
    """Group consecutive rows sharing (contig, peak_position) into peaks.

    Relies on the query ordering; peak order and gene order within a peak
    are the input order.
    """
    peaks: List[Peak] = []
    current: Optional[Peak] = None
    for row in rows:
        contig = row["contig"]
        position = int(row["peak_position"])
        if current is None or current.contig != contig or current.position != position:
            current = Peak(contig=contig, position=position, pvalue=float(row["peak_pvalue"]))
            peaks.append(current)
        current.genes.append(_peak_gene(row))
    return peaks


async def fetch_peaks(
    client,
    analysis_id: str,
    ancestry: str,
    sequencing_type: str,
    n_peaks: int = DEFAULT_N_PEAKS,
) -> List[Peak]:
    q = peak_annotation_query(analysis_id, ancestry, sequencing_type, n_peaks)
    rows = await client.fetch_all(q.sql, q.params)
    peaks = fold_peaks(rows)
    log.debug(
        "peaks %s/%s/%s: %d rows -> %d peaks",
        analysis_id, ancestry, seq_type(sequencing_type), len(rows), len(peaks),
    )
    return peaks
