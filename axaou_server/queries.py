"""
Query composer.

Every function returns a :class:`Query` (SQL text with ``?`` placeholders
plus the values to bind). Only this module's own vocabulary (table names,
column lists, fixed clauses, ordering) is written into SQL text; ids,
symbols, thresholds and limits are always bound. The composer never looks
at results.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, List, Optional, Sequence, Tuple

from axaou_server.models import normalize_sequencing_type
from axaou_server.xpos import XPOS_FACTOR, encode, strip_chr, with_chr

DEFAULT_LIMIT = 1000
DEFAULT_MAX_MAF = 0.001
MAX_MAF_TOLERANCE = 1e-4

BURDEN_ANNOTATIONS = ("pLoF", "missenseLC", "synonymous")
GENE_REGION_BUFFER_BP = 1000

# ----------------------------------------------------------------------------
# Column vocabularies
# ----------------------------------------------------------------------------

GENE_ASSOCIATION_COLUMNS = """
    gene_id, gene_symbol, annotation, max_maf, phenotype, ancestry,
    pvalue, pvalue_burden, pvalue_skat, beta_burden, mac,
    contig, gene_start_position, xpos
"""

SIGNIFICANT_VARIANT_COLUMNS = """
    phenotype, ancestry, sequencing_type, xpos, contig, position,
    ref, alt, pvalue, beta, se, af
"""

LEGACY_ANNOTATION_COLUMNS = """
    xpos, contig, position, ref, alt, gene_symbol, consequence, af_all
"""

EXTENDED_ANNOTATION_COLUMNS = """
    xpos, contig, position, ref, alt, ac, af, an, hom,
    gene_id, gene_symbol, consequence, hgvsc, hgvsp,
    amino_acids, polyphen2, lof, filters
"""

LOCUS_COLUMNS = """
    locus_id, phenotype, ancestry, contig, start, stop,
    xstart, xstop, source, lead_variant, lead_pvalue,
    exome_count, genome_count, plot_gcs_uri
"""

LOCUS_VARIANT_COLUMNS = "xpos, position, pvalue, neg_log10_p, is_significant"

QQ_COLUMNS = """
    phenotype, ancestry, sequencing_type, contig, position,
    ref, alt, pvalue_log10, pvalue_expected_log10
"""

# ----------------------------------------------------------------------------
# Building blocks
# ----------------------------------------------------------------------------

@dataclass
class Query:
    sql: str
    params: List[Any] = field(default_factory=list)


class Where:
    """Accumulates AND-ed predicates and their bound values."""

    def __init__(self) -> None:
        self.clauses: List[str] = []
        self.params: List[Any] = []

    def add(self, clause: str, *values: Any) -> "Where":
        self.clauses.append(clause)
        self.params.extend(values)
        return self

    def optional(self, clause: str, value: Any) -> "Where":
        if value is not None and value != "":
            self.add(clause, value)
        return self

    def render(self) -> str:
        return ("WHERE " + "\n  AND ".join(self.clauses)) if self.clauses else ""


def seq_type(value: str) -> str:
    return normalize_sequencing_type(value)


def annotations_table(sequencing_type: str) -> str:
    return "exome_annotations" if seq_type(sequencing_type) == "exome" else "genome_annotations"


def is_ensembl_gene_id(value: str) -> bool:
    return value.upper().startswith("ENSG")


def merge_ranges(ranges: Iterable[Tuple[int, int]]) -> List[Tuple[int, int]]:
    """Sort and coalesce overlapping or touching inclusive ranges."""
    merged: List[Tuple[int, int]] = []
    for start, end in sorted(ranges):
        if merged and start <= merged[-1][1] + 1:
            merged[-1] = (merged[-1][0], max(merged[-1][1], end))
        else:
            merged.append((start, end))
    return merged


def xpos_ranges_clause(ranges: Sequence[Tuple[int, int]], column: str = "xpos") -> Tuple[str, List[Any]]:
    """Gene-exon fan-out: ``(xpos >= ? AND xpos <= ?) OR ...``."""
    parts: List[str] = []
    params: List[Any] = []
    for start, end in ranges:
        parts.append(f"({column} >= ? AND {column} <= ?)")
        params.extend([start, end])
    return "(" + " OR ".join(parts) + ")", params


def exon_xpos_ranges(chrom: str, starts: Sequence[int], stops: Sequence[int]) -> List[Tuple[int, int]]:
    contig = strip_chr(chrom)
    ranges = [(encode(contig, int(s)), encode(contig, int(e))) for s, e in zip(starts, stops)]
    return merge_ranges(r for r in ranges if r[0] and r[1])


def gene_region_xpos(chrom: str, start: int, stop: int, buffer: int = GENE_REGION_BUFFER_BP) -> Tuple[int, int]:
    contig = strip_chr(chrom)
    return encode(contig, max(0, int(start) - buffer)), encode(contig, min(XPOS_FACTOR - 1, int(stop) + buffer))

# ----------------------------------------------------------------------------
# Gene models
# ----------------------------------------------------------------------------

def gene_model(gene: str) -> Query:
    if is_ensembl_gene_id(gene):
        return Query("SELECT * FROM gene_models WHERE gene_id = ? LIMIT 1", [gene])
    return Query("SELECT * FROM gene_models WHERE symbol_upper_case = ? LIMIT 1", [gene.upper()])


def gene_models_in_interval(chrom: str, start: int, stop: int, limit: int = DEFAULT_LIMIT) -> Query:
    return Query(
        """
        SELECT * FROM gene_models
        WHERE chrom = ? AND stop >= ? AND start <= ?
        ORDER BY start
        LIMIT ?
        """,
        [with_chr(strip_chr(chrom)), start, stop, limit],
    )


def gene_coordinates(gene: str) -> Query:
    if is_ensembl_gene_id(gene):
        return Query("SELECT gene_id, chrom, start, stop FROM gene_models WHERE gene_id = ? LIMIT 1", [gene])
    return Query(
        "SELECT gene_id, chrom, start, stop FROM gene_models WHERE symbol = ? OR symbol_upper_case = ? LIMIT 1",
        [gene, gene.upper()],
    )


def gene_exons(gene: str) -> Query:
    cols = "gene_id, chrom, `exons.feature_type`, `exons.start`, `exons.stop`"
    if is_ensembl_gene_id(gene):
        return Query(f"SELECT {cols} FROM gene_models WHERE gene_id = ? LIMIT 1", [gene])
    return Query(f"SELECT {cols} FROM gene_models WHERE symbol_upper_case = ? LIMIT 1", [gene.upper()])

# ----------------------------------------------------------------------------
# Gene associations
# ----------------------------------------------------------------------------

def gene_phewas(gene: str, ancestry: str, annotation: Optional[str] = None) -> Query:
    w = Where()
    if is_ensembl_gene_id(gene):
        w.add("gene_id = ?", gene)
    else:
        w.add("gene_symbol = ?", gene)
    w.add("ancestry = ?", ancestry)
    w.optional("annotation = ?", annotation)
    return Query(
        f"SELECT {GENE_ASSOCIATION_COLUMNS} FROM gene_associations\n{w.render()}\nORDER BY pvalue ASC",
        w.params,
    )


def gene_top_associations(
    ancestry: str,
    annotation: Optional[str] = None,
    min_p: float = 0.0,
    max_p: float = 1e-6,
    limit: int = 100,
) -> Query:
    w = Where()
    w.add("ancestry = ?", ancestry)
    w.add("pvalue IS NOT NULL")
    w.add("pvalue >= ?", float(min_p))
    w.add("pvalue <= ?", float(max_p))
    w.optional("annotation = ?", annotation)
    return Query(
        f"SELECT {GENE_ASSOCIATION_COLUMNS} FROM gene_associations\n{w.render()}\nORDER BY pvalue ASC\nLIMIT ?",
        w.params + [limit],
    )


def gene_all_symbols() -> Query:
    return Query(
        "SELECT DISTINCT gene_symbol FROM gene_associations WHERE gene_symbol != '' ORDER BY gene_symbol"
    )


def gene_associations_for(gene_id: str, analysis_id: str, ancestry: str) -> Query:
    return Query(
        f"""
        SELECT {GENE_ASSOCIATION_COLUMNS} FROM gene_associations
        WHERE gene_id = ? AND phenotype = ? AND ancestry = ?
        ORDER BY pvalue ASC
        """,
        [gene_id, analysis_id, ancestry],
    )


def gene_associations_in_interval(
    xstart: int,
    xend: int,
    ancestry: str,
    annotation: Optional[str] = None,
    limit: int = DEFAULT_LIMIT,
) -> Query:
    w = Where()
    w.add("ancestry = ?", ancestry)
    w.add("xpos >= ?", xstart)
    w.add("xpos <= ?", xend)
    w.optional("annotation = ?", annotation)
    return Query(
        f"SELECT {GENE_ASSOCIATION_COLUMNS} FROM gene_associations\n{w.render()}\nORDER BY pvalue ASC\nLIMIT ?",
        w.params + [limit],
    )


def phenotype_gene_results(
    analysis_id: str,
    ancestry: str,
    annotation: Optional[str] = None,
    max_maf: float = DEFAULT_MAX_MAF,
    limit: int = DEFAULT_LIMIT,
    offset: int = 0,
) -> Query:
    w = Where()
    w.add("phenotype = ?", analysis_id)
    w.add("ancestry = ?", ancestry)
    w.add("abs(max_maf - ?) < ?", float(max_maf), MAX_MAF_TOLERANCE)
    w.optional("lower(annotation) = lower(?)", annotation)
    return Query(
        f"""SELECT {GENE_ASSOCIATION_COLUMNS} FROM gene_associations
{w.render()}
ORDER BY pvalue ASC NULLS LAST, gene_id, annotation
LIMIT ? OFFSET ?""",
        w.params + [limit, offset],
    )


def phenotype_gene_result(
    analysis_id: str,
    gene: str,
    ancestry: str,
    annotation: Optional[str] = None,
    max_maf: float = DEFAULT_MAX_MAF,
) -> Query:
    # max_maf < 0 marks the Cauchy-combined row; it always rides along.
    w = Where()
    w.add("phenotype = ?", analysis_id)
    if is_ensembl_gene_id(gene):
        w.add("gene_id = ?", gene)
    else:
        w.add("gene_symbol = ?", gene)
    w.add("ancestry = ?", ancestry)
    w.add("(abs(max_maf - ?) < ? OR max_maf < 0)", float(max_maf), MAX_MAF_TOLERANCE)
    w.optional("lower(annotation) = lower(?)", annotation)
    return Query(
        f"SELECT {GENE_ASSOCIATION_COLUMNS} FROM gene_associations\n{w.render()}\nORDER BY annotation, max_maf DESC",
        w.params,
    )


def significant_burden(analysis_id: str, ancestry: str, threshold: float) -> Query:
    annotations = ", ".join(f"'{a}'" for a in BURDEN_ANNOTATIONS)
    return Query(
        f"""
        SELECT gene_id, gene_symbol, contig, gene_start_position, annotation,
               pvalue, pvalue_burden, pvalue_skat, beta_burden
        FROM gene_associations
        WHERE phenotype = ?
          AND ancestry = ?
          AND annotation IN ({annotations})
          AND (pvalue < ? OR pvalue_burden < ? OR pvalue_skat < ?)
        ORDER BY pvalue ASC
        """,
        [analysis_id, ancestry, threshold, threshold, threshold],
    )

# ----------------------------------------------------------------------------
# Phenotype views
# ----------------------------------------------------------------------------

def loci(analysis_id: str, ancestry: str, limit: int = DEFAULT_LIMIT) -> Query:
    return Query(
        f"SELECT {LOCUS_COLUMNS} FROM loci\nWHERE phenotype = ? AND ancestry = ?\nORDER BY lead_pvalue ASC\nLIMIT ?",
        [analysis_id, ancestry, limit],
    )


def locus_variants(analysis_id: str, locus_id: str, ancestry: str, sequencing_type: str) -> Query:
    return Query(
        f"""
        SELECT {LOCUS_VARIANT_COLUMNS}
        FROM loci_variants
        WHERE phenotype = ? AND locus_id = ? AND ancestry = ? AND sequencing_type = ?
        ORDER BY position
        """,
        [analysis_id, locus_id, ancestry, seq_type(sequencing_type)],
    )


def significant_locus_variants(
    analysis_id: str,
    ancestry: str,
    sequencing_type: Optional[str] = None,
    limit: int = 50000,
) -> Query:
    w = Where()
    w.add("phenotype = ?", analysis_id)
    w.add("ancestry = ?", ancestry)
    if sequencing_type:
        w.add("sequencing_type = ?", seq_type(sequencing_type))
    w.add("is_significant = true")
    return Query(
        f"SELECT locus_id, {LOCUS_VARIANT_COLUMNS}\nFROM loci_variants\n{w.render()}\nORDER BY pvalue ASC\nLIMIT ?",
        w.params + [limit],
    )


def phenotype_plots(analysis_id: str) -> Query:
    return Query(
        """
        SELECT phenotype, ancestry, plot_type, gcs_uri
        FROM phenotype_plots
        WHERE phenotype = ?
        ORDER BY ancestry, plot_type
        """,
        [analysis_id],
    )


def phenotype_plot(analysis_id: str, plot_type: str, ancestry: str) -> Query:
    return Query(
        """
        SELECT phenotype, ancestry, plot_type, gcs_uri
        FROM phenotype_plots
        WHERE phenotype = ? AND plot_type = ? AND ancestry = ?
        LIMIT 1
        """,
        [analysis_id, plot_type, ancestry],
    )


def qq_points(analysis_id: str, ancestry: str, sequencing_type: str, contig: Optional[str] = None) -> Query:
    w = Where()
    w.add("phenotype = ?", analysis_id)
    w.add("ancestry = ?", ancestry)
    w.add("sequencing_type = ?", seq_type(sequencing_type))
    w.optional("contig = ?", contig)
    return Query(
        f"SELECT {QQ_COLUMNS} FROM qq_points\n{w.render()}\nORDER BY pvalue_expected_log10 DESC",
        w.params,
    )


def manhattan_hits(analysis_id: str, ancestry: str, sequencing_type: str, limit: int = 50000) -> Query:
    return Query(
        """
        SELECT contig, position, ref, alt, pvalue
        FROM significant_variants
        WHERE phenotype = ? AND ancestry = ? AND sequencing_type = ?
        ORDER BY pvalue ASC
        LIMIT ?
        """,
        [analysis_id, ancestry, seq_type(sequencing_type), limit],
    )

# ----------------------------------------------------------------------------
# Variant annotations
# ----------------------------------------------------------------------------

def _annotation_source(extended: bool, sequencing_type: str) -> Tuple[str, str]:
    if extended:
        return EXTENDED_ANNOTATION_COLUMNS, annotations_table(sequencing_type)
    return LEGACY_ANNOTATION_COLUMNS, "variant_annotations"


def annotation_by_variant(xpos: int, ref: str, alt: str, *, extended: bool = False, sequencing_type: str = "genome") -> Query:
    cols, table = _annotation_source(extended, sequencing_type)
    return Query(
        f"SELECT {cols} FROM {table}\nWHERE xpos = ? AND ref = ? AND alt = ?\nLIMIT 1",
        [xpos, ref, alt],
    )


def annotations_in_interval(
    xstart: int,
    xend: int,
    *,
    limit: int = DEFAULT_LIMIT,
    extended: bool = False,
    sequencing_type: str = "genome",
) -> Query:
    cols, table = _annotation_source(extended, sequencing_type)
    return Query(
        f"SELECT {cols} FROM {table}\nWHERE xpos >= ? AND xpos <= ?\nORDER BY xpos\nLIMIT ?",
        [xstart, xend, limit],
    )


def annotations_in_ranges(
    ranges: Sequence[Tuple[int, int]],
    *,
    extended: bool = False,
    sequencing_type: str = "genome",
    limit: int = 10000,
) -> Query:
    cols, table = _annotation_source(extended, sequencing_type)
    clause, params = xpos_ranges_clause(ranges)
    return Query(
        f"SELECT {cols} FROM {table}\nWHERE {clause}\nORDER BY xpos\nLIMIT ?",
        params + [limit],
    )

# ----------------------------------------------------------------------------
# Variant associations
# ----------------------------------------------------------------------------

def association_by_variant(analysis_id: str, xpos: int, ref: str, alt: str) -> Query:
    return Query(
        f"""
        SELECT {SIGNIFICANT_VARIANT_COLUMNS}
        FROM significant_variants
        WHERE phenotype = ? AND xpos = ? AND ref = ? AND alt = ?
        ORDER BY pvalue ASC
        LIMIT 1
        """,
        [analysis_id, xpos, ref, alt],
    )


def associations_in_interval(analysis_id: str, xstart: int, xend: int, limit: int = DEFAULT_LIMIT) -> Query:
    return Query(
        f"""
        SELECT {SIGNIFICANT_VARIANT_COLUMNS}
        FROM significant_variants
        WHERE phenotype = ? AND xpos >= ? AND xpos <= ?
        ORDER BY xpos
        LIMIT ?
        """,
        [analysis_id, xstart, xend, limit],
    )


def variant_phewas(xpos: int, ref: str, alt: str) -> Query:
    return Query(
        f"""
        SELECT {SIGNIFICANT_VARIANT_COLUMNS}
        FROM significant_variants
        WHERE xpos = ? AND ref = ? AND alt = ?
        ORDER BY pvalue ASC
        """,
        [xpos, ref, alt],
    )


def top_variants(ancestry: str, min_p: float = 1e-10, max_p: float = 1e-6, limit: int = DEFAULT_LIMIT) -> Query:
    return Query(
        f"""
        SELECT {SIGNIFICANT_VARIANT_COLUMNS}
        FROM significant_variants
        WHERE ancestry = ? AND pvalue >= ? AND pvalue <= ?
        ORDER BY pvalue ASC
        LIMIT ?
        """,
        [ancestry, float(min_p), float(max_p), limit],
    )


def gene_region_variants(
    analysis_id: str,
    ancestry: str,
    sequencing_type: str,
    xstart: int,
    xend: int,
    limit: int = 10000,
) -> Query:
    table = annotations_table(sequencing_type)
    return Query(
        f"""
        SELECT
            lv.phenotype AS phenotype,
            lv.ancestry AS ancestry,
            lv.sequencing_type AS sequencing_type,
            lv.xpos AS xpos,
            lv.contig AS contig,
            toUInt32(lv.position) AS position,
            lv.ref AS ref,
            lv.alt AS alt,
            lv.pvalue AS pvalue,
            lv.beta AS beta,
            lv.se AS se,
            coalesce(lv.af, ann.af) AS af,
            ann.gene_symbol AS gene_symbol,
            ann.consequence AS consequence,
            ann.hgvsc AS hgvsc,
            ann.hgvsp AS hgvsp,
            ann.ac AS ac,
            ann.an AS an,
            ann.hom AS hom
        FROM loci_variants lv
        LEFT JOIN {table} ann
            ON lv.xpos = ann.xpos AND lv.ref = ann.ref AND lv.alt = ann.alt
        WHERE lv.phenotype = ?
          AND lv.ancestry = ?
          AND lv.sequencing_type = ?
          AND lv.xpos >= ?
          AND lv.xpos <= ?
        ORDER BY lv.pvalue ASC
        LIMIT ?
        """,
        [analysis_id, ancestry, seq_type(sequencing_type), xstart, xend, limit],
    )


def manhattan_top(analysis_id: str, ancestry: str, sequencing_type: str, limit: int = DEFAULT_LIMIT) -> Query:
    return Query(
        f"""
        SELECT locus_id, {LOCUS_VARIANT_COLUMNS}
        FROM loci_variants
        WHERE phenotype = ? AND ancestry = ? AND sequencing_type = ?
        ORDER BY pvalue ASC
        LIMIT ?
        """,
        [analysis_id, ancestry, seq_type(sequencing_type), limit],
    )
