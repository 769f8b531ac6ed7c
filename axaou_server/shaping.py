"""
Row-to-API shaping.

Column-store rows arrive as flat dicts (one JSONEachRow object per row).
The functions here turn them into the nested API objects: a computed
``variant_id``, a ``{contig, position}`` locus, ``ref``/``alt`` verbatim and
numeric statistics preserved. NaN is treated as null everywhere; 0 is not.
"""

from __future__ import annotations

import json
import logging
import math
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from axaou_server.models import (
    Exon,
    GeneAssociation,
    GeneModel,
    GeneResult,
    GnomadConstraint,
    Locus,
    LocusSummary,
    LocusVariant,
    ManeSelectTranscript,
    PlotRecord,
    QQPoint,
    SignificantHit,
    Transcript,
    VariantAnnotation,
    VariantAnnotationExtended,
    VariantAssociation,
    VariantAssociationExtended,
)
from axaou_server.xpos import format_variant_id

log = logging.getLogger("axaou.shaping")

Row = Dict[str, Any]

# ----------------------------------------------------------------------------
# Scalars
# ----------------------------------------------------------------------------

def opt_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        f = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(f):
        return None
    return f


def opt_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        f = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(f):
        return None
    return int(f)


def opt_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value)


def locus_of(contig: str, position: Any) -> Locus:
    return Locus(contig=contig, position=int(position))


def _variant_id(row: Row, pos_key: str = "position") -> str:
    return format_variant_id(row["contig"], int(row[pos_key]), row["ref"], row["alt"])

# ----------------------------------------------------------------------------
# Gene models
# ----------------------------------------------------------------------------

_GNOMAD_FIELDS = [f for f in GnomadConstraint.model_fields if f != "flags"]
_MANE_FIELDS = list(ManeSelectTranscript.model_fields)


def parse_transcripts(raw: Any) -> List[Transcript]:
    """Parse the serialized transcripts column; never raises."""
    if raw is None:
        return []
    if isinstance(raw, list):
        items = raw
    else:
        text = str(raw).strip()
        if not text or text == "[]":
            return []
        try:
            items = json.loads(text)
        except ValueError:
            log.warning("Unparseable transcripts_json (%d chars); returning none", len(text))
            return []
    if not isinstance(items, list):
        return []
    out: List[Transcript] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        try:
            out.append(Transcript(**item))
        except ValidationError as e:
            log.debug("Skipping malformed transcript record: %s", e)
    return out


def zip_exons(row: Row) -> List[Exon]:
    """Zip the parallel ``exons.*`` columns in storage order."""
    columns = [
        row.get("exons.feature_type") or [],
        row.get("exons.start") or [],
        row.get("exons.stop") or [],
        row.get("exons.xstart") or [],
        row.get("exons.xstop") or [],
    ]
    return [
        Exon(feature_type=ft, start=int(s), stop=int(e), xstart=int(xs), xstop=int(xe))
        for ft, s, e, xs, xe in zip(*columns)
    ]


def _gnomad_constraint(row: Row) -> Optional[GnomadConstraint]:
    values = {f: row.get(f"gnomad_{f}") for f in _GNOMAD_FIELDS}
    if all(v is None for v in values.values()):
        return None
    mane = values.get("mane_select")
    values["mane_select"] = None if mane is None else bool(mane)
    for f in ("obs_lof", "obs_mis", "obs_syn"):
        values[f] = opt_int(values[f])
    for f in _GNOMAD_FIELDS:
        if f.startswith(("exp_", "oe_")) or f.endswith("_z") or f == "pli":
            values[f] = opt_float(values[f])
    return GnomadConstraint(flags=list(row.get("gnomad_flags") or []), **values)


def _mane_select(row: Row) -> Optional[ManeSelectTranscript]:
    values = {f: row.get(f"mane_{f}") for f in _MANE_FIELDS}
    if all(v is None for v in values.values()):
        return None
    return ManeSelectTranscript(**{k: opt_str(v) for k, v in values.items()})


def gene_model_from_row(row: Row) -> GeneModel:
    return GeneModel(
        gene_id=row["gene_id"],
        gene_version=opt_str(row.get("gene_version")),
        symbol=row.get("symbol") or "",
        gencode_symbol=row.get("gencode_symbol"),
        name=row.get("name"),
        hgnc_id=row.get("hgnc_id"),
        ncbi_id=row.get("ncbi_id"),
        omim_id=row.get("omim_id"),
        chrom=row["chrom"],
        start=int(row["start"]),
        stop=int(row["stop"]),
        xstart=int(row["xstart"]),
        xstop=int(row["xstop"]),
        strand=row.get("strand") or "",
        reference_genome=row.get("reference_genome"),
        canonical_transcript_id=row.get("canonical_transcript_id"),
        preferred_transcript_id=row.get("preferred_transcript_id"),
        preferred_transcript_source=row.get("preferred_transcript_source"),
        alias_symbols=list(row.get("alias_symbols") or []),
        previous_symbols=[s for s in (row.get("previous_symbols") or []) if s is not None],
        search_terms=list(row.get("search_terms") or []),
        flags=list(row.get("flags") or []),
        exons=zip_exons(row),
        transcripts=parse_transcripts(row.get("transcripts_json")),
        gnomad_constraint=_gnomad_constraint(row),
        mane_select_transcript=_mane_select(row),
    )

# ----------------------------------------------------------------------------
# Associations
# ----------------------------------------------------------------------------

def gene_association_to_api(row: Row) -> GeneAssociation:
    contig = row.get("contig")
    start = row.get("gene_start_position")
    return GeneAssociation(
        gene_id=row["gene_id"],
        gene_symbol=row.get("gene_symbol") or "",
        annotation=row["annotation"],
        max_maf=float(row["max_maf"]),
        phenotype=row["phenotype"],
        ancestry=row["ancestry"],
        pvalue=opt_float(row.get("pvalue")),
        pvalue_burden=opt_float(row.get("pvalue_burden")),
        pvalue_skat=opt_float(row.get("pvalue_skat")),
        beta_burden=opt_float(row.get("beta_burden")),
        mac=opt_int(row.get("mac")),
        locus=locus_of(contig, start) if contig and start is not None else None,
        xpos=opt_int(row.get("xpos")),
    )


def gene_result_to_api(row: Row) -> GeneResult:
    max_maf = float(row["max_maf"])
    return GeneResult(
        gene_id=row["gene_id"],
        gene_symbol=row.get("gene_symbol") or "",
        annotation=row["annotation"],
        max_maf=max_maf,
        is_cauchy=max_maf < 0,
        analysis_id=row["phenotype"],
        ancestry_group=row["ancestry"],
        pvalue=opt_float(row.get("pvalue")),
        pvalue_burden=opt_float(row.get("pvalue_burden")),
        pvalue_skat=opt_float(row.get("pvalue_skat")),
        beta_burden=opt_float(row.get("beta_burden")),
        se_burden=opt_float(row.get("se_burden")),
        mac=opt_int(row.get("mac")),
        number_rare=opt_int(row.get("number_rare")),
        number_ultra_rare=opt_int(row.get("number_ultra_rare")),
        total_variants=opt_int(row.get("total_variants")),
        pvalue_log10=opt_float(row.get("pvalue_log10")),
        chrom=row.get("contig"),
        pos=opt_int(row.get("gene_start_position")),
    )


def significant_variant_to_api(row: Row) -> VariantAssociation:
    return VariantAssociation(
        variant_id=_variant_id(row),
        locus=locus_of(row["contig"], row["position"]),
        ref=row["ref"],
        alt=row["alt"],
        xpos=int(row["xpos"]),
        phenotype=row["phenotype"],
        ancestry=row["ancestry"],
        sequencing_type=row["sequencing_type"],
        pvalue=opt_float(row.get("pvalue")),
        beta=opt_float(row.get("beta")),
        se=opt_float(row.get("se")),
        af=opt_float(row.get("af")),
    )


def gene_variant_to_api(row: Row) -> VariantAssociationExtended:
    return VariantAssociationExtended(
        variant_id=_variant_id(row),
        locus=locus_of(row["contig"], row["position"]),
        ref=row["ref"],
        alt=row["alt"],
        pvalue=opt_float(row.get("pvalue")),
        beta=opt_float(row.get("beta")),
        se=opt_float(row.get("se")),
        af=opt_float(row.get("af")),
        phenotype=row["phenotype"],
        ancestry=row["ancestry"],
        sequencing_type=row["sequencing_type"],
        gene_symbol=row.get("gene_symbol") or None,
        consequence=row.get("consequence") or None,
        hgvsc=row.get("hgvsc") or None,
        hgvsp=row.get("hgvsp") or None,
        allele_count=opt_int(row.get("ac")),
        allele_number=opt_int(row.get("an")),
        homozygote_count=opt_int(row.get("hom")),
    )


def annotation_to_api(row: Row) -> VariantAnnotation:
    return VariantAnnotation(
        variant_id=_variant_id(row),
        locus=locus_of(row["contig"], row["position"]),
        xpos=int(row["xpos"]),
        ref=row["ref"],
        alt=row["alt"],
        gene_symbol=row.get("gene_symbol"),
        consequence=row.get("consequence"),
        af_all=opt_float(row.get("af_all")),
    )


def annotation_extended_to_api(row: Row, sequencing_type: str) -> VariantAnnotationExtended:
    return VariantAnnotationExtended(
        variant_id=_variant_id(row),
        locus=locus_of(row["contig"], row["position"]),
        xpos=int(row["xpos"]),
        ref=row["ref"],
        alt=row["alt"],
        sequencing_type=sequencing_type,
        gene_id=row.get("gene_id"),
        gene_symbol=row.get("gene_symbol"),
        consequence=row.get("consequence"),
        hgvsc=row.get("hgvsc"),
        hgvsp=row.get("hgvsp"),
        amino_acids=row.get("amino_acids"),
        polyphen2=row.get("polyphen2"),
        lof=row.get("lof"),
        ac=opt_int(row.get("ac")),
        an=opt_int(row.get("an")),
        af=opt_float(row.get("af")),
        hom=opt_int(row.get("hom")),
        filters=list(row.get("filters") or []),
    )

# ----------------------------------------------------------------------------
# Phenotype views
# ----------------------------------------------------------------------------

def locus_row_to_api(row: Row) -> LocusSummary:
    return LocusSummary(
        locus_id=row["locus_id"],
        phenotype=row["phenotype"],
        ancestry=row["ancestry"],
        contig=row["contig"],
        start=int(row["start"]),
        stop=int(row["stop"]),
        xstart=int(row["xstart"]),
        xstop=int(row["xstop"]),
        source=row.get("source") or "",
        lead_variant=row.get("lead_variant") or "",
        lead_pvalue=opt_float(row.get("lead_pvalue")),
        exome_count=opt_int(row.get("exome_count")) or 0,
        genome_count=opt_int(row.get("genome_count")) or 0,
        plot_uri=row.get("plot_gcs_uri") or None,
    )


def locus_variant_to_api(row: Row) -> LocusVariant:
    return LocusVariant(
        locus_id=row.get("locus_id"),
        xpos=int(row["xpos"]),
        position=int(row["position"]),
        pvalue=opt_float(row.get("pvalue")),
        neg_log10_p=opt_float(row.get("neg_log10_p")),
        is_significant=bool(row.get("is_significant")),
    )


def plot_row_to_api(row: Row) -> PlotRecord:
    return PlotRecord(
        phenotype=row["phenotype"],
        ancestry=row["ancestry"],
        plot_type=row["plot_type"],
        gcs_uri=row["gcs_uri"],
    )


def qq_point_to_api(row: Row) -> QQPoint:
    return QQPoint(
        variant_id=_variant_id(row),
        locus=locus_of(row["contig"], row["position"]),
        ref=row["ref"],
        alt=row["alt"],
        pvalue_log10=opt_float(row.get("pvalue_log10")),
        pvalue_expected_log10=opt_float(row.get("pvalue_expected_log10")),
    )


def significant_hit_to_api(row: Row) -> SignificantHit:
    return SignificantHit(
        variant_id=_variant_id(row),
        contig=row["contig"],
        position=int(row["position"]),
        pvalue=opt_float(row.get("pvalue")),
    )

