from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from axaou_server.errors import InvalidInterval

# ============================================================================
# Closed sets
# ============================================================================

class AncestryGroup(str, Enum):
    AFR = "afr"
    AMR = "amr"
    EAS = "eas"
    EUR = "eur"
    MID = "mid"
    SAS = "sas"
    META = "meta"

    @property
    def dir_name(self) -> str:
        return self.value.upper()

    @classmethod
    def parse(cls, raw: str) -> "AncestryGroup":
        try:
            return cls(raw.strip().lower())
        except ValueError:
            raise InvalidInterval(f"Unknown ancestry group: '{raw}'")


class SequencingType(str, Enum):
    EXOMES = "exomes"
    GENOMES = "genomes"

    @property
    def singular(self) -> str:
        return self.value[:-1]

    @classmethod
    def parse(cls, raw: str) -> "SequencingType":
        s = normalize_sequencing_type(raw)
        if s == "exome":
            return cls.EXOMES
        if s == "genome":
            return cls.GENOMES
        raise InvalidInterval(f"Unknown sequencing type: '{raw}'")


def normalize_sequencing_type(raw: str) -> str:
    """``"exomes"`` -> ``"exome"``; tables disagree on plural vs singular."""
    s = raw.strip().lower()
    return s[:-1] if s.endswith("s") else s


class AnalysisAssetType(str, Enum):
    VARIANT = "Variant"
    VARIANT_DOWNSAMPLED = "VariantDownsampled"
    VARIANT_EXPECTED_P = "VariantExpectedP"
    GENE = "Gene"
    GENE_EXPECTED_P = "GeneExpectedP"


# ============================================================================
# Envelopes
# ============================================================================

class LookupResult(BaseModel):
    data: List[Any]
    count: int
    storage_source: str = "clickhouse"
    time_seconds: float


class Locus(BaseModel):
    contig: str
    position: int


# ============================================================================
# Analyses / assets
# ============================================================================

class AnalysisMetadata(BaseModel):
    analysis_id: str
    ancestry_group: str
    category: str
    description: str
    description_more: str
    keep_pheno_burden: bool = True
    keep_pheno_skat: bool = True
    keep_pheno_skato: bool = True
    lambda_gc_acaf: Optional[float] = None
    lambda_gc_exome: Optional[float] = None
    lambda_gc_gene_burden_001: Optional[float] = None
    n_cases: int = 0
    n_controls: Optional[int] = None
    pheno_sex: str = "both_sexes"
    trait_type: str = "unknown"


class AnalysisCategory(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    category: str
    classification_group: str
    color: str
    analyses: List[str]
    analysis_count: int = Field(..., alias="analysisCount")
    phenocodes: List[str]
    pheno_count: int = Field(..., alias="phenoCount")


class AnalysisAsset(BaseModel):
    id: str = ""
    ancestry_group: AncestryGroup
    analysis_id: str
    asset_type: AnalysisAssetType
    sequencing_type: Optional[SequencingType] = None
    uri: str


class AnalysisAssets(BaseModel):
    assets: List[AnalysisAsset] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


class AssetSummary(BaseModel):
    total_assets: int
    total_phenotypes: int
    by_ancestry: Dict[str, int]
    by_asset_type: Dict[str, int]
    by_sequencing_type: Dict[str, int]
    warnings: List[str] = Field(default_factory=list)


# ============================================================================
# Gene models
# ============================================================================

class Exon(BaseModel):
    feature_type: str
    start: int
    stop: int
    xstart: int
    xstop: int


class Transcript(BaseModel):
    model_config = ConfigDict(extra="allow")

    transcript_id: Optional[str] = None
    transcript_version: Optional[str] = None
    gene_id: Optional[str] = None
    gene_version: Optional[str] = None
    chrom: Optional[str] = None
    strand: Optional[str] = None
    start: Optional[int] = None
    stop: Optional[int] = None
    xstart: Optional[int] = None
    xstop: Optional[int] = None
    reference_genome: Optional[str] = None
    refseq_id: Optional[str] = None
    refseq_version: Optional[str] = None
    exons: List[Dict[str, Any]] = Field(default_factory=list)


class GnomadConstraint(BaseModel):
    gene: Optional[str] = None
    gene_id: Optional[str] = None
    transcript: Optional[str] = None
    mane_select: Optional[bool] = None
    flags: List[str] = Field(default_factory=list)
    obs_lof: Optional[int] = None
    obs_mis: Optional[int] = None
    obs_syn: Optional[int] = None
    exp_lof: Optional[float] = None
    exp_mis: Optional[float] = None
    exp_syn: Optional[float] = None
    oe_lof: Optional[float] = None
    oe_lof_lower: Optional[float] = None
    oe_lof_upper: Optional[float] = None
    oe_mis: Optional[float] = None
    oe_mis_lower: Optional[float] = None
    oe_mis_upper: Optional[float] = None
    oe_syn: Optional[float] = None
    oe_syn_lower: Optional[float] = None
    oe_syn_upper: Optional[float] = None
    lof_z: Optional[float] = None
    mis_z: Optional[float] = None
    syn_z: Optional[float] = None
    pli: Optional[float] = None


class ManeSelectTranscript(BaseModel):
    ensembl_id: Optional[str] = None
    ensembl_version: Optional[str] = None
    refseq_id: Optional[str] = None
    refseq_version: Optional[str] = None
    matched_gene_version: Optional[str] = None


class GeneModel(BaseModel):
    gene_id: str
    gene_version: Optional[str] = None
    symbol: str
    gencode_symbol: Optional[str] = None
    name: Optional[str] = None
    hgnc_id: Optional[str] = None
    ncbi_id: Optional[str] = None
    omim_id: Optional[str] = None
    chrom: str
    start: int
    stop: int
    xstart: int
    xstop: int
    strand: str
    reference_genome: Optional[str] = None
    canonical_transcript_id: Optional[str] = None
    preferred_transcript_id: Optional[str] = None
    preferred_transcript_source: Optional[str] = None
    alias_symbols: List[str] = Field(default_factory=list)
    previous_symbols: List[str] = Field(default_factory=list)
    search_terms: List[str] = Field(default_factory=list)
    flags: List[str] = Field(default_factory=list)
    exons: List[Exon] = Field(default_factory=list)
    transcripts: List[Transcript] = Field(default_factory=list)
    gnomad_constraint: Optional[GnomadConstraint] = None
    mane_select_transcript: Optional[ManeSelectTranscript] = None


# ============================================================================
# Associations
# ============================================================================

class GeneAssociation(BaseModel):
    gene_id: str
    gene_symbol: str
    annotation: str
    max_maf: float
    phenotype: str
    ancestry: str
    pvalue: Optional[float] = None
    pvalue_burden: Optional[float] = None
    pvalue_skat: Optional[float] = None
    beta_burden: Optional[float] = None
    mac: Optional[int] = None
    locus: Optional[Locus] = None
    xpos: Optional[int] = None


class GeneResult(BaseModel):
    gene_id: str
    gene_symbol: str
    annotation: str
    max_maf: float
    is_cauchy: bool = False
    analysis_id: str
    ancestry_group: str
    pvalue: Optional[float] = None
    pvalue_burden: Optional[float] = None
    pvalue_skat: Optional[float] = None
    beta_burden: Optional[float] = None
    se_burden: Optional[float] = None
    mac: Optional[int] = None
    number_rare: Optional[int] = None
    number_ultra_rare: Optional[int] = None
    total_variants: Optional[int] = None
    pvalue_log10: Optional[float] = None
    chrom: Optional[str] = None
    pos: Optional[int] = None


class GeneResultsResponse(BaseModel):
    gene_id: str
    gene_symbol: str
    results: List[GeneResult]


class VariantAssociation(BaseModel):
    variant_id: str
    locus: Locus
    ref: str
    alt: str
    xpos: int
    phenotype: str
    ancestry: str
    sequencing_type: str
    pvalue: Optional[float] = None
    beta: Optional[float] = None
    se: Optional[float] = None
    af: Optional[float] = None


class VariantAssociationExtended(BaseModel):
    variant_id: str
    locus: Locus
    ref: str
    alt: str
    pvalue: Optional[float] = None
    beta: Optional[float] = None
    se: Optional[float] = None
    af: Optional[float] = None
    phenotype: str
    ancestry: str
    sequencing_type: str
    gene_symbol: Optional[str] = None
    consequence: Optional[str] = None
    hgvsc: Optional[str] = None
    hgvsp: Optional[str] = None
    allele_count: Optional[int] = None
    allele_number: Optional[int] = None
    homozygote_count: Optional[int] = None


class VariantAnnotation(BaseModel):
    variant_id: str
    locus: Locus
    xpos: int
    ref: str
    alt: str
    gene_symbol: Optional[str] = None
    consequence: Optional[str] = None
    af_all: Optional[float] = None


class VariantAnnotationExtended(BaseModel):
    variant_id: str
    locus: Locus
    xpos: int
    ref: str
    alt: str
    sequencing_type: str
    gene_id: Optional[str] = None
    gene_symbol: Optional[str] = None
    consequence: Optional[str] = None
    hgvsc: Optional[str] = None
    hgvsp: Optional[str] = None
    amino_acids: Optional[str] = None
    polyphen2: Optional[str] = None
    lof: Optional[str] = None
    ac: Optional[int] = None
    an: Optional[int] = None
    af: Optional[float] = None
    hom: Optional[int] = None
    filters: List[str] = Field(default_factory=list)


# ============================================================================
# Phenotype views
# ============================================================================

class LocusSummary(BaseModel):
    locus_id: str
    phenotype: str
    ancestry: str
    contig: str
    start: int
    stop: int
    xstart: int
    xstop: int
    source: str
    lead_variant: str
    lead_pvalue: Optional[float] = None
    exome_count: int = 0
    genome_count: int = 0
    plot_uri: Optional[str] = None


class LocusVariant(BaseModel):
    locus_id: Optional[str] = None
    xpos: int
    position: int
    pvalue: Optional[float] = None
    neg_log10_p: Optional[float] = None
    is_significant: bool = False


class PlotRecord(BaseModel):
    phenotype: str
    ancestry: str
    plot_type: str
    gcs_uri: str


class QQPoint(BaseModel):
    variant_id: str
    locus: Locus
    ref: str
    alt: str
    pvalue_log10: Optional[float] = None
    pvalue_expected_log10: Optional[float] = None


class SignificantHit(BaseModel):
    variant_id: str
    contig: str
    position: int
    pvalue: Optional[float] = None


# ============================================================================
# Peaks / overview
# ============================================================================

class BurdenResult(BaseModel):
    annotation: str
    pvalue: Optional[float] = None
    pvalue_burden: Optional[float] = None
    pvalue_skat: Optional[float] = None
    beta_burden: Optional[float] = None


class PeakGene(BaseModel):
    gene_symbol: str
    gene_id: str
    distance_kb: float
    coding_variant_count: int = 0
    lof_count: int = 0
    missense_count: int = 0
    burden_pvalue: Optional[float] = None
    burden_beta: Optional[float] = None
    burden_results: List[BurdenResult] = Field(default_factory=list)


class Peak(BaseModel):
    contig: str
    position: int
    pvalue: float
    genes: List[PeakGene] = Field(default_factory=list)


class ManhattanOverlay(BaseModel):
    significant_hits: List[SignificantHit]
    hit_count: int
    peaks: List[Peak] = Field(default_factory=list)


class ManhattanResponse(BaseModel):
    image_url: str
    overlay: Optional[ManhattanOverlay] = None
    has_overlay: bool


class CodingHits(BaseModel):
    lof: int = 0
    missense: int = 0


class UnifiedGene(BaseModel):
    gene_symbol: str
    gene_id: str
    distance_kb: float
    genome_coding_hits: Optional[CodingHits] = None
    exome_coding_hits: Optional[CodingHits] = None
    burden_results: List[BurdenResult] = Field(default_factory=list)


class UnifiedLocus(BaseModel):
    contig: str
    position: int
    pvalue_genome: Optional[float] = None
    pvalue_exome: Optional[float] = None
    genes: List[UnifiedGene] = Field(default_factory=list)


class UnifiedOverview(BaseModel):
    genome_image_url: str
    exome_image_url: str
    unified_loci: List[UnifiedLocus]
