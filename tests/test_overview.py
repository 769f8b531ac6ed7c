"""Tests for merging genome peaks, exome peaks and burden genes."""

from axaou_server.models import BurdenResult, Peak, PeakGene
from axaou_server.overview import build_overview, locus_key, merge_overview


def gene(symbol, lof=0, missense=0, burden=None):
    return PeakGene(
        gene_symbol=symbol,
        gene_id=f"ENSG_{symbol}",
        distance_kb=1.0,
        lof_count=lof,
        missense_count=missense,
        burden_results=burden or [],
    )


def burden_row(symbol, contig, start, annotation="pLoF", pvalue=1e-8):
    return {
        "gene_id": f"ENSG_{symbol}",
        "gene_symbol": symbol,
        "contig": contig,
        "gene_start_position": start,
        "annotation": annotation,
        "pvalue": pvalue,
        "pvalue_burden": pvalue,
        "pvalue_skat": None,
        "beta_burden": 0.3,
    }


def test_locus_key_bins_by_megabase():
    assert locus_key("chr1", 1_999_999) == ("chr1", 1)
    assert locus_key("chr1", 2_000_000) == ("chr1", 2)


def test_exome_peak_merges_into_genome_locus_in_same_bin():
    genome = [Peak(contig="chr1", position=1_100_000, pvalue=1e-9, genes=[gene("A", missense=2)])]
    exome = [Peak(contig="chr1", position=1_900_000, pvalue=1e-12, genes=[gene("A", lof=1), gene("B", lof=3)])]
    loci = merge_overview(genome, exome, [])

    assert len(loci) == 1
    locus = loci[0]
    assert locus.position == 1_100_000
    assert locus.pvalue_genome == 1e-9
    assert locus.pvalue_exome == 1e-12
    a, b = locus.genes
    assert a.genome_coding_hits.missense == 2
    assert a.exome_coding_hits.lof == 1
    assert b.genome_coding_hits is None
    assert b.exome_coding_hits.lof == 3


def test_genes_without_coding_hits_have_no_hit_records():
    genome = [Peak(contig="chr2", position=10, pvalue=1e-9, genes=[gene("C")])]
    locus = merge_overview(genome, [], [])[0]
    assert locus.genes[0].genome_coding_hits is None
    assert locus.pvalue_exome is None


def test_burden_only_gene_creates_its_own_locus():
    rows = [
        burden_row("D", "chr3", 5_500_000, "pLoF", 1e-7),
        burden_row("D", "chr3", 5_500_000, "missenseLC", 1e-6),
    ]
    loci = merge_overview([], [], rows)
    assert len(loci) == 1
    locus = loci[0]
    assert (locus.contig, locus.position) == ("chr3", 5_500_000)
    assert locus.pvalue_genome is None and locus.pvalue_exome is None
    d = locus.genes[0]
    assert d.distance_kb == 0.0
    assert [r.annotation for r in d.burden_results] == ["pLoF", "missenseLC"]


def test_burden_attaches_to_existing_gene_without_duplicates():
    existing = BurdenResult(annotation="pLoF", pvalue_burden=1e-9)
    genome = [Peak(contig="chr4", position=4_200_000, pvalue=1e-10, genes=[gene("E", burden=[existing])])]
    rows = [burden_row("E", "chr4", 4_100_000, "pLoF"), burden_row("E", "chr4", 4_100_000, "synonymous")]
    loci = merge_overview(genome, [], rows)
    e = loci[0].genes[0]
    assert [r.annotation for r in e.burden_results] == ["pLoF", "synonymous"]
    assert e.burden_results[0].pvalue_burden == 1e-9


def test_loci_sorted_by_best_pvalue_with_burden_only_last():
    genome = [
        Peak(contig="chr1", position=100, pvalue=1e-8, genes=[]),
        Peak(contig="chr2", position=100, pvalue=1e-20, genes=[]),
    ]
    exome = [Peak(contig="chr5", position=100, pvalue=1e-15, genes=[])]
    rows = [burden_row("F", "chr9", 100)]
    loci = merge_overview(genome, exome, rows)
    assert [locus.contig for locus in loci] == ["chr2", "chr5", "chr1", "chr9"]


def test_build_overview_image_urls():
    ov = build_overview("height", "meta", [], [], [])
    assert ov.genome_image_url == "/api/phenotype/height/manhattan/image?ancestry=meta&plot_type=genome_manhattan"
    assert ov.exome_image_url.endswith("plot_type=exome_manhattan")
    assert ov.unified_loci == []
