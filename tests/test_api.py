"""HTTP-level tests against the FastAPI app with a fake column store."""

from axaou_server.assets import AssetCache, make_asset
from axaou_server.models import AnalysisAssets, AnalysisAssetType, AncestryGroup, SequencingType

from test_peaks import peak_row


def gene_model_row(gene_id, symbol, chrom, start, stop):
    return {
        "gene_id": gene_id,
        "symbol": symbol,
        "symbol_upper_case": symbol.upper(),
        "chrom": chrom,
        "start": start,
        "stop": stop,
        "xstart": 7_000_000_000 + start,
        "xstop": 7_000_000_000 + stop,
        "strand": "+",
        "transcripts_json": "[]",
    }


def plot_row(plot_type="genome_manhattan", uri="gs://axaou-plots/height/meta/genome_manhattan.png"):
    return {"phenotype": "height", "ancestry": "meta", "plot_type": plot_type, "gcs_uri": uri}


def hit_row(contig, position, pvalue):
    return {"contig": contig, "position": position, "ref": "A", "alt": "G", "pvalue": pvalue}


def gene_result_row(annotation, max_maf, pvalue):
    return {
        "gene_id": "ENSG00000066468", "gene_symbol": "FGFR2", "annotation": annotation,
        "max_maf": max_maf, "phenotype": "height", "ancestry": "meta", "pvalue": pvalue,
        "contig": "chr10", "gene_start_position": 121478332,
    }

# ----------------------------------------------------------------------------
# Health / analyses
# ----------------------------------------------------------------------------

def test_healthz(client):
    for path in ("/healthz", "/api/healthz"):
        r = client.get(path)
        assert r.status_code == 200
        assert r.json()["ok"] is True


def test_readyz_reports_state(client):
    body = client.get("/readyz").json()
    assert body["clickhouse"] is True
    assert body["analyses"] == 4
    assert body["assets_loaded"] is False


def test_analyses_filter_is_case_insensitive(client, app_state):
    app_state.metadata = app_state.metadata[:2]
    r = client.get("/api/analyses", params={"ancestry_group": "META"})
    assert r.status_code == 200
    assert [(m["analysis_id"], m["ancestry_group"]) for m in r.json()] == [("height", "meta")]


def test_analyses_unfiltered(client):
    assert len(client.get("/api/analyses").json()) == 4


def test_analysis_not_found_uses_error_body(client):
    r = client.get("/api/analyses/nope")
    assert r.status_code == 404
    assert r.json() == {"error": "Analysis 'nope' not found"}


def test_analysis_lookup(client):
    r = client.get("/api/analyses/bmi")
    assert r.status_code == 200
    assert r.json()[0]["analysis_id"] == "BMI"


def test_categories_use_camel_case_counts(client):
    cats = client.get("/api/categories").json()
    anthro = next(c for c in cats if c["category"] == "AxAoU > Anthropometric")
    assert anthro["analysisCount"] == 2
    assert anthro["phenoCount"] == 2
    assert sorted(anthro["analyses"]) == ["BMI", "height"]


def test_config(client):
    body = client.get("/api/config").json()
    assert body["reference_genome"] == "GRCh38"
    assert "meta" in body["ancestry_codes"]


def test_assets_served_from_seeded_cache(client, app_state):
    app_state.assets = AssetCache(AnalysisAssets(assets=[
        make_asset(AncestryGroup.EUR, "height", AnalysisAssetType.VARIANT, SequencingType.GENOMES, "gs://b/1"),
        make_asset(AncestryGroup.META, "height", AnalysisAssetType.GENE, None, "gs://b/2"),
    ]))
    r = client.get("/api/assets", params={"ancestry": "eur"})
    body = r.json()
    assert body["count"] == 1
    assert body["data"][0]["uri"] == "gs://b/1"
    assert body["storage_source"] == "clickhouse"

    summary = client.get("/api/assets/summary").json()
    assert summary["total_assets"] == 2
    assert summary["by_asset_type"] == {"Variant": 1, "Gene": 1}

# ----------------------------------------------------------------------------
# Genes
# ----------------------------------------------------------------------------

def test_gene_models_by_interval(client, fake_clickhouse):
    genes = [gene_model_row("ENSG_A", "GENEA", "chr7", 100_000, 200_000)]

    def overlapping(sql, params):
        chrom, start, stop, _limit = params
        return [g for g in genes if g["chrom"] == chrom and g["stop"] >= start and g["start"] <= stop]

    fake_clickhouse.route("chrom = ? AND stop >= ?", overlapping)

    hit = client.get("/api/genes/model/interval/chr7:150000-250000").json()
    assert hit["count"] == 1
    assert hit["data"][0]["gene_id"] == "ENSG_A"

    miss = client.get("/api/genes/model/interval/chr7:250001-300000").json()
    assert miss["count"] == 0
    assert miss["data"] == []


def test_gene_model_not_found(client):
    r = client.get("/api/genes/model/NOPE1")
    assert r.status_code == 404
    assert r.json() == {"error": "Gene 'NOPE1' not found"}


def test_gene_model_by_symbol(client, fake_clickhouse):
    fake_clickhouse.route("symbol_upper_case = ?", [gene_model_row("ENSG_A", "GeneA", "chr7", 1, 2)])
    r = client.get("/api/genes/model/genea")
    assert r.status_code == 200
    assert r.json()["symbol"] == "GeneA"
    assert fake_clickhouse.calls[-1][1] == ["GENEA"]


def test_bad_interval_is_400(client):
    r = client.get("/api/genes/model/interval/chr7-1-2")
    assert r.status_code == 400
    assert "error" in r.json()


def test_all_symbols(client, fake_clickhouse):
    fake_clickhouse.route("DISTINCT gene_symbol", [{"gene_symbol": "FGFR2"}, {"gene_symbol": "GDF5"}])
    assert client.get("/api/genes/all-symbols").json()["data"] == ["FGFR2", "GDF5"]

# ----------------------------------------------------------------------------
# Variants
# ----------------------------------------------------------------------------

def test_variant_annotation_bad_id_is_400(client):
    r = client.get("/api/variants/annotations/chr1-100")
    assert r.status_code == 400


def test_variant_annotation_missing_is_404(client):
    r = client.get("/api/variants/annotations/1-100-A-T")
    assert r.status_code == 404
    assert r.json() == {"error": "Variant '1-100-A-T' not found"}


def test_unknown_sequencing_type_is_400(client):
    r = client.get("/api/variants/annotations/1-100-A-T", params={"extended": "true", "sequencing_type": "rna"})
    assert r.status_code == 400


def test_gene_annotations_fan_out_over_exons(client, fake_clickhouse):
    fake_clickhouse.route("`exons.start`", [{
        "gene_id": "ENSG_A", "chrom": "chr10",
        "exons.start": [100, 150, 500], "exons.stop": [200, 250, 600],
    }])
    fake_clickhouse.route("FROM exome_annotations", [{
        "xpos": 10_000_000_120, "contig": "chr10", "position": 120, "ref": "C", "alt": "T",
        "consequence": "stop_gained", "filters": [],
    }])
    r = client.get("/api/variants/annotations/gene/ENSG_A", params={"extended": "true", "sequencing_type": "exomes"})
    body = r.json()
    assert body["count"] == 1
    assert body["data"][0]["variant_id"] == "chr10-120-C-T"
    assert body["data"][0]["sequencing_type"] == "exome"
    sql, params = fake_clickhouse.calls[-1]
    assert sql.count("xpos >= ?") == 2
    assert params[:4] == [10_000_000_100, 10_000_000_250, 10_000_000_500, 10_000_000_600]


def test_gene_annotations_unknown_gene_is_empty(client):
    body = client.get("/api/variants/annotations/gene/NOPE").json()
    assert body["count"] == 0


def test_gene_region_associations_unknown_gene_is_404(client):
    r = client.get("/api/variants/associations/gene/NOPE", params={"analysis_id": "height"})
    assert r.status_code == 404
    assert r.json() == {"error": "Gene NOPE not found"}

# ----------------------------------------------------------------------------
# Phenotype gene results
# ----------------------------------------------------------------------------

def test_phenotype_gene_includes_cauchy(client, fake_clickhouse):
    fake_clickhouse.route("FROM gene_associations", [
        gene_result_row("pLoF", 0.001, 1e-8),
        gene_result_row("pLoF", -1, 1e-9),
    ])
    body = client.get("/api/phenotype/height/genes/FGFR2").json()
    assert body["gene_symbol"] == "FGFR2"
    assert [r["is_cauchy"] for r in body["results"]] == [False, True]


def test_phenotype_gene_missing_is_404(client):
    r = client.get("/api/phenotype/height/genes/NOPE")
    assert r.status_code == 404
    assert r.json() == {"error": "No gene results for 'NOPE' in analysis 'height'"}

# ----------------------------------------------------------------------------
# Manhattan
# ----------------------------------------------------------------------------

def test_manhattan_plot_missing_is_404(client):
    r = client.get("/api/phenotype/height/manhattan")
    assert r.status_code == 404
    assert r.json()["error"] == (
        "Manhattan plot not found for phenotype 'height' "
        "with plot_type 'genome_manhattan' and ancestry 'meta'"
    )


def test_manhattan_with_overlay_and_peaks(client, fake_clickhouse):
    fake_clickhouse.route("FROM phenotype_plots", [plot_row()])
    fake_clickhouse.route("peak_variants", [peak_row("chr10", 121500000, 1e-12, "FGFR2")])
    fake_clickhouse.route("FROM significant_variants", [hit_row("chr10", 121500000, 1e-12), hit_row("chr1", 5, 1e-9)])

    body = client.get("/api/phenotype/height/manhattan").json()
    assert body["image_url"] == "/api/phenotype/height/manhattan/image"
    assert body["has_overlay"] is True
    assert body["overlay"]["hit_count"] == 2
    assert body["overlay"]["peaks"][0]["genes"][0]["gene_symbol"] == "FGFR2"

    with_params = client.get("/api/phenotype/height/manhattan", params={"ancestry": "meta"}).json()
    assert with_params["image_url"] == "/api/phenotype/height/manhattan/image?ancestry=meta"


def test_gene_manhattan_overlay_has_no_peaks(client, fake_clickhouse):
    fake_clickhouse.route("FROM phenotype_plots", [plot_row("gene_manhattan")])
    fake_clickhouse.route("FROM significant_variants", [hit_row("chr1", 5, 1e-9)])
    body = client.get("/api/phenotype/height/manhattan/overlay", params={"plot_type": "gene_manhattan"}).json()
    assert body["hit_count"] == 1
    assert body["peaks"] == []
    assert not any("peak_variants" in sql for sql, _ in fake_clickhouse.calls)


def test_overlay_failure_still_returns_image(client, fake_clickhouse):
    fake_clickhouse.route("FROM phenotype_plots", [plot_row()])
    fake_clickhouse.failing.append("FROM significant_variants")
    body = client.get("/api/phenotype/height/manhattan").json()
    assert body["overlay"] is None
    assert body["has_overlay"] is False


class FakeImageStore:
    opened = []

    def __init__(self, bucket):
        self.bucket = bucket

    def open_stream(self, path):
        FakeImageStore.opened.append((self.bucket, path))
        return iter([b"\x89PNG\r\n", b"rest-of-image"])


def test_manhattan_image_streams_png(client, fake_clickhouse, app_state):
    fake_clickhouse.route("FROM phenotype_plots", [plot_row()])
    app_state.image_store_factory = FakeImageStore
    r = client.get("/api/phenotype/height/manhattan/image")
    assert r.status_code == 200
    assert r.headers["content-type"] == "image/png"
    assert "max-age" in r.headers["cache-control"]
    assert r.content == b"\x89PNG\r\nrest-of-image"
    assert FakeImageStore.opened[-1] == ("axaou-plots", "height/meta/genome_manhattan.png")


def test_manhattan_image_store_built_once_per_bucket(client, fake_clickhouse, app_state):
    built = []

    def factory(bucket):
        built.append(bucket)
        return FakeImageStore(bucket)

    fake_clickhouse.route("FROM phenotype_plots", [plot_row()])
    app_state.image_store_factory = factory
    for _ in range(3):
        assert client.get("/api/phenotype/height/manhattan/image").status_code == 200
    assert built == ["axaou-plots"]
    assert list(app_state.image_stores) == ["axaou-plots"]


def test_manhattan_image_rejects_non_png(client, fake_clickhouse):
    fake_clickhouse.route("FROM phenotype_plots", [plot_row(uri="gs://axaou-plots/height/meta/plot.pdf")])
    r = client.get("/api/phenotype/height/manhattan/image")
    assert r.status_code == 500
    assert r.json() == {"error": "Expected PNG file, got: gs://axaou-plots/height/meta/plot.pdf"}

# ----------------------------------------------------------------------------
# Overview
# ----------------------------------------------------------------------------

def test_overview_survives_peak_failures(client, fake_clickhouse):
    fake_clickhouse.failing.append("peak_variants")
    fake_clickhouse.route("annotation IN", [{
        "gene_id": "ENSG_D", "gene_symbol": "D", "contig": "chr3", "gene_start_position": 5_500_000,
        "annotation": "pLoF", "pvalue": 1e-8, "pvalue_burden": 1e-8, "pvalue_skat": None, "beta_burden": 0.2,
    }])
    body = client.get("/api/phenotype/height/overview").json()
    assert body["genome_image_url"].endswith("plot_type=genome_manhattan")
    (locus,) = body["unified_loci"]
    assert locus["contig"] == "chr3"
    assert "pvalue_genome" not in locus
    assert locus["genes"][0]["burden_results"][0]["annotation"] == "pLoF"
