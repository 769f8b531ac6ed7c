"""Tests for peak annotation: query shape and result folding."""

import asyncio

from axaou_server.peaks import GENE_WINDOW_BP, fetch_peaks, fold_peaks, peak_annotation_query

from conftest import FakeClickHouse


def peak_row(contig, position, pvalue, symbol, distance_kb=0.0, **extra):
    row = {
        "contig": contig,
        "peak_position": position,
        "peak_pvalue": pvalue,
        "gene_symbol": symbol,
        "gene_id": f"ENSG_{symbol}",
        "distance_kb": distance_kb,
        "coding_variant_count": 0,
        "lof_count": 0,
        "missense_count": 0,
        "burden_pvalue": None,
        "burden_beta": None,
    }
    row.update(extra)
    return row


def test_fold_groups_consecutive_rows_by_peak():
    rows = [
        peak_row("chr1", 100, 1e-10, "g1"),
        peak_row("chr1", 100, 1e-10, "g2", distance_kb=12.5),
        peak_row("chr2", 500, 1e-8, "g3"),
    ]
    peaks = fold_peaks(rows)
    assert [(p.contig, p.position, p.pvalue) for p in peaks] == [("chr1", 100, 1e-10), ("chr2", 500, 1e-8)]
    assert [g.gene_symbol for g in peaks[0].genes] == ["g1", "g2"]
    assert [g.gene_symbol for g in peaks[1].genes] == ["g3"]
    assert peaks[0].genes[1].distance_kb == 12.5


def test_fold_empty():
    assert fold_peaks([]) == []


def test_fold_keeps_counts_and_burden():
    rows = [
        peak_row("chr10", 121500000, 3e-12, "FGFR2",
                 coding_variant_count=4, lof_count=1, missense_count=2,
                 burden_pvalue=1e-7, burden_beta=0.4),
        peak_row("chr10", 121500000, 3e-12, "ATE1", burden_pvalue=float("nan")),
    ]
    fgfr2, ate1 = fold_peaks(rows)[0].genes
    assert (fgfr2.coding_variant_count, fgfr2.lof_count, fgfr2.missense_count) == (4, 1, 2)
    assert fgfr2.burden_pvalue == 1e-7
    assert fgfr2.burden_results[0].annotation == "pLoF"
    assert fgfr2.burden_results[0].pvalue_burden == 1e-7
    assert ate1.burden_pvalue is None
    assert ate1.burden_results == []


def test_peak_query_binds_every_value():
    q = peak_annotation_query("height", "meta", "genomes", n_peaks=25)
    assert q.params == [
        "height", "meta", "genome",
        "height", "meta", "genome",
        25,
        GENE_WINDOW_BP, GENE_WINDOW_BP,
        "height", "meta",
    ]
    assert q.sql.count("?") == len(q.params)
    assert "FROM genome_annotations" in q.sql
    assert "height" not in q.sql


def test_peak_query_uses_exome_annotations_for_exomes():
    q = peak_annotation_query("height", "meta", "exome")
    assert "FROM exome_annotations" in q.sql
    assert "ORDER BY lg.peak_pvalue ASC" in q.sql


def test_fetch_peaks_runs_one_query_and_folds():
    fake = FakeClickHouse([("peak_variants", [peak_row("chr1", 100, 1e-10, "g1")])])
    peaks = asyncio.run(fetch_peaks(fake, "height", "meta", "genome", 10))
    assert len(fake.calls) == 1
    assert peaks[0].genes[0].gene_id == "ENSG_g1"
