"""Tests for the genomic coordinate codec."""

import pytest

from axaou_server.errors import InvalidInterval
from axaou_server.xpos import (
    XPOS_FACTOR,
    contig_number,
    decode,
    encode,
    format_variant_id,
    parse_interval,
    parse_variant_id,
    split_interval,
    strip_chr,
    with_chr,
)


def test_encode_known_contigs():
    assert encode("chr1", 12345) == 1_000_012_345
    assert encode("chrX", 5000) == 23_000_005_000
    assert encode("MT", 1) == 25_000_000_001
    assert encode("M", 1) == 25_000_000_001
    assert encode("22", 0) == 22 * XPOS_FACTOR


def test_encode_unknown_contig_is_zero():
    assert encode("chrZ", 1) == 0
    assert encode("chrUn_KI270302v1", 10) == 0


def test_contig_names_are_case_insensitive():
    assert contig_number("chrx") == 23
    assert contig_number("CHRY") == 24
    assert strip_chr("chr7") == "7"
    assert with_chr("7") == "chr7"
    assert with_chr("chr7") == "chr7"


@pytest.mark.parametrize("contig,pos", [("1", 1), ("22", 999_999_999), ("X", 5000), ("Y", 42), ("M", 16569)])
def test_decode_inverts_encode(contig, pos):
    assert decode(encode(contig, pos)) == (contig, pos)


def test_decode_mitochondrial_is_canonical_m():
    assert encode("MT", 1) == encode("chrM", 1)
    assert decode(encode("MT", 1)) == ("M", 1)
    assert decode(encode("chrMT", 16569)) == ("M", 16569)


def test_ordering_follows_contig_then_position():
    assert encode("1", 999_999_999) < encode("2", 1)
    assert encode("22", 50) < encode("X", 1) < encode("Y", 1) < encode("M", 1)


def test_decode_rejects_unknown_contig_number():
    with pytest.raises(InvalidInterval):
        decode(26 * XPOS_FACTOR + 1)


def test_parse_variant_id():
    assert parse_variant_id("22-1000-ACGT-G") == (22_000_001_000, "ACGT", "G")
    assert parse_variant_id("chr1-12345-A-T") == (1_000_012_345, "A", "T")


@pytest.mark.parametrize("bad", ["chr1-100", "1-abc-A-T", "chrZ-100-A-T", "1-100--T", "1-100-A-T-G"])
def test_parse_variant_id_rejects_malformed(bad):
    with pytest.raises(InvalidInterval):
        parse_variant_id(bad)


def test_format_variant_id_keeps_contig_as_given():
    assert format_variant_id("chr1", 100, "A", "T") == "chr1-100-A-T"


def test_split_and_parse_interval():
    assert split_interval("chr7:150000-250000") == ("chr7", 150_000, 250_000)
    assert parse_interval("1:100-200") == (1_000_000_100, 1_000_000_200)


def test_reversed_interval_passes_through():
    start, end = parse_interval("1:200-100")
    assert start > end


@pytest.mark.parametrize("bad", ["chr1-100-200", "chr1:100", "chr1:a-200", "chrQ:1-2", "1:2:3-4"])
def test_parse_interval_rejects_malformed(bad):
    with pytest.raises(InvalidInterval):
        parse_interval(bad)
