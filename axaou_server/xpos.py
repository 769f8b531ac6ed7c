"""
Genomic coordinate codec.

``xpos = contig_num * 1e9 + position`` with autosomes 1..22, X=23, Y=24 and
M/MT=25. Every GRCh38 position fits below 1e9, so ordering on xpos matches
(contig, position) ordering and an interval on one contig is a single
integer range. ``0`` marks an unmappable coordinate.
"""

from __future__ import annotations

from typing import Dict, Optional, Tuple

from axaou_server.errors import InvalidInterval

XPOS_FACTOR = 1_000_000_000

_CONTIG_NUMBERS: Dict[str, int] = {str(i): i for i in range(1, 23)}
_CONTIG_NUMBERS.update({"X": 23, "Y": 24, "M": 25, "MT": 25})

_CONTIG_NAMES: Dict[int, str] = {i: str(i) for i in range(1, 23)}
_CONTIG_NAMES.update({23: "X", 24: "Y", 25: "M"})


def strip_chr(contig: str) -> str:
    c = contig.strip()
    if c[:3].lower() == "chr":
        c = c[3:]
    return c


def with_chr(contig: str) -> str:
    """``"7"`` -> ``"chr7"``; already prefixed names pass through."""
    return contig if contig.startswith("chr") else f"chr{contig}"


def contig_number(contig: str) -> Optional[int]:
    return _CONTIG_NUMBERS.get(strip_chr(contig).upper())


def encode(contig: str, pos: int) -> int:
    num = contig_number(contig)
    if num is None:
        return 0
    return num * XPOS_FACTOR + int(pos)


def decode(xpos: int) -> Tuple[str, int]:
    """Inverse of ``encode`` for mapped contigs. Contig 25 always decodes to ``M``, so ``MT`` comes back as ``M``."""
    num, pos = divmod(int(xpos), XPOS_FACTOR)
    name = _CONTIG_NAMES.get(num)
    if name is None:
        raise InvalidInterval(f"Invalid xpos: {xpos}")
    return name, pos


def format_variant_id(contig: str, pos: int, ref: str, alt: str) -> str:
    return f"{contig}-{pos}-{ref}-{alt}"


def _parse_position(raw: str, context: str) -> int:
    try:
        pos = int(raw)
    except (TypeError, ValueError):
        raise InvalidInterval(f"Invalid position '{raw}' in '{context}'")
    if pos < 0 or pos >= XPOS_FACTOR:
        raise InvalidInterval(f"Position out of range in '{context}'")
    return pos


def parse_variant_id(variant_id: str) -> Tuple[int, str, str]:
    """``"chr1-12345-A-T"`` -> ``(xpos, ref, alt)``."""
    parts = variant_id.split("-")
    if len(parts) != 4:
        raise InvalidInterval(
            f"Invalid variant ID format: '{variant_id}' (expected contig-pos-ref-alt)"
        )
    contig, raw_pos, ref, alt = parts
    pos = _parse_position(raw_pos, variant_id)
    if not ref or not alt:
        raise InvalidInterval(f"Missing allele in variant ID '{variant_id}'")
    xpos = encode(contig, pos)
    if xpos == 0:
        raise InvalidInterval(f"Unknown contig '{contig}' in variant ID '{variant_id}'")
    return xpos, ref, alt


def split_interval(interval: str) -> Tuple[str, int, int]:
    """``"chr1:100-200"`` -> ``("chr1", 100, 200)`` with the contig as given."""
    parts = interval.split(":")
    if len(parts) != 2:
        raise InvalidInterval(
            f"Invalid interval format: '{interval}' (expected contig:start-end)"
        )
    contig, span = parts
    bounds = span.split("-")
    if len(bounds) != 2:
        raise InvalidInterval(
            f"Invalid interval range: '{interval}' (expected contig:start-end)"
        )
    start = _parse_position(bounds[0], interval)
    end = _parse_position(bounds[1], interval)
    if contig_number(contig) is None:
        raise InvalidInterval(f"Unknown contig '{contig}' in interval '{interval}'")
    return contig, start, end


def parse_interval(interval: str) -> Tuple[int, int]:
    # start > end is passed through; the resulting range is simply empty.
    contig, start, end = split_interval(interval)
    return encode(contig, start), encode(contig, end)
