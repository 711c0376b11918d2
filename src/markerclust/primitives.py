"""Approximate matching and pairwise distance primitives.

Both primitives are thin layers over ``edlib``:

- :func:`approximate_count` counts non-overlapping fuzzy occurrences of a pattern
  (edlib infix mode when indels are allowed, a numpy substitution scan otherwise).
- :func:`fractional_distance` is ``1 - identity`` of a global edlib alignment.

Any failure inside the underlying library is re-raised as :class:`PrimitiveError`.
Callers must not turn these errors into zero counts or distances.
"""

from __future__ import annotations

import logging
from typing import Dict, FrozenSet, List, Optional, Tuple

import edlib
import numpy as np

logger = logging.getLogger(__name__)


class PrimitiveError(RuntimeError):
    """Raised when the match or distance primitive fails."""

    def __init__(self, message: str, *, primitive: str) -> None:
        super().__init__(message)
        self.primitive = primitive


IUPAC_BASES: Dict[str, FrozenSet[str]] = {
    "A": frozenset("A"),
    "C": frozenset("C"),
    "G": frozenset("G"),
    "T": frozenset("T"),
    "R": frozenset("AG"),
    "Y": frozenset("CT"),
    "S": frozenset("CG"),
    "W": frozenset("AT"),
    "K": frozenset("GT"),
    "M": frozenset("AC"),
    "B": frozenset("CGT"),
    "D": frozenset("AGT"),
    "H": frozenset("ACT"),
    "V": frozenset("ACG"),
    "N": frozenset("ACGT"),
}

_CONCRETE = "ACGT"
_BIT = {"A": 1, "C": 2, "G": 4, "T": 8}
_MASK = {code: sum(_BIT[b] for b in bases) for code, bases in IUPAC_BASES.items()}

# Pattern-side ambiguity codes are rewritten to these placeholders so that
# edlib equalities only fire for ambiguity in the read.
_PATTERN_PLACEHOLDER = {code: code.lower() for code in IUPAC_BASES if code not in _CONCRETE}


def _read_side_equalities() -> List[Tuple[str, str]]:
    pairs: List[Tuple[str, str]] = []
    for read_code, read_set in IUPAC_BASES.items():
        if read_code in _CONCRETE:
            continue
        for base in sorted(read_set):
            pairs.append((read_code, base))
    # ambiguity codes in the pattern only match themselves
    for code, placeholder in _PATTERN_PLACEHOLDER.items():
        pairs.append((code, placeholder))
    return pairs


READ_AMBIGUITY_EQUALITIES = _read_side_equalities()


def _encode_pattern(pattern: str) -> str:
    return "".join(_PATTERN_PLACEHOLDER.get(c, c) for c in pattern)


def _infix_hits(
    pattern: str,
    target: str,
    max_mismatches: int,
    equalities: Optional[List[Tuple[str, str]]],
) -> List[Tuple[int, int]]:
    if equalities:
        r = edlib.align(pattern, target, mode="HW", task="locations", k=max_mismatches, additionalEqualities=equalities)
    else:
        r = edlib.align(pattern, target, mode="HW", task="locations", k=max_mismatches)

    # edlib occasionally reports a distance above k
    if r["editDistance"] == -1 or r["editDistance"] > max_mismatches:
        return []
    return [loc for loc in r["locations"] if loc[0] is not None and loc[1] is not None]


def _leftmost_hit(
    pattern: str,
    target: str,
    max_mismatches: int,
    equalities: Optional[List[Tuple[str, str]]],
) -> Optional[Tuple[int, int]]:
    """Return ``(start, end)`` of the earliest-ending match within ``max_mismatches`` edits.

    edlib only reports the best-scoring locations, so the shortest prefix of
    ``target`` that still holds a match is found by bisection. The best
    distance over a prefix never increases as the prefix grows.
    """
    if not _infix_hits(pattern, target, max_mismatches, equalities):
        return None

    lo = min(max(1, len(pattern) - max_mismatches), len(target))
    hi = len(target)
    while lo < hi:
        mid = (lo + hi) // 2
        if _infix_hits(pattern, target[:mid], max_mismatches, equalities):
            hi = mid
        else:
            lo = mid + 1

    locations = _infix_hits(pattern, target[:lo], max_mismatches, equalities)
    return min(locations)


def _count_with_indels(seq: str, pattern: str, max_mismatches: int, ambiguity_as_pattern: bool) -> int:
    if ambiguity_as_pattern:
        query = _encode_pattern(pattern)
        equalities: Optional[List[Tuple[str, str]]] = READ_AMBIGUITY_EQUALITIES
    else:
        query = pattern
        equalities = None

    count = 0
    cursor = 0
    while cursor < len(seq):
        hit = _leftmost_hit(query, seq[cursor:], max_mismatches, equalities)
        if hit is None:
            break
        count += 1
        cursor += max(hit[1] + 1, 1)
    return count


def _count_substitutions_only(seq: str, pattern: str, max_mismatches: int, ambiguity_as_pattern: bool) -> int:
    m = len(pattern)
    if m > len(seq):
        return 0

    read_chr = np.array([ord(c) for c in seq], dtype=np.int64)
    pat_chr = np.array([ord(c) for c in pattern], dtype=np.int64)
    windows_chr = np.lib.stride_tricks.sliding_window_view(read_chr, m)
    ok = windows_chr == pat_chr

    if ambiguity_as_pattern:
        read_mask = np.array([_MASK.get(c, 0) for c in seq], dtype=np.int64)
        pat_mask = np.array([_MASK[c] if c in _CONCRETE else 0 for c in pattern], dtype=np.int64)
        windows_mask = np.lib.stride_tricks.sliding_window_view(read_mask, m)
        # concrete pattern bases match any read code that includes them;
        # ambiguity codes in the pattern stay literal
        covered = (pat_mask > 0) & ((windows_mask & pat_mask) == pat_mask)
        ok = ok | covered

    mismatches = m - ok.sum(axis=1)
    hits = np.flatnonzero(mismatches <= max_mismatches)

    count = 0
    next_free = 0
    for start in hits:
        if start >= next_free:
            count += 1
            next_free = int(start) + m
    return count


def approximate_count(
    sequence: str,
    pattern: str,
    max_mismatches: int = 4,
    allow_indels: bool = True,
    ambiguity_as_pattern: bool = True,
) -> int:
    """Count non-overlapping approximate occurrences of ``pattern`` in ``sequence``.

    Each match tolerates up to ``max_mismatches`` edits (substitutions only unless
    ``allow_indels``). Scanning from the left, the match that ends earliest is
    counted and the scan resumes after its last base, so no read base belongs to
    two matches. A weaker match is never skipped in favour of a better one further
    right. With ``ambiguity_as_pattern``, IUPAC codes in ``sequence`` match every
    base they stand for.
    """
    if max_mismatches < 0:
        raise ValueError("max_mismatches must be >= 0")
    if not pattern:
        raise ValueError("pattern must not be empty")

    seq = sequence.upper()
    pat = pattern.upper()
    if not seq:
        return 0

    try:
        if allow_indels:
            return _count_with_indels(seq, pat, max_mismatches, ambiguity_as_pattern)
        return _count_substitutions_only(seq, pat, max_mismatches, ambiguity_as_pattern)
    except (ValueError, TypeError, MemoryError) as e:
        raise PrimitiveError(f"approximate match failed: {e}", primitive="approximate_count") from e


def _trim_terminal_gaps(ops: List[Tuple[int, str]]) -> List[Tuple[int, str]]:
    start = 0
    end = len(ops)
    while start < end and ops[start][1] in "ID":
        start += 1
    while end > start and ops[end - 1][1] in "ID":
        end -= 1
    return ops[start:end]


def _parse_cigar(cigar: str) -> List[Tuple[int, str]]:
    ops: List[Tuple[int, str]] = []
    num = ""
    for ch in cigar:
        if ch.isdigit():
            num += ch
        else:
            ops.append((int(num) if num else 1, ch))
            num = ""
    return ops


def fractional_distance(seq_a: str, seq_b: str) -> float:
    """Return ``1 - matches / aligned columns`` for a global alignment of two sequences.

    Terminal gap columns are not counted. Returns 1.0 when nothing aligns.
    """
    a = seq_a.upper()
    b = seq_b.upper()
    if not a or not b:
        return 1.0
    if a == b:
        return 0.0

    try:
        r = edlib.align(a, b, mode="NW", task="path")
    except (ValueError, TypeError, MemoryError) as e:
        raise PrimitiveError(f"pairwise alignment failed: {e}", primitive="fractional_distance") from e

    cigar = r.get("cigar")
    if cigar is None:
        raise PrimitiveError("pairwise alignment returned no path", primitive="fractional_distance")

    ops = _trim_terminal_gaps(_parse_cigar(cigar))
    columns = sum(n for n, _ in ops)
    if columns == 0:
        return 1.0
    matches = sum(n for n, op in ops if op == "=")
    return 1.0 - matches / columns
