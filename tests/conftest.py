from __future__ import annotations

import random
from typing import Iterable, Iterator, List

import pytest

from markerclust.store import SQLiteReadStore

PRIMER = "GTGCCAGCAGCCGCGGTAATACGGAGGGTGCAAGCGT"  # 37 bases; trimming starts at 38


def random_seq(n: int, seed: int) -> str:
    rng = random.Random(seed)
    return "".join(rng.choice("ACGT") for _ in range(n))


def substitute(seq: str, positions: Iterable[int]) -> str:
    out = list(seq)
    for i in positions:
        out[i] = {"A": "C", "C": "G", "G": "T", "T": "A"}[out[i]]
    return "".join(out)


@pytest.fixture()
def store() -> Iterator[SQLiteReadStore]:
    s = SQLiteReadStore(":memory:")
    yield s
    s.close()


def good_quality(seq: str) -> str:
    return "I" * len(seq)


def add_bodies(store: SQLiteReadStore, sample: str, bodies: List[str]) -> List[int]:
    """Store ``PRIMER + body`` reads with uniformly high quality; return their read ids."""
    rows = []
    for i, body in enumerate(bodies):
        seq = PRIMER + body
        rows.append((f"{sample}_{i:03d}", sample, seq, good_quality(seq)))
    store.add_reads(rows)
    return [r.read_id for r in store.fetch_batch(sample, 0, len(bodies) + 1000)]
