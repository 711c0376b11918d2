from __future__ import annotations

import random
from pathlib import Path
from typing import Dict, List, Tuple

import pysam

from .models import DEFAULT_PRIMER_OFFSET
from .store import SQLiteReadStore
from .utils import write_json

TOY_MARKER = "ACTCCTACGGGAGGCAGCAG"

_BASES = "ACGT"


def _random_seq(rng: random.Random, n: int) -> str:
    return "".join(rng.choice(_BASES) for _ in range(n))


def _mutate(rng: random.Random, seq: str, n_subs: int, protect: Tuple[int, int]) -> str:
    out = list(seq)
    for _ in range(n_subs):
        i = rng.randrange(len(out))
        if protect[0] <= i < protect[1]:
            continue
        out[i] = rng.choice([b for b in _BASES if b != out[i]])
    return "".join(out)


def _quality_string(n_low_head: int, n_high: int, n_low_tail: int) -> str:
    quals = [2] * n_low_head + [40] * n_high + [2] * n_low_tail
    return pysam.qualities_to_qualitystring(quals)


def make_toy_store(
    path: str | Path,
    *,
    samples: Tuple[str, ...] = ("S1", "S2"),
    reads_per_template: int = 6,
    n_templates: int = 3,
    body_length: int = 150,
    seed: int = 7,
) -> Dict[str, object]:
    """Create a small SQLite read store for demos and tests.

    Every read is ``primer + body + noisy tail``. Bodies derive from a few random
    templates carrying :data:`TOY_MARKER` (one template per sample lacks it), with at
    most one substitution per read. Each sample also holds one read whose quality
    string is shorter than its sequence.

    Returns
    -------
    dict
        Store path, marker pattern and per-sample read counts.
    """
    rng = random.Random(seed)
    primer = _random_seq(rng, DEFAULT_PRIMER_OFFSET - 1)
    marker_at = 40

    templates: List[Tuple[str, bool]] = []
    for i in range(n_templates):
        body = _random_seq(rng, body_length)
        has_marker = i < n_templates - 1
        if has_marker:
            body = body[:marker_at] + TOY_MARKER + body[marker_at + len(TOY_MARKER) :]
        templates.append((body, has_marker))

    rows: List[Tuple[str, str, str, str]] = []
    per_sample: Dict[str, int] = {}
    for sample in samples:
        n = 0
        for t_idx, (body, _has_marker) in enumerate(templates):
            for r in range(reads_per_template):
                read_body = _mutate(rng, body, n_subs=r % 2, protect=(marker_at, marker_at + len(TOY_MARKER)))
                tail = _random_seq(rng, 20)
                seq = primer + read_body + tail
                qual = _quality_string(5, len(primer) + len(read_body) - 5, len(tail))
                rows.append((f"{sample}_t{t_idx}_r{r}", sample, seq, qual))
                n += 1

        seq = primer + templates[0][0]
        rows.append((f"{sample}_malformed", sample, seq, "I" * (len(seq) - 3)))
        per_sample[sample] = n + 1

    store_path = Path(path)
    store_path.parent.mkdir(parents=True, exist_ok=True)
    with SQLiteReadStore(store_path) as store:
        store.add_reads(rows)

    summary: Dict[str, object] = {
        "store": str(store_path),
        "marker": TOY_MARKER,
        "reads_per_sample": per_sample,
    }
    write_json(store_path.with_suffix(".toy_summary.json"), summary)
    return summary
