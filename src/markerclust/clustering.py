"""Greedy first-fit identity clustering of one sample's qualifying reads.

Reads are visited in ascending ``read_id`` order. Each cluster is represented by
its first member; a read joins the *first* cluster (in creation order) whose
representative lies within ``identity_cutoff``, otherwise it founds a new
cluster. Only representatives are kept in memory, and the number of
comparisons is bounded by reads x clusters instead of reads squared.

Assignments depend on the visiting order. Ties are never resolved by distance.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, List, Tuple

from tqdm import tqdm

from .primitives import fractional_distance
from .store import ReadStore

logger = logging.getLogger(__name__)

CLUSTER_COLUMN = "cluster"

_QUALIFYING = "marker_count > 0 AND trim_start IS NOT NULL AND trim_end IS NOT NULL AND (trim_end - trim_start + 1) >= ?"


@dataclass
class _Cluster:
    cluster_id: int
    representative: str
    size: int = 1


def trimmed_sequence(sequence: str, start: int, end: int) -> str:
    """Slice a read to its 1-based inclusive trim bounds."""
    return sequence[start - 1 : end]


def first_fit(
    reads: Iterable[Tuple[int, str]],
    identity_cutoff: float = 0.03,
    *,
    progress: bool = False,
) -> Dict[int, int]:
    """Assign ``(read_id, sequence)`` pairs to clusters in the order given.

    Returns ``{read_id: cluster_id}`` with cluster ids starting at 1.
    """
    if not 0.0 <= identity_cutoff <= 1.0:
        raise ValueError("identity_cutoff must be in [0, 1]")

    clusters: List[_Cluster] = []
    assignment: Dict[int, int] = {}

    it = reads
    if progress:
        it = tqdm(reads, unit="read", desc="Clustering")

    for read_id, seq in it:
        for cl in clusters:
            if fractional_distance(seq, cl.representative) <= identity_cutoff:
                cl.size += 1
                assignment[read_id] = cl.cluster_id
                break
        else:
            cl = _Cluster(cluster_id=len(clusters) + 1, representative=seq)
            clusters.append(cl)
            assignment[read_id] = cl.cluster_id

    return assignment


def qualifying_reads(store: ReadStore, sample: str, min_length: int = 100) -> Iterator[Tuple[int, str]]:
    """Yield ``(read_id, trimmed sequence)`` for reads with a marker hit and a long enough trim region."""
    rows = store.iter_columns(
        sample,
        ["sequence", "trim_start", "trim_end"],
        where=_QUALIFYING,
        params=(int(min_length),),
    )
    for read_id, seq, start, end in rows:
        yield int(read_id), trimmed_sequence(seq, int(start), int(end))


def cluster_sample(
    store: ReadStore,
    sample: str,
    min_length: int = 100,
    identity_cutoff: float = 0.03,
    *,
    progress: bool = False,
) -> Dict[int, int]:
    """Cluster one sample's qualifying reads and persist the ``cluster`` column.

    Previous assignments of the sample are cleared first. Returns
    ``{read_id: cluster_id}``; empty when no read qualifies.
    """
    if min_length < 1:
        raise ValueError("min_length must be >= 1")
    if not 0.0 <= identity_cutoff <= 1.0:
        raise ValueError("identity_cutoff must be in [0, 1]")

    t0 = time.time()
    reads = qualifying_reads(store, sample, min_length=min_length)
    assignment = first_fit(reads, identity_cutoff=identity_cutoff, progress=progress)

    with store.transaction():
        store.clear_column(sample, CLUSTER_COLUMN)
        if assignment:
            store.append_columns_many((read_id, {CLUSTER_COLUMN: cid}) for read_id, cid in assignment.items())

    if not assignment:
        logger.info("%s: no qualifying reads; nothing to cluster", sample)
    else:
        logger.info(
            "%s: %d qualifying reads -> %d clusters at cutoff %.3f (%.1fs)",
            sample,
            len(assignment),
            len(set(assignment.values())),
            identity_cutoff,
            time.time() - t0,
        )
    return assignment


def cluster_summary(store: ReadStore, sample: str) -> Dict[int, int]:
    """Cluster sizes ``{cluster_id: n_reads}`` as stored for ``sample``."""
    if CLUSTER_COLUMN not in store.columns():
        return {}
    sizes: Dict[int, int] = {}
    for _read_id, cid in store.iter_columns(sample, [CLUSTER_COLUMN], where=f"{CLUSTER_COLUMN} IS NOT NULL"):
        sizes[int(cid)] = sizes.get(int(cid), 0) + 1
    return dict(sorted(sizes.items()))
