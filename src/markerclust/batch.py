from __future__ import annotations

import logging
import time
from dataclasses import asdict
from typing import Any, Dict, List, Optional

from tqdm import tqdm

from .marker import count_matches
from .models import Read, ReadAnnotation, ScreenSettings, TrimBounds
from .quality import clamp_to_primer, trim_region
from .store import ReadStore
from .validation import MalformedProbabilitySequence, read_error_probs

logger = logging.getLogger(__name__)


def annotate_read(read: Read, settings: ScreenSettings) -> ReadAnnotation:
    """Trim bounds and marker count for one read.

    Reads with malformed quality data get undefined bounds and a zero count.
    Match primitive failures propagate.
    """
    try:
        probs = read_error_probs(read)
    except MalformedProbabilitySequence as e:
        logger.debug("Skipping read %s (%s): %s", read.read_id, read.identifier, e)
        return ReadAnnotation(read_id=read.read_id, bounds=TrimBounds.undefined(), marker_count=0, malformed=True)

    region = trim_region(probs, threshold=settings.threshold, window_width=settings.window_width)
    bounds = clamp_to_primer(region, primer_offset=settings.primer_offset)
    n_markers = count_matches(
        read,
        settings.marker_pattern,
        max_mismatches=settings.max_mismatches,
        allow_indels=settings.allow_indels,
        ambiguity_as_pattern=settings.ambiguity_as_pattern,
    )
    return ReadAnnotation(read_id=read.read_id, bounds=bounds, marker_count=n_markers)


def _annotation_columns(ann: ReadAnnotation) -> Dict[str, Any]:
    return {
        "trim_start": ann.bounds.start,
        "trim_end": ann.bounds.end,
        "marker_count": int(ann.marker_count),
    }


class BatchOrchestrator:
    """Drive fixed-size batches of reads through trimming and marker screening.

    Each batch is fetched, annotated and written in a single store transaction
    before the next batch is fetched, so at most ``batch_size`` reads are held
    in memory and an interrupted batch leaves no partial writes.

    Attributes
    ----------
    processed:
        Number of reads whose annotations have been committed. Only increases.
    """

    def __init__(self, store: ReadStore, settings: ScreenSettings, *, progress: bool = True) -> None:
        settings.validate()
        self.store = store
        self.settings = settings
        self.progress = progress
        self.processed = 0

    def process_batch(self, reads: List[Read]) -> List[ReadAnnotation]:
        annotations = [annotate_read(read, self.settings) for read in reads]
        with self.store.transaction():
            self.store.append_columns_many((a.read_id, _annotation_columns(a)) for a in annotations)
        self.processed += len(annotations)
        return annotations

    def run(self, sample: Optional[str] = None, batch_size: Optional[int] = None) -> Dict[str, Any]:
        """Annotate every read (of ``sample``, or of the whole store) and return a summary dict."""
        t0 = time.time()
        size = int(batch_size if batch_size is not None else self.settings.batch_size)
        if size < 1:
            raise ValueError("batch_size must be >= 1")

        total = self.store.count(sample)
        label = sample if sample is not None else "all samples"
        logger.info("Screening %d reads (%s) in batches of %d", total, label, size)

        counts = {
            "reads_total": 0,
            "reads_malformed": 0,
            "reads_with_marker": 0,
            "reads_empty_region": 0,
        }
        n_batches = 0

        bar = tqdm(total=total, unit="read", desc=f"Screening {label}", disable=not self.progress)
        try:
            for offset in range(0, total, size):
                reads = self.store.fetch_batch(sample, offset, size)
                if not reads:
                    break
                annotations = self.process_batch(reads)
                n_batches += 1

                for a in annotations:
                    counts["reads_total"] += 1
                    if a.malformed:
                        counts["reads_malformed"] += 1
                        continue
                    if a.marker_count > 0:
                        counts["reads_with_marker"] += 1
                    if a.bounds.length == 0:
                        counts["reads_empty_region"] += 1

                bar.update(len(reads))
                logger.info("%s: %d/%d reads processed", label, self.processed, total)
        finally:
            bar.close()

        if counts["reads_malformed"]:
            logger.warning(
                "%s: %d reads had malformed quality data and were skipped",
                label,
                counts["reads_malformed"],
            )

        return {
            "sample": sample,
            "batch_size": size,
            "batches": n_batches,
            "counts": counts,
            "settings": asdict(self.settings),
            "runtime_seconds": float(time.time() - t0),
        }


def run_batches(
    store: ReadStore,
    sample: Optional[str] = None,
    batch_size: int = 10_000,
    *,
    settings: ScreenSettings,
    progress: bool = True,
) -> Dict[str, Any]:
    """Functional wrapper around :class:`BatchOrchestrator`."""
    return BatchOrchestrator(store, settings, progress=progress).run(sample=sample, batch_size=batch_size)
