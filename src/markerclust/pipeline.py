from __future__ import annotations

import datetime as _dt
import logging
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence

from . import __version__
from .batch import BatchOrchestrator
from .clustering import cluster_sample, cluster_summary
from .models import ScreenSettings
from .store import ReadStore
from .utils import ensure_outdir, write_json

logger = logging.getLogger(__name__)


_LOG_FMT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


@contextmanager
def _step_log(path: Optional[Path]) -> Iterator[None]:
    if path is None:
        yield
        return
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path)
    handler.setFormatter(logging.Formatter(_LOG_FMT))
    root_logger = logging.getLogger()
    root_logger.addHandler(handler)
    try:
        yield
    finally:
        root_logger.removeHandler(handler)
        handler.close()


def screen_reads(
    store: ReadStore,
    settings: ScreenSettings,
    *,
    samples: Optional[Sequence[str]] = None,
    progress: bool = True,
) -> Dict[str, Any]:
    """Phase one: trim and screen every read of ``samples`` (default: the whole store)."""
    orchestrator = BatchOrchestrator(store, settings, progress=progress)
    if samples is None:
        return {"all": orchestrator.run(sample=None)}
    return {s: orchestrator.run(sample=s) for s in samples}


def cluster_samples(
    store: ReadStore,
    settings: ScreenSettings,
    *,
    samples: Optional[Sequence[str]] = None,
    progress: bool = False,
) -> Dict[str, Dict[str, Any]]:
    """Phase two: cluster each sample independently. Cluster ids restart at 1 per sample."""
    out: Dict[str, Dict[str, Any]] = {}
    for s in samples if samples is not None else store.samples():
        assignment = cluster_sample(
            store,
            s,
            min_length=settings.min_length,
            identity_cutoff=settings.identity_cutoff,
            progress=progress,
        )
        out[s] = {
            "reads_clustered": len(assignment),
            "clusters": len(set(assignment.values())),
            "cluster_sizes": cluster_summary(store, s),
        }
    return out


def run_pipeline(
    store: ReadStore,
    settings: ScreenSettings,
    *,
    samples: Optional[Sequence[str]] = None,
    outdir: Optional[str | Path] = None,
    progress: bool = True,
) -> Dict[str, Any]:
    """Screen all selected reads, then cluster each sample.

    Clustering of any sample starts only after every screening batch covering it
    has been committed. If ``outdir`` is given, ``summary.json`` and step logs are
    written there.
    """
    settings.validate()
    t0 = time.time()
    outdir_path = ensure_outdir(outdir) if outdir is not None else None
    logs_dir = outdir_path / "logs" if outdir_path is not None else None

    selected: List[str] = list(samples) if samples is not None else store.samples()
    unknown = sorted(set(selected) - set(store.samples()))
    if unknown:
        raise ValueError(f"Unknown sample(s): {', '.join(unknown)}")

    with _step_log(logs_dir / "screen.log" if logs_dir is not None else None):
        screening = screen_reads(store, settings, samples=samples, progress=progress)

    with _step_log(logs_dir / "cluster.log" if logs_dir is not None else None):
        clustering = cluster_samples(store, settings, samples=selected, progress=progress)

    summary: Dict[str, Any] = {
        "version": __version__,
        "generated_at": _dt.datetime.now().isoformat(timespec="seconds"),
        "samples": selected,
        "screening": screening,
        "clustering": clustering,
        "runtime_seconds": float(time.time() - t0),
    }

    if outdir_path is not None:
        write_json(outdir_path / "summary.json", summary)
        logger.info("Summary written: %s", outdir_path / "summary.json")
    return summary
