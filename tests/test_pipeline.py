import json
from pathlib import Path

import pytest

from markerclust.models import ScreenSettings
from markerclust.pipeline import run_pipeline
from markerclust.store import SQLiteReadStore
from markerclust.toy_data import TOY_MARKER, make_toy_store


@pytest.fixture()
def toy_store(tmp_path: Path):
    make_toy_store(tmp_path / "reads.sqlite")
    with SQLiteReadStore(tmp_path / "reads.sqlite", create=False) as store:
        yield store


def _cluster_of(store, sample):
    return {ident: cid for _rid, ident, cid in store.list_columns(sample, ["identifier", "cluster"])}


def test_toy_store_layout(tmp_path: Path):
    summary = make_toy_store(tmp_path / "reads.sqlite", reads_per_template=4)
    assert summary["marker"] == TOY_MARKER
    assert summary["reads_per_sample"] == {"S1": 13, "S2": 13}
    assert (tmp_path / "reads.toy_summary.json").exists()


def test_run_pipeline_clusters_templates(toy_store, tmp_path: Path):
    settings = ScreenSettings(marker_pattern=TOY_MARKER, batch_size=5)
    outdir = tmp_path / "run"

    summary = run_pipeline(toy_store, settings, outdir=outdir, progress=False)

    assert summary["samples"] == ["S1", "S2"]
    assert summary["screening"]["all"]["counts"]["reads_total"] == 38
    assert summary["screening"]["all"]["counts"]["reads_malformed"] == 2

    for sample in ("S1", "S2"):
        clusters = _cluster_of(toy_store, sample)
        t0 = {clusters[f"{sample}_t0_r{r}"] for r in range(6)}
        t1 = {clusters[f"{sample}_t1_r{r}"] for r in range(6)}
        assert len(t0) == 1 and len(t1) == 1
        assert t0 != t1
        assert None not in t0 | t1
        assert clusters[f"{sample}_malformed"] is None
        assert min(summary["clustering"][sample]["cluster_sizes"]) == 1

    written = json.loads((outdir / "summary.json").read_text())
    assert written["clustering"] == json.loads(json.dumps(summary["clustering"]))
    assert (outdir / "logs" / "screen.log").exists()
    assert (outdir / "logs" / "cluster.log").exists()


def test_run_pipeline_single_sample(toy_store):
    settings = ScreenSettings(marker_pattern=TOY_MARKER)
    summary = run_pipeline(toy_store, settings, samples=["S2"], progress=False)

    assert list(summary["screening"]) == ["S2"]
    assert list(summary["clustering"]) == ["S2"]
    assert all(cid is None for cid in _cluster_of(toy_store, "S1").values())


def test_run_pipeline_rejects_unknown_sample(toy_store):
    with pytest.raises(ValueError, match="Unknown sample"):
        run_pipeline(toy_store, ScreenSettings(marker_pattern=TOY_MARKER), samples=["S9"], progress=False)


def test_run_pipeline_is_repeatable(toy_store):
    settings = ScreenSettings(marker_pattern=TOY_MARKER)
    first = run_pipeline(toy_store, settings, progress=False)
    state = _cluster_of(toy_store, "S1")
    second = run_pipeline(toy_store, settings, progress=False)
    assert _cluster_of(toy_store, "S1") == state
    assert first["clustering"] == second["clustering"]
