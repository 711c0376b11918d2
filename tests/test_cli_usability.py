import json
import subprocess
import sys
from pathlib import Path

from markerclust.toy_data import TOY_MARKER, make_toy_store


def _run_cli(args: list[str]) -> subprocess.CompletedProcess:
    return subprocess.run(
        [sys.executable, "-m", "markerclust"] + args,
        check=False,
        capture_output=True,
        text=True,
    )


def test_quickstart_output() -> None:
    cp = _run_cli(["quickstart"])
    assert cp.returncode == 0
    assert "markerclust run" in cp.stdout
    assert "markerclust make-toy-data" in cp.stdout


def test_run_dry_run_does_not_write_outputs(tmp_path: Path) -> None:
    store = tmp_path / "reads.sqlite"
    make_toy_store(store)
    outdir = tmp_path / "run"
    cp = _run_cli(["run", "--store", str(store), "--marker", TOY_MARKER, "--outdir", str(outdir), "--dry-run"])
    assert cp.returncode == 0
    assert "Dry-run" in cp.stdout
    assert not (outdir / "summary.json").exists()


def test_make_toy_data_and_run(tmp_path: Path) -> None:
    store = tmp_path / "toy" / "reads.sqlite"
    cp = _run_cli(["make-toy-data", "--out", str(store)])
    assert cp.returncode == 0
    assert store.exists()

    cp = _run_cli(["make-toy-data", "--out", str(store)])
    assert cp.returncode == 2
    assert "Refusing to overwrite" in cp.stderr

    outdir = tmp_path / "out"
    cp = _run_cli(
        ["run", "--store", str(store), "--marker", TOY_MARKER, "--outdir", str(outdir), "--no-progress"]
    )
    assert cp.returncode == 0, cp.stderr
    assert (outdir / "summary.json").exists()
    assert (outdir / "logs" / "run.log").exists()

    cp = _run_cli(["summary", "--store", str(store)])
    assert cp.returncode == 0
    sizes = json.loads(cp.stdout)
    assert set(sizes) == {"S1", "S2"}
    assert sum(sizes["S1"].values()) >= 12


def test_screen_then_cluster_one_sample(tmp_path: Path) -> None:
    store = tmp_path / "reads.sqlite"
    make_toy_store(store)

    cp = _run_cli(["screen", "--store", str(store), "--marker", TOY_MARKER, "--sample", "S1", "--no-progress"])
    assert cp.returncode == 0, cp.stderr
    counts = json.loads(cp.stdout)
    assert counts["S1"]["reads_malformed"] == 1

    cp = _run_cli(["cluster", "--store", str(store), "--sample", "S1", "--no-progress"])
    assert cp.returncode == 0, cp.stderr
    assert json.loads(cp.stdout)["S1"] >= 2


def test_unknown_sample_message(tmp_path: Path) -> None:
    store = tmp_path / "reads.sqlite"
    make_toy_store(store)
    cp = _run_cli(
        ["run", "--store", str(store), "--marker", TOY_MARKER, "--outdir", str(tmp_path / "out"), "--sample", "S9"]
    )
    assert cp.returncode == 2
    assert "Unknown sample" in cp.stderr


def test_invalid_cutoff_message(tmp_path: Path) -> None:
    store = tmp_path / "reads.sqlite"
    make_toy_store(store)
    cp = _run_cli(["cluster", "--store", str(store), "--cutoff", "1.5"])
    assert cp.returncode == 2
    assert "--cutoff" in cp.stderr
