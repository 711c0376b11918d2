import subprocess
import sys


def test_cli_help() -> None:
    cp = subprocess.run(
        [sys.executable, "-m", "markerclust", "--help"],
        check=True,
        capture_output=True,
        text=True,
    )
    assert "markerclust" in cp.stdout.lower()
