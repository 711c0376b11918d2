"""Environment self-checks.

This module powers the ``markerclust doctor`` CLI command. The pipeline itself is
pure Python, but it relies on compiled extensions (edlib, pysam, numpy) and on the
SQLite library bundled with the interpreter.
"""

from __future__ import annotations

import importlib
import logging
import platform
import sqlite3
from dataclasses import dataclass
from importlib import metadata
from typing import Dict, Optional

logger = logging.getLogger(__name__)

# distribution name -> import name
_LIBRARIES = {
    "numpy": "numpy",
    "edlib": "edlib",
    "pysam": "pysam",
    "tqdm": "tqdm",
}


@dataclass(frozen=True)
class CheckResult:
    name: str
    ok: bool
    detail: str
    howto: Optional[str] = None


def check_python() -> CheckResult:
    v = platform.python_version()
    return CheckResult(name="python", ok=True, detail=f"Python {v}")


def check_sqlite() -> CheckResult:
    v = sqlite3.sqlite_version
    major, minor = (int(x) for x in v.split(".")[:2])
    if (major, minor) < (3, 8):
        return CheckResult(
            name="sqlite",
            ok=False,
            detail=f"SQLite {v} is too old",
            howto="Use a Python build linked against SQLite >= 3.8.",
        )
    return CheckResult(name="sqlite", ok=True, detail=f"SQLite {v}")


def check_library(dist: str, module: str) -> CheckResult:
    howto = f"pip install {dist}\nConda/mamba: mamba install -c bioconda -c conda-forge {dist}"
    try:
        importlib.import_module(module)
    except ImportError as e:
        return CheckResult(name=dist, ok=False, detail=f"import failed: {e}", howto=howto)
    try:
        version = metadata.version(dist)
    except metadata.PackageNotFoundError:
        version = "unknown version"
    return CheckResult(name=dist, ok=True, detail=version)


def collect_checks() -> Dict[str, CheckResult]:
    """Run all checks and return a mapping name->result."""
    checks: Dict[str, CheckResult] = {}

    checks["python"] = check_python()
    checks["sqlite"] = check_sqlite()
    for dist, module in _LIBRARIES.items():
        checks[dist] = check_library(dist, module)

    return checks
