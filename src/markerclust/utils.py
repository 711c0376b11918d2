from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import numpy as np

logger = logging.getLogger(__name__)


def phred_to_error_probs(quals: np.ndarray) -> np.ndarray:
    """Vectorised Phred score -> error probability conversion."""
    q = np.asarray(quals, dtype=np.float64)
    return np.power(10.0, -q / 10.0)


def ensure_outdir(path: str | Path) -> Path:
    p = Path(path)
    p.mkdir(parents=True, exist_ok=True)
    return p


def write_json(path: str | Path, obj: Any) -> None:
    with open(path, "wt", encoding="utf-8") as f:
        json.dump(obj, f, indent=2, sort_keys=True)
