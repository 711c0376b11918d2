from __future__ import annotations

import logging
from typing import Sequence

import numpy as np
import pysam

from .models import Read
from .utils import phred_to_error_probs

logger = logging.getLogger(__name__)

_PHRED_OFFSET = 33
_MIN_QUAL_CHAR = "!"
_MAX_QUAL_CHAR = "~"


class MalformedProbabilitySequence(ValueError):
    """Raised when a read's per-base error probabilities cannot be trusted."""


def check_error_probs(probs: Sequence[float] | np.ndarray, *, length: int) -> np.ndarray:
    """Return ``probs`` as a float array, or raise MalformedProbabilitySequence.

    The sequence must have exactly ``length`` values, all finite and within [0, 1].
    """
    arr = np.asarray(probs, dtype=np.float64)
    if arr.ndim != 1:
        raise MalformedProbabilitySequence(f"expected a 1-d sequence, got shape {arr.shape}")
    if arr.shape[0] != length:
        raise MalformedProbabilitySequence(
            f"length mismatch: {arr.shape[0]} probabilities for {length} bases"
        )
    if not np.all(np.isfinite(arr)):
        raise MalformedProbabilitySequence("non-finite error probability")
    if arr.size and (arr.min() < 0.0 or arr.max() > 1.0):
        raise MalformedProbabilitySequence("error probability outside [0, 1]")
    return arr


def read_error_probs(read: Read) -> np.ndarray:
    """Decode a read's Phred+33 quality string into per-base error probabilities."""
    qual = read.quality
    if qual is None:
        raise MalformedProbabilitySequence(f"read {read.read_id} has no quality string")
    if len(qual) != len(read.sequence):
        raise MalformedProbabilitySequence(
            f"length mismatch: {len(qual)} quality values for {len(read.sequence)} bases"
        )
    bad = [c for c in qual if c < _MIN_QUAL_CHAR or c > _MAX_QUAL_CHAR]
    if bad:
        raise MalformedProbabilitySequence(
            f"quality character {bad[0]!r} outside the Phred+{_PHRED_OFFSET} range"
        )
    if not qual:
        return np.zeros(0, dtype=np.float64)

    quals = np.asarray(pysam.qualitystring_to_array(qual, offset=_PHRED_OFFSET), dtype=np.int64)
    return check_error_probs(phred_to_error_probs(quals), length=len(read.sequence))
