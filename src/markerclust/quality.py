"""Quality trimming from per-base error probabilities.

The trim region is derived from a smoothed error profile: the sequence is
padded with ``threshold`` on both ends, averaged over a centered window and
every position whose smoothed error falls below ``threshold`` is considered
reliable. The region spans from the first to the last reliable position.

Reliable positions do not have to be contiguous. An isolated good stretch
after a low-quality block still extends the region to its end.
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence, Tuple

import numpy as np

from .models import DEFAULT_PRIMER_OFFSET, TrimBounds

logger = logging.getLogger(__name__)


def smooth_error_probs(
    error_probs: Sequence[float] | np.ndarray,
    *,
    threshold: float = 0.001,
    window_width: int = 21,
) -> np.ndarray:
    """Centered moving average of ``error_probs``, padded with ``threshold``.

    The result has the same length as the input.
    """
    if window_width < 1:
        raise ValueError("window_width must be >= 1")

    probs = np.asarray(error_probs, dtype=np.float64)
    n = probs.shape[0]
    if n == 0:
        return probs

    pad = window_width // 2
    padded = np.concatenate([np.full(pad, threshold), probs, np.full(pad, threshold)])
    kernel = np.full(window_width, 1.0 / window_width)
    smoothed = np.convolve(padded, kernel, mode="valid")

    # even widths lean one position forward
    offset = 0 if window_width % 2 == 1 else 1
    return smoothed[offset : offset + n]


def trim_region(
    error_probs: Sequence[float] | np.ndarray,
    threshold: float = 0.001,
    window_width: int = 21,
) -> Optional[Tuple[int, int]]:
    """Return the 1-based inclusive (start, end) of the high-confidence region.

    Returns ``None`` when no position has a smoothed error below ``threshold``.
    """
    if not 0.0 < threshold <= 1.0:
        raise ValueError("threshold must be in (0, 1]")

    smoothed = smooth_error_probs(error_probs, threshold=threshold, window_width=window_width)
    if smoothed.shape[0] == 0:
        return None

    good = np.flatnonzero(smoothed < threshold)
    if good.size == 0:
        return None
    return int(good[0]) + 1, int(good[-1]) + 1


def clamp_to_primer(
    region: Optional[Tuple[int, int]],
    primer_offset: int = DEFAULT_PRIMER_OFFSET,
) -> TrimBounds:
    """Keep the trim region clear of the forward primer.

    ``start`` is raised to ``primer_offset``; an ``end`` that falls before the
    new start becomes ``start - 1`` (empty region). A missing region is
    reported as empty at the primer offset.
    """
    if region is None:
        return TrimBounds(start=primer_offset, end=primer_offset - 1)

    start, end = region
    start = max(start, primer_offset)
    if end < start:
        end = start - 1
    return TrimBounds(start=start, end=end)
