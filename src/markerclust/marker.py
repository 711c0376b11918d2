from __future__ import annotations

import logging

from .models import Read
from .primitives import approximate_count

logger = logging.getLogger(__name__)


def count_matches(
    read: Read,
    pattern: str,
    max_mismatches: int = 4,
    allow_indels: bool = True,
    ambiguity_as_pattern: bool = True,
) -> int:
    """Number of approximate marker occurrences in the full (untrimmed) read.

    Errors from the match primitive propagate unchanged.
    """
    return approximate_count(
        read.sequence,
        pattern,
        max_mismatches=max_mismatches,
        allow_indels=allow_indels,
        ambiguity_as_pattern=ambiguity_as_pattern,
    )
