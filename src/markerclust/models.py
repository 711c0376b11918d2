from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

# Length of the forward primer at the 5' end of every read.
DEFAULT_PRIMER_OFFSET = 38


@dataclass(frozen=True)
class Read:
    """A stored read.

    Attributes
    ----------
    read_id:
        Store row id. Unique across the store and defines the stable fetch order.
    identifier:
        Read name, unique within its sample.
    sample:
        Owning sample.
    sequence:
        Nucleotide sequence (IUPAC alphabet).
    quality:
        Phred+33 quality string, parallel to ``sequence``.
    """

    read_id: int
    identifier: str
    sample: str
    sequence: str
    quality: str


@dataclass(frozen=True)
class TrimBounds:
    """1-based inclusive trim region of a read.

    Both fields are ``None`` when the region is undefined. ``start == end + 1``
    encodes an explicitly empty region.
    """

    start: Optional[int]
    end: Optional[int]

    @classmethod
    def undefined(cls) -> "TrimBounds":
        return cls(start=None, end=None)

    @property
    def is_defined(self) -> bool:
        return self.start is not None and self.end is not None

    @property
    def length(self) -> int:
        if not self.is_defined:
            return 0
        assert self.start is not None and self.end is not None
        return max(0, self.end - self.start + 1)


@dataclass(frozen=True)
class ReadAnnotation:
    """Per-read result of the trim/screen pass."""

    read_id: int
    bounds: TrimBounds
    marker_count: int
    malformed: bool = False


@dataclass(frozen=True)
class ScreenSettings:
    """Parameters shared by the screening and clustering phases."""

    marker_pattern: str = ""
    threshold: float = 0.001
    window_width: int = 21
    primer_offset: int = DEFAULT_PRIMER_OFFSET
    max_mismatches: int = 4
    allow_indels: bool = True
    ambiguity_as_pattern: bool = True
    batch_size: int = 10_000
    min_length: int = 100
    identity_cutoff: float = 0.03

    def validate(self) -> None:
        if not self.marker_pattern:
            raise ValueError("marker_pattern must be a non-empty sequence")
        if not 0.0 < self.threshold <= 1.0:
            raise ValueError("threshold must be in (0, 1]")
        if self.window_width < 1:
            raise ValueError("window_width must be >= 1")
        if self.primer_offset < 1:
            raise ValueError("primer_offset must be >= 1")
        if self.max_mismatches < 0:
            raise ValueError("max_mismatches must be >= 0")
        if self.batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        if self.min_length < 1:
            raise ValueError("min_length must be >= 1")
        if not 0.0 <= self.identity_cutoff <= 1.0:
            raise ValueError("identity_cutoff must be in [0, 1]")
