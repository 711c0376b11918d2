"""markerclust: batched quality trimming, marker screening and per-sample clustering of reads.

Most users should use the CLI:

    markerclust run --store reads.sqlite --marker ACGT... --outdir results/

"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.1.0"
