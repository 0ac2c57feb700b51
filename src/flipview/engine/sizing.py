"""Document-length buckets for cache budget and render quality."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple


@dataclass(frozen=True)
class BufferPlan:
    """Cache budget chosen once per document load."""

    buffer_size: int
    initial_burst: int
    quality: float


SMALL = BufferPlan(buffer_size=20, initial_burst=6, quality=0.80)
MEDIUM = BufferPlan(buffer_size=10, initial_burst=4, quality=0.70)
LARGE = BufferPlan(buffer_size=6, initial_burst=2, quality=0.60)
VERY_LARGE = BufferPlan(buffer_size=4, initial_burst=2, quality=0.50)

# (inclusive upper page bound, plan); the last bucket catches everything else.
BUCKETS: Tuple[Tuple[int, BufferPlan], ...] = (
    (50, SMALL),
    (200, MEDIUM),
    (500, LARGE),
)


def size_for(total_pages: int) -> BufferPlan:
    """Return the :class:`BufferPlan` for a document of ``total_pages`` pages."""

    count = max(0, int(total_pages))
    for upper, plan in BUCKETS:
        if count <= upper:
            return plan
    return VERY_LARGE


__all__ = ["BufferPlan", "SMALL", "MEDIUM", "LARGE", "VERY_LARGE", "BUCKETS", "size_for"]
