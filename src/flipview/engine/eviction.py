"""Direction-aware eviction of cached pages."""

from __future__ import annotations

import logging
from typing import Iterable, List

from .page_cache import PageCache
from .position import Direction

logger = logging.getLogger(__name__)

WRONG_SIDE_PENALTY = 10


def weighted_distance(page: int, current_page: int, direction: Direction) -> int:
    """Distance from ``current_page``, penalised when ``page`` is behind the reader."""

    distance = abs(page - current_page)
    if direction is Direction.FORWARD and page < current_page:
        return distance + WRONG_SIDE_PENALTY
    if direction is Direction.BACKWARD and page > current_page:
        return distance + WRONG_SIDE_PENALTY
    return distance


def rank_victims(
    pages: Iterable[int],
    current_page: int,
    direction: Direction,
    buffer_size: int,
    protected: Iterable[int] = (),
) -> List[int]:
    """Pages to drop so that at most ``buffer_size`` remain, farthest first.

    Pages in ``protected`` are never returned, even if that leaves the cache
    above budget.
    """

    cached = list(pages)
    excess = len(cached) - max(0, int(buffer_size))
    if excess <= 0:
        return []
    keep = set(protected)
    candidates = [page for page in cached if page not in keep]
    # ties go to the higher page number so the result is deterministic
    candidates.sort(key=lambda page: (weighted_distance(page, current_page, direction), page), reverse=True)
    return candidates[:excess]


def evict(
    cache: PageCache,
    current_page: int,
    direction: Direction,
    buffer_size: int,
    protected: Iterable[int] = (),
) -> List[int]:
    """Trim ``cache`` to ``buffer_size`` entries and return the evicted pages."""

    victims = rank_victims(cache.pages(), current_page, direction, buffer_size, protected)
    for page in victims:
        cache.pop(page)
    if victims:
        logger.debug(
            "EVICT current=%s direction=%s budget=%s dropped=%s",
            current_page,
            direction.value,
            buffer_size,
            victims,
        )
    return victims


__all__ = ["WRONG_SIDE_PENALTY", "weighted_distance", "rank_victims", "evict"]
