"""Tiered prefetch planning and dispatch."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterable, List, Optional, Tuple

from ..errors import RenderFailure
from .position import Direction, spread_pages
from .rendering import Rendering

if TYPE_CHECKING:  # pragma: no cover
    from .session import ViewerSession

logger = logging.getLogger(__name__)

RUN_LENGTH = 4


@dataclass(frozen=True)
class PrefetchPlan:
    """1-based pages to render, split by priority tier.

    ``visible`` is the current spread, ``ahead`` the next spread plus the run
    in the direction of travel, ``behind`` the previous spread. A page
    appears in at most one tier.
    """

    visible: Tuple[int, ...]
    ahead: Tuple[int, ...]
    behind: Tuple[int, ...]

    def pages(self) -> Tuple[int, ...]:
        return self.visible + self.ahead + self.behind

    def prefetch(self) -> Tuple[int, ...]:
        return self.ahead + self.behind


@dataclass(frozen=True)
class ScheduleOutcome:
    """What one ``schedule`` call did."""

    plan: PrefetchPlan
    ready: Tuple[int, ...]
    failed: Tuple[int, ...]
    dispatched: Tuple[int, ...]


def plan_prefetch(current_index: int, total_pages: int, direction: Direction) -> PrefetchPlan:
    """Compute the tiered render plan for ``current_index`` (0-based)."""

    if total_pages <= 0:
        return PrefetchPlan((), (), ())
    start = 2 * (max(0, int(current_index)) // 2) + 1
    visible = spread_pages(current_index, total_pages)

    ahead: List[int] = [start + 2, start + 3]
    if direction is Direction.FORWARD:
        ahead.extend(range(start + 4, start + 4 + RUN_LENGTH))
    else:
        previous_start = start - 2
        ahead.extend(range(previous_start - RUN_LENGTH, previous_start))
    behind = [start - 2, start - 1]

    seen = set(visible)
    tier2 = _clip_unique(ahead, total_pages, seen)
    tier3 = _clip_unique(behind, total_pages, seen)
    return PrefetchPlan(visible=visible, ahead=tier2, behind=tier3)


def _clip_unique(pages: Iterable[int], total_pages: int, seen: set) -> Tuple[int, ...]:
    result: List[int] = []
    for page in pages:
        if page < 1 or page > total_pages or page in seen:
            continue
        seen.add(page)
        result.append(page)
    return tuple(result)


class PrefetchScheduler:
    """Issues render requests for a session's current position."""

    def __init__(self, session: "ViewerSession") -> None:
        self._session = session

    async def schedule(self) -> ScheduleOutcome:
        """Render the visible spread, then dispatch prefetch work without waiting."""

        session = self._session
        position = session.position
        plan = plan_prefetch(position.index, session.total_pages, position.direction)
        generation = session.generation

        ready: List[int] = []
        failed: List[int] = []
        results = await asyncio.gather(
            *(session.request(page) for page in plan.visible),
            return_exceptions=True,
        )
        for page, result in zip(plan.visible, results):
            if isinstance(result, RenderFailure):
                if generation == session.generation:
                    logger.error("Visible page %s failed to render: %s", page, result.cause)
                    session.mark_failed(page)
                    failed.append(page)
                continue
            if isinstance(result, BaseException):
                raise result
            if result is not None:
                ready.append(page)

        if generation != session.generation:
            # cleared while the visible spread was rendering; a newer schedule takes over
            return ScheduleOutcome(plan, tuple(ready), tuple(failed), ())

        cache = session.cache
        dispatched = tuple(
            page for page in plan.prefetch() if page not in cache and page not in cache.flights
        )
        if dispatched:
            futures = [session.submit(page) for page in dispatched]
            session.track(asyncio.ensure_future(self._settle(dispatched, futures, generation)))
        session.evict()
        session.notify()
        return ScheduleOutcome(plan, tuple(ready), tuple(failed), dispatched)

    async def _settle(
        self,
        pages: Tuple[int, ...],
        futures: List["asyncio.Future[Optional[Rendering]]"],
        generation: int,
    ) -> None:
        """Wait for a prefetch batch, log failures, then trim the cache."""

        session = self._session
        results = await asyncio.gather(
            *(asyncio.shield(future) for future in futures),
            return_exceptions=True,
        )
        for page, result in zip(pages, results):
            if isinstance(result, RenderFailure):
                logger.warning("Prefetch of page %s failed: %s", page, result.cause)
            elif isinstance(result, BaseException):
                raise result
        if generation != session.generation:
            return
        session.evict()
        session.notify()


__all__ = ["RUN_LENGTH", "PrefetchPlan", "ScheduleOutcome", "plan_prefetch", "PrefetchScheduler"]
