"""Per-page de-duplication of concurrent render requests."""

from __future__ import annotations

import asyncio
from functools import partial
from typing import Awaitable, Callable, Dict, FrozenSet, TypeVar

T = TypeVar("T")


class SingleFlight:
    """At most one outstanding render task per page.

    A second request for a page that is already rendering awaits the
    existing task instead of starting another one.

    The guarantee holds per cache generation: :meth:`clear` forgets the
    registered tasks, so a render started before a clear can still be
    running next to the fresh render of the same page. The stale result is
    discarded when it lands.
    """

    def __init__(self) -> None:
        self._tasks: Dict[int, "asyncio.Future[object]"] = {}

    def __contains__(self, page: object) -> bool:
        task = self._tasks.get(page)  # type: ignore[arg-type]
        return task is not None and not task.done()

    def __len__(self) -> int:
        return sum(1 for task in self._tasks.values() if not task.done())

    def pages(self) -> FrozenSet[int]:
        return frozenset(page for page, task in self._tasks.items() if not task.done())

    def start(self, page: int, factory: Callable[[], Awaitable[T]]) -> "asyncio.Future[T]":
        """Return the in-flight task for ``page``, starting one if there is none.

        The page counts as in flight as soon as this returns.
        """

        task = self._tasks.get(page)
        if task is None or task.done():
            task = asyncio.ensure_future(factory())
            self._tasks[page] = task
            task.add_done_callback(partial(self._forget, page))
        return task  # type: ignore[return-value]

    async def run(self, page: int, factory: Callable[[], Awaitable[T]]) -> T:
        """Return the result of rendering ``page``, sharing any in-flight task."""

        # shield: one cancelled waiter must not cancel the render for the others
        return await asyncio.shield(self.start(page, factory))

    def clear(self) -> None:
        """Forget every in-flight task; the tasks themselves run to completion."""

        self._tasks.clear()

    def _forget(self, page: int, task: "asyncio.Future[object]") -> None:
        if self._tasks.get(page) is task:
            del self._tasks[page]
        if not task.cancelled():
            # mark the exception as retrieved; waiters already received it
            task.exception()


__all__ = ["SingleFlight"]
