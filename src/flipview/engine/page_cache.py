"""Bounded page -> rendering map used by a viewer session."""

from __future__ import annotations

from typing import Dict, List, Optional

from .rendering import Rendering
from .single_flight import SingleFlight


class PageCache:
    """Page-number keyed cache of renderings.

    ``put`` never enforces the budget; trimming is the eviction pass's job.
    The cache also owns the in-flight registry so that :meth:`clear` resets
    both together.
    """

    def __init__(self) -> None:
        self._store: Dict[int, Rendering] = {}
        self._bytes = 0
        self.flights = SingleFlight()

    def __contains__(self, page: object) -> bool:
        return page in self._store

    def __len__(self) -> int:
        return len(self._store)

    def get(self, page: int) -> Optional[Rendering]:
        return self._store.get(page)

    def put(self, page: int, rendering: Rendering) -> None:
        previous = self._store.get(page)
        if previous is rendering:
            return
        if previous is not None:
            self._bytes -= previous.nbytes
            previous.release()
        self._store[page] = rendering
        self._bytes += rendering.nbytes

    def pop(self, page: int) -> bool:
        """Drop ``page`` and release its rendering. Returns ``True`` if present."""

        rendering = self._store.pop(page, None)
        if rendering is None:
            return False
        self._bytes -= rendering.nbytes
        rendering.release()
        return True

    def pages(self) -> List[int]:
        return sorted(self._store)

    def size(self) -> int:
        return len(self._store)

    def in_flight(self) -> int:
        return len(self.flights)

    def clear(self) -> int:
        """Release every rendering and forget in-flight work; returns entries dropped."""

        count = len(self._store)
        for rendering in self._store.values():
            rendering.release()
        self._store.clear()
        self._bytes = 0
        self.flights.clear()
        return count

    def stats(self) -> Dict[str, int]:
        return {
            "items": len(self._store),
            "bytes": self._bytes,
            "in_flight": len(self.flights),
        }


__all__ = ["PageCache"]
