"""Current reading position and travel direction."""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum


class Direction(str, Enum):
    FORWARD = "forward"
    BACKWARD = "backward"


@dataclass(frozen=True)
class Position:
    """0-based page index plus the direction of the last movement."""

    index: int = 0
    direction: Direction = Direction.FORWARD

    @property
    def current_page(self) -> int:
        """1-based page number shown at ``index``."""

        return self.index + 1

    @property
    def spread_index(self) -> int:
        return self.index // 2

    def moved_to(self, index: int) -> "Position":
        """Return the position after navigating to ``index``.

        Staying put keeps the previous direction.
        """

        target = max(0, int(index))
        if target > self.index:
            return Position(target, Direction.FORWARD)
        if target < self.index:
            return Position(target, Direction.BACKWARD)
        return replace(self, index=target)


def spread_pages(index: int, total_pages: int) -> tuple[int, ...]:
    """1-based pages of the spread containing 0-based ``index``."""

    start = 2 * (max(0, int(index)) // 2) + 1
    return tuple(page for page in (start, start + 1) if 1 <= page <= total_pages)


__all__ = ["Direction", "Position", "spread_pages"]
