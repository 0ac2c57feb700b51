"""Rendered page bitmaps and the backend contract that produces them."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional, Protocol


@dataclass(frozen=True)
class Document:
    """An opened document. ``source`` is owned by the backend that opened it."""

    document_id: str
    file_name: str
    total_pages: int
    source: Any = field(default=None, repr=False, compare=False)


@dataclass(eq=False)
class Rendering:
    """Encoded bitmap for one page at one scale/quality.

    The page cache owns a rendering; :meth:`release` drops the pixel data
    once the entry is evicted or the cache is cleared.
    """

    page_number: int
    scale: float
    quality: float
    width: int
    height: int
    data: Optional[bytes] = field(default=None, repr=False)
    image_format: str = "jpeg"
    released: bool = False

    @property
    def nbytes(self) -> int:
        return len(self.data) if self.data else 0

    def release(self) -> None:
        self.data = None
        self.released = True


class RenderBackend(Protocol):
    """Opens documents and rasterizes their pages."""

    async def open(self, data: bytes, file_name: str) -> Document:
        """Open ``data``; raise :class:`~flipview.errors.LoadFailure` on failure."""

    async def render(
        self,
        document: Document,
        page_number: int,
        scale: float,
        quality: float,
    ) -> Rendering:
        """Rasterize ``page_number``; raise :class:`~flipview.errors.RenderFailure` on failure."""

    def close(self, document: Document) -> None:
        """Release ``document``."""

    def shutdown(self) -> None:
        """Stop any worker threads."""


__all__ = ["Document", "Rendering", "RenderBackend"]
