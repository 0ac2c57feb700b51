"""Error taxonomy shared by the render engine, persistence and UI layers."""

from __future__ import annotations

from typing import Optional


class FlipviewError(Exception):
    """Base class for viewer errors."""


class LoadFailure(FlipviewError):
    """The document could not be opened; fatal to the session."""

    def __init__(self, source: str, cause: Optional[BaseException] = None) -> None:
        self.source = source
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Unable to open document {source!r}{detail}")


class RenderFailure(FlipviewError):
    """A single page could not be rasterized; recoverable."""

    def __init__(self, page_number: int, cause: object = None) -> None:
        self.page_number = int(page_number)
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Render failed for page {self.page_number}{detail}")


class CapacityExceeded(FlipviewError):
    """A persistence write was skipped because it exceeds the store ceiling."""

    def __init__(self, key: str, size: int, limit: int) -> None:
        self.key = key
        self.size = int(size)
        self.limit = int(limit)
        super().__init__(f"Store write for {key!r} skipped ({self.size} bytes > {self.limit} limit)")


__all__ = ["FlipviewError", "LoadFailure", "RenderFailure", "CapacityExceeded"]
