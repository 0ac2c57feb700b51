"""PyMuPDF render backend running on a small thread pool."""

from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

import fitz  # type: ignore

from ..engine.rendering import Document, Rendering
from ..errors import RenderFailure
from .document import close_document, open_document

logger = logging.getLogger(__name__)

# MuPDF contexts are not safe to drive from several threads at once.
_MUPDF_LOCK = threading.Lock()


def make_render_matrix(scale: float) -> fitz.Matrix:
    """Uniform scaling matrix; 1.0 renders at 72 dpi."""

    return fitz.Matrix(scale, scale)


def jpeg_quality(quality: float) -> int:
    """Map a 0-1 quality factor to a JPEG quality setting."""

    return max(1, min(100, int(round(float(quality) * 100))))


def render_page(
    doc: fitz.Document,
    page_number: int,
    *,
    scale: float,
    quality: float,
    debug: bool = False,
) -> Rendering:
    """Rasterize 1-based ``page_number`` of ``doc`` to JPEG bytes."""

    if scale <= 0.0:
        raise RenderFailure(page_number, ValueError(f"scale must be positive, got {scale}"))
    if not 0.0 < quality <= 1.0:
        raise RenderFailure(page_number, ValueError(f"quality must be in (0, 1], got {quality}"))
    with _MUPDF_LOCK:
        if getattr(doc, "is_closed", False):
            raise RenderFailure(page_number, "document closed")
        if not 1 <= page_number <= doc.page_count:
            raise RenderFailure(page_number, "page out of range")
        try:
            page = doc.load_page(page_number - 1)
            pix = page.get_pixmap(matrix=make_render_matrix(scale), alpha=False)
            data = pix.tobytes("jpeg", jpg_quality=jpeg_quality(quality))
        except Exception as exc:
            raise RenderFailure(page_number, exc) from exc
    if debug:
        logger.debug(
            "RENDER_PAGE page=%s scale=%.2f quality=%.2f size=%dx%d bytes=%d",
            page_number,
            scale,
            quality,
            pix.width,
            pix.height,
            len(data),
        )
    return Rendering(
        page_number=page_number,
        scale=scale,
        quality=quality,
        width=int(pix.width),
        height=int(pix.height),
        data=data,
    )


class MuPdfBackend:
    """Render backend that keeps the event loop free by rendering on worker threads."""

    def __init__(self, *, max_workers: int = 2, debug: bool = False) -> None:
        self._executor: Optional[ThreadPoolExecutor] = ThreadPoolExecutor(
            max_workers=max(1, int(max_workers)),
            thread_name_prefix="flipview-render",
        )
        self._debug = debug

    async def open(self, data: bytes, file_name: str) -> Document:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._require_executor(), open_document, data, file_name)

    async def render(
        self,
        document: Document,
        page_number: int,
        scale: float,
        quality: float,
    ) -> Rendering:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            self._require_executor(),
            lambda: render_page(
                document.source,
                page_number,
                scale=scale,
                quality=quality,
                debug=self._debug,
            ),
        )

    def close(self, document: Document) -> None:
        with _MUPDF_LOCK:
            close_document(document)

    def shutdown(self) -> None:
        executor = self._executor
        self._executor = None
        if executor is not None:
            executor.shutdown(wait=False, cancel_futures=True)

    def _require_executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            raise RuntimeError("render backend has been shut down")
        return self._executor


__all__ = ["make_render_matrix", "jpeg_quality", "render_page", "MuPdfBackend"]
