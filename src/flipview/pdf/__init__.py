"""PyMuPDF document access and page rasterization."""

from __future__ import annotations

__all__ = [
    "document",
    "renderer",
]
