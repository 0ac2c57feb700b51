"""Scripted backends and helpers for engine tests."""

from .backend import FakeBackend, pdf_bytes

__all__ = ["FakeBackend", "pdf_bytes"]
