"""Flip-book PDF viewer with an adaptive page cache."""

__version__ = "0.4.0"
