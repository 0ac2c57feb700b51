"""Byte-capped key/value store used to reopen the last document.

Entries are plain files under one directory. The total size of all entries
is capped; a write that would cross the cap raises
:class:`~flipview.errors.CapacityExceeded` and leaves the store unchanged.
"""

from __future__ import annotations

import json
import logging
import os
import re
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Final, List, Optional

from ..config import STORE_LIMIT_BYTES
from ..errors import CapacityExceeded

_LOGGER = logging.getLogger(__name__)

_SAFE_CHAR_RE: Final[re.Pattern[str]] = re.compile(r"[^a-zA-Z0-9._\-]+")
_DOUBLE_DOT_RE: Final[re.Pattern[str]] = re.compile(r"\.{2,}")
_MAX_KEY_LEN: Final[int] = 120
_PAGE_SIZE_RE: Final[re.Pattern[str]] = re.compile(r"_(\d+)x(\d+)\.jpg$")

DOCUMENT_KEY: Final[str] = "document.pdf"
META_KEY: Final[str] = "document.json"
PAGE_PREFIX: Final[str] = "page_"


def sanitize_key(key: str) -> str:
    """Map ``key`` to a safe file name."""

    cleaned = _SAFE_CHAR_RE.sub("_", (key or "").strip())
    cleaned = _DOUBLE_DOT_RE.sub(".", cleaned).strip(" .")
    if not cleaned:
        raise ValueError(f"invalid store key {key!r}")
    return cleaned[:_MAX_KEY_LEN]


def page_prefix(document_id: str, page_number: int) -> str:
    return f"{PAGE_PREFIX}{document_id[:16]}_{int(page_number)}_"


def page_key(document_id: str, page_number: int, width: int, height: int) -> str:
    """Key for a stored page; the pixel size rides along so a restore needs no decode."""

    return f"{page_prefix(document_id, page_number)}{int(width)}x{int(height)}.jpg"


@dataclass(frozen=True)
class StoredDocument:
    """A persisted document ready to be reopened."""

    document_id: str
    file_name: str
    total_pages: int
    data: bytes


@dataclass(frozen=True)
class StoredPage:
    """A persisted page bitmap."""

    page_number: int
    width: int
    height: int
    data: bytes


class PageStore:
    """Directory-backed store with a total byte ceiling.

    Safe to call from worker threads; writes are serialized so the ceiling
    check and the write happen together.
    """

    def __init__(self, root: Path, limit_bytes: int = STORE_LIMIT_BYTES) -> None:
        self.root = Path(root).expanduser()
        self.limit_bytes = max(0, int(limit_bytes))
        self.root.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()

    # --- raw key/value ----------------------------------------------------
    def put(self, key: str, data: bytes) -> None:
        path = self._path(key)
        with self._lock:
            existing = path.stat().st_size if path.exists() else 0
            projected = self.usage() - existing + len(data)
            if projected > self.limit_bytes:
                raise CapacityExceeded(key, len(data), self.limit_bytes)
            tmp = path.with_name(path.name + ".tmp")
            tmp.write_bytes(data)
            os.replace(tmp, path)

    def get(self, key: str) -> Optional[bytes]:
        path = self._path(key)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None

    def remove(self, key: str) -> bool:
        path = self._path(key)
        with self._lock:
            try:
                path.unlink()
            except FileNotFoundError:
                return False
        return True

    def keys(self) -> List[str]:
        return sorted(p.name for p in self.root.iterdir() if p.is_file() and not p.name.endswith(".tmp"))

    def usage(self) -> int:
        return sum(p.stat().st_size for p in self.root.iterdir() if p.is_file())

    def clear(self) -> int:
        removed = 0
        for path in self.root.iterdir():
            if path.is_file():
                path.unlink()
                removed += 1
        return removed

    # --- document helpers -------------------------------------------------
    def save_document(self, document_id: str, data: bytes, file_name: str, total_pages: int) -> bool:
        """Persist metadata, then the bytes if they fit.

        Returns ``True`` when the bytes were stored. Raises
        :class:`CapacityExceeded` when only the metadata could be kept.
        """

        self.forget_document()
        meta = {
            "document_id": document_id,
            "file_name": file_name,
            "total_pages": int(total_pages),
        }
        self.put(META_KEY, json.dumps(meta).encode("utf-8"))
        self.put(DOCUMENT_KEY, data)
        _LOGGER.info("Stored %s (%d bytes)", file_name, len(data))
        return True

    def load_document(self) -> Optional[StoredDocument]:
        raw_meta = self.get(META_KEY)
        data = self.get(DOCUMENT_KEY)
        if raw_meta is None or data is None:
            return None
        try:
            meta = json.loads(raw_meta.decode("utf-8"))
            return StoredDocument(
                document_id=str(meta["document_id"]),
                file_name=str(meta.get("file_name") or "Saved PDF"),
                total_pages=int(meta.get("total_pages") or 0),
                data=data,
            )
        except (ValueError, KeyError, TypeError):
            _LOGGER.warning("Stored document metadata is unreadable; discarding")
            self.forget_document()
            return None

    def forget_document(self) -> None:
        """Remove the stored document, its metadata and every stored page."""

        with self._lock:
            for key in self.keys():
                if key in (DOCUMENT_KEY, META_KEY) or key.startswith(PAGE_PREFIX):
                    self.remove(key)

    def save_page(self, document_id: str, page_number: int, data: bytes, width: int, height: int) -> None:
        key = page_key(document_id, page_number, width, height)
        with self._lock:
            for stale in self._page_keys(document_id, page_number):
                if stale != key:
                    self.remove(stale)
            self.put(key, data)

    def load_page(self, document_id: str, page_number: int) -> Optional[StoredPage]:
        for key in self._page_keys(document_id, page_number):
            match = _PAGE_SIZE_RE.search(key)
            data = self.get(key)
            if match is None or not data:
                continue
            return StoredPage(
                page_number=int(page_number),
                width=int(match.group(1)),
                height=int(match.group(2)),
                data=data,
            )
        return None

    def _page_keys(self, document_id: str, page_number: int) -> List[str]:
        prefix = page_prefix(document_id, page_number)
        return [key for key in self.keys() if key.startswith(prefix)]

    def _path(self, key: str) -> Path:
        return self.root / sanitize_key(key)


__all__ = [
    "DOCUMENT_KEY",
    "META_KEY",
    "PageStore",
    "StoredDocument",
    "StoredPage",
    "page_key",
    "page_prefix",
    "sanitize_key",
]
