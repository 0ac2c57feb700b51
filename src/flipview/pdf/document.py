"""Opening PDF documents with PyMuPDF."""

from __future__ import annotations

import hashlib
import logging
from pathlib import Path
from typing import Tuple

import fitz  # type: ignore

from ..engine.rendering import Document
from ..errors import LoadFailure

logger = logging.getLogger(__name__)

PDF_MAGIC = b"%PDF"


def document_id_for(data: bytes) -> str:
    """Stable identifier for a document's bytes."""

    return hashlib.sha256(data).hexdigest()


def open_document(data: bytes, file_name: str = "document.pdf") -> Document:
    """Open ``data`` as a PDF and wrap it in a :class:`Document`.

    The returned document's ``source`` is the live ``fitz.Document``; close
    it with :func:`close_document`.
    """

    if not data:
        raise LoadFailure(file_name, ValueError("empty document"))
    try:
        doc = fitz.open(stream=data, filetype="pdf")
    except Exception as exc:
        raise LoadFailure(file_name, exc) from exc
    page_count = int(doc.page_count)
    if page_count <= 0:
        doc.close()
        raise LoadFailure(file_name, ValueError("document has no pages"))
    if doc.needs_pass:
        doc.close()
        raise LoadFailure(file_name, ValueError("document is encrypted"))
    logger.debug("Opened %s (%s pages)", file_name, page_count)
    return Document(
        document_id=document_id_for(data),
        file_name=file_name,
        total_pages=page_count,
        source=doc,
    )


def read_document(path: str | Path) -> Tuple[bytes, str]:
    """Read ``path`` and return ``(bytes, file_name)``; raises :class:`LoadFailure`."""

    source = Path(path).expanduser()
    try:
        data = source.read_bytes()
    except OSError as exc:
        raise LoadFailure(str(source), exc) from exc
    if not data.startswith(PDF_MAGIC):
        raise LoadFailure(source.name, ValueError("not a PDF file"))
    return data, source.name


def close_document(document: Document) -> None:
    doc = document.source
    if doc is None or getattr(doc, "is_closed", False):
        return
    doc.close()


__all__ = ["PDF_MAGIC", "document_id_for", "open_document", "read_document", "close_document"]
