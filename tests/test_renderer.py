import asyncio

import fitz
import pytest

from flipview.errors import LoadFailure, RenderFailure
from flipview.pdf.document import document_id_for, open_document, read_document
from flipview.pdf.renderer import MuPdfBackend, jpeg_quality, render_page

JPEG_SOI = b"\xff\xd8"


def _pdf_bytes(pages=3, width=200, height=300):
    doc = fitz.open()
    for number in range(pages):
        page = doc.new_page(width=width, height=height)
        page.insert_text((20, 40), f"Page {number + 1}")
    data = doc.tobytes()
    doc.close()
    return data


def test_open_document_reports_page_count_and_id():
    data = _pdf_bytes(pages=3)
    document = open_document(data, "three.pdf")
    try:
        assert document.total_pages == 3
        assert document.file_name == "three.pdf"
        assert document.document_id == document_id_for(data)
    finally:
        document.source.close()


@pytest.mark.parametrize("data", [b"", b"this is not a pdf at all"])
def test_open_document_rejects_bad_input(data):
    with pytest.raises(LoadFailure):
        open_document(data, "bad.pdf")


def test_read_document_checks_magic(tmp_path):
    good = tmp_path / "good.pdf"
    good.write_bytes(_pdf_bytes(pages=1))
    bad = tmp_path / "notes.txt"
    bad.write_bytes(b"plain text")

    data, name = read_document(good)
    assert name == "good.pdf" and data.startswith(b"%PDF")
    with pytest.raises(LoadFailure):
        read_document(bad)
    with pytest.raises(LoadFailure):
        read_document(tmp_path / "missing.pdf")


def test_render_page_scales_pixels_and_emits_jpeg():
    document = open_document(_pdf_bytes(pages=2), "two.pdf")
    try:
        base = render_page(document.source, 1, scale=1.0, quality=0.8)
        zoomed = render_page(document.source, 2, scale=2.0, quality=0.5)
    finally:
        document.source.close()

    assert (base.width, base.height) == (200, 300)
    assert (zoomed.width, zoomed.height) == (400, 600)
    assert base.data.startswith(JPEG_SOI)
    assert base.image_format == "jpeg"
    assert zoomed.page_number == 2 and zoomed.quality == 0.5


def test_render_page_rejects_out_of_range_and_bad_arguments():
    document = open_document(_pdf_bytes(pages=1), "one.pdf")
    try:
        with pytest.raises(RenderFailure):
            render_page(document.source, 2, scale=1.0, quality=0.8)
        with pytest.raises(RenderFailure):
            render_page(document.source, 1, scale=0.0, quality=0.8)
        with pytest.raises(RenderFailure):
            render_page(document.source, 1, scale=1.0, quality=1.5)
    finally:
        document.source.close()


def test_jpeg_quality_mapping():
    assert jpeg_quality(0.8) == 80
    assert jpeg_quality(0.5) == 50
    assert jpeg_quality(0.0) == 1
    assert jpeg_quality(2.0) == 100


def test_backend_renders_on_worker_threads():
    backend = MuPdfBackend(max_workers=2)

    async def scenario():
        document = await backend.open(_pdf_bytes(pages=4), "four.pdf")
        renderings = await asyncio.gather(*(backend.render(document, page, 1.5, 0.7) for page in (1, 2, 3, 4)))
        backend.close(document)
        with pytest.raises(RenderFailure):
            await backend.render(document, 1, 1.5, 0.7)
        return document, renderings

    try:
        document, renderings = asyncio.run(scenario())
    finally:
        backend.shutdown()

    assert document.total_pages == 4
    assert [r.page_number for r in renderings] == [1, 2, 3, 4]
    assert all(r.width == 300 and r.height == 450 for r in renderings)


def test_backend_refuses_work_after_shutdown():
    backend = MuPdfBackend()
    backend.shutdown()
    backend.shutdown()

    async def scenario():
        await backend.open(_pdf_bytes(pages=1), "late.pdf")

    with pytest.raises(RuntimeError):
        asyncio.run(scenario())
