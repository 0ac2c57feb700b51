import asyncio
import logging

import pytest

from flipview.config import Settings
from flipview.engine.session import (
    PLACEHOLDER_FAILED,
    PLACEHOLDER_LOADING,
    SessionState,
    ViewerSession,
)
from flipview.engine.sizing import SMALL, VERY_LARGE
from flipview.errors import LoadFailure
from flipview.fs.store import DOCUMENT_KEY, PageStore
from tests.fixtures import FakeBackend, pdf_bytes


def _session(backend, **kwargs):
    return ViewerSession(backend, settings=Settings(), **kwargs)


async def _wait_in_flight(session, page):
    for _ in range(1000):
        if page in session.cache.flights:
            return
        await asyncio.sleep(0)
    raise AssertionError(f"page {page} never started rendering")


def test_load_renders_burst_and_prefetches_next_spreads():
    backend = FakeBackend(total_pages=20)
    states = []
    progress = []

    async def scenario():
        session = _session(backend)

        def record(s):
            if not states or states[-1] is not s.state:
                states.append(s.state)

        session.add_listener(record)
        document = await session.load(pdf_bytes(), "book.pdf", progress=lambda done, total: progress.append((done, total)))
        await session.wait_idle()
        return session, document

    session, document = asyncio.run(scenario())

    assert states == [SessionState.LOADING, SessionState.READY]
    assert document.file_name == "book.pdf"
    assert session.plan == SMALL
    assert session.progress == 100
    assert progress[-1] == (6, 6)
    assert session.cache.pages() == [1, 2, 3, 4, 5, 6, 7, 8]
    assert all(count == 1 for count in backend.call_counts().values())


def test_large_document_keeps_cache_within_buffer():
    backend = FakeBackend(total_pages=600)

    async def scenario():
        session = _session(backend)
        await session.load(pdf_bytes(), "large.pdf")
        await session.wait_idle()
        first = session.cache.pages()
        await session.on_position_changed(2)
        await session.wait_idle()
        return session, first

    session, first = asyncio.run(scenario())

    assert session.plan == VERY_LARGE
    assert first == [1, 2, 3, 4]
    assert session.cache.pages() == [3, 4, 5, 6]
    assert session.cache.size() <= VERY_LARGE.buffer_size


def test_concurrent_moves_render_each_page_once():
    backend = FakeBackend(total_pages=20, delay=0.01)

    async def scenario():
        session = _session(backend)
        await session.load(pdf_bytes(), "book.pdf")
        await session.wait_idle()
        await asyncio.gather(session.on_position_changed(10), session.on_position_changed(11))
        await session.wait_idle()
        return session

    session = asyncio.run(scenario())

    counts = backend.call_counts()
    assert all(count == 1 for count in counts.values()), counts
    assert {11, 12, 13, 14}.issubset(session.cache.pages())


def test_failed_prefetch_is_retried_on_revisit(caplog):
    caplog.set_level(logging.WARNING)
    backend = FakeBackend(total_pages=20, fail_pages=[7])

    async def scenario():
        session = _session(backend)
        await session.load(pdf_bytes(), "book.pdf")
        await session.wait_idle()
        cached_before = 7 in session.cache
        backend.fail_pages.clear()
        await session.on_position_changed(6)
        await session.wait_idle()
        return session, cached_before

    session, cached_before = asyncio.run(scenario())

    assert not cached_before
    assert "Prefetch of page 7 failed" in caplog.text
    assert backend.call_counts()[7] == 2
    assert 7 in session.cache
    assert session.visible_spread().left_placeholder is None


def test_visible_failure_shows_failed_placeholder_until_rerendered():
    backend = FakeBackend(total_pages=20, fail_pages=[3])

    async def scenario():
        session = _session(backend)
        await session.load(pdf_bytes(), "book.pdf")
        await session.wait_idle()
        outcome = await session.on_position_changed(2)
        spread = session.visible_spread()
        backend.fail_pages.clear()
        await session.on_position_changed(2)
        return session, outcome, spread

    session, outcome, spread = asyncio.run(scenario())

    assert outcome.failed == (3,)
    assert spread.left is None
    assert spread.left_placeholder == PLACEHOLDER_FAILED
    assert spread.right is not None and spread.right_placeholder is None
    assert session.failed_pages == frozenset()
    assert session.visible_spread().left_placeholder is None


def test_visible_page_shows_loading_placeholder_while_rendering():
    backend = FakeBackend(total_pages=20)

    async def scenario():
        session = _session(backend)
        await session.load(pdf_bytes(), "book.pdf")
        await session.wait_idle()
        gate = backend.hold(11)
        moving = asyncio.ensure_future(session.on_position_changed(10))
        await _wait_in_flight(session, 11)
        during = session.visible_spread()
        gate.set()
        await moving
        await session.wait_idle()
        return session, during

    session, during = asyncio.run(scenario())

    assert during.index == 5
    assert during.left_placeholder == PLACEHOLDER_LOADING
    after = session.visible_spread()
    assert after.left is not None and after.left_placeholder is None


def test_zoom_change_rerenders_at_new_scale_and_drops_stale_results():
    backend = FakeBackend(total_pages=20)

    async def scenario():
        session = _session(backend)
        await session.load(pdf_bytes(), "book.pdf")
        await session.wait_idle()
        gate = backend.hold(11)
        moving = asyncio.ensure_future(session.on_position_changed(10))
        await _wait_in_flight(session, 11)
        generation = session.generation
        await session.on_zoom_changed(1.5)
        gate.set()
        await moving
        await session.wait_idle()
        return session, generation

    session, generation = asyncio.run(scenario())

    assert session.generation == generation + 1
    assert session.zoom == pytest.approx(1.5)
    stale = [r for r in backend.renderings if r.page_number == 11 and r.scale == pytest.approx(1.5)]
    assert len(stale) == 1 and stale[0].released
    assert session.cache.get(11).scale == pytest.approx(2.25)
    assert all(session.cache.get(page).scale == pytest.approx(2.25) for page in session.cache.pages())


def test_zoom_is_clamped_and_unchanged_zoom_is_a_no_op():
    backend = FakeBackend(total_pages=4)

    async def scenario():
        session = _session(backend)
        await session.load(pdf_bytes(), "short.pdf")
        await session.wait_idle()
        generation = session.generation
        unchanged = await session.on_zoom_changed(1.0)
        same_generation = session.generation == generation
        await session.on_zoom_changed(10)
        high = session.zoom
        await session.on_zoom_changed(0.1)
        low = session.zoom
        await session.zoom_in()
        stepped = session.zoom
        await session.reset_zoom()
        return unchanged, same_generation, high, low, stepped, session.zoom

    unchanged, same_generation, high, low, stepped, final = asyncio.run(scenario())

    assert unchanged is None and same_generation
    assert high == pytest.approx(3.0)
    assert low == pytest.approx(0.5)
    assert stepped == pytest.approx(0.75)
    assert final == pytest.approx(1.0)


def test_load_failure_returns_to_empty():
    backend = FakeBackend(fail_open=True)

    async def scenario():
        session = _session(backend)
        with pytest.raises(LoadFailure):
            await session.load(pdf_bytes(), "broken.pdf")
        return session

    session = asyncio.run(scenario())

    assert session.state is SessionState.EMPTY
    assert session.document is None
    assert session.cache.size() == 0


def test_navigation_before_load_is_ignored():
    backend = FakeBackend()

    async def scenario():
        session = _session(backend)
        return await session.on_position_changed(4), await session.next_spread()

    assert asyncio.run(scenario()) == (None, None)
    assert backend.calls == []


def test_reset_closes_document_and_forgets_store(tmp_path):
    backend = FakeBackend(total_pages=6)
    store = PageStore(tmp_path / "store")

    async def scenario():
        session = _session(backend, store=store)
        await session.load(pdf_bytes(), "book.pdf")
        await session.wait_idle()
        stored_before = DOCUMENT_KEY in store.keys()
        session.reset()
        return session, stored_before

    session, stored_before = asyncio.run(scenario())

    assert stored_before
    assert session.state is SessionState.EMPTY
    assert session.cache.size() == 0
    assert backend.closed == backend.opened
    assert store.keys() == []


def test_clear_is_idempotent():
    backend = FakeBackend(total_pages=6)

    async def scenario():
        session = _session(backend)
        await session.load(pdf_bytes(), "book.pdf")
        await session.wait_idle()
        generation = session.generation
        first = session.clear()
        second = session.clear()
        return session, generation, first, second

    session, generation, first, second = asyncio.run(scenario())

    assert first == 6
    assert second == 0
    assert session.generation == generation + 1


def test_close_is_idempotent_and_blocks_further_loads():
    backend = FakeBackend(total_pages=6)

    async def scenario():
        session = _session(backend)
        await session.load(pdf_bytes(), "book.pdf")
        await session.wait_idle()
        session.close()
        session.close()
        with pytest.raises(LoadFailure):
            await session.load(pdf_bytes(), "again.pdf")
        return session

    session = asyncio.run(scenario())

    assert backend.shutdown_calls == 1
    assert session.state is SessionState.EMPTY
    assert len(backend.closed) == 1


def test_spreads_cover_document_with_odd_tail():
    backend = FakeBackend(total_pages=20)

    async def scenario():
        session = _session(backend)
        await session.load(pdf_bytes(), "book.pdf")
        await session.wait_idle()
        return session

    session = asyncio.run(scenario())
    spreads = session.spreads()

    assert session.spread_count == 10
    assert [s.left_page for s in spreads[:3]] == [1, 3, 5]
    assert spreads[0].visible and not spreads[1].visible
    far = spreads[6]
    assert far.left is None and far.left_placeholder is None

    short = FakeBackend(total_pages=5)

    async def odd():
        session = _session(short)
        await session.load(pdf_bytes("odd"), "odd.pdf")
        return session

    tail = asyncio.run(odd()).spreads()[-1]
    assert tail.left_page == 5 and tail.right_page is None and tail.right_placeholder is None


def test_rendered_pages_are_persisted(tmp_path):
    backend = FakeBackend(total_pages=6)
    store = PageStore(tmp_path / "store")

    async def scenario():
        session = _session(backend, store=store)
        document = await session.load(pdf_bytes(), "book.pdf")
        await session.wait_idle()
        return document

    document = asyncio.run(scenario())

    stored = store.load_document()
    assert stored is not None and stored.file_name == "book.pdf"
    assert stored.total_pages == 6
    page = store.load_page(document.document_id, 1)
    assert page.data == b"page-1"
    assert (page.width, page.height) == (60, 80)


def test_store_overflow_keeps_session_in_memory(tmp_path, caplog):
    caplog.set_level(logging.WARNING)
    backend = FakeBackend(total_pages=6)
    store = PageStore(tmp_path / "store", limit_bytes=300)

    async def scenario():
        session = _session(backend, store=store)
        await session.load(pdf_bytes("x" * 500), "big.pdf")
        await session.wait_idle()
        return session

    session = asyncio.run(scenario())

    assert session.state is SessionState.READY
    assert "continuing in memory only" in caplog.text
    assert store.load_document() is None
    assert store.usage() <= 300


def test_restore_reopens_stored_document(tmp_path):
    store = PageStore(tmp_path / "store")

    async def scenario():
        first = _session(FakeBackend(total_pages=6), store=store)
        await first.load(pdf_bytes(), "book.pdf")
        await first.wait_idle()
        first.close()

        second = _session(FakeBackend(total_pages=6), store=store)
        restored = await second.restore()
        await second.wait_idle()
        return second, restored

    session, restored = asyncio.run(scenario())

    assert restored
    assert session.state is SessionState.READY
    assert session.document.file_name == "book.pdf"


def test_restore_discards_unreadable_document(tmp_path):
    store = PageStore(tmp_path / "store")
    store.save_document("abc", pdf_bytes(), "book.pdf", 6)

    async def scenario():
        session = _session(FakeBackend(fail_open=True), store=store)
        return session, await session.restore()

    session, restored = asyncio.run(scenario())

    assert not restored
    assert session.state is SessionState.EMPTY
    assert store.load_document() is None


def test_stats_reflect_cache():
    backend = FakeBackend(total_pages=20)

    async def scenario():
        session = _session(backend)
        await session.load(pdf_bytes(), "book.pdf")
        await session.wait_idle()
        return session.stats()

    stats = asyncio.run(scenario())

    assert stats["state"] == "ready"
    assert stats["pages"] == 20
    assert stats["items"] == 8
    assert stats["in_flight"] == 0
    assert stats["buffer_size"] == SMALL.buffer_size
    assert stats["renders"] == 8


def test_render_queued_before_zoom_change_keeps_its_old_scale():
    backend = FakeBackend(total_pages=20)

    async def scenario():
        session = _session(backend)
        await session.load(pdf_bytes(), "book.pdf")
        await session.wait_idle()
        await session.on_position_changed(10)
        await session.wait_idle()
        session.cache.pop(11)
        # registered as in flight, but its body has not run yet
        queued = session.submit(11)
        await session.on_zoom_changed(1.5)
        stale = await queued
        await session.wait_idle()
        return session, stale

    session, stale = asyncio.run(scenario())

    assert stale is None
    page_11 = [r for r in backend.renderings if r.page_number == 11]
    zoomed = [r for r in page_11 if r.scale == pytest.approx(2.25)]
    assert len(zoomed) == 1
    assert all(r.released for r in page_11 if r is not zoomed[0])
    assert session.cache.get(11) is zoomed[0]


def test_render_queued_before_reset_never_reaches_next_document():
    backend = FakeBackend(total_pages=20)

    async def scenario():
        session = _session(backend)
        await session.load(pdf_bytes("a"), "a.pdf")
        await session.wait_idle()
        queued = session.submit(11)
        session.reset()
        await session.load(pdf_bytes("b"), "b.pdf")
        stale = await queued
        await session.wait_idle()
        return session, stale

    session, stale = asyncio.run(scenario())

    assert stale is None
    assert session.document.file_name == "b.pdf"
    assert 11 not in session.cache
    assert all(r.released for r in backend.renderings if r.page_number == 11)


def test_restore_serves_stored_pages_without_rendering(tmp_path):
    store = PageStore(tmp_path / "store")
    backend = FakeBackend(total_pages=6)

    async def scenario():
        first = _session(FakeBackend(total_pages=6), store=store)
        await first.load(pdf_bytes(), "book.pdf")
        await first.wait_idle()
        first.close()

        second = _session(backend, store=store)
        await second.restore()
        await second.wait_idle()
        return second

    session = asyncio.run(scenario())

    assert backend.calls == []
    assert session.cache.pages() == [1, 2, 3, 4, 5, 6]
    restored = session.cache.get(1)
    assert restored.data == b"page-1"
    assert (restored.width, restored.height) == (60, 80)
    assert restored.scale == pytest.approx(1.5)


def test_only_unzoomed_pages_are_persisted(tmp_path):
    store = PageStore(tmp_path / "store")
    backend = FakeBackend(total_pages=6)

    async def scenario():
        session = _session(backend, store=store)
        document = await session.load(pdf_bytes(), "book.pdf")
        await session.wait_idle()
        before = store.keys()
        await session.on_zoom_changed(2.0)
        await session.wait_idle()
        return document, before

    document, before = asyncio.run(scenario())

    assert store.keys() == before
    assert store.load_page(document.document_id, 3).data == b"page-3"
