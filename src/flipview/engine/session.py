"""Per-document viewer session: state machine, render requests and viewer spreads.

A :class:`ViewerSession` owns the page cache, the in-flight registry, the
current position and the sizing plan for one document. Every change comes
in through an explicit handler (``load``, ``on_position_changed``,
``on_zoom_changed``, ``on_render_complete``, ``reset``, ``close``) and all
of them must run on the same event loop.
"""

from __future__ import annotations

import asyncio
import logging
import math
import threading
from dataclasses import dataclass
from enum import Enum
from functools import partial
from typing import TYPE_CHECKING, Awaitable, Callable, Dict, List, Optional, Set

from ..config import DEFAULT_ZOOM, ZOOM_STEP, Settings, clamp_zoom
from ..errors import CapacityExceeded, LoadFailure, RenderFailure
from .eviction import evict
from .page_cache import PageCache
from .position import Position, spread_pages
from .rendering import Document, RenderBackend, Rendering
from .scheduler import PrefetchScheduler, ScheduleOutcome
from .sizing import BufferPlan, size_for

if TYPE_CHECKING:  # pragma: no cover
    from ..fs.store import PageStore, StoredPage

logger = logging.getLogger(__name__)

PLACEHOLDER_LOADING = "loading"
PLACEHOLDER_FAILED = "failed"

Listener = Callable[["ViewerSession"], None]
ProgressCallback = Callable[[int, int], None]


class SessionState(str, Enum):
    EMPTY = "empty"
    LOADING = "loading"
    READY = "ready"


@dataclass(frozen=True)
class Spread:
    """Two facing pages as handed to the viewer."""

    index: int
    left_page: int
    right_page: Optional[int]
    left: Optional[Rendering]
    right: Optional[Rendering]
    left_placeholder: Optional[str]
    right_placeholder: Optional[str]
    visible: bool


class ViewerSession:
    """Owns the cache and schedules renders for one document at a time."""

    def __init__(
        self,
        backend: RenderBackend,
        *,
        settings: Optional[Settings] = None,
        store: Optional["PageStore"] = None,
        persist_pages: bool = True,
    ) -> None:
        self._backend = backend
        self._settings = settings or Settings()
        self._store = store
        self._persist_pages = persist_pages
        self._cache = PageCache()
        self._scheduler = PrefetchScheduler(self)
        self._state = SessionState.EMPTY
        self._document: Optional[Document] = None
        self._plan: Optional[BufferPlan] = None
        self._position = Position()
        self._zoom = DEFAULT_ZOOM
        self._failed: Set[int] = set()
        self._generation = 0
        self._load_token = 0
        self._progress = 0
        self._render_count = 0
        self._tasks: Set["asyncio.Future[object]"] = set()
        self._listeners: List[Listener] = []
        self._closed = False
        # held by store writes running on executor threads and by reset()
        self._store_lock = threading.Lock()

    # --- read-only state --------------------------------------------------
    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def document(self) -> Optional[Document]:
        return self._document

    @property
    def total_pages(self) -> int:
        return self._document.total_pages if self._document is not None else 0

    @property
    def plan(self) -> Optional[BufferPlan]:
        return self._plan

    @property
    def cache(self) -> PageCache:
        return self._cache

    @property
    def scheduler(self) -> PrefetchScheduler:
        return self._scheduler

    @property
    def position(self) -> Position:
        return self._position

    @property
    def zoom(self) -> float:
        return self._zoom

    @property
    def scale(self) -> float:
        return self._settings.base_scale * self._zoom

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def progress(self) -> int:
        return self._progress

    @property
    def render_count(self) -> int:
        return self._render_count

    @property
    def failed_pages(self) -> frozenset:
        return frozenset(self._failed)

    @property
    def visible_pages(self) -> tuple:
        return spread_pages(self._position.index, self.total_pages)

    # --- listeners --------------------------------------------------------
    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                logger.exception("Session listener %r failed", listener)

    # --- document lifecycle -----------------------------------------------
    async def load(
        self,
        data: bytes,
        file_name: str = "document.pdf",
        *,
        persist: bool = True,
        progress: Optional[ProgressCallback] = None,
        warm_from_store: bool = False,
    ) -> Document:
        """Open ``data``, render the initial burst and show the first spread.

        With ``warm_from_store`` the pages persisted by an earlier session
        are put in the cache first and are not rendered again.

        Raises :class:`LoadFailure` after returning the session to ``EMPTY``.
        """

        if self._closed:
            raise LoadFailure(file_name, RuntimeError("session is closed"))
        self._release_document()
        self._load_token += 1
        token = self._load_token
        self._zoom = DEFAULT_ZOOM
        self._set_state(SessionState.LOADING)

        try:
            document = await self._backend.open(data, file_name)
        except LoadFailure:
            logger.exception("Document load failed: %s", file_name)
            self._abort_load(token)
            raise
        except Exception as exc:
            logger.exception("Document load failed: %s", file_name)
            self._abort_load(token)
            raise LoadFailure(file_name, exc) from exc

        if token != self._load_token:
            self._backend.close(document)
            raise LoadFailure(file_name, RuntimeError("load superseded"))

        self._document = document
        self._plan = size_for(document.total_pages)
        logger.info(
            "Loaded %s: %s pages, buffer=%s burst=%s quality=%.2f",
            document.file_name,
            document.total_pages,
            self._plan.buffer_size,
            self._plan.initial_burst,
            self._plan.quality,
        )
        if persist:
            await self._persist_document(data, document, token)
        if warm_from_store:
            await self._warm_from_store(document)

        await self._initial_burst(progress)
        if token != self._load_token:
            raise LoadFailure(file_name, RuntimeError("load superseded"))

        self._set_state(SessionState.READY)
        await self._scheduler.schedule()
        return document

    async def restore(self) -> bool:
        """Reopen the last persisted document, if any."""

        store = self._store
        if store is None:
            return False
        loop = asyncio.get_running_loop()
        stored = await loop.run_in_executor(None, store.load_document)
        if stored is None:
            return False
        try:
            await self.load(stored.data, stored.file_name, persist=False, warm_from_store=True)
        except LoadFailure:
            logger.warning("Stored document %s could not be reopened; discarding", stored.file_name)
            await loop.run_in_executor(None, self._forget_stored)
            return False
        return True

    def _forget_stored(self) -> None:
        if self._store is None:
            return
        with self._store_lock:
            self._store.forget_document()

    def reset(self) -> None:
        """Drop the document, the cache and any persisted copy."""

        self._load_token += 1
        self._release_document()
        try:
            self._forget_stored()
        except OSError:
            logger.warning("Unable to clear stored document", exc_info=True)
        self._set_state(SessionState.EMPTY)

    def close(self) -> None:
        """Tear the session down; safe to call more than once."""

        if self._closed:
            return
        self._closed = True
        self._load_token += 1
        self._release_document()
        self._state = SessionState.EMPTY
        self._backend.shutdown()
        self._listeners.clear()

    # --- navigation -------------------------------------------------------
    async def on_position_changed(self, index: int) -> Optional[ScheduleOutcome]:
        """Move to 0-based page ``index`` and schedule renders around it."""

        if self.total_pages > 0:
            index = min(max(0, int(index)), self.total_pages - 1)
        self._position = self._position.moved_to(index)
        if self._state is not SessionState.READY:
            return None
        return await self._scheduler.schedule()

    async def on_spread_changed(self, spread_index: int) -> Optional[ScheduleOutcome]:
        """Viewer reported a flip to ``spread_index``."""

        return await self.on_position_changed(2 * max(0, int(spread_index)))

    async def next_spread(self) -> Optional[ScheduleOutcome]:
        return await self.on_spread_changed(self._position.spread_index + 1)

    async def previous_spread(self) -> Optional[ScheduleOutcome]:
        return await self.on_spread_changed(max(0, self._position.spread_index - 1))

    async def on_zoom_changed(self, zoom: float) -> Optional[ScheduleOutcome]:
        """Apply a new zoom level; every cached bitmap becomes stale."""

        target = clamp_zoom(zoom)
        if math.isclose(target, self._zoom):
            return None
        logger.info("Zoom %.2f -> %.2f; clearing %s cached pages", self._zoom, target, self._cache.size())
        self._zoom = target
        self.clear()
        if self._state is not SessionState.READY:
            return None
        return await self._scheduler.schedule()

    async def zoom_in(self) -> Optional[ScheduleOutcome]:
        return await self.on_zoom_changed(self._zoom + ZOOM_STEP)

    async def zoom_out(self) -> Optional[ScheduleOutcome]:
        return await self.on_zoom_changed(self._zoom - ZOOM_STEP)

    async def reset_zoom(self) -> Optional[ScheduleOutcome]:
        return await self.on_zoom_changed(DEFAULT_ZOOM)

    # --- rendering --------------------------------------------------------
    async def request(self, page: int) -> Optional[Rendering]:
        """Return the rendering for ``page``, rendering it at most once concurrently.

        ``None`` means the result arrived after a clear and was discarded.
        """

        self._require_page(page)
        cached = self._cache.get(page)
        if cached is not None:
            return cached
        return await self._cache.flights.run(page, self._render_job(page))

    def submit(self, page: int) -> "asyncio.Future[Optional[Rendering]]":
        """Start rendering ``page`` (or join its in-flight render) without waiting."""

        self._require_page(page)
        return self._cache.flights.start(page, self._render_job(page))

    def _require_page(self, page: int) -> Document:
        document = self._document
        if document is None:
            raise RenderFailure(page, "no document loaded")
        if not 1 <= page <= document.total_pages:
            raise RenderFailure(page, "page out of range")
        return document

    def _render_job(self, page: int) -> Callable[[], Awaitable[Optional[Rendering]]]:
        # bind everything the render depends on now; the task body may start after a clear
        quality = self._plan.quality if self._plan is not None else 1.0
        return partial(self._render, self._document, page, self._generation, self.scale, quality)

    async def _render(
        self,
        document: Document,
        page: int,
        generation: int,
        scale: float,
        quality: float,
    ) -> Optional[Rendering]:
        self._render_count += 1
        try:
            rendering = await self._backend.render(document, page, scale, quality)
        except RenderFailure:
            raise
        except Exception as exc:
            raise RenderFailure(page, exc) from exc
        return self.on_render_complete(page, rendering, generation, document)

    def on_render_complete(
        self,
        page: int,
        rendering: Rendering,
        generation: int,
        document: Optional[Document] = None,
    ) -> Optional[Rendering]:
        """Store a finished render unless the cache was cleared since it was requested."""

        current = self._document
        if generation != self._generation or current is None or (document is not None and document is not current):
            logger.debug("Discarding stale render of page %s", page)
            rendering.release()
            return None
        self._cache.put(page, rendering)
        self._failed.discard(page)
        self._persist_page(page, rendering)
        return rendering

    def mark_failed(self, page: int) -> None:
        self._failed.add(page)

    def evict(self) -> List[int]:
        """Trim the cache to the plan's budget around the current position."""

        if self._plan is None:
            return []
        return evict(
            self._cache,
            self._position.current_page,
            self._position.direction,
            self._plan.buffer_size,
            protected=self.visible_pages,
        )

    def clear(self) -> int:
        """Release every cached rendering and forget in-flight renders."""

        if self._cache.size() == 0 and self._cache.in_flight() == 0 and not self._failed:
            return 0
        self._generation += 1
        self._failed.clear()
        dropped = self._cache.clear()
        self.notify()
        return dropped

    # --- background work --------------------------------------------------
    def track(self, task: "asyncio.Future[object]") -> None:
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    async def wait_idle(self) -> None:
        """Wait until every dispatched prefetch batch has settled."""

        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _task_done(self, task: "asyncio.Future[object]") -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background task failed", exc_info=exc)

    # --- viewer adapter ---------------------------------------------------
    def spreads(self) -> List[Spread]:
        """Every spread of the document, in order, with placeholders for absent pages."""

        return [self._spread(index) for index in range(self.spread_count)]

    @property
    def spread_count(self) -> int:
        return math.ceil(self.total_pages / 2)

    def visible_spread(self) -> Optional[Spread]:
        index = self._position.spread_index
        if not 0 <= index < self.spread_count:
            return None
        return self._spread(index)

    def stats(self) -> Dict[str, object]:
        cache_stats = self._cache.stats()
        return {
            "state": self._state.value,
            "pages": self.total_pages,
            "items": cache_stats["items"],
            "bytes": cache_stats["bytes"],
            "in_flight": cache_stats["in_flight"],
            "buffer_size": self._plan.buffer_size if self._plan is not None else 0,
            "renders": self._render_count,
            "failed": len(self._failed),
            "zoom": self._zoom,
        }

    # --- helpers ----------------------------------------------------------
    def _spread(self, index: int) -> Spread:
        total = self.total_pages
        left_page = 2 * index + 1
        right_page = left_page + 1 if left_page + 1 <= total else None
        left = self._cache.get(left_page)
        right = self._cache.get(right_page) if right_page is not None else None
        visible = index == self._position.spread_index
        return Spread(
            index=index,
            left_page=left_page,
            right_page=right_page,
            left=left,
            right=right,
            left_placeholder=self._placeholder(left_page, left, visible),
            right_placeholder=(
                self._placeholder(right_page, right, visible) if right_page is not None else None
            ),
            visible=visible,
        )

    def _placeholder(self, page: int, rendering: Optional[Rendering], visible: bool) -> Optional[str]:
        if rendering is not None:
            return None
        if page in self._failed:
            return PLACEHOLDER_FAILED
        if visible:
            return PLACEHOLDER_LOADING
        return None

    def _set_state(self, state: SessionState) -> None:
        if state is self._state:
            return
        logger.debug("Session state %s -> %s", self._state.value, state.value)
        self._state = state
        self.notify()

    async def _initial_burst(self, progress: Optional[ProgressCallback]) -> None:
        plan = self._plan
        if plan is None:
            return
        burst = list(range(1, min(plan.initial_burst, self.total_pages) + 1))
        done = 0

        async def _one(page: int) -> None:
            nonlocal done
            try:
                await self.request(page)
            except RenderFailure as exc:
                logger.warning("Initial render of page %s failed: %s", page, exc.cause)
            finally:
                done += 1
                self._progress = int(done * 100 / len(burst))
                if progress is not None:
                    progress(done, len(burst))

        await asyncio.gather(*(_one(page) for page in burst))
        self.evict()

    def _abort_load(self, token: int) -> None:
        if token != self._load_token:
            return
        self._release_document()
        self._set_state(SessionState.EMPTY)

    def _release_document(self) -> None:
        self.clear()
        document = self._document
        self._document = None
        self._plan = None
        self._position = Position()
        self._progress = 0
        if document is not None:
            self._backend.close(document)

    # --- persistence ------------------------------------------------------
    # store I/O runs on the loop's default executor, never on the loop itself
    async def _persist_document(self, data: bytes, document: Document, token: int) -> None:
        if self._store is None:
            return
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, partial(self._write_document, token, data, document))

    def _write_document(self, token: int, data: bytes, document: Document) -> None:
        store = self._store
        try:
            with self._store_lock:
                if store is None or token != self._load_token:
                    return
                store.save_document(document.document_id, data, document.file_name, document.total_pages)
        except CapacityExceeded as exc:
            logger.warning("%s; continuing in memory only", exc)
        except OSError:
            logger.warning("Unable to persist %s", document.file_name, exc_info=True)

    def _persist_page(self, page: int, rendering: Rendering) -> None:
        document = self._document
        if self._store is None or not self._persist_pages or document is None or not rendering.data:
            return
        # only zoom-1.0 bitmaps are kept; a reopened document always starts there
        if not math.isclose(rendering.scale, self._settings.base_scale * DEFAULT_ZOOM):
            return
        job = partial(
            self._write_page,
            self._load_token,
            document.document_id,
            page,
            rendering.data,
            rendering.width,
            rendering.height,
        )
        self.track(asyncio.get_running_loop().run_in_executor(None, job))

    def _write_page(self, token: int, document_id: str, page: int, data: bytes, width: int, height: int) -> None:
        store = self._store
        try:
            with self._store_lock:
                if store is None or token != self._load_token:
                    return
                store.save_page(document_id, page, data, width, height)
        except CapacityExceeded as exc:
            logger.warning("%s; page %s kept in memory only", exc, page)
        except OSError:
            logger.warning("Unable to persist page %s", page, exc_info=True)

    async def _warm_from_store(self, document: Document) -> None:
        store = self._store
        plan = self._plan
        if store is None or plan is None:
            return
        burst = range(1, min(plan.initial_burst, document.total_pages) + 1)
        pages = sorted(set(burst) | set(self.visible_pages))
        loop = asyncio.get_running_loop()
        found = await loop.run_in_executor(None, partial(_read_pages, store, document.document_id, pages))
        if document is not self._document:
            return
        for stored in found:
            self._cache.put(
                stored.page_number,
                Rendering(
                    page_number=stored.page_number,
                    scale=self.scale,
                    quality=plan.quality,
                    width=stored.width,
                    height=stored.height,
                    data=stored.data,
                ),
            )
        if found:
            logger.info("Restored %s stored pages of %s", len(found), document.file_name)


def _read_pages(store: "PageStore", document_id: str, pages: List[int]) -> List["StoredPage"]:
    found: List["StoredPage"] = []
    for page in pages:
        try:
            stored = store.load_page(document_id, page)
        except OSError:
            logger.warning("Unable to read stored page %s", page, exc_info=True)
            continue
        if stored is not None:
            found.append(stored)
    return found


__all__ = [
    "PLACEHOLDER_LOADING",
    "PLACEHOLDER_FAILED",
    "SessionState",
    "Spread",
    "ViewerSession",
]
