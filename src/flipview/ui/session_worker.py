"""Bridge between Qt widgets and a viewer session running on its own event loop."""

from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import Future
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Optional

from PySide6.QtCore import QObject, Signal

from flipview.config import Settings
from flipview.engine.rendering import RenderBackend
from flipview.engine.session import SessionState, Spread, ViewerSession
from flipview.errors import FlipviewError, LoadFailure
from flipview.fs.store import PageStore
from flipview.pdf.document import read_document

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SpreadSnapshot:
    """Immutable copy of the visible spread, safe to hand to the UI thread."""

    index: int
    spread_count: int
    left_page: int
    right_page: Optional[int]
    left_image: Optional[bytes]
    right_image: Optional[bytes]
    left_placeholder: Optional[str]
    right_placeholder: Optional[str]

    @classmethod
    def from_spread(cls, spread: Spread, spread_count: int) -> "SpreadSnapshot":
        return cls(
            index=spread.index,
            spread_count=spread_count,
            left_page=spread.left_page,
            right_page=spread.right_page,
            left_image=spread.left.data if spread.left is not None else None,
            right_image=spread.right.data if spread.right is not None else None,
            left_placeholder=spread.left_placeholder,
            right_placeholder=spread.right_placeholder,
        )


class SessionWorker(QObject):
    """Owns a :class:`ViewerSession` and the asyncio loop it runs on.

    Every session call is posted to the loop thread; updates come back as
    Qt signals, which Qt queues onto the receiver's thread.
    """

    spread_changed = Signal(object)
    state_changed = Signal(str)
    progress = Signal(int, int)
    stats_changed = Signal(dict)
    warning = Signal(str)

    def __init__(
        self,
        backend: RenderBackend,
        *,
        settings: Optional[Settings] = None,
        store: Optional[PageStore] = None,
        parent: Optional[QObject] = None,
    ) -> None:
        super().__init__(parent)
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._run_loop, name="flipview-session", daemon=True)
        self._session = ViewerSession(backend, settings=settings, store=store)
        self._session.add_listener(self._on_session_changed)
        self._last_state: Optional[SessionState] = None
        self._stopped = False

    # --- lifecycle --------------------------------------------------------
    def start(self) -> None:
        if not self._thread.is_alive():
            self._thread.start()

    def shutdown(self, timeout: float = 2.0) -> None:
        if self._stopped:
            return
        self._stopped = True
        if self._thread.is_alive():
            done = asyncio.run_coroutine_threadsafe(self._close(), self._loop)
            try:
                done.result(timeout)
            except Exception:
                logger.warning("Session did not close cleanly", exc_info=True)
            self._loop.call_soon_threadsafe(self._loop.stop)
            self._thread.join(timeout)
        else:
            self._session.close()

    # --- commands ---------------------------------------------------------
    def open_pdf(self, path: str | Path) -> Optional[Future]:
        async def _open() -> None:
            data, file_name = read_document(path)
            await self._session.load(data, file_name, progress=self.progress.emit)

        return self._submit(_open)

    def restore(self) -> Optional[Future]:
        return self._submit(self._session.restore)

    def goto_spread(self, spread_index: int) -> Optional[Future]:
        return self._submit(lambda: self._session.on_spread_changed(spread_index))

    def next_spread(self) -> Optional[Future]:
        return self._submit(self._session.next_spread)

    def previous_spread(self) -> Optional[Future]:
        return self._submit(self._session.previous_spread)

    def zoom_in(self) -> Optional[Future]:
        return self._submit(self._session.zoom_in)

    def zoom_out(self) -> Optional[Future]:
        return self._submit(self._session.zoom_out)

    def reset_zoom(self) -> Optional[Future]:
        return self._submit(self._session.reset_zoom)

    def reset_document(self) -> Optional[Future]:
        async def _reset() -> None:
            self._session.reset()

        return self._submit(_reset)

    # --- internals --------------------------------------------------------
    def _run_loop(self) -> None:
        asyncio.set_event_loop(self._loop)
        try:
            self._loop.run_forever()
        finally:
            self._loop.close()

    def _submit(self, factory: Callable[[], Awaitable[object]]) -> Optional[Future]:
        if self._stopped:
            return None
        self.start()

        async def _guarded() -> object:
            return await factory()

        future = asyncio.run_coroutine_threadsafe(_guarded(), self._loop)
        future.add_done_callback(self._report_failure)
        return future

    def _report_failure(self, future: Future) -> None:
        if future.cancelled():
            return
        exc = future.exception()
        if exc is None:
            return
        if isinstance(exc, LoadFailure):
            self.warning.emit(f"Error loading PDF: {exc}")
        elif isinstance(exc, FlipviewError):
            self.warning.emit(str(exc))
        else:
            logger.error("Session command failed", exc_info=exc)
            self.warning.emit("Unexpected error; see logs for details")

    async def _close(self) -> None:
        self._session.close()

    def _on_session_changed(self, session: ViewerSession) -> None:
        if session.state is not self._last_state:
            self._last_state = session.state
            self.state_changed.emit(session.state.value)
        spread = session.visible_spread()
        if spread is not None:
            self.spread_changed.emit(SpreadSnapshot.from_spread(spread, session.spread_count))
        else:
            self.spread_changed.emit(None)
        self.stats_changed.emit(session.stats())


__all__ = ["SpreadSnapshot", "SessionWorker"]
