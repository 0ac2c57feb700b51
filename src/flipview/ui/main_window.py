"""Main window for the flip viewer."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from PySide6.QtCore import Slot
from PySide6.QtGui import QAction, QKeySequence
from PySide6.QtWidgets import (
    QFileDialog,
    QHBoxLayout,
    QLabel,
    QMainWindow,
    QMessageBox,
    QProgressBar,
    QPushButton,
    QVBoxLayout,
    QWidget,
)

from flipview.config import Settings, load_settings
from flipview.engine.rendering import RenderBackend
from flipview.engine.session import SessionState
from flipview.fs.store import PageStore
from flipview.pdf.renderer import MuPdfBackend

from .session_worker import SessionWorker, SpreadSnapshot
from .spread_view import SpreadView
from .ui_prefs import UIPrefs


class FlipWindow(QMainWindow):
    """Flip-book window: open a PDF, page through spreads, zoom."""

    def __init__(
        self,
        *,
        settings: Optional[Settings] = None,
        backend: Optional[RenderBackend] = None,
        store: Optional[PageStore] = None,
        prefs: Optional[UIPrefs] = None,
        parent: Optional[QWidget] = None,
    ) -> None:
        super().__init__(parent)
        self.setWindowTitle("Flipview")
        self.resize(1100, 760)

        self._settings = settings or load_settings()
        self._prefs = prefs or UIPrefs()
        if backend is None:
            backend = MuPdfBackend(
                max_workers=self._settings.render_workers,
                debug=self._settings.render_debug,
            )
        if store is None:
            store = PageStore(self._settings.store_dir, self._settings.store_limit_bytes)
        self._worker = SessionWorker(backend, settings=self._settings, store=store, parent=self)
        self._state = SessionState.EMPTY.value
        self._snapshot: Optional[SpreadSnapshot] = None
        self._zoom = 1.0

        self._build_ui()
        self._create_actions()
        self._connect_worker()
        self._refresh_controls()
        geometry = self._prefs.window_geometry()
        if geometry is not None:
            self.restoreGeometry(geometry)

    # --- UI assembly -----------------------------------------------------------------

    def _build_ui(self) -> None:
        central = QWidget(self)
        layout = QVBoxLayout(central)
        layout.setContentsMargins(12, 12, 12, 12)
        layout.setSpacing(8)

        toolbar = QHBoxLayout()
        self.open_button = QPushButton("Open PDF…")
        self.open_button.clicked.connect(self._browse_for_pdf)
        self.prev_button = QPushButton("Previous")
        self.prev_button.clicked.connect(self._worker_call("previous_spread"))
        self.next_button = QPushButton("Next")
        self.next_button.clicked.connect(self._worker_call("next_spread"))
        self.zoom_out_button = QPushButton("−")
        self.zoom_out_button.clicked.connect(self._worker_call("zoom_out"))
        self.zoom_label = QPushButton("100%")
        self.zoom_label.setFlat(True)
        self.zoom_label.clicked.connect(self._worker_call("reset_zoom"))
        self.zoom_in_button = QPushButton("+")
        self.zoom_in_button.clicked.connect(self._worker_call("zoom_in"))
        self.close_button = QPushButton("Close PDF")
        self.close_button.clicked.connect(self._close_document)

        toolbar.addWidget(self.open_button)
        toolbar.addStretch(1)
        for widget in (
            self.prev_button,
            self.next_button,
            self.zoom_out_button,
            self.zoom_label,
            self.zoom_in_button,
        ):
            toolbar.addWidget(widget)
        toolbar.addStretch(1)
        toolbar.addWidget(self.close_button)
        layout.addLayout(toolbar)

        self.view = SpreadView(self)
        layout.addWidget(self.view, stretch=1)

        status = QHBoxLayout()
        self.page_label = QLabel("Open a PDF to see the flipbook.")
        self.progress_bar = QProgressBar()
        self.progress_bar.setRange(0, 100)
        self.progress_bar.setMaximumWidth(220)
        self.progress_bar.setVisible(False)
        self.cache_label = QLabel("")
        self.cache_label.setStyleSheet("color: #8e8e93; font-size: 12px;")
        status.addWidget(self.page_label)
        status.addWidget(self.progress_bar)
        status.addStretch(1)
        status.addWidget(self.cache_label)
        layout.addLayout(status)

        self.setCentralWidget(central)

    def _create_actions(self) -> None:
        bindings = (
            ("Next Spread", ("Right", "PgDown"), "next_spread"),
            ("Previous Spread", ("Left", "PgUp"), "previous_spread"),
            ("Zoom In", (QKeySequence.StandardKey.ZoomIn,), "zoom_in"),
            ("Zoom Out", (QKeySequence.StandardKey.ZoomOut,), "zoom_out"),
        )
        for title, keys, method in bindings:
            action = QAction(title, self)
            action.setShortcuts([QKeySequence(key) for key in keys])
            action.triggered.connect(self._worker_call(method))
            self.addAction(action)

        open_action = QAction("Open…", self)
        open_action.setShortcut(QKeySequence.StandardKey.Open)
        open_action.triggered.connect(self._browse_for_pdf)
        self.addAction(open_action)

    def _connect_worker(self) -> None:
        self._worker.spread_changed.connect(self._on_spread_changed)
        self._worker.state_changed.connect(self._on_state_changed)
        self._worker.progress.connect(self._on_progress)
        self._worker.stats_changed.connect(self._on_stats_changed)
        self._worker.warning.connect(self._on_worker_warning)

    def _worker_call(self, method: str):
        def _call(*_args) -> None:
            if self._state != SessionState.READY.value:
                return
            getattr(self._worker, method)()

        return _call

    # --- Actions --------------------------------------------------------------------

    def open_pdf(self, pdf_path: str | Path) -> None:
        path = Path(pdf_path).expanduser().resolve()
        self._prefs.remember_open_dir(path)
        self.page_label.setText(f"Loading {path.name}…")
        self.progress_bar.setValue(0)
        self.progress_bar.setVisible(True)
        self._worker.open_pdf(path)

    def restore_last(self) -> None:
        if self._prefs.restore_last_document():
            self._worker.restore()

    def _browse_for_pdf(self) -> None:
        start_dir = str(self._prefs.last_open_dir())
        filename, _ = QFileDialog.getOpenFileName(
            self,
            "Select PDF",
            start_dir,
            "PDF Files (*.pdf)",
        )
        if filename:
            self.open_pdf(filename)

    def _close_document(self) -> None:
        self._worker.reset_document()

    # --- Worker signals -------------------------------------------------------------

    @Slot(object)
    def _on_spread_changed(self, snapshot: Optional[SpreadSnapshot]) -> None:
        self._snapshot = snapshot
        self.view.set_spread(snapshot)
        self._refresh_controls()

    @Slot(str)
    def _on_state_changed(self, state: str) -> None:
        self._state = state
        if state != SessionState.LOADING.value:
            self.progress_bar.setVisible(False)
        if state == SessionState.EMPTY.value:
            self._snapshot = None
            self.view.clear()
        self._refresh_controls()

    @Slot(int, int)
    def _on_progress(self, done: int, total: int) -> None:
        if total > 0:
            self.progress_bar.setValue(int(done * 100 / total))

    @Slot(dict)
    def _on_stats_changed(self, stats: dict) -> None:
        self._zoom = float(stats.get("zoom", 1.0))
        self.zoom_label.setText(f"{round(self._zoom * 100)}%")
        if stats.get("pages"):
            self.cache_label.setText(
                f"cache {stats.get('items', 0)}/{stats.get('buffer_size', 0)}"
                f" · rendering {stats.get('in_flight', 0)}"
                f" · renders {stats.get('renders', 0)}"
            )
        else:
            self.cache_label.setText("")

    @Slot(str)
    def _on_worker_warning(self, message: str) -> None:
        self.progress_bar.setVisible(False)
        QMessageBox.warning(self, "Flipview", message)

    def _refresh_controls(self) -> None:
        ready = self._state == SessionState.READY.value
        snapshot = self._snapshot
        for widget in (self.zoom_out_button, self.zoom_label, self.zoom_in_button, self.close_button):
            widget.setEnabled(ready)
        self.prev_button.setEnabled(ready and snapshot is not None and snapshot.index > 0)
        self.next_button.setEnabled(
            ready and snapshot is not None and snapshot.index < snapshot.spread_count - 1
        )
        self.open_button.setEnabled(self._state != SessionState.LOADING.value)
        if ready and snapshot is not None:
            pages = str(snapshot.left_page)
            if snapshot.right_page is not None:
                pages = f"{snapshot.left_page}–{snapshot.right_page}"
            self.page_label.setText(f"Pages {pages} · spread {snapshot.index + 1} of {snapshot.spread_count}")
        elif self._state == SessionState.EMPTY.value:
            self.page_label.setText("Open a PDF to see the flipbook.")

    def closeEvent(self, event) -> None:  # noqa: N802
        self._prefs.save_window_geometry(self.saveGeometry())
        self._prefs.sync()
        self._worker.shutdown()
        super().closeEvent(event)
