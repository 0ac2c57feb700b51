from __future__ import annotations

import os
from typing import Optional

from PySide6.QtCore import Qt, QRectF, QTimer
from PySide6.QtGui import QBrush, QColor, QPen, QPixmap
from PySide6.QtWidgets import (
    QFrame,
    QGraphicsPixmapItem,
    QGraphicsRectItem,
    QGraphicsScene,
    QGraphicsSimpleTextItem,
    QGraphicsView,
    QSizePolicy,
)

from flipview.engine.session import PLACEHOLDER_FAILED, PLACEHOLDER_LOADING

from .session_worker import SpreadSnapshot

# Placeholder page size (points at 72 dpi, A4-ish) used until a bitmap arrives.
_PLACEHOLDER_SIZE = (595.0, 842.0)
_PLACEHOLDER_TEXT = {
    PLACEHOLDER_LOADING: "Loading...",
    PLACEHOLDER_FAILED: "Render failed",
}


class SpreadView(QGraphicsView):
    """
    Shows two facing pages side by side:
      - absent pages get a grey placeholder with a loading/failed caption
      - the whole spread is refit to the viewport on resize
      - optional debug traces via FLIPVIEW_VIEW_DEBUG
    """

    def __init__(self, parent=None):
        super().__init__(parent)
        self.setScene(QGraphicsScene(self))
        self.setFrameShape(QFrame.NoFrame)
        self.setAlignment(Qt.AlignCenter)
        self.setSizePolicy(QSizePolicy.Expanding, QSizePolicy.Expanding)
        self.setViewportUpdateMode(QGraphicsView.SmartViewportUpdate)
        self.setResizeAnchor(QGraphicsView.AnchorViewCenter)
        self.setHorizontalScrollBarPolicy(Qt.ScrollBarAlwaysOff)
        self.setVerticalScrollBarPolicy(Qt.ScrollBarAlwaysOff)

        self._refit_timer = QTimer(self)
        self._refit_timer.setSingleShot(True)
        self._refit_timer.setInterval(0)
        self._refit_timer.timeout.connect(self._apply_fit)

        self._snapshot: Optional[SpreadSnapshot] = None
        self._captions: list[str] = []

    # --- public API -----------------------------------------------------
    def clear(self) -> None:
        """Remove all scene items and reset scaling."""

        self.scene().clear()
        self._snapshot = None
        self._captions = []
        self.resetTransform()

    def snapshot(self) -> Optional[SpreadSnapshot]:
        return self._snapshot

    def captions(self) -> list[str]:
        """Placeholder captions currently drawn, left to right."""

        return list(self._captions)

    def set_spread(self, snapshot: Optional[SpreadSnapshot]) -> None:
        """Replace the scene with ``snapshot``'s pages."""

        self.clear()
        if snapshot is None:
            return
        self._snapshot = snapshot

        left_pix = _pixmap(snapshot.left_image)
        right_pix = _pixmap(snapshot.right_image)
        # size placeholders after whichever real page is present
        reference = left_pix or right_pix
        size = (
            (float(reference.width()), float(reference.height()))
            if reference is not None
            else _PLACEHOLDER_SIZE
        )

        x = self._add_side(0.0, left_pix, snapshot.left_placeholder, size)
        if snapshot.right_page is not None:
            self._add_side(x, right_pix, snapshot.right_placeholder, size)
        self.scene().setSceneRect(self.scene().itemsBoundingRect())
        self._apply_fit()

    # --- events ---------------------------------------------------------
    def resizeEvent(self, ev):
        super().resizeEvent(ev)
        self._refit_timer.start()

    # --- helpers --------------------------------------------------------
    def _add_side(
        self,
        x: float,
        pix: Optional[QPixmap],
        placeholder: Optional[str],
        size: tuple[float, float],
    ) -> float:
        scene = self.scene()
        if pix is not None:
            item = QGraphicsPixmapItem(pix)
            item.setTransformationMode(Qt.SmoothTransformation)
            item.setPos(x, 0.0)
            scene.addItem(item)
            return x + float(pix.width())

        width, height = size
        rect = QGraphicsRectItem(QRectF(x, 0.0, width, height))
        rect.setBrush(QBrush(QColor("#F3F4F6")))
        rect.setPen(QPen(QColor("#D1D5DB")))
        scene.addItem(rect)
        caption = _PLACEHOLDER_TEXT.get(placeholder or "")
        if caption:
            text = QGraphicsSimpleTextItem(caption)
            text.setBrush(QColor("#9CA3AF") if placeholder == PLACEHOLDER_LOADING else QColor("#DC2626"))
            bounds = text.boundingRect()
            text.setPos(x + (width - bounds.width()) / 2.0, (height - bounds.height()) / 2.0)
            scene.addItem(text)
            self._captions.append(caption)
        return x + width

    def _apply_fit(self) -> None:
        rect = self.scene().sceneRect()
        if rect.isNull() or rect.width() <= 0.0 or rect.height() <= 0.0:
            return
        self.resetTransform()
        self.fitInView(rect, Qt.KeepAspectRatio)
        self.centerOn(rect.center())
        self._debug_trace(rect)

    def _debug_trace(self, rect: QRectF) -> None:
        if not os.getenv("FLIPVIEW_VIEW_DEBUG"):
            return
        viewport = self.viewport()
        if viewport is None:
            return
        vp = viewport.rect()
        index = self._snapshot.index if self._snapshot is not None else None
        print(
            "[SpreadView]"
            f" spread={index}"
            f" viewport={vp.width()}x{vp.height()}"
            f" scene={int(rect.width())}x{int(rect.height())}"
        )


def _pixmap(data: Optional[bytes]) -> Optional[QPixmap]:
    if not data:
        return None
    pix = QPixmap()
    if not pix.loadFromData(data):
        return None
    return pix
