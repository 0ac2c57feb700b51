from __future__ import annotations
from PySide6.QtCore import Qt
from PySide6.QtGui import QGuiApplication
def apply() -> bool:
    # Only effective before the QApplication exists
    if QGuiApplication.instance() is not None:
        return False
    QGuiApplication.setHighDpiScaleFactorRoundingPolicy(Qt.HighDpiScaleFactorRoundingPolicy.PassThrough)
    return True
