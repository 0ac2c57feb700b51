from __future__ import annotations

from pathlib import Path
from typing import Optional

from PySide6 import QtCore


class UIPrefs:
    """Viewer preferences kept in QSettings between launches."""

    LAST_DIR_KEY = "viewer/last_open_dir"
    GEOMETRY_KEY = "viewer/geometry"
    RESTORE_KEY = "viewer/restore_last_document"

    def __init__(self, settings: Optional[QtCore.QSettings] = None) -> None:
        self._settings = settings if settings is not None else QtCore.QSettings("Flipview", "FlipviewApp")

    def last_open_dir(self) -> Path:
        raw = self._settings.value(self.LAST_DIR_KEY, "")
        if raw:
            candidate = Path(str(raw)).expanduser()
            if candidate.is_dir():
                return candidate
        return Path.home()

    def remember_open_dir(self, pdf_path: Path) -> None:
        self._settings.setValue(self.LAST_DIR_KEY, str(Path(pdf_path).parent))

    def window_geometry(self) -> Optional[QtCore.QByteArray]:
        value = self._settings.value(self.GEOMETRY_KEY)
        return value if isinstance(value, QtCore.QByteArray) and not value.isEmpty() else None

    def save_window_geometry(self, geometry: QtCore.QByteArray) -> None:
        self._settings.setValue(self.GEOMETRY_KEY, geometry)

    def restore_last_document(self) -> bool:
        return bool(self._settings.value(self.RESTORE_KEY, True, type=bool))

    def set_restore_last_document(self, enabled: bool) -> None:
        self._settings.setValue(self.RESTORE_KEY, bool(enabled))

    def sync(self) -> None:
        self._settings.sync()
