"""Environment-driven runtime settings."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Final, Mapping, Optional

APP_SUPPORT: Final[Path] = Path.home() / "Library" / "Application Support" / "Flipview"

BASE_SCALE: Final[float] = 1.5
MIN_ZOOM: Final[float] = 0.5
MAX_ZOOM: Final[float] = 3.0
ZOOM_STEP: Final[float] = 0.25
DEFAULT_ZOOM: Final[float] = 1.0

STORE_LIMIT_BYTES: Final[int] = 5 * 1024 * 1024

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    """Runtime knobs read once at startup."""

    base_scale: float = BASE_SCALE
    render_workers: int = 3
    store_dir: Path = APP_SUPPORT / "store"
    store_limit_bytes: int = STORE_LIMIT_BYTES
    log_dir: Path = APP_SUPPORT / "logs"
    render_debug: bool = False


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """Build :class:`Settings` from ``FLIPVIEW_*`` variables in ``env``."""

    source = os.environ if env is None else env
    defaults = Settings()
    return Settings(
        base_scale=_positive_float(source.get("FLIPVIEW_BASE_SCALE"), defaults.base_scale),
        render_workers=max(1, _int(source.get("FLIPVIEW_RENDER_WORKERS"), defaults.render_workers)),
        store_dir=_path(source.get("FLIPVIEW_STORE_DIR"), defaults.store_dir),
        store_limit_bytes=max(0, _int(source.get("FLIPVIEW_STORE_LIMIT_BYTES"), defaults.store_limit_bytes)),
        log_dir=_path(source.get("FLIPVIEW_LOG_DIR"), defaults.log_dir),
        render_debug=(source.get("FLIPVIEW_RENDER_DEBUG", "").strip().lower() in _TRUTHY),
    )


def clamp_zoom(value: float) -> float:
    """Clamp ``value`` to the supported zoom range."""

    return max(MIN_ZOOM, min(MAX_ZOOM, float(value)))


def _int(raw: Optional[str], default: int) -> int:
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


def _positive_float(raw: Optional[str], default: float) -> float:
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw.strip())
    except ValueError:
        return default
    return value if value > 0.0 else default


def _path(raw: Optional[str], default: Path) -> Path:
    if raw is None or not raw.strip():
        return default
    return Path(raw.strip()).expanduser()


__all__ = [
    "APP_SUPPORT",
    "BASE_SCALE",
    "MIN_ZOOM",
    "MAX_ZOOM",
    "ZOOM_STEP",
    "DEFAULT_ZOOM",
    "STORE_LIMIT_BYTES",
    "Settings",
    "load_settings",
    "clamp_zoom",
]
