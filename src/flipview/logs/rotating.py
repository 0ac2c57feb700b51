from __future__ import annotations

import logging
import logging.handlers
from pathlib import Path
from typing import Optional

from flipview.config import load_settings

LOG_NAME = "flipview.log"


def log_path(log_dir: Optional[Path] = None) -> Path:
    base = Path(log_dir) if log_dir is not None else load_settings().log_dir
    return base / LOG_NAME


def get_logger(name: str = "flipview", log_dir: Optional[Path] = None) -> logging.Logger:
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger
    logger.setLevel(logging.INFO)
    target = log_path(log_dir)
    target.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.handlers.RotatingFileHandler(
        target, maxBytes=1_500_000, backupCount=5, encoding="utf-8"
    )
    formatter = logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
    handler.setFormatter(formatter)
    logger.addHandler(handler)
    return logger
