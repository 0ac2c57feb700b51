"""Headless walkthrough used by the CLI and perf tooling."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from flipview.config import Settings, load_settings
from flipview.engine.rendering import RenderBackend
from flipview.engine.session import ViewerSession
from flipview.errors import LoadFailure
from flipview.fs.store import PageStore
from flipview.logs.rotating import get_logger, log_path
from flipview.pdf.document import read_document
from flipview.pdf.renderer import MuPdfBackend

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class HeadlessOptions:
    """Configuration for a headless walkthrough."""

    input_pdf: Path
    walk: List[int] = field(default_factory=lambda: [0])
    zoom: float = 1.0
    export_dir: Optional[Path] = None
    log_dir: Path = field(default_factory=lambda: Path("debug"))
    log_file: Optional[Path] = None
    trace: bool = False
    use_store: bool = True


@dataclass(slots=True)
class VisitRecord:
    """What the cache looked like after settling on one index."""

    index: int
    visible: List[int]
    ready: List[int]
    failed: List[int]
    dispatched: List[int]
    cached: List[int]


@dataclass(slots=True)
class HeadlessResult:
    """Outcome of a headless walkthrough."""

    exit_code: int
    total_pages: int
    visits: List[VisitRecord]
    exported: List[Path]
    stats: Dict[str, object]
    warnings: List[str]
    summary_line: str
    log_file: Path


def execute_headless(
    options: HeadlessOptions,
    *,
    settings: Optional[Settings] = None,
    backend: Optional[RenderBackend] = None,
) -> HeadlessResult:
    """Open ``options.input_pdf`` and visit every index in ``options.walk``."""

    input_pdf = options.input_pdf.expanduser().resolve()
    if not input_pdf.exists():
        raise FileNotFoundError(f"Input PDF not found: {input_pdf}")

    settings = settings or load_settings()
    log_dir = options.log_dir.expanduser().resolve()
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = (options.log_file or (log_dir / _default_log_name())).expanduser().resolve()
    base_logger = _configure_logging(log_file, settings, trace=options.trace)
    LOGGER.info("Headless start: %s", input_pdf)
    if options.trace:
        base_logger.debug("Trace mode enabled for headless execution.")
    print(f"LOG_ROTATION_OK path={log_path(settings.log_dir)}", flush=True)

    backend = backend or MuPdfBackend(max_workers=settings.render_workers, debug=settings.render_debug)
    store = PageStore(settings.store_dir, settings.store_limit_bytes) if options.use_store else None
    return asyncio.run(_walk(options, input_pdf, settings, backend, store, log_file))


async def _walk(
    options: HeadlessOptions,
    input_pdf: Path,
    settings: Settings,
    backend: RenderBackend,
    store: Optional[PageStore],
    log_file: Path,
) -> HeadlessResult:
    session = ViewerSession(backend, settings=settings, store=store)
    warnings: List[str] = []
    visits: List[VisitRecord] = []
    exported: List[Path] = []
    try:
        try:
            data, file_name = read_document(input_pdf)
            document = await session.load(data, file_name)
        except LoadFailure as exc:
            LOGGER.error("Headless load failed: %s", exc)
            return HeadlessResult(
                exit_code=2,
                total_pages=0,
                visits=[],
                exported=[],
                stats=session.stats(),
                warnings=[str(exc)],
                summary_line=f"ERROR - {exc}",
                log_file=log_file,
            )
        await session.wait_idle()
        if options.zoom != session.zoom:
            await session.on_zoom_changed(options.zoom)
            await session.wait_idle()

        for index in options.walk:
            outcome = await session.on_position_changed(index)
            await session.wait_idle()
            if outcome is None:
                continue
            visits.append(
                VisitRecord(
                    index=session.position.index,
                    visible=list(outcome.plan.visible),
                    ready=list(outcome.ready),
                    failed=list(outcome.failed),
                    dispatched=list(outcome.dispatched),
                    cached=session.cache.pages(),
                )
            )
            for page in outcome.failed:
                warnings.append(f"page {page} failed to render")
            if options.export_dir is not None:
                exported.extend(_export_visible(session, options.export_dir))

        stats = session.stats()
        failed_total = sum(len(visit.failed) for visit in visits)
        summary_line = (
            f"Pages:{document.total_pages} Visits:{len(visits)} Renders:{stats['renders']} "
            f"Cached:{stats['items']}/{stats['buffer_size']} Failed:{failed_total}"
        )
        exit_code = 0 if failed_total == 0 else 1
        LOGGER.info("Headless run completed exit_code=%s %s", exit_code, summary_line)
        return HeadlessResult(
            exit_code=exit_code,
            total_pages=document.total_pages,
            visits=visits,
            exported=exported,
            stats=stats,
            warnings=warnings,
            summary_line=summary_line,
            log_file=log_file,
        )
    finally:
        session.close()


def _export_visible(session: ViewerSession, export_dir: Path) -> List[Path]:
    export_dir = export_dir.expanduser()
    export_dir.mkdir(parents=True, exist_ok=True)
    written: List[Path] = []
    for page in session.visible_pages:
        rendering = session.cache.get(page)
        if rendering is None or not rendering.data:
            continue
        target = export_dir / f"page_{page:04d}.{rendering.image_format}"
        target.write_bytes(rendering.data)
        written.append(target)
    return written


def _configure_logging(log_file: Path, settings: Settings, *, trace: bool = False) -> logging.Logger:
    log_file.parent.mkdir(parents=True, exist_ok=True)
    base_logger = get_logger(log_dir=settings.log_dir)
    level = logging.DEBUG if trace else logging.INFO
    base_logger.setLevel(level)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    if not any(isinstance(handler, logging.StreamHandler) for handler in root_logger.handlers):
        stream_handler = logging.StreamHandler()
        stream_handler.setLevel(level)
        root_logger.addHandler(stream_handler)

    existing_paths = {
        getattr(handler, "baseFilename", None)
        for handler in base_logger.handlers
        if hasattr(handler, "baseFilename")
    }
    if str(log_file) not in existing_paths:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(level)
        formatter = logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            "%Y-%m-%d %H:%M:%S",
        )
        file_handler.setFormatter(formatter)
        base_logger.addHandler(file_handler)

    return base_logger


def _default_log_name() -> str:
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    return f"headless_{timestamp}.log"


def parse_walk(raw: Optional[str], *, default: Sequence[int] = (0,)) -> List[int]:
    """Parse ``"0,2,4-8"`` into ``[0, 2, 4, 5, 6, 7, 8]``; ranges may run downward."""

    if raw is None or not raw.strip():
        return list(default)
    indices: List[int] = []
    for chunk in raw.split(","):
        token = chunk.strip()
        if not token:
            continue
        if "-" in token:
            start_raw, end_raw = token.split("-", 1)
            start, end = int(start_raw), int(end_raw)
            step = 1 if end >= start else -1
            indices.extend(range(start, end + step, step))
        else:
            indices.append(int(token))
    if any(index < 0 for index in indices):
        raise ValueError("walk indices must be non-negative")
    return indices


__all__ = ["HeadlessOptions", "HeadlessResult", "VisitRecord", "execute_headless", "parse_walk"]
