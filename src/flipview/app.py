"""Application bootstrap for the flip viewer."""

from __future__ import annotations

import sys
from typing import List, Optional

from flipview.cli import parse_arguments, run_headless_from_args
from flipview.config import load_settings
from flipview.headless import HeadlessResult
from flipview.logs.rotating import get_logger


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point for both GUI and headless execution."""

    raw_argv = list(argv if argv is not None else sys.argv[1:])
    args, extras = parse_arguments(raw_argv)

    if args.headless:
        try:
            result = run_headless_from_args(args)
        except (ValueError, FileNotFoundError) as exc:
            _emit_headless_miss(exc)
            return 2
        _print_headless_result(result)
        return result.exit_code

    sys.argv = [sys.argv[0]] + extras
    return _launch_gui(args.input_pdf)


def _launch_gui(input_pdf: Optional[str] = None) -> int:
    from flipview.ui.hidpi import apply as _hdpi_apply

    _hdpi_apply()

    from PySide6.QtWidgets import QApplication

    from flipview.ui.main_window import FlipWindow

    settings = load_settings()
    app = QApplication.instance() or QApplication(sys.argv)
    app.setApplicationName("Flipview")
    app.setOrganizationName("Flipview")

    logger = get_logger(log_dir=settings.log_dir)
    logger.info("Launching GUI")
    window = FlipWindow(settings=settings)
    window.show()
    if input_pdf:
        window.open_pdf(input_pdf)
    else:
        window.restore_last()

    result = app.exec()
    logger.info("Event loop exited (%s)", result)
    return result


def _print_headless_result(result: HeadlessResult) -> None:
    for visit in result.visits:
        print(
            f"VISIT index={visit.index} visible={visit.visible} ready={visit.ready} "
            f"failed={visit.failed} prefetch={visit.dispatched} cached={visit.cached}",
            flush=True,
        )
    print(result.summary_line, flush=True)
    for path in result.exported:
        print(f"EXPORT: {path}", flush=True)
    for warning in result.warnings:
        print(f"Warning: {warning}", file=sys.stderr, flush=True)


def _emit_headless_miss(exc: Exception) -> None:
    reason = "input_missing" if isinstance(exc, FileNotFoundError) else "invalid_args"
    print(f"HEADLESS_MISS reason={reason}", flush=True)
    print(f"Headless error: {exc}", file=sys.stderr, flush=True)


if __name__ == "__main__":
    raise SystemExit(main())
