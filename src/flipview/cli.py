"""Command-line parsing for the flip viewer."""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import List, Optional, Tuple

from flipview.config import MAX_ZOOM, MIN_ZOOM
from flipview.headless import HeadlessOptions, HeadlessResult, execute_headless, parse_walk


def parse_arguments(argv: Optional[List[str]] = None) -> Tuple[argparse.Namespace, List[str]]:
    """Parse known CLI arguments and return ``(args, extras)``."""

    parser = argparse.ArgumentParser(description="Flip-book PDF viewer")
    parser.add_argument(
        "--headless",
        action="store_true",
        help="Walk through the document without launching the GUI.",
    )
    parser.add_argument(
        "--input",
        dest="input_pdf",
        help="Path to the PDF to open.",
    )
    parser.add_argument(
        "--walk",
        dest="walk",
        help="Comma-separated page indices (0-based, ranges allowed) to visit in headless mode.",
    )
    parser.add_argument(
        "--zoom",
        dest="zoom",
        type=float,
        default=1.0,
        help=f"Zoom level between {MIN_ZOOM} and {MAX_ZOOM} (default: 1.0).",
    )
    parser.add_argument(
        "--export-dir",
        dest="export_dir",
        help="Write the visible pages of every visited spread to this directory.",
    )
    parser.add_argument(
        "--log-dir",
        dest="log_dir",
        default="debug",
        help="Directory for structured headless logs (default: debug).",
    )
    parser.add_argument(
        "--log-file",
        dest="log_file",
        help="Optional explicit log file path for headless runs.",
    )
    parser.add_argument(
        "--trace",
        action="store_true",
        help="Enable debug logging of scheduling and eviction (headless mode).",
    )
    parser.add_argument(
        "--no-store",
        action="store_true",
        help="Do not persist the document for the next session.",
    )

    args, extras = parser.parse_known_args(argv)
    return args, extras


def create_headless_options(args: argparse.Namespace) -> HeadlessOptions:
    """Return ``HeadlessOptions`` derived from parsed ``args``."""

    if not args.headless:
        raise ValueError("create_headless_options called without --headless flag")

    if not args.input_pdf:
        raise ValueError("--input is required when --headless is specified")

    if not MIN_ZOOM <= float(args.zoom) <= MAX_ZOOM:
        raise ValueError(f"--zoom must be between {MIN_ZOOM} and {MAX_ZOOM}")

    try:
        walk = parse_walk(args.walk)
    except ValueError as exc:
        raise ValueError(f"--walk is invalid: {exc}") from exc

    return HeadlessOptions(
        input_pdf=Path(args.input_pdf).expanduser().resolve(),
        walk=walk,
        zoom=float(args.zoom),
        export_dir=Path(args.export_dir).expanduser() if args.export_dir else None,
        log_dir=Path(args.log_dir).expanduser(),
        log_file=Path(args.log_file).expanduser() if args.log_file else None,
        trace=bool(args.trace),
        use_store=not args.no_store,
    )


def run_headless_from_args(args: argparse.Namespace) -> HeadlessResult:
    """Execute the headless walkthrough using ``args`` and return the result."""

    options = create_headless_options(args)
    return execute_headless(options)


__all__ = [
    "parse_arguments",
    "create_headless_options",
    "run_headless_from_args",
]
