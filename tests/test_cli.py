from pathlib import Path

import pytest

from flipview import app
from flipview.cli import create_headless_options, parse_arguments
from flipview.config import Settings
from flipview.headless import HeadlessOptions, execute_headless, parse_walk
from tests.fixtures import FakeBackend, pdf_bytes


def _settings(tmp_path):
    return Settings(store_dir=tmp_path / "store", log_dir=tmp_path / "logs")


def _write_pdf(tmp_path, name="walk.pdf"):
    target = tmp_path / name
    target.write_bytes(pdf_bytes(name))
    return target


def test_parse_walk_ranges_and_defaults():
    assert parse_walk("0,2,4-6") == [0, 2, 4, 5, 6]
    assert parse_walk("6-4") == [6, 5, 4]
    assert parse_walk(None) == [0]
    assert parse_walk("  ") == [0]
    with pytest.raises(ValueError):
        parse_walk("a,b")


def test_create_headless_options_validates(tmp_path):
    args, _ = parse_arguments(["--headless", "--input", str(tmp_path / "x.pdf"), "--walk", "0-2", "--zoom", "1.5"])
    options = create_headless_options(args)

    assert options.walk == [0, 1, 2]
    assert options.zoom == 1.5
    assert options.use_store

    missing, _ = parse_arguments(["--headless"])
    with pytest.raises(ValueError):
        create_headless_options(missing)

    too_far, _ = parse_arguments(["--headless", "--input", "x.pdf", "--zoom", "4"])
    with pytest.raises(ValueError):
        create_headless_options(too_far)


def test_execute_headless_walks_and_exports(tmp_path):
    pdf = _write_pdf(tmp_path)
    options = HeadlessOptions(
        input_pdf=pdf,
        walk=[0, 2, 4],
        export_dir=tmp_path / "out",
        log_dir=tmp_path / "debug",
        use_store=False,
    )

    result = execute_headless(options, settings=_settings(tmp_path), backend=FakeBackend(total_pages=12))

    assert result.exit_code == 0
    assert result.total_pages == 12
    assert [visit.index for visit in result.visits] == [0, 2, 4]
    assert result.visits[1].visible == [3, 4]
    assert sorted(path.name for path in result.exported)[:2] == ["page_0001.jpeg", "page_0002.jpeg"]
    assert (tmp_path / "out" / "page_0005.jpeg").read_bytes() == b"page-5"
    assert result.summary_line.startswith("Pages:12 Visits:3")
    assert result.log_file.exists()


def test_execute_headless_reports_visible_failures(tmp_path):
    pdf = _write_pdf(tmp_path)
    options = HeadlessOptions(input_pdf=pdf, walk=[2], log_dir=tmp_path / "debug", use_store=False)

    result = execute_headless(
        options,
        settings=_settings(tmp_path),
        backend=FakeBackend(total_pages=12, fail_pages=[3]),
    )

    assert result.exit_code == 1
    assert result.visits[0].failed == [3]
    assert "page 3 failed to render" in result.warnings


def test_execute_headless_load_failure_exit_code(tmp_path):
    pdf = _write_pdf(tmp_path)
    options = HeadlessOptions(input_pdf=pdf, log_dir=tmp_path / "debug", use_store=False)

    result = execute_headless(options, settings=_settings(tmp_path), backend=FakeBackend(fail_open=True))

    assert result.exit_code == 2
    assert result.summary_line.startswith("ERROR")


def test_execute_headless_missing_input(tmp_path):
    options = HeadlessOptions(input_pdf=tmp_path / "nope.pdf", log_dir=tmp_path / "debug")
    with pytest.raises(FileNotFoundError):
        execute_headless(options, settings=_settings(tmp_path), backend=FakeBackend())


def test_main_headless_miss(capsys, tmp_path):
    code = app.main(["--headless", "--input", str(Path(tmp_path) / "absent.pdf"), "--log-dir", str(tmp_path)])

    assert code == 2
    assert "HEADLESS_MISS reason=input_missing" in capsys.readouterr().out
