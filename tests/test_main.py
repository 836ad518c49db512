"""Tests for the command-line entry point."""

from __future__ import annotations

import importlib
from pathlib import Path

import pytest

from tile_processor import __version__, main
from tile_processor.core.tile_pipeline import EXIT_FAILURE, EXIT_INVALID_CONFIG, EXIT_OK

from conftest import write_image


def test_tile_command_writes_tiles(
    source_dir: Path, dest_dir: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    write_image(source_dir / "cli.png", 200, 200)

    code = main.main(
        [
            "tile",
            "--source",
            str(source_dir),
            "--dest",
            str(dest_dir),
            "--width",
            "100",
            "--height",
            "100",
            "--resize",
            "1",
            "--workers",
            "2",
            "--metrics-port",
            "0",
        ]
    )

    assert code == EXIT_OK
    assert sorted(p.name for p in dest_dir.iterdir()) == [
        f"cli-{i}.png" for i in range(4)
    ]
    assert "Tiles written:     4" in capsys.readouterr().out


def test_config_from_args_maps_every_flag() -> None:
    args = main.build_parser().parse_args(
        [
            "--log-level",
            "DEBUG",
            "tile",
            "--source",
            "in",
            "--dest",
            "out",
            "--width",
            "224",
            "--height",
            "128",
            "--resize",
            "3",
            "--smaller-tile",
            "--workers",
            "5",
            "--validation-tiles",
            "7",
            "--validation-only",
            "--reject-blurry",
            "--blur-threshold",
            "7000",
            "--metrics-port",
            "9100",
            "--seed",
            "11",
        ]
    )

    config = main.config_from_args(args)

    assert config.source_dir == "in"
    assert config.dest_dir == "out"
    assert (config.tile_width, config.tile_height) == (224, 128)
    assert config.resize_divisor == 3
    assert config.allow_remainder_anchoring is True
    assert config.worker_count == 5
    assert config.validation_tile_count == 7
    assert config.validation_only is True
    assert config.reject_blurry is True
    assert config.blur_threshold == 7000
    assert config.metrics_port == 9100
    assert config.seed == 11
    assert config.log_level == "DEBUG"


def test_invalid_tile_size_exits_with_config_error(tmp_path: Path) -> None:
    code = main.main(
        ["tile", "--source", str(tmp_path), "--dest", str(tmp_path / "o"), "--width", "0"]
    )

    assert code == EXIT_INVALID_CONFIG


def test_missing_source_exits_with_failure(tmp_path: Path) -> None:
    code = main.main(
        [
            "tile",
            "--source",
            str(tmp_path / "nope"),
            "--dest",
            str(tmp_path / "o"),
            "--metrics-port",
            "0",
        ]
    )

    assert code == EXIT_FAILURE


def test_blurry_command_reports_variance(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    path = write_image(tmp_path / "flat.png", 64, 64, pattern="flat")

    code = main.main(["blurry", "--source", str(path)])

    assert code == EXIT_OK
    assert capsys.readouterr().out.startswith("Blurry 0.0")


def test_unknown_log_level_is_rejected(tmp_path: Path) -> None:
    code = main.main(["--log-level", "LOUD", "blurry", "--source", str(tmp_path)])

    assert code == EXIT_INVALID_CONFIG


def test_console_script_points_at_cli_entry() -> None:
    tomllib = pytest.importorskip("tomllib")
    pyproject = Path(__file__).resolve().parent.parent / "pyproject.toml"

    with pyproject.open("rb") as f:
        scripts = tomllib.load(f)["project"]["scripts"]

    module_name, _, attr = scripts["ml-image-tile"].partition(":")
    assert getattr(importlib.import_module(module_name), attr) is main.main


def test_version_flag_prints_package_version(
    capsys: pytest.CaptureFixture[str],
) -> None:
    with pytest.raises(SystemExit) as excinfo:
        main.main(["--version"])

    assert excinfo.value.code == 0
    assert capsys.readouterr().out.strip() == __version__
