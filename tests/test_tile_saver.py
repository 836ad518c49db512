"""Tests for tile cropping, encoding and output naming."""

from __future__ import annotations

from pathlib import Path

import pytest
from PIL import Image

from tile_processor.core.errors import CropFailed, WriteFailed
from tile_processor.core.grid_planner import GridPlan, TileSpec, plan_grid
from tile_processor.core.image_codec import PillowCodec
from tile_processor.core.metrics import MetricsSink
from tile_processor.core.tile_saver import TileSaver, tile_output_path

from conftest import write_image


class FailingEncodeCodec(PillowCodec):
    """Pillow codec that refuses to write one tile index."""

    def __init__(self, fail_on: str) -> None:
        super().__init__()
        self.fail_on = fail_on

    def encode(self, image, path, format_name):
        if path.name == self.fail_on:
            raise WriteFailed(f"disk full writing {path}", path=str(path))
        super().encode(image, path, format_name)


def test_output_path_mirrors_source_tree() -> None:
    path = tile_output_path("/data/src/a/b/photo.jpg", "/data/src", "/out", 3)

    assert path == Path("/out/a/b/photo-3.jpg")


def test_save_tiles_writes_every_tile_in_source_format(
    source_dir: Path, dest_dir: Path, metrics: MetricsSink
) -> None:
    src = write_image(source_dir / "sub" / "scene.png", 300, 200)
    image = PillowCodec().decode(str(src))
    tiles = plan_grid(300, 200, GridPlan(tile_width=100, tile_height=100))
    saver = TileSaver(str(source_dir), str(dest_dir), metrics)

    saved = saver.save_tiles(image, tiles, str(src))

    assert len(saved) == 6
    assert metrics.snapshot().tiles_written == 6
    for index in range(6):
        out = dest_dir / "sub" / f"scene-{index}.png"
        assert out.exists()
        with Image.open(out) as tile:
            assert tile.format == "PNG"
            assert tile.size == (100, 100)


def test_tile_pixels_match_source_region(
    source_dir: Path, dest_dir: Path, metrics: MetricsSink
) -> None:
    src = write_image(source_dir / "pixels.png", 200, 100)
    image = PillowCodec().decode(str(src))
    saver = TileSaver(str(source_dir), str(dest_dir), metrics)

    tile = TileSpec(index=0, top=10, left=50, width=40, height=30)
    saver.save_tile(image, tile, str(src))

    with Image.open(dest_dir / "pixels-0.png") as written:
        expected = image.crop((50, 10, 90, 40))
        assert list(written.getdata()) == list(expected.getdata())


def test_jpeg_source_is_written_as_jpeg(
    source_dir: Path, dest_dir: Path, metrics: MetricsSink
) -> None:
    src = write_image(source_dir / "shot.jpg", 120, 120, format_name="JPEG")
    image = PillowCodec().decode(str(src))
    saver = TileSaver(str(source_dir), str(dest_dir), metrics)

    saver.save_tile(image, TileSpec(0, 0, 0, 100, 100), str(src))

    with Image.open(dest_dir / "shot-0.jpg") as written:
        assert written.format == "JPEG"


def test_existing_tile_is_overwritten(
    source_dir: Path, dest_dir: Path, metrics: MetricsSink
) -> None:
    src = write_image(source_dir / "over.png", 100, 100)
    stale = dest_dir / "over-0.png"
    stale.parent.mkdir(parents=True)
    stale.write_bytes(b"stale")
    image = PillowCodec().decode(str(src))

    TileSaver(str(source_dir), str(dest_dir), metrics).save_tile(
        image, TileSpec(0, 0, 0, 100, 100), str(src)
    )

    with Image.open(stale) as written:
        assert written.size == (100, 100)


def test_out_of_bounds_tile_fails_without_counting(
    source_dir: Path, dest_dir: Path, metrics: MetricsSink
) -> None:
    src = write_image(source_dir / "small.png", 100, 100)
    image = PillowCodec().decode(str(src))
    saver = TileSaver(str(source_dir), str(dest_dir), metrics)

    with pytest.raises(CropFailed):
        saver.save_tile(image, TileSpec(0, 50, 50, 100, 100), str(src))

    assert metrics.snapshot().tiles_written == 0
    assert not dest_dir.exists()


def test_write_failure_aborts_remaining_tiles(
    source_dir: Path, dest_dir: Path, metrics: MetricsSink
) -> None:
    src = write_image(source_dir / "abort.png", 300, 100)
    image = PillowCodec().decode(str(src))
    tiles = plan_grid(300, 100, GridPlan(tile_width=100, tile_height=100))
    saver = TileSaver(
        str(source_dir),
        str(dest_dir),
        metrics,
        codec=FailingEncodeCodec(fail_on="abort-1.png"),
    )

    with pytest.raises(WriteFailed):
        saver.save_tiles(image, tiles, str(src))

    assert metrics.snapshot().tiles_written == 1
    assert (dest_dir / "abort-0.png").exists()
    assert not (dest_dir / "abort-2.png").exists()
