"""Shared fixtures for the tile processor tests."""

from __future__ import annotations

from pathlib import Path

import numpy as np
import pytest
from PIL import Image

from tile_processor.core.metrics import MetricsSink


def write_image(
    path: Path,
    width: int,
    height: int,
    pattern: str = "noise",
    format_name: str | None = None,
) -> Path:
    """Write a synthetic RGB image; `noise` is sharp, `flat` is maximally blurry."""
    path.parent.mkdir(parents=True, exist_ok=True)
    if pattern == "flat":
        pixels = np.full((height, width, 3), 128, dtype=np.uint8)
    else:
        rng = np.random.default_rng(width * 1000 + height)
        pixels = rng.integers(0, 256, size=(height, width, 3), dtype=np.uint8)
    Image.fromarray(pixels, mode="RGB").save(path, format=format_name)
    return path


@pytest.fixture
def metrics() -> MetricsSink:
    return MetricsSink(version="test")


@pytest.fixture
def source_dir(tmp_path: Path) -> Path:
    path = tmp_path / "source"
    path.mkdir()
    return path


@pytest.fixture
def dest_dir(tmp_path: Path) -> Path:
    return tmp_path / "dest"
