"""Tests for blur classification."""

from __future__ import annotations

from pathlib import Path

import numpy as np
import pytest

from tile_processor.core.blur_detector import (
    DEFAULT_BLUR_THRESHOLD,
    BlurDetector,
    BlurStatus,
    OpenCVEdgeDetector,
)
from tile_processor.core.errors import DecodeFailed

from conftest import write_image


class FixedVarianceDetector:
    """Edge detector double returning a preset variance."""

    def __init__(self, variance: float) -> None:
        self.variance = variance
        self.calls: list[str] = []

    def variance_for_path(self, image_path: str) -> float:
        self.calls.append(image_path)
        return self.variance


def test_default_threshold_is_empirical_value() -> None:
    assert BlurDetector().threshold == DEFAULT_BLUR_THRESHOLD == 6000.0


def test_flat_image_is_rejected(tmp_path: Path) -> None:
    path = write_image(tmp_path / "flat.png", 64, 64, pattern="flat")

    result = BlurDetector(threshold=6000).classify(str(path))

    assert result.status is BlurStatus.REJECTED
    assert result.is_rejected
    assert result.variance < 1.0


def test_noisy_image_is_accepted(tmp_path: Path) -> None:
    path = write_image(tmp_path / "noise.png", 64, 64, pattern="noise")

    result = BlurDetector(threshold=6000).classify(str(path))

    assert result.status is BlurStatus.ACCEPTED
    assert result.variance >= 6000


def test_unreadable_file_is_decode_failure_not_rejection(tmp_path: Path) -> None:
    path = tmp_path / "broken.png"
    path.write_bytes(b"not an image")

    with pytest.raises(DecodeFailed):
        BlurDetector().classify(str(path))


def test_missing_file_is_decode_failure(tmp_path: Path) -> None:
    with pytest.raises(DecodeFailed):
        BlurDetector().classify(str(tmp_path / "missing.jpg"))


@pytest.mark.parametrize(
    ("variance", "expected"),
    [
        (0.0, BlurStatus.REJECTED),
        (6999.9, BlurStatus.REJECTED),
        (7000.0, BlurStatus.ACCEPTED),
        (12000.0, BlurStatus.ACCEPTED),
    ],
)
def test_threshold_policy(variance: float, expected: BlurStatus) -> None:
    edge = FixedVarianceDetector(variance)
    detector = BlurDetector(threshold=7000, edge_detector=edge)

    result = detector.classify("image.jpg")

    assert result.status is expected
    assert result.variance == variance
    assert result.threshold == 7000
    assert edge.calls == ["image.jpg"]


def test_laplacian_variance_of_constant_array_is_zero() -> None:
    img = np.full((32, 32), 200, dtype=np.uint8)

    assert OpenCVEdgeDetector().laplacian_variance(img) == 0.0
