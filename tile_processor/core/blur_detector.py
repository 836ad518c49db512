"""
Blur Detector for rejecting out-of-focus source images

Uses the variance of the Laplacian: a sharp image has strong second-derivative
response around edges, a blurry one does not. The kernel itself comes from
OpenCV; this module only owns the threshold policy.
"""

import cv2
import logging
import numpy as np
from enum import Enum
from typing import Optional
from dataclasses import dataclass

from .errors import DecodeFailed

# Set up logging
logger = logging.getLogger(__name__)

# Empirical value for 8-bit grayscale sources with a 5x5 kernel
DEFAULT_BLUR_THRESHOLD = 6000.0

LAPLACIAN_KERNEL_SIZE = 5


class BlurStatus(Enum):
    ACCEPTED = "accepted"
    REJECTED = "rejected"


@dataclass(frozen=True)
class BlurResult:
    """Outcome of a blur check"""

    status: BlurStatus
    variance: float
    threshold: float

    @property
    def is_rejected(self) -> bool:
        return self.status is BlurStatus.REJECTED


class OpenCVEdgeDetector:
    """Laplacian variance computed with OpenCV"""

    def __init__(self, kernel_size: int = LAPLACIAN_KERNEL_SIZE):
        self.kernel_size = kernel_size

    def load_grayscale(self, image_path: str) -> np.ndarray:
        """
        Read an image as single channel, keeping its bit depth

        Raises:
            DecodeFailed: if OpenCV cannot read the file
        """
        try:
            img = cv2.imread(image_path, cv2.IMREAD_ANYDEPTH)
        except cv2.error as e:
            raise DecodeFailed(
                f"Error reading image for blur {image_path}: {e}", path=image_path
            ) from e

        if img is None or img.size == 0:
            raise DecodeFailed(
                f"Error reading image for blur {image_path}", path=image_path
            )
        return img

    def laplacian_variance(self, img: np.ndarray) -> float:
        """Squared standard deviation of the Laplacian response"""
        # ddepth=-1 keeps the source depth, so 8-bit output saturates
        laplacian = cv2.Laplacian(
            img,
            -1,
            ksize=self.kernel_size,
            scale=1,
            delta=0,
            borderType=cv2.BORDER_DEFAULT,
        )
        _, stddev = cv2.meanStdDev(laplacian)
        deviation = float(stddev[0][0])
        return deviation * deviation

    def variance_for_path(self, image_path: str) -> float:
        return self.laplacian_variance(self.load_grayscale(image_path))


class BlurDetector:
    """
    Classifies source images as sharp enough to tile or too blurry
    """

    def __init__(
        self,
        threshold: float = DEFAULT_BLUR_THRESHOLD,
        edge_detector: Optional[OpenCVEdgeDetector] = None,
    ):
        """
        Initialize the blur detector

        Args:
            threshold: Minimum Laplacian variance for an image to be accepted
            edge_detector: Source of the Laplacian variance (OpenCV by default)
        """
        self.threshold = threshold
        self.edge_detector = edge_detector or OpenCVEdgeDetector()

    def classify_variance(self, variance: float) -> BlurResult:
        if variance < self.threshold:
            status = BlurStatus.REJECTED
        else:
            status = BlurStatus.ACCEPTED
        return BlurResult(status=status, variance=variance, threshold=self.threshold)

    def classify(self, image_path: str) -> BlurResult:
        """
        Decode an image and classify its sharpness

        Args:
            image_path: Path to the image file

        Returns:
            BlurResult with the variance and the accept/reject decision

        Raises:
            DecodeFailed: if the image cannot be read
        """
        variance = self.edge_detector.variance_for_path(image_path)
        result = self.classify_variance(variance)
        logger.debug(
            f"Blur check {image_path}: variance={variance:.1f} "
            f"threshold={self.threshold} -> {result.status.value}"
        )
        return result
