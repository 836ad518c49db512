"""
Error taxonomy for tile processing

Per-file and per-tile errors are absorbed by the pipeline workers and only
show up in logs and counters. WalkError is the one pipeline-level failure.
"""

from typing import Optional


class TileProcessingError(Exception):
    """Base class for every error raised while tiling images"""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path


class DecodeFailed(TileProcessingError):
    """The source image could not be read or decoded"""


class TooSmall(TileProcessingError):
    """The image is smaller than the requested tile in at least one axis"""

    def __init__(
        self,
        image_width: int,
        image_height: int,
        tile_width: int,
        tile_height: int,
        path: Optional[str] = None,
    ):
        super().__init__(
            f"Image {image_width}x{image_height} too small to be tiled "
            f"with {tile_width}x{tile_height} tiles",
            path=path,
        )
        self.image_width = image_width
        self.image_height = image_height
        self.tile_width = tile_width
        self.tile_height = tile_height


class CropFailed(TileProcessingError):
    """A tile region could not be extracted from the decoded image"""


class WriteFailed(TileProcessingError):
    """A tile could not be encoded or written to disk"""


class WalkError(TileProcessingError):
    """The source tree could not be walked; fatal for the whole run"""
