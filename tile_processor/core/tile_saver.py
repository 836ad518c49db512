"""
Tile Saver for writing planned tiles to the destination tree

Output layout mirrors the source tree. A source file
`<source>/a/b/photo.jpg` produces `<dest>/a/b/photo-0.jpg`,
`<dest>/a/b/photo-1.jpg`, ... Tiles are encoded in the source format and
overwrite whatever is already at that path.
"""

import logging
import os
from pathlib import Path
from typing import List, Optional
from dataclasses import dataclass
from PIL import Image

from .errors import CropFailed, WriteFailed
from .grid_planner import TileSpec
from .image_codec import ImageCodec, PillowCodec
from .metrics import MetricsSink

# Set up logging
logger = logging.getLogger(__name__)


@dataclass
class SavedTileInfo:
    """Information about a saved tile"""

    tile: TileSpec
    filepath: str


def tile_output_path(
    source_path: str, source_root: str, dest_root: str, index: int
) -> Path:
    """
    Deterministic output path of tile `index` for a source file

    Args:
        source_path: Path of the source image
        source_root: Root of the walked source tree
        dest_root: Root of the destination tree
        index: Tile index within the image

    Returns:
        dest_root / relative path without extension + "-<index>" + extension
    """
    relative = os.path.relpath(source_path, source_root)
    stem, ext = os.path.splitext(relative)
    return Path(dest_root) / f"{stem}-{index}{ext}"


class TileSaver:
    """
    Crops tiles out of a decoded image and writes each one to disk
    """

    def __init__(
        self,
        source_root: str,
        dest_root: str,
        metrics: MetricsSink,
        codec: Optional[ImageCodec] = None,
    ):
        self.source_root = source_root
        self.dest_root = dest_root
        self.metrics = metrics
        self.codec = codec or PillowCodec()

    def save_tile(
        self, source_image: Image.Image, tile: TileSpec, source_path: str
    ) -> SavedTileInfo:
        """
        Extract one tile and write it

        Args:
            source_image: Decoded (and possibly resized) source image
            tile: Region to extract
            source_path: Path of the source file, used for naming and format

        Returns:
            SavedTileInfo with the written path

        Raises:
            CropFailed: if the region is outside the image
            WriteFailed: if encoding or writing fails
        """
        width, height = self.codec.size(source_image)
        if not tile.fits(width, height):
            raise CropFailed(
                f"Tile {tile.index} ({tile.left},{tile.top},{tile.width}x{tile.height}) "
                f"out of bounds for {width}x{height} image {source_path}",
                path=source_path,
            )

        filepath = tile_output_path(
            source_path, self.source_root, self.dest_root, tile.index
        )
        format_name = self.codec.format_of(source_image, source_path)

        crop = self.codec.crop(source_image, tile)
        self.codec.encode(crop, filepath, format_name)
        self.metrics.tile_written()

        logger.debug(
            f"Saved tile {tile.index} at ({tile.left},{tile.top}) to {filepath}"
        )
        return SavedTileInfo(tile=tile, filepath=str(filepath))

    def save_tiles(
        self, source_image: Image.Image, tiles: List[TileSpec], source_path: str
    ) -> List[SavedTileInfo]:
        """
        Write every tile in order, stopping at the first failure

        Raises:
            CropFailed, WriteFailed: from the failing tile; earlier tiles stay on disk
        """
        saved_tiles = []
        for tile in tiles:
            try:
                saved_tiles.append(self.save_tile(source_image, tile, source_path))
            except (CropFailed, WriteFailed) as e:
                if e.path is None:
                    e.path = source_path
                logger.debug(
                    f"Aborting {source_path} after {len(saved_tiles)}/{len(tiles)} tiles"
                )
                raise
        return saved_tiles
