"""
Image codec used by the pipeline workers

Everything that touches pixels (decode, resize, crop, encode) goes through an
ImageCodec, so the pipeline can be exercised with a fake codec that fails on
demand. PillowCodec is the real implementation.
"""

import logging
from pathlib import Path
from typing import Optional, Tuple
from PIL import Image

from .errors import CropFailed, DecodeFailed, WriteFailed
from .grid_planner import TileSpec

# Set up logging
logger = logging.getLogger(__name__)

# Pillow format names for extensions it cannot infer on its own
EXTENSION_FORMATS = {
    ".jpg": "JPEG",
    ".jpeg": "JPEG",
    ".png": "PNG",
    ".webp": "WEBP",
    ".bmp": "BMP",
    ".tif": "TIFF",
    ".tiff": "TIFF",
    ".gif": "GIF",
}


class ImageCodec:
    """Interface for the pixel operations the pipeline needs"""

    def decode(self, path: str) -> Image.Image:
        raise NotImplementedError

    def size(self, image: Image.Image) -> Tuple[int, int]:
        raise NotImplementedError

    def resize(self, image: Image.Image, width: int, height: int) -> Image.Image:
        raise NotImplementedError

    def crop(self, image: Image.Image, tile: TileSpec) -> Image.Image:
        raise NotImplementedError

    def encode(self, image: Image.Image, path: Path, format_name: str) -> None:
        raise NotImplementedError

    def format_of(self, image: Image.Image, path: str) -> str:
        raise NotImplementedError


class PillowCodec(ImageCodec):
    """ImageCodec backed by Pillow"""

    def __init__(self, resample: Image.Resampling = Image.Resampling.LANCZOS):
        self.resample = resample

    def decode(self, path: str) -> Image.Image:
        """
        Fully decode an image file into memory

        Raises:
            DecodeFailed: if the file is missing, unreadable or not an image
        """
        try:
            with Image.open(path) as img:
                img.load()
                # load() keeps the format on the opened image only
                source_format = img.format
                decoded = img.copy()
        except (OSError, ValueError, Image.DecompressionBombError) as e:
            raise DecodeFailed(f"Can't open image {path}: {e}", path=path) from e

        decoded.format = source_format
        width, height = decoded.size
        if width <= 0 or height <= 0:
            raise DecodeFailed(f"Image {path} has no pixels", path=path)
        return decoded

    def size(self, image: Image.Image) -> Tuple[int, int]:
        return image.size

    def resize(self, image: Image.Image, width: int, height: int) -> Image.Image:
        source_format = image.format
        resized = image.resize((width, height), self.resample)
        resized.format = source_format
        return resized

    def crop(self, image: Image.Image, tile: TileSpec) -> Image.Image:
        """
        Extract the tile region

        Raises:
            CropFailed: if the region is not inside the image
        """
        width, height = image.size
        if not tile.fits(width, height):
            raise CropFailed(
                f"Tile {tile.index} at ({tile.left},{tile.top}) size "
                f"{tile.width}x{tile.height} is outside {width}x{height} image"
            )
        try:
            return image.crop((tile.left, tile.top, tile.right, tile.bottom))
        except (OSError, ValueError) as e:
            raise CropFailed(f"Can't crop tile {tile.index}: {e}") from e

    def encode(self, image: Image.Image, path: Path, format_name: str) -> None:
        """
        Encode and write the image, replacing any existing file

        Raises:
            WriteFailed: on encoder or filesystem errors
        """
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            prepared = prepare_image_for_format(image, format_name)
            prepared.save(path, format=format_name)
        except (OSError, ValueError, KeyError) as e:
            raise WriteFailed(f"Can't save image {path}: {e}", path=str(path)) from e

    def format_of(self, image: Image.Image, path: str) -> str:
        return resolve_format(image.format, path)


def resolve_format(image_format: Optional[str], path: str) -> str:
    """Pick the output format: the decoded format first, then the extension"""
    if image_format:
        return image_format.upper()
    return EXTENSION_FORMATS.get(Path(path).suffix.lower(), "PNG")


def prepare_image_for_format(image: Image.Image, format_name: str) -> Image.Image:
    """Prepare image for saving in the specified format"""
    format_name = format_name.upper()

    # JPEG has no alpha channel; flatten onto white
    if format_name in ("JPEG", "JPG") and image.mode in ("RGBA", "LA", "P"):
        rgba = image.convert("RGBA")
        background = Image.new("RGB", rgba.size, (255, 255, 255))
        background.paste(rgba, mask=rgba.split()[-1])
        return background

    return image
