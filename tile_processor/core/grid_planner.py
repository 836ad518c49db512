"""
Grid Planner for partitioning an image into a row-major grid of tiles

The planner only does arithmetic on image dimensions. Decoding and cropping
are left to the codec and the tile saver.

Remainder anchoring:
    When the image is not an exact multiple of the tile size, the leftover
    pixels on an axis (the remainder) are handled in one of two ways:

    - remainder < tile/2: the remainder is split into a small leading inset
      and the tiles are packed contiguously after it.
    - otherwise: the first tile is pinned to 0 and the last tile is pinned
      flush with the far edge, interior tiles are spaced by the tile size.
      If the remainder is strictly larger than half a tile an extra tile is
      inserted on that axis, so neighbours overlap.

    With anchoring disabled the remainders are treated as zero.
"""

import logging
from typing import List
from dataclasses import dataclass

from .errors import TooSmall

# Set up logging
logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TileSpec:
    """Rectangle of a single tile inside an image"""

    index: int  # Emission order, used in the output filename
    top: int
    left: int
    width: int
    height: int

    @property
    def bottom(self) -> int:
        return self.top + self.height

    @property
    def right(self) -> int:
        return self.left + self.width

    def fits(self, image_width: int, image_height: int) -> bool:
        """Check the rectangle lies entirely inside an image of the given size"""
        return (
            self.left >= 0
            and self.top >= 0
            and self.width > 0
            and self.height > 0
            and self.right <= image_width
            and self.bottom <= image_height
        )


@dataclass(frozen=True)
class GridPlan:
    """Tiling configuration shared by every image of a run"""

    tile_width: int
    tile_height: int
    resize_divisor: int = 1
    allow_remainder_anchoring: bool = False

    def __post_init__(self):
        if self.tile_width <= 0 or self.tile_height <= 0:
            raise ValueError(
                f"Tile size must be positive, got {self.tile_width}x{self.tile_height}"
            )
        if self.resize_divisor < 1:
            raise ValueError(
                f"Resize divisor must be at least 1, got {self.resize_divisor}"
            )


@dataclass(frozen=True)
class GridLayout:
    """Per-image quantities derived from a GridPlan"""

    image_width: int
    image_height: int
    need_cols: int
    need_rows: int
    mod_x: int
    mod_y: int

    @property
    def tile_count(self) -> int:
        return self.need_cols * self.need_rows


def check_tile_fits(
    image_width: int, image_height: int, tile_width: int, tile_height: int
) -> None:
    """Raise TooSmall if a single tile does not fit in the image"""
    if image_width < tile_width or image_height < tile_height:
        raise TooSmall(image_width, image_height, tile_width, tile_height)


def _need_for_axis(extent: int, tile: int, mod: int) -> int:
    need = extent // tile
    if mod > tile // 2:
        need += 1
    return need


def axis_position(index: int, need: int, mod: int, tile: int, extent: int) -> int:
    """
    Position of the tile at `index` along one axis

    Args:
        index: Tile index on this axis, 0 <= index < need
        need: Number of tiles on this axis
        mod: Remainder of extent by tile (0 when anchoring is disabled)
        tile: Tile size on this axis
        extent: Image size on this axis

    Returns:
        Offset of the tile's leading edge in pixels
    """
    # No remainder always packs from the origin, even for 1px tiles
    if mod == 0 or mod < tile // 2:
        return index * tile + mod // 2

    pos = (index - 1) * tile + mod // 2
    if index == 0:
        pos = 0
    # A single tile is both first and last; flush-to-end wins
    if index == need - 1:
        pos = extent - tile
    return pos


def compute_layout(image_width: int, image_height: int, plan: GridPlan) -> GridLayout:
    """
    Derive column/row counts and remainders for one image

    Raises:
        TooSmall: if the image cannot hold a single tile
    """
    check_tile_fits(image_width, image_height, plan.tile_width, plan.tile_height)

    if plan.allow_remainder_anchoring:
        mod_x = image_width % plan.tile_width
        mod_y = image_height % plan.tile_height
    else:
        mod_x = 0
        mod_y = 0

    return GridLayout(
        image_width=image_width,
        image_height=image_height,
        need_cols=_need_for_axis(image_width, plan.tile_width, mod_x),
        need_rows=_need_for_axis(image_height, plan.tile_height, mod_y),
        mod_x=mod_x,
        mod_y=mod_y,
    )


def plan_grid(image_width: int, image_height: int, plan: GridPlan) -> List[TileSpec]:
    """
    Plan the grid tiles for an image of the given size

    Args:
        image_width: Width of the (already resized) image in pixels
        image_height: Height of the (already resized) image in pixels
        plan: Tile size and anchoring policy

    Returns:
        TileSpec list in row-major order with indices 0..n-1

    Raises:
        TooSmall: if the image is smaller than one tile
    """
    layout = compute_layout(image_width, image_height, plan)

    logger.debug(
        f"Planning {layout.need_cols}x{layout.need_rows} tiles for "
        f"{image_width}x{image_height} (mod_x={layout.mod_x}, mod_y={layout.mod_y})"
    )

    tiles = []
    index = 0
    for row in range(layout.need_rows):
        top = axis_position(
            row, layout.need_rows, layout.mod_y, plan.tile_height, image_height
        )
        for col in range(layout.need_cols):
            left = axis_position(
                col, layout.need_cols, layout.mod_x, plan.tile_width, image_width
            )
            tiles.append(
                TileSpec(
                    index=index,
                    top=top,
                    left=left,
                    width=plan.tile_width,
                    height=plan.tile_height,
                )
            )
            index += 1

    return tiles
