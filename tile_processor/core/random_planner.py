"""
Random Tile Planner for validation tiles

Validation tiles are drawn at uniformly random positions, independently per
tile, so they may overlap or coincide. The random source is always passed in
by the caller; seeding happens once, where the pipeline is assembled.
"""

import logging
import random
import time
from typing import List, Optional

from .grid_planner import TileSpec, check_tile_fits

# Set up logging
logger = logging.getLogger(__name__)


def make_random_source(seed: Optional[int] = None) -> random.Random:
    """
    Create the random source used for validation tiles

    Args:
        seed: Fixed seed for reproducible runs; None derives one from the clock

    Returns:
        A dedicated random.Random instance
    """
    if seed is None:
        seed = time.time_ns()
        logger.debug(f"Using time-derived seed {seed} for validation tiles")
    return random.Random(seed)


def plan_random_tiles(
    image_width: int,
    image_height: int,
    tile_width: int,
    tile_height: int,
    count: int,
    rng: random.Random,
) -> List[TileSpec]:
    """
    Plan `count` randomly positioned tiles

    Args:
        image_width: Width of the (already resized) image in pixels
        image_height: Height of the (already resized) image in pixels
        tile_width: Tile width in pixels
        tile_height: Tile height in pixels
        count: Number of tiles to draw
        rng: Random source, shared by the caller across images

    Returns:
        TileSpec list, indexed in draw order

    Raises:
        TooSmall: if the image is smaller than one tile
    """
    check_tile_fits(image_width, image_height, tile_width, tile_height)

    tiles = []
    for i in range(max(0, count)):
        # randint is inclusive on both ends
        left = rng.randint(0, image_width - tile_width)
        top = rng.randint(0, image_height - tile_height)
        tiles.append(
            TileSpec(index=i, top=top, left=left, width=tile_width, height=tile_height)
        )

    return tiles
