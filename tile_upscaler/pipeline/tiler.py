"""
Tile Decomposer

Splits a source image into a row-major grid of possibly-overlapping tiles.
Tiles start every ``step = tile_size - overlap`` pixels; tiles at the right
and bottom edges are shrunk to fit, never padded, so the grid covers the
image exactly with no out-of-bounds reads.
"""

import math
from typing import List, Tuple

import numpy as np

from tile_upscaler.core.exceptions import InvalidImageError, InvalidParameterError
from tile_upscaler.core.logging import get_logger
from tile_upscaler.pipeline.models import Tile

logger = get_logger(__name__)


def validate_tiling(tile_size, overlap) -> Tuple[int, int]:
    """Check tile geometry and return it as ints.

    Raises:
        InvalidParameterError: non-integral or non-positive tile size, or
            overlap outside ``[0, tile_size)``.
    """
    for name, value in (("tile_size", tile_size), ("overlap", overlap)):
        if isinstance(value, bool) or not isinstance(value, (int, float, np.integer, np.floating)):
            raise InvalidParameterError(f"Invalid {name}: {value!r}", parameter=name)
        if not math.isfinite(value) or int(value) != value:
            raise InvalidParameterError(f"Invalid {name}: {value!r}", parameter=name)

    tile_size = int(tile_size)
    overlap = int(overlap)

    if tile_size <= 0:
        raise InvalidParameterError(
            f"Invalid tile_size: {tile_size} (must be > 0)",
            parameter="tile_size"
        )
    if overlap < 0 or overlap >= tile_size:
        raise InvalidParameterError(
            f"Invalid overlap: {overlap} (must be >= 0 and < tile_size {tile_size})",
            parameter="overlap"
        )
    return tile_size, overlap


def count_tiles(image_width: int, image_height: int, tile_size: int, overlap: int) -> int:
    """Number of tiles ``decompose`` would produce, without cutting any pixels."""
    tile_size, overlap = validate_tiling(tile_size, overlap)
    step = tile_size - overlap
    columns = -(-image_width // step)
    rows = -(-image_height // step)
    return columns * rows


def decompose(
    image: np.ndarray,
    tile_size: int,
    overlap: int
) -> Tuple[List[Tile], int, int]:
    """Cut ``image`` into overlapping tiles.

    Args:
        image: (H, W, C) pixel array
        tile_size: nominal tile edge in pixels, > 0
        overlap: shared border between neighbours, 0 <= overlap < tile_size

    Returns:
        Tuple of (tiles in row-major order, image width, image height)
    """
    tile_size, overlap = validate_tiling(tile_size, overlap)

    if image is None or image.ndim < 2:
        raise InvalidImageError("Unable to determine image dimensions")

    height, width = image.shape[:2]
    if not width or not height:
        raise InvalidImageError("Unable to determine image dimensions")

    step = tile_size - overlap
    tiles: List[Tile] = []

    for y in range(0, height, step):
        for x in range(0, width, step):
            w = min(tile_size, width - x)
            h = min(tile_size, height - y)
            pixels = image[y:y + h, x:x + w].copy()
            tiles.append(Tile(x=x, y=y, width=w, height=h, pixels=pixels))

    logger.debug(
        "tiles_created",
        tile_count=len(tiles),
        image_width=width,
        image_height=height,
        tile_size=tile_size,
        overlap=overlap,
        step=step
    )

    return tiles, width, height


def tile_position(
    tile_x: int,
    tile_y: int,
    tile_width: int,
    tile_height: int,
    image_width: int,
    image_height: int
) -> str:
    """Describe where a tile sits, from its centroid relative to image thirds."""
    center_x = tile_x + tile_width / 2
    center_y = tile_y + tile_height / 2

    if center_x < image_width / 3:
        horizontal = "left"
    elif center_x > image_width * 2 / 3:
        horizontal = "right"
    else:
        horizontal = "center"

    if center_y < image_height / 3:
        vertical = "top"
    elif center_y > image_height * 2 / 3:
        vertical = "bottom"
    else:
        vertical = "middle"

    if horizontal == "center" and vertical == "middle":
        return "center"
    if vertical == "middle":
        return f"{horizontal} side"
    if horizontal == "center":
        return f"{vertical} center"
    return f"{vertical}-{horizontal} corner"
