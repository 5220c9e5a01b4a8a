"""
Weighted Reconstruction Merger

Re-projects enhanced tiles onto the upscaled canvas. Every tile contributes
``pixel * weight`` to a float accumulator and ``weight`` to a parallel weight
buffer; the canvas is then normalised by the accumulated weight.

The weight of a tile fades to zero towards each side that has a neighbouring
tile, over ``feather = round(overlap * scale)`` output pixels, using the
smoothstep curve ``3t^2 - 2t^3``. Its zero derivative at both ends of the
feather band leaves no visible slope break at the seam. Sides on the true
image boundary keep weight 1.
"""

import math
from typing import Iterable, Tuple

import numpy as np

from tile_upscaler.core.logging import get_logger
from tile_upscaler.pipeline.models import CHANNELS, EnhancedTile

logger = get_logger(__name__)

# Floor for the 2D weight so tile corners never contribute exactly zero
MIN_WEIGHT = 1e-4

# Gaussian falloff width as a fraction of the feather band
SIGMA_FRACTION = 0.4

FALLOFFS = ("smoothstep", "gaussian")


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def smoothstep(t: np.ndarray) -> np.ndarray:
    """Hermite ramp on t clamped to [0, 1]."""
    t = np.clip(t, 0.0, 1.0)
    return t * t * (3.0 - 2.0 * t)


def feather_sigma(feather: int) -> float:
    return feather * SIGMA_FRACTION


def gaussian_weight(distance: np.ndarray, sigma: float) -> np.ndarray:
    """exp(-d^2 / 2 sigma^2); flat 1 for a non-positive sigma."""
    if sigma <= 0:
        return np.ones_like(distance, dtype=np.float32)
    normalized = distance / sigma
    return np.exp(-0.5 * normalized * normalized)


def _ramp(distance: np.ndarray, feather: int, falloff: str) -> np.ndarray:
    if falloff == "gaussian":
        # 1 at the inner edge of the band, decaying towards the tile border
        return gaussian_weight(feather - distance, feather_sigma(feather))
    return smoothstep(distance / feather)


def axis_weights(
    length: int,
    feather: int,
    fade_start: bool,
    fade_end: bool,
    falloff: str = "smoothstep"
) -> np.ndarray:
    """1D blend weights along one axis of a tile.

    Args:
        length: tile length in output pixels
        feather: band width in output pixels
        fade_start: a neighbour exists before index 0 (left/top)
        fade_end: a neighbour exists after the last index (right/bottom)
    """
    weights = np.ones(length, dtype=np.float32)
    if feather <= 0 or length == 0:
        return weights

    index = np.arange(length, dtype=np.float32)

    if fade_start:
        band = index < feather
        weights[band] = np.minimum(weights[band], _ramp(index[band], feather, falloff))

    if fade_end:
        band = index >= length - feather
        distance = (length - 1) - index[band]
        weights[band] = np.minimum(weights[band], _ramp(distance, feather, falloff))

    return weights


def tile_weights(
    tile: EnhancedTile,
    tile_width: int,
    tile_height: int,
    original_width: int,
    original_height: int,
    feather: int,
    falloff: str = "smoothstep"
) -> np.ndarray:
    """2D blend weight for one enhanced tile, floored at MIN_WEIGHT."""
    has_left = tile.x > 0
    has_right = tile.x + tile.width < original_width
    has_top = tile.y > 0
    has_bottom = tile.y + tile.height < original_height

    wx = axis_weights(tile_width, feather, has_left, has_right, falloff)
    wy = axis_weights(tile_height, feather, has_top, has_bottom, falloff)

    return np.maximum(np.float32(MIN_WEIGHT), np.outer(wy, wx).astype(np.float32))


def _check_tile(tile: EnhancedTile, scale: float) -> np.ndarray:
    pixels = tile.enhanced_pixels
    if not isinstance(pixels, np.ndarray) or pixels.ndim != 3 or pixels.shape[2] != CHANNELS:
        shape = getattr(pixels, "shape", None)
        raise ValueError(
            f"Enhanced tile at ({tile.x}, {tile.y}) must be an (h, w, {CHANNELS}) array, got {shape}"
        )
    expected = (max(1, round_half_up(tile.height * scale)), max(1, round_half_up(tile.width * scale)))
    if pixels.shape[:2] != expected:
        raise ValueError(
            f"Enhanced tile at ({tile.x}, {tile.y}) is {pixels.shape[1]}x{pixels.shape[0]}, "
            f"expected {expected[1]}x{expected[0]} for a {tile.width}x{tile.height} tile at scale {scale}"
        )
    return pixels


def accumulate_tiles(
    tiles: Iterable[EnhancedTile],
    original_width: int,
    original_height: int,
    overlap: int,
    scale: float,
    falloff: str = "smoothstep"
) -> Tuple[np.ndarray, np.ndarray]:
    """Accumulate weighted tiles into a fresh canvas.

    Returns:
        Tuple of (accumulator (H, W, 4) float32, weight buffer (H, W) float32)
    """
    if not math.isfinite(scale) or scale <= 0:
        raise ValueError(f"scale must be a positive finite number, got {scale}")
    if falloff not in FALLOFFS:
        raise ValueError(f"Unknown falloff {falloff!r}, expected one of {FALLOFFS}")

    final_width = round_half_up(original_width * scale)
    final_height = round_half_up(original_height * scale)
    feather = round_half_up(overlap * scale)

    acc = np.zeros((final_height, final_width, CHANNELS), dtype=np.float32)
    acc_weight = np.zeros((final_height, final_width), dtype=np.float32)

    for tile in tiles:
        pixels = _check_tile(tile, scale)
        tile_height, tile_width = pixels.shape[:2]

        target_x = round_half_up(tile.x * scale)
        target_y = round_half_up(tile.y * scale)

        weights = tile_weights(
            tile, tile_width, tile_height,
            original_width, original_height,
            feather, falloff
        )

        # Clip the tile's footprint to the canvas
        x0 = max(target_x, 0)
        y0 = max(target_y, 0)
        x1 = min(target_x + tile_width, final_width)
        y1 = min(target_y + tile_height, final_height)
        if x1 <= x0 or y1 <= y0:
            continue

        sx0, sy0 = x0 - target_x, y0 - target_y
        sx1, sy1 = sx0 + (x1 - x0), sy0 + (y1 - y0)

        w = weights[sy0:sy1, sx0:sx1]
        src = pixels[sy0:sy1, sx0:sx1].astype(np.float32)

        acc[y0:y1, x0:x1] += src * w[..., np.newaxis]
        acc_weight[y0:y1, x0:x1] += w

    return acc, acc_weight


def normalize_canvas(acc: np.ndarray, acc_weight: np.ndarray) -> np.ndarray:
    """Divide by accumulated weight and round to uint8.

    A pixel no tile covered has weight 0; its divisor defaults to 1 so it
    comes out as the (zero) accumulator value instead of NaN.
    """
    divisor = np.where(acc_weight > 0, acc_weight, np.float32(1.0))
    values = np.floor(acc / divisor[..., np.newaxis] + 0.5)
    return np.clip(values, 0, 255).astype(np.uint8)


def merge_tiles(
    tiles: Iterable[EnhancedTile],
    original_width: int,
    original_height: int,
    tile_size: int,
    overlap: int,
    scale: float,
    falloff: str = "smoothstep"
) -> np.ndarray:
    """Reassemble enhanced tiles into one (round(H·s), round(W·s), 4) image.

    Deterministic for a fixed set of tiles and parameters. ``tile_size`` is
    accepted for symmetry with the decomposer; each tile's own size is used.
    """
    tiles = list(tiles)
    acc, acc_weight = accumulate_tiles(
        tiles, original_width, original_height, overlap, scale, falloff
    )
    output = normalize_canvas(acc, acc_weight)

    uncovered = int(np.count_nonzero(acc_weight == 0))
    if uncovered:
        logger.warning("merge_uncovered_pixels", count=uncovered)

    logger.debug(
        "merge_completed",
        tile_count=len(tiles),
        output_width=output.shape[1],
        output_height=output.shape[0],
        tile_size=tile_size,
        feather=round_half_up(overlap * scale)
    )
    return output
