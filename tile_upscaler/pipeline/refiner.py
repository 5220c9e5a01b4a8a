"""
Multi-Pass Refiner

Re-submits already enhanced tiles through the enhancement capability at
scale 1 for extra detail passes. Tile geometry never changes here; the merger
runs once, on the output of the last pass.
"""

from typing import List

from tile_upscaler.core.exceptions import EnhancementFailedError
from tile_upscaler.core.logging import get_logger, with_logging
from tile_upscaler.engines.enhancement.base import EnhancementCapability
from tile_upscaler.pipeline.models import EnhancedTile
from tile_upscaler.pipeline.scheduler import DEFAULT_CONCURRENCY, enhance_all

logger = get_logger(__name__)


def pass_prompt(prompt: str, pass_number: int) -> str:
    return (
        f"{prompt}. Pass {pass_number}: Refine details further, "
        "enhance micro-textures, increase clarity."
    )


@with_logging("refine")
def refine(
    enhanced_tiles: List[EnhancedTile],
    pass_count: int,
    prompt: str,
    capability: EnhancementCapability,
    concurrency_limit: int = DEFAULT_CONCURRENCY
) -> List[EnhancedTile]:
    """Run passes ``2..pass_count`` over the enhanced tiles.

    Returns:
        New EnhancedTile objects, same order and geometry as the input

    Raises:
        EnhancementFailedError: a pass failed, or changed a tile's size
    """
    tiles = enhanced_tiles
    for pass_number in range(2, pass_count + 1):
        logger.info("refine_pass_started", pass_number=pass_number, pass_count=pass_count)

        refined = enhance_all(
            tiles,
            capability,
            concurrency_limit=concurrency_limit,
            prompt=pass_prompt(prompt, pass_number),
            upscale_factor=1,
            source=lambda t: t.enhanced_pixels
        )

        for index, (before, after) in enumerate(zip(tiles, refined)):
            if after.enhanced_pixels.shape[:2] != before.enhanced_pixels.shape[:2]:
                raise EnhancementFailedError(
                    f"Refinement pass {pass_number} resized tile {index} "
                    f"from {before.enhanced_pixels.shape[:2]} to {after.enhanced_pixels.shape[:2]}",
                    tile_index=index,
                    stage="refine"
                )

        tiles = refined

    return tiles
