import numpy as np
import pytest

from tile_upscaler.core.exceptions import EnhancementFailedError
from tile_upscaler.pipeline.models import EnhancedTile, Tile
from tile_upscaler.pipeline.refiner import pass_prompt, refine


def _enhanced_tiles(count=4):
    tiles = []
    for i in range(count):
        source = np.full((8, 8, 4), i, dtype=np.uint8)
        tile = Tile(x=i * 6, y=0, width=8, height=8, pixels=source)
        tiles.append(EnhancedTile.from_tile(tile, np.full((16, 16, 4), i, dtype=np.uint8)))
    return tiles


def test_pass_prompt_format():
    assert pass_prompt("crisp", 2) == (
        "crisp. Pass 2: Refine details further, enhance micro-textures, increase clarity."
    )


def test_single_pass_is_a_no_op(make_enhancer):
    enhancer = make_enhancer()
    tiles = _enhanced_tiles()

    assert refine(tiles, 1, "crisp", enhancer) is tiles
    assert enhancer.calls == []


def test_extra_passes_resubmit_enhanced_pixels_at_scale_one(make_enhancer):
    enhancer = make_enhancer()
    tiles = _enhanced_tiles()

    refined = refine(tiles, 3, "crisp", enhancer, concurrency_limit=2)

    assert len(enhancer.calls) == 2 * len(tiles)
    assert {call["upscale_factor"] for call in enhancer.calls} == {1}
    assert {call["shape"] for call in enhancer.calls} == {(16, 16, 4)}
    prompts = {call["prompt"] for call in enhancer.calls}
    assert prompts == {pass_prompt("crisp", 2), pass_prompt("crisp", 3)}

    for before, after in zip(tiles, refined):
        assert (after.x, after.y, after.width, after.height) == (before.x, before.y, before.width, before.height)
        assert after.enhanced_pixels.shape == before.enhanced_pixels.shape
        assert after.pixels is before.pixels


def test_pass_that_resizes_tiles_fails(make_enhancer):
    enhancer = make_enhancer(output_size=(20, 20))

    with pytest.raises(EnhancementFailedError) as exc_info:
        refine(_enhanced_tiles(), 2, "crisp", enhancer, concurrency_limit=1)

    assert exc_info.value.details["tile_index"] == 0
