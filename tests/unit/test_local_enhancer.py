import numpy as np
import pytest

from tile_upscaler.engines.enhancement.local import (
    DEFAULT_SHARPEN,
    LocalEnhancer,
    sharpen_for_context,
)
from tile_upscaler.pipeline.models import TileContext


def _context(*textures):
    return TileContext(position="center", image_description="test", textures=list(textures), subjects=[])


@pytest.mark.parametrize("width,height,scale,expected", [
    (30, 20, 2, (40, 60)),
    (30, 20, 1, (20, 30)),
    (5, 5, 1.5, (8, 8)),
])
def test_output_size_follows_upscale_factor(make_image, width, height, scale, expected):
    result = LocalEnhancer().enhance(make_image(width, height), "prompt", scale)

    assert result.shape == expected + (4,)
    assert result.dtype == np.uint8


def test_opaque_alpha_stays_opaque(make_image):
    result = LocalEnhancer().enhance(make_image(24, 24), "", 2, _context("skin"))

    np.testing.assert_array_equal(result[..., 3], 255)


def test_rgb_input_is_accepted(make_image):
    rgb = make_image(10, 10)[..., :3]

    assert LocalEnhancer().enhance(rgb, "", 2).shape == (20, 20, 4)


def test_local_enhancer_is_not_remote():
    assert LocalEnhancer.is_remote is False


@pytest.mark.parametrize("textures,expected", [
    (("skin",), (0.4, 0.6, 0.2)),
    (("Face",), (0.4, 0.6, 0.2)),
    (("animal fur",), (0.6, 1.0, 0.4)),
    (("textile",), (0.5, 0.9, 0.35)),
    (("glass",), (0.7, 1.2, 0.5)),
    (("sky",), DEFAULT_SHARPEN),
    ((), DEFAULT_SHARPEN),
])
def test_sharpening_depends_on_texture(textures, expected):
    assert sharpen_for_context(_context(*textures)) == expected


def test_sharpening_without_context():
    assert sharpen_for_context(None) == DEFAULT_SHARPEN
