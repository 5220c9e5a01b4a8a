import random

import numpy as np
import pytest

from tile_upscaler.pipeline.merger import (
    MIN_WEIGHT,
    accumulate_tiles,
    axis_weights,
    feather_sigma,
    gaussian_weight,
    merge_tiles,
    normalize_canvas,
    smoothstep,
    tile_weights,
)
from tile_upscaler.pipeline.models import EnhancedTile
from tile_upscaler.pipeline.tiler import decompose


def _identity_tiles(image, tile_size, overlap):
    tiles, width, height = decompose(image, tile_size, overlap)
    return [EnhancedTile.from_tile(t, t.pixels.copy()) for t in tiles], width, height


def _nearest_tiles(image, tile_size, overlap, scale):
    tiles, width, height = decompose(image, tile_size, overlap)
    enhanced = [
        EnhancedTile.from_tile(t, np.repeat(np.repeat(t.pixels, scale, axis=0), scale, axis=1))
        for t in tiles
    ]
    return enhanced, width, height


def test_smoothstep_endpoints_and_midpoint():
    values = smoothstep(np.array([-1.0, 0.0, 0.5, 1.0, 2.0]))
    np.testing.assert_allclose(values, [0.0, 0.0, 0.5, 1.0, 1.0])


def test_feather_sigma_is_forty_percent_of_band():
    assert feather_sigma(128) == pytest.approx(51.2)


def test_gaussian_weight_flat_without_sigma():
    np.testing.assert_array_equal(gaussian_weight(np.arange(4, dtype=np.float32), 0), np.ones(4))


def test_axis_weights_fade_only_towards_neighbours():
    weights = axis_weights(20, 8, fade_start=True, fade_end=False)

    assert weights[0] == 0.0
    assert np.all(np.diff(weights[:8]) > 0)
    np.testing.assert_array_equal(weights[8:], 1.0)


def test_axis_weights_right_edge_distance():
    weights = axis_weights(20, 8, fade_start=False, fade_end=True)

    assert weights[-1] == 0.0
    assert weights[-9] == 1.0
    np.testing.assert_allclose(weights[-8:], smoothstep(np.arange(7, -1, -1) / 8.0), rtol=1e-6)


def test_lone_tile_keeps_full_weight(make_image):
    tiles, width, height = _identity_tiles(make_image(50, 40), 64, 16)
    weights = tile_weights(tiles[0], 50, 40, width, height, feather=16)

    np.testing.assert_array_equal(weights, 1.0)


def test_weights_are_floored(make_image):
    tiles, width, height = _identity_tiles(make_image(64, 64), 32, 8)
    inner = [t for t in tiles if t.x > 0 and t.y > 0][0]
    weights = tile_weights(inner, inner.width, inner.height, width, height, feather=8)

    assert weights.min() == pytest.approx(MIN_WEIGHT)


def _random_geometries(count, seed):
    rng = random.Random(seed)
    cases = [(1, 1, 1, 0), (1, 9, 4, 3), (37, 1, 8, 0)]
    while len(cases) < count:
        tile_size = rng.randint(1, 48)
        cases.append((rng.randint(1, 120), rng.randint(1, 120), tile_size, rng.randint(0, tile_size - 1)))
    return cases


@pytest.mark.parametrize("width,height,tile_size,overlap", _random_geometries(25, seed=11))
@pytest.mark.parametrize("scale", [1, 2])
def test_round_trip_reproduces_source(width, height, tile_size, overlap, scale):
    rng = np.random.default_rng(width * 1000 + height)
    image = rng.integers(0, 256, size=(height, width, 4), dtype=np.uint8)
    tiles, _, _ = _nearest_tiles(image, tile_size, overlap, scale)

    merged = merge_tiles(tiles, width, height, tile_size, overlap, float(scale))

    expected = np.repeat(np.repeat(image, scale, axis=0), scale, axis=1)
    np.testing.assert_array_equal(merged, expected)


def test_output_canvas_is_scaled_size(make_image):
    tiles, width, height = _nearest_tiles(make_image(512, 512), 256, 64, 2)

    merged = merge_tiles(tiles, width, height, 256, 64, 2.0)

    assert merged.shape == (1024, 1024, 4)
    assert merged.dtype == np.uint8


def test_every_canvas_pixel_has_positive_weight(make_image):
    tiles, width, height = _nearest_tiles(make_image(200, 130), 64, 16, 2)

    acc, weight = accumulate_tiles(tiles, width, height, 16, 2.0)

    assert acc.shape == (260, 400, 4)
    assert weight.shape == (260, 400)
    assert weight.min() > 0


def test_constant_image_merges_without_seams():
    image = np.full((96, 96, 4), 200, dtype=np.uint8)
    tiles, width, height = _nearest_tiles(image, 40, 12, 2)

    merged = merge_tiles(tiles, width, height, 40, 12, 2.0)

    np.testing.assert_array_equal(merged, 200)


def test_merge_is_deterministic(make_image):
    tiles, width, height = _nearest_tiles(make_image(150, 90), 48, 16, 2)

    first = merge_tiles(tiles, width, height, 48, 16, 2.0)
    second = merge_tiles(tiles, width, height, 48, 16, 2.0)

    np.testing.assert_array_equal(first, second)


def test_gaussian_falloff_also_reconstructs_constant_image():
    image = np.full((64, 64, 4), 90, dtype=np.uint8)
    tiles, width, height = _identity_tiles(image, 32, 8)

    merged = merge_tiles(tiles, width, height, 32, 8, 1.0, falloff="gaussian")

    np.testing.assert_array_equal(merged, 90)


def test_uncovered_pixels_stay_zero():
    acc = np.zeros((2, 2, 4), dtype=np.float32)
    weight = np.zeros((2, 2), dtype=np.float32)
    acc[0, 0] = 300.0
    weight[0, 0] = 1.0

    canvas = normalize_canvas(acc, weight)

    assert canvas[0, 0, 0] == 255
    assert canvas[1, 1, 0] == 0


def test_normalize_rounds_half_up():
    acc = np.full((1, 1, 4), 2.5, dtype=np.float32)
    weight = np.ones((1, 1), dtype=np.float32)

    assert normalize_canvas(acc, weight)[0, 0, 0] == 3


def test_tile_at_wrong_scale_raises_value_error(make_image):
    # Tiles left at source size while the canvas is built for scale 2
    tiles, width, height = _identity_tiles(make_image(64, 64), 32, 8)

    with pytest.raises(ValueError, match="expected 64x64"):
        merge_tiles(tiles, width, height, 32, 8, 2.0)


def test_malformed_tile_raises_value_error(make_image):
    tiles, width, height = _identity_tiles(make_image(32, 32), 32, 0)
    tiles[0].enhanced_pixels = tiles[0].enhanced_pixels[..., :3]

    with pytest.raises(ValueError):
        merge_tiles(tiles, width, height, 32, 0, 1.0)


@pytest.mark.parametrize("scale", [0, -1.0, float("nan"), float("inf")])
def test_invalid_scale_raises_value_error(make_image, scale):
    tiles, width, height = _identity_tiles(make_image(32, 32), 32, 0)

    with pytest.raises(ValueError):
        merge_tiles(tiles, width, height, 32, 0, scale)
