"""
Post-Processing Stage

Uniform cosmetic passes over the merged canvas, always in this order:

1. anti-block smoothing (light Gaussian blur)
2. median denoise
3. gentle unsharp-mask sharpening
4. saturation trim

Each pass works on the whole image and ignores tile boundaries. Only the
colour channels are touched; alpha passes through unchanged.
"""

import math

import cv2
import numpy as np

from tile_upscaler.core.logging import get_logger
from tile_upscaler.pipeline.models import PostProcessOptions

logger = get_logger(__name__)

ANTI_BLOCK_SIGMA = 0.5

# |detail| below this (in 0-255 units) is treated as a flat area when sharpening
SHARPEN_FLAT_THRESHOLD = 2.0


def _split_alpha(image: np.ndarray):
    if image.ndim == 3 and image.shape[2] == 4:
        return image[..., :3], image[..., 3:]
    return image, None


def _join_alpha(rgb: np.ndarray, alpha) -> np.ndarray:
    if alpha is None:
        return rgb
    return np.concatenate([rgb, alpha], axis=2)


def gaussian_blur(rgb: np.ndarray, sigma: float) -> np.ndarray:
    return cv2.GaussianBlur(rgb, (0, 0), sigmaX=sigma, sigmaY=sigma)


def median_kernel_size(denoise_amount: float) -> int:
    """Odd median kernel between 3 and 5, growing with the denoise amount."""
    size = max(3, min(5, math.ceil(denoise_amount / 25) + 2))
    return size + 1 if size % 2 == 0 else size


def sharpen_params(amount: float):
    """(sigma, flat gain, edge gain) for a 0..1 sharpen amount."""
    amount = min(1.5, amount)
    sigma = max(0.3, min(1.0, 0.3 + amount * 0.3))
    flat_gain = max(0.0, min(1.5, amount * 0.8))
    edge_gain = max(0.0, min(0.5, amount * 0.3))
    return sigma, flat_gain, edge_gain


def unsharp_mask(rgb: np.ndarray, sigma: float, flat_gain: float, edge_gain: float) -> np.ndarray:
    """Sharpen with separate gains for flat areas and edges.

    Edges get the smaller gain so block edges left over from merging do not
    grow halos.
    """
    source = rgb.astype(np.float32)
    blurred = cv2.GaussianBlur(source, (0, 0), sigmaX=sigma, sigmaY=sigma)
    detail = source - blurred
    gain = np.where(np.abs(detail) < SHARPEN_FLAT_THRESHOLD, flat_gain, edge_gain).astype(np.float32)
    sharpened = source + detail * gain
    return np.clip(np.floor(sharpened + 0.5), 0, 255).astype(np.uint8)


def adjust_saturation(rgb: np.ndarray, factor: float) -> np.ndarray:
    if factor == 1.0:
        return rgb
    hsv = cv2.cvtColor(rgb.astype(np.float32) / 255.0, cv2.COLOR_RGB2HSV)
    hsv[..., 1] = np.clip(hsv[..., 1] * factor, 0.0, 1.0)
    out = cv2.cvtColor(hsv, cv2.COLOR_HSV2RGB) * 255.0
    return np.clip(np.floor(out + 0.5), 0, 255).astype(np.uint8)


def saturation_factor(contrast_amount: float) -> float:
    """Saturation multiplier for a 0..2 contrast amount; only boosts above 1."""
    if contrast_amount <= 1:
        return 1.0
    return min(1.1, 1 + (contrast_amount - 1) * 0.05)


def post_process(image: np.ndarray, options: PostProcessOptions = None) -> np.ndarray:
    """Apply the enabled post-processing passes and return a new image."""
    options = options or PostProcessOptions()
    rgb, alpha = _split_alpha(np.ascontiguousarray(image, dtype=np.uint8))
    rgb = np.ascontiguousarray(rgb)
    applied = []

    if options.anti_block:
        rgb = gaussian_blur(rgb, ANTI_BLOCK_SIGMA)
        applied.append("anti_block")

    if options.denoise and options.denoise_amount > 0:
        rgb = cv2.medianBlur(np.ascontiguousarray(rgb), median_kernel_size(options.denoise_amount))
        applied.append("denoise")

    if options.sharpen and options.sharpen_amount > 0:
        rgb = unsharp_mask(rgb, *sharpen_params(options.sharpen_amount))
        applied.append("sharpen")

    if options.enhance_contrast:
        factor = saturation_factor(options.contrast_amount)
        if factor != 1.0:
            rgb = adjust_saturation(rgb, factor)
            applied.append("contrast")

    logger.debug("post_process_applied", passes=applied)
    return _join_alpha(rgb, alpha)


def options_from_quality(sharpness: float, denoise: float, contrast: float) -> PostProcessOptions:
    """Map the 0..100 request knobs onto post-processing options.

    Gentle on purpose: sharpening kicks in above 10, denoise above 20, and the
    contrast pass only when the knob is notably off its 50 midpoint.
    """
    sharpness = max(0.0, min(100.0, sharpness))
    denoise = max(0.0, min(100.0, denoise))
    contrast = max(0.0, min(100.0, contrast))

    return PostProcessOptions(
        anti_block=True,
        sharpen=sharpness > 10,
        sharpen_amount=min(1.0, sharpness / 100),
        denoise=denoise > 20,
        denoise_amount=denoise,
        enhance_contrast=contrast > 55 or contrast < 45,
        contrast_amount=contrast / 50,
    )
