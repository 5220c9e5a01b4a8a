"""
Image encode/decode helpers.

The pipeline works on RGBA uint8 arrays; these helpers convert to and from
encoded image bytes with Pillow.
"""

import io
import base64

import numpy as np
from PIL import Image, UnidentifiedImageError

from tile_upscaler.core.exceptions import InvalidImageError
from tile_upscaler.pipeline.models import CHANNELS


def decode_image(image_bytes: bytes) -> np.ndarray:
    """Decode image bytes into an (H, W, 4) uint8 RGBA array."""
    if not image_bytes:
        raise InvalidImageError("Image file is empty")
    try:
        with Image.open(io.BytesIO(image_bytes)) as image:
            rgba = image.convert("RGBA")
            pixels = np.asarray(rgba, dtype=np.uint8).copy()
    except (UnidentifiedImageError, OSError, ValueError) as e:
        raise InvalidImageError(f"Unable to read image: {e}")

    if pixels.ndim != 3 or pixels.shape[0] == 0 or pixels.shape[1] == 0:
        raise InvalidImageError("Unable to determine image dimensions")
    return pixels


def decode_base64_image(image_base64: str) -> np.ndarray:
    # Accept data URLs as produced by browsers
    if image_base64.startswith("data:") and "," in image_base64:
        image_base64 = image_base64.split(",", 1)[1]
    try:
        image_bytes = base64.b64decode(image_base64, validate=True)
    except (ValueError, TypeError) as e:
        raise InvalidImageError(f"Image is not valid base64: {e}")
    return decode_image(image_bytes)


def encode_png(pixels: np.ndarray) -> bytes:
    """Encode an RGBA (or RGB) uint8 array as PNG bytes."""
    buffer = io.BytesIO()
    Image.fromarray(np.ascontiguousarray(pixels, dtype=np.uint8)).save(buffer, format="PNG")
    return buffer.getvalue()


def encode_jpeg(pixels: np.ndarray, quality: int = 80) -> bytes:
    """Encode as JPEG, dropping alpha."""
    buffer = io.BytesIO()
    Image.fromarray(np.ascontiguousarray(pixels[..., :3], dtype=np.uint8)).save(
        buffer, format="JPEG", quality=quality
    )
    return buffer.getvalue()


def ensure_rgba(pixels: np.ndarray) -> np.ndarray:
    """Coerce grayscale/RGB/RGBA arrays into RGBA uint8."""
    pixels = np.asarray(pixels)
    if pixels.ndim == 2:
        pixels = pixels[..., np.newaxis]
    if pixels.ndim != 3:
        raise ValueError(f"Expected an image array, got shape {pixels.shape}")

    channels = pixels.shape[2]
    if channels == CHANNELS:
        rgba = pixels
    elif channels == 3:
        alpha = np.full(pixels.shape[:2] + (1,), 255, dtype=pixels.dtype)
        rgba = np.concatenate([pixels, alpha], axis=2)
    elif channels == 1:
        alpha = np.full(pixels.shape[:2] + (1,), 255, dtype=pixels.dtype)
        rgba = np.concatenate([pixels, pixels, pixels, alpha], axis=2)
    else:
        raise ValueError(f"Unsupported channel count: {channels}")
    return np.clip(rgba, 0, 255).astype(np.uint8, copy=False)
