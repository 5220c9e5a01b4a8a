import io
import threading
import time
from typing import AsyncGenerator

import cv2
import numpy as np
import pytest
from httpx import AsyncClient, ASGITransport
from PIL import Image

from tile_upscaler.api.dependencies import get_analyzer, get_enhancer
from tile_upscaler.core.exceptions import circuit_breakers
from tile_upscaler.engines.enhancement.base import EnhancementCapability, target_size
from tile_upscaler.engines.enhancement.local import LocalEnhancer
from tile_upscaler.main import app
from tile_upscaler.pipeline.models import ImageAnalysis


class RecordingEnhancer(EnhancementCapability):
    """Nearest-neighbour enhancer that records every call it receives."""

    name = "recording"

    def __init__(self, delay=0.0, fail_when=None, output_size=None, is_remote=False):
        self.delay = delay
        self.fail_when = fail_when
        self.output_size = output_size
        self.is_remote = is_remote
        self.calls = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._lock = threading.Lock()

    def enhance(self, pixels, prompt, upscale_factor, context=None):
        with self._lock:
            self.calls.append({
                "shape": pixels.shape,
                "prompt": prompt,
                "upscale_factor": upscale_factor,
                "context": context,
                "value": int(pixels[0, 0, 0]),
            })
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)

        try:
            delay = self.delay(pixels) if callable(self.delay) else self.delay
            if delay:
                time.sleep(delay)
            if self.fail_when is not None and self.fail_when(pixels):
                raise RuntimeError("enhancer exploded")

            if self.output_size is not None:
                width, height = self.output_size
            else:
                width, height = target_size(pixels.shape[1], pixels.shape[0], upscale_factor)
            return cv2.resize(pixels, (width, height), interpolation=cv2.INTER_NEAREST)
        finally:
            with self._lock:
                self.in_flight -= 1


class StaticAnalyzer:
    """Analyzer stand-in that always returns the same analysis."""

    def __init__(self, analysis=None):
        self.analysis = analysis or ImageAnalysis()
        self.calls = 0

    async def analyze(self, pixels):
        self.calls += 1
        return self.analysis


def gradient_rgba(width: int, height: int) -> np.ndarray:
    """Smooth RGBA test image with opaque alpha."""
    xs = np.linspace(0, 255, width, dtype=np.float32)
    ys = np.linspace(0, 255, height, dtype=np.float32)
    image = np.zeros((height, width, 4), dtype=np.uint8)
    image[..., 0] = xs[np.newaxis, :].astype(np.uint8)
    image[..., 1] = ys[:, np.newaxis].astype(np.uint8)
    image[..., 2] = ((xs[np.newaxis, :] + ys[:, np.newaxis]) / 2).astype(np.uint8)
    image[..., 3] = 255
    return image


def png_bytes(image: np.ndarray) -> bytes:
    buffer = io.BytesIO()
    Image.fromarray(image).save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def make_enhancer():
    return RecordingEnhancer


@pytest.fixture
def make_analyzer():
    return StaticAnalyzer


@pytest.fixture
def make_image():
    return gradient_rgba


@pytest.fixture
def encode_png_bytes():
    return png_bytes


@pytest.fixture(autouse=True)
def reset_circuit_breakers():
    for breaker in circuit_breakers.values():
        breaker.reset()
    yield
    for breaker in circuit_breakers.values():
        breaker.reset()


@pytest.fixture
async def client() -> AsyncGenerator[AsyncClient, None]:
    app.dependency_overrides[get_enhancer] = LocalEnhancer
    app.dependency_overrides[get_analyzer] = lambda: StaticAnalyzer()

    # Trigger lifespan events (startup/shutdown)
    async with app.router.lifespan_context(app):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            yield ac

    app.dependency_overrides.clear()
