"""
Enhancement capability interface.

An enhancement capability takes an RGBA pixel buffer and returns a new buffer
scaled by ``upscale_factor``. Whether the work happens locally or on a remote
model is up to the implementation; the pipeline only relies on the output
size and on failures being raised.
"""

import math
from abc import ABC, abstractmethod
from typing import Optional

import numpy as np

from tile_upscaler.pipeline.models import TileContext


class EnhancementCapability(ABC):
    """Pluggable tile/image enhancer."""

    name: str = "enhancer"

    # Reported to clients as ``ai_enhanced``
    is_remote: bool = False

    @abstractmethod
    def enhance(
        self,
        pixels: np.ndarray,
        prompt: str,
        upscale_factor: float,
        context: Optional[TileContext] = None
    ) -> np.ndarray:
        """Return the enhanced (H·s, W·s, 4) uint8 buffer."""


def target_size(width: int, height: int, upscale_factor: float) -> tuple:
    """Output (width, height) for a buffer enhanced at ``upscale_factor``."""
    scale = upscale_factor if upscale_factor > 0 else 1
    return (
        max(1, int(math.floor(width * scale + 0.5))),
        max(1, int(math.floor(height * scale + 0.5)))
    )
