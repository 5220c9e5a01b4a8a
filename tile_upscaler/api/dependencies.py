"""
FastAPI Dependencies for the Upscale Service

Provides dependency injection for:
- Enhancement capability (remote when configured, local otherwise)
- Image analyzer
- UpscaleService (per request, around the two above)

Tests override ``get_enhancer`` / ``get_analyzer`` through
``app.dependency_overrides``.
"""

from fastapi import Depends

from tile_upscaler.engines.analysis.analyzer import ImageAnalyzer
from tile_upscaler.engines.enhancement.base import EnhancementCapability
from tile_upscaler.engines.enhancement.factory import get_enhancer as build_enhancer
from tile_upscaler.pipeline.service import UpscaleService


def get_enhancer() -> EnhancementCapability:
    """Returns the enhancement capability for the current configuration."""
    return build_enhancer()


def get_analyzer() -> ImageAnalyzer:
    """Returns the Gemini-backed image analyzer."""
    return ImageAnalyzer()


def get_upscale_service(
    enhancer: EnhancementCapability = Depends(get_enhancer),
    analyzer: ImageAnalyzer = Depends(get_analyzer),
) -> UpscaleService:
    """Returns an UpscaleService for this request."""
    return UpscaleService(capability=enhancer, analyzer=analyzer)
