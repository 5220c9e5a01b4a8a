"""
Enhancement capability selection.
"""

from tile_upscaler.core.config import settings
from tile_upscaler.core.logging import get_logger
from tile_upscaler.engines.enhancement.base import EnhancementCapability
from tile_upscaler.engines.enhancement.local import LocalEnhancer
from tile_upscaler.engines.enhancement.remote import RemoteEnhancer

logger = get_logger(__name__)


def get_enhancer() -> EnhancementCapability:
    """Remote enhancer when the Nano Banana API is configured, local otherwise."""
    if settings.enhancement_api_configured:
        return RemoteEnhancer()

    logger.debug("enhancement_api_not_configured", fallback="local")
    return LocalEnhancer()
