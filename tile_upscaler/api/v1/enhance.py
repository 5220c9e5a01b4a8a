"""
Enhance Endpoints - Tile-Based Upscaling

POST /api/v1/enhance        - multipart upload (``image`` file + option fields)
POST /api/v1/enhance/json   - base64 image + options in a JSON body
GET  /api/v1/enhance/status - which capabilities are configured
"""

import base64
import uuid
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile
from pydantic import BaseModel, Field, ValidationError

from tile_upscaler.core.config import settings
from tile_upscaler.core.exceptions import InvalidImageError, InvalidParameterError
from tile_upscaler.core.logging import LogContext, get_logger
from tile_upscaler.api.dependencies import get_upscale_service
from tile_upscaler.pipeline.codec import decode_base64_image, decode_image, encode_png
from tile_upscaler.pipeline.models import UpscaleOptions
from tile_upscaler.pipeline.service import UpscaleService

# Constants for file size limits
MAX_IMAGE_SIZE_BYTES = settings.MAX_IMAGE_SIZE_BYTES
MAX_IMAGE_SIZE_MB = MAX_IMAGE_SIZE_BYTES / (1024 * 1024)

logger = get_logger(__name__)
router = APIRouter()


# =============================================================================
# Request/Response Schemas
# =============================================================================

class EnhanceRequest(BaseModel):
    """JSON upscale request."""
    image_base64: str = Field(..., description="Base64 encoded image (data URLs accepted)")
    options: Optional[Dict[str, Any]] = Field(
        default=None,
        description="UpscaleOptions fields: tile_size, overlap, upscale_factor, prompt, ..."
    )


class EnhanceResponse(BaseModel):
    """Upscaled image and processing metadata."""
    image_base64: str
    width: int
    height: int
    tiles_processed: int
    ai_enhanced: bool
    duration_ms: int
    request_id: str


class StatusResponse(BaseModel):
    enhancement_configured: bool
    analysis_configured: bool
    capability: str
    status: str
    message: str


# =============================================================================
# Helpers
# =============================================================================

def parse_options(raw: Optional[Dict[str, Any]]) -> UpscaleOptions:
    """Build UpscaleOptions, turning validation errors into InvalidParameterError."""
    values = {k: v for k, v in (raw or {}).items() if v is not None}
    try:
        return UpscaleOptions(**values)
    except ValidationError as e:
        first = e.errors()[0]
        parameter = ".".join(str(p) for p in first.get("loc", ()))
        raise InvalidParameterError(
            f"Invalid {parameter or 'option'}: {first.get('msg')}",
            parameter=parameter or None
        )


async def run_upscale(
    service: UpscaleService,
    image_bytes: Optional[bytes],
    options: UpscaleOptions,
    image_base64: Optional[str] = None
) -> EnhanceResponse:
    request_id = str(uuid.uuid4())

    with LogContext(request_id=request_id, stage="decode"):
        pixels = decode_base64_image(image_base64) if image_base64 is not None else decode_image(image_bytes)
        logger.info(
            "enhance_request_received",
            image_width=int(pixels.shape[1]),
            image_height=int(pixels.shape[0]),
            tile_size=options.tile_size,
            overlap=options.overlap,
            upscale_factor=options.upscale_factor,
            enhancement_passes=options.enhancement_passes
        )

        result = await service.upscale(pixels, options, request_id=request_id)

        return EnhanceResponse(
            image_base64=base64.b64encode(encode_png(result.image)).decode("utf-8"),
            width=result.width,
            height=result.height,
            tiles_processed=result.tiles_processed,
            ai_enhanced=result.ai_enhanced,
            duration_ms=result.duration_ms,
            request_id=request_id
        )


# =============================================================================
# Endpoints
# =============================================================================

@router.post("", response_model=EnhanceResponse)
async def enhance_uploaded_image(
    image: UploadFile = File(...),
    tile_size: Optional[str] = Form(None),
    overlap: Optional[str] = Form(None),
    upscale_factor: Optional[str] = Form(None),
    prompt: Optional[str] = Form(None),
    enhancement_passes: Optional[str] = Form(None),
    final_pass: Optional[str] = Form(None),
    sharpness: Optional[str] = Form(None),
    denoise: Optional[str] = Form(None),
    contrast: Optional[str] = Form(None),
    service: UpscaleService = Depends(get_upscale_service)
):
    """
    Upscale an uploaded image.

    Form fields mirror UpscaleOptions; omitted fields take their defaults.
    """
    if image.content_type and not image.content_type.startswith("image/"):
        raise InvalidImageError("Only image uploads are allowed")

    image_bytes = await image.read()
    if len(image_bytes) > MAX_IMAGE_SIZE_BYTES:
        raise InvalidImageError(
            f"Image size ({len(image_bytes) / (1024 * 1024):.2f}MB) exceeds "
            f"maximum allowed size ({MAX_IMAGE_SIZE_MB:.0f}MB)"
        )

    options = parse_options({
        "tile_size": tile_size,
        "overlap": overlap,
        "upscale_factor": upscale_factor,
        "prompt": prompt,
        "enhancement_passes": enhancement_passes,
        "final_pass": final_pass,
        "sharpness": sharpness,
        "denoise": denoise,
        "contrast": contrast,
    })

    return await run_upscale(service, image_bytes, options)


@router.post("/json", response_model=EnhanceResponse)
async def enhance_base64_image(
    request: EnhanceRequest,
    service: UpscaleService = Depends(get_upscale_service)
):
    """Upscale a base64-encoded image."""
    decoded_size_bytes = len(request.image_base64) * 3 / 4
    if decoded_size_bytes > MAX_IMAGE_SIZE_BYTES:
        raise InvalidImageError(
            f"Image size ({decoded_size_bytes / (1024 * 1024):.2f}MB) exceeds "
            f"maximum allowed size ({MAX_IMAGE_SIZE_MB:.0f}MB)"
        )

    options = parse_options(request.options)
    return await run_upscale(service, None, options, image_base64=request.image_base64)


@router.get("/status", response_model=StatusResponse)
async def enhance_status():
    """Report which enhancement and analysis capabilities are configured."""
    remote = settings.enhancement_api_configured
    return StatusResponse(
        enhancement_configured=remote,
        analysis_configured=settings.analysis_api_configured,
        capability="nano_banana" if remote else "local",
        status="ai_ready" if remote else "local_only",
        message=(
            "AI tile enhancement ready"
            if remote
            else "Set NANO_BANANA_API_URL and NANO_BANANA_API_KEY for AI enhancement"
        )
    )
