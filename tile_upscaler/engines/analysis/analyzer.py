"""
Whole-image analysis via Gemini.

Produces a short description plus lists of textures and subjects, used to
build per-tile context for the enhancement prompts. Analysis is advisory:
when the API is not configured or anything goes wrong, the default
ImageAnalysis is returned and the pipeline carries on.
"""

import base64
import json
import re
import time
from typing import Any, Dict, Optional

import cv2
import httpx
import numpy as np

from tile_upscaler.core.config import settings
from tile_upscaler.core.logging import get_logger, with_logging
from tile_upscaler.core.metrics import record_analysis_api_call
from tile_upscaler.pipeline.codec import encode_jpeg
from tile_upscaler.pipeline.models import ImageAnalysis

logger = get_logger(__name__)

ANALYSIS_MAX_EDGE = 512
ANALYSIS_JPEG_QUALITY = 80

ANALYSIS_PROMPT = """Analyze this image in detail. Respond in this EXACT JSON format only, no other text:
{
  "description": "A brief description of what's in the image",
  "textures": ["list", "of", "textures", "present"],
  "subjects": ["list", "of", "main", "subjects"]
}

Identify ALL textures present such as: hair, skin, eyes, fabric, leather, metal, wood, stone, glass, water, grass, fur, feathers, paper, plastic, concrete, brick, sand, clouds, sky, foliage, etc.

Identify main subjects: person, face, animal, building, landscape, object, food, vehicle, etc."""

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


def fit_inside(pixels: np.ndarray, max_edge: int = ANALYSIS_MAX_EDGE) -> np.ndarray:
    """Resize so the longer edge equals ``max_edge``, keeping aspect ratio."""
    height, width = pixels.shape[:2]
    scale = max_edge / max(width, height)
    if scale == 1:
        return pixels
    size = (max(1, int(round(width * scale))), max(1, int(round(height * scale))))
    interpolation = cv2.INTER_AREA if scale < 1 else cv2.INTER_CUBIC
    return cv2.resize(pixels, size, interpolation=interpolation)


def parse_analysis(text: str) -> Optional[ImageAnalysis]:
    """Pull the first JSON object out of a model reply."""
    match = _JSON_OBJECT.search(text or "")
    if not match:
        return None

    parsed = json.loads(match.group(0))
    if not isinstance(parsed, dict):
        return None

    defaults = ImageAnalysis()
    textures = parsed.get("textures")
    subjects = parsed.get("subjects")
    return ImageAnalysis(
        description=parsed.get("description") or defaults.description,
        textures=[str(t) for t in textures] if isinstance(textures, list) else defaults.textures,
        subjects=[str(s) for s in subjects] if isinstance(subjects, list) else defaults.subjects,
    )


def _reply_text(body: Dict[str, Any]) -> str:
    candidates = body.get("candidates") or []
    if not candidates:
        raise ValueError("No analysis response")

    parts = (candidates[0].get("content") or {}).get("parts") or []
    for part in parts:
        if part.get("text"):
            return part["text"]
    raise ValueError("No text in analysis response")


class ImageAnalyzer:
    """Gemini-backed image analyzer."""

    def __init__(
        self,
        api_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.api_url = api_url or settings.GEMINI_API_URL
        self.api_key = api_key or settings.GEMINI_API_KEY
        self.timeout = timeout or settings.ANALYSIS_TIMEOUT_SECONDS
        self.transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.api_url and self.api_key)

    def _payload(self, pixels: np.ndarray) -> Dict[str, Any]:
        preview = encode_jpeg(fit_inside(pixels), quality=ANALYSIS_JPEG_QUALITY)
        return {
            "contents": [
                {
                    "parts": [
                        {
                            "inline_data": {
                                "mime_type": "image/jpeg",
                                "data": base64.b64encode(preview).decode("utf-8"),
                            }
                        },
                        {"text": ANALYSIS_PROMPT},
                    ]
                }
            ],
            "generationConfig": {"responseModalities": ["TEXT"]},
        }

    @with_logging("analyze")
    async def analyze(self, pixels: np.ndarray) -> ImageAnalysis:
        """Analyze the image; never raises."""
        if not self.configured:
            logger.debug("analysis_skipped", reason="not_configured")
            return ImageAnalysis()

        start_time = time.time()
        try:
            headers = {
                "x-goog-api-key": self.api_key,
                "Content-Type": "application/json",
            }
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(self.api_url, json=self._payload(pixels), headers=headers)
            response.raise_for_status()

            analysis = parse_analysis(_reply_text(response.json()))
            if analysis is None:
                raise ValueError("No JSON object in analysis response")

        except Exception as e:
            record_analysis_api_call(status="error")
            logger.warning(
                "analysis_failed",
                error=str(e),
                error_type=type(e).__name__,
                fallback="default"
            )
            return ImageAnalysis()

        record_analysis_api_call(status="success")
        logger.info(
            "analysis_completed",
            description=analysis.description,
            textures=analysis.textures,
            subjects=analysis.subjects,
            has_faces=analysis.has_faces(),
            duration_ms=int((time.time() - start_time) * 1000)
        )
        return analysis
