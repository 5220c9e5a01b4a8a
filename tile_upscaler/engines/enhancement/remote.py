"""
Remote enhancement via the Nano Banana image API.

Each call posts one PNG-encoded buffer together with a regeneration prompt
and decodes the returned image. Calls run on scheduler worker threads, so
this client is synchronous; the shared circuit breaker trips after repeated
failures and makes later tiles fail fast.
"""

import base64
import binascii
import time
from typing import Optional

import httpx
import numpy as np

from tile_upscaler.core.config import settings
from tile_upscaler.core.exceptions import (
    CircuitBreakerOpenError,
    EnhancementFailedError,
    EnhancementTimeoutError,
    InvalidImageError,
    get_circuit_breaker,
)
from tile_upscaler.core.logging import get_logger
from tile_upscaler.core.metrics import record_enhancement_api_call
from tile_upscaler.engines.enhancement.base import EnhancementCapability, target_size
from tile_upscaler.engines.enhancement.local import resize_lanczos
from tile_upscaler.engines.enhancement.prompts import build_prompt
from tile_upscaler.pipeline.codec import decode_image, encode_png
from tile_upscaler.pipeline.models import TileContext

logger = get_logger(__name__)

SERVICE_NAME = "nano_banana"


class RemoteEnhancer(EnhancementCapability):
    """Enhancement capability backed by the Nano Banana API."""

    name = SERVICE_NAME
    is_remote = True

    def __init__(
        self,
        api_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None
    ):
        self.api_url = api_url or settings.NANO_BANANA_API_URL
        self.api_key = api_key or settings.NANO_BANANA_API_KEY
        self.timeout = timeout or settings.ENHANCEMENT_TIMEOUT_SECONDS
        self.transport = transport
        self.circuit = get_circuit_breaker(SERVICE_NAME)

        if not self.api_url:
            raise ValueError("RemoteEnhancer requires NANO_BANANA_API_URL")

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _post(self, payload: dict) -> httpx.Response:
        with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
            return client.post(self.api_url, json=payload, headers=self._headers())

    def enhance(
        self,
        pixels: np.ndarray,
        prompt: str,
        upscale_factor: float,
        context: Optional[TileContext] = None
    ) -> np.ndarray:
        if not self.circuit.can_execute():
            raise CircuitBreakerOpenError(SERVICE_NAME, stage="enhance")

        height, width = pixels.shape[:2]
        target_width, target_height = target_size(width, height, upscale_factor)
        start_time = time.time()

        payload = {
            "image": base64.b64encode(encode_png(pixels)).decode("utf-8"),
            "prompt": build_prompt(prompt, context),
            "upscale_factor": upscale_factor,
            "target_width": target_width,
            "target_height": target_height,
        }

        try:
            response = self._post(payload)
        except httpx.TimeoutException:
            self.circuit.record_failure()
            record_enhancement_api_call(status="timeout", http_status=504)
            raise EnhancementTimeoutError(
                f"Nano Banana API timed out after {self.timeout}s",
                service=SERVICE_NAME,
                stage="enhance"
            )
        except httpx.HTTPError as e:
            self.circuit.record_failure(e)
            record_enhancement_api_call(status="error", http_status=0)
            raise EnhancementFailedError(
                f"Nano Banana API request failed: {e}",
                service=SERVICE_NAME,
                stage="enhance"
            )

        record_enhancement_api_call(
            status="success" if response.status_code == 200 else "error",
            http_status=response.status_code
        )

        if response.status_code != 200:
            self.circuit.record_failure()
            raise EnhancementFailedError(
                f"Nano Banana API error: {response.text[:200]}",
                service=SERVICE_NAME,
                http_status=response.status_code,
                stage="enhance"
            )

        try:
            result = response.json()
            output_b64 = result.get("image") or result.get("result")
            if not output_b64:
                raise ValueError("response has no image")
            enhanced = decode_image(base64.b64decode(output_b64))
        except (ValueError, binascii.Error, InvalidImageError, AttributeError) as e:
            self.circuit.record_failure(e)
            message = e.message if isinstance(e, InvalidImageError) else str(e)
            raise EnhancementFailedError(
                f"Nano Banana API returned an unusable image: {message}",
                service=SERVICE_NAME,
                stage="enhance"
            )

        self.circuit.record_success()

        # The model does not always honour the requested size exactly
        if enhanced.shape[1] != target_width or enhanced.shape[0] != target_height:
            logger.debug(
                "remote_enhance_resized",
                returned=f"{enhanced.shape[1]}x{enhanced.shape[0]}",
                target=f"{target_width}x{target_height}"
            )
            enhanced = resize_lanczos(enhanced, target_width, target_height)

        logger.debug(
            "remote_enhance_completed",
            duration_ms=int((time.time() - start_time) * 1000),
            position=context.position if context else None
        )
        return enhanced
