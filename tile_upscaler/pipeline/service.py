"""
Upscale Service - Pipeline Orchestration

Runs one upscale request end to end:

1. parameter validation and the tile-count guard (before any work)
2. whole-image analysis (advisory, degrades to defaults)
3. decomposition into overlapping tiles
4. bounded-concurrency tile enhancement
5. optional refinement passes
6. weighted reconstruction
7. optional whole-image final pass
8. post-processing

Each request owns its tiles and canvas; nothing is shared between requests
except the enhancement capability and its circuit breaker.
"""

import asyncio
import math
import time
import uuid
from typing import Optional

import numpy as np

from tile_upscaler.core.config import settings
from tile_upscaler.core.exceptions import (
    EnhancementFailedError,
    InvalidImageError,
    InvalidParameterError,
    TileLimitExceededError,
    UpscalerBaseException,
)
from tile_upscaler.core.logging import LogContext, get_logger
from tile_upscaler.core.metrics import (
    active_requests_gauge,
    record_request_completion,
    track_stage_latency,
)
from tile_upscaler.engines.analysis.analyzer import ImageAnalyzer
from tile_upscaler.engines.enhancement.base import EnhancementCapability
from tile_upscaler.pipeline.codec import ensure_rgba
from tile_upscaler.pipeline.merger import merge_tiles
from tile_upscaler.pipeline.models import UpscaleOptions, UpscaleResult
from tile_upscaler.pipeline.postprocess import options_from_quality, post_process
from tile_upscaler.pipeline.refiner import refine
from tile_upscaler.pipeline.scheduler import enhance_all_async
from tile_upscaler.pipeline.tiler import count_tiles, decompose, validate_tiling

logger = get_logger(__name__)


def final_pass_prompt(prompt: str) -> str:
    return (
        f"{prompt}. CRITICAL: Ensure global consistency across the entire image. "
        "Fix any visible seams, color discontinuities, or artifacts. "
        "Enhance overall sharpness and detail uniformity. Do NOT change the content."
    )


def validate_upscale_factor(upscale_factor) -> float:
    if isinstance(upscale_factor, bool):
        raise InvalidParameterError(f"Invalid upscale_factor: {upscale_factor!r}", parameter="upscale_factor")
    try:
        value = float(upscale_factor)
    except (TypeError, ValueError):
        raise InvalidParameterError(f"Invalid upscale_factor: {upscale_factor!r}", parameter="upscale_factor")

    if not math.isfinite(value) or value <= 0:
        raise InvalidParameterError(
            f"Invalid upscale_factor: {upscale_factor} (must be a positive number)",
            parameter="upscale_factor"
        )
    if value > settings.MAX_UPSCALE_FACTOR:
        raise InvalidParameterError(
            f"Invalid upscale_factor: {upscale_factor} (maximum is {settings.MAX_UPSCALE_FACTOR})",
            parameter="upscale_factor"
        )
    return value


class UpscaleService:
    """Tile-based upscaling pipeline around one enhancement capability."""

    def __init__(
        self,
        capability: EnhancementCapability,
        analyzer: Optional[ImageAnalyzer] = None,
        max_tiles: Optional[int] = None
    ):
        self.capability = capability
        self.analyzer = analyzer or ImageAnalyzer()
        self.max_tiles = max_tiles or settings.MAX_TILE_COUNT

    async def upscale(
        self,
        image: np.ndarray,
        options: Optional[UpscaleOptions] = None,
        request_id: Optional[str] = None
    ) -> UpscaleResult:
        """
        Upscale an RGBA image.

        Args:
            image: (H, W, C) uint8 pixel array
            options: request options, defaults when omitted
            request_id: correlation id for logs; generated when omitted

        Returns:
            UpscaleResult with the (round(H·s), round(W·s), 4) image

        Raises:
            InvalidParameterError, InvalidImageError, TileLimitExceededError:
                rejected before any enhancement call
            EnhancementFailedError: any tile (or the final pass) failed
        """
        options = options or UpscaleOptions()
        request_id = request_id or str(uuid.uuid4())
        start_time = time.time()

        active_requests_gauge.inc()
        try:
            with LogContext(request_id=request_id, stage="validate") as log_context:
                result = await self._run(image, options, log_context)
        except UpscalerBaseException as e:
            record_request_completion("error", e.kind, time.time() - start_time)
            raise
        except Exception:
            record_request_completion("error", "Internal", time.time() - start_time)
            raise
        finally:
            active_requests_gauge.dec()

        result.duration_ms = int((time.time() - start_time) * 1000)
        record_request_completion("success", duration_seconds=result.duration_ms / 1000)
        logger.info(
            "upscale_completed",
            request_id=request_id,
            width=result.width,
            height=result.height,
            tiles_processed=result.tiles_processed,
            ai_enhanced=result.ai_enhanced,
            duration_ms=result.duration_ms
        )
        return result

    async def _run(
        self,
        image: np.ndarray,
        options: UpscaleOptions,
        log_context: LogContext
    ) -> UpscaleResult:
        tile_size, overlap = validate_tiling(options.tile_size, options.overlap)
        scale = validate_upscale_factor(options.upscale_factor)
        try:
            image = ensure_rgba(image)
        except ValueError as e:
            raise InvalidImageError(str(e), stage="validate")

        height, width = image.shape[:2]
        if not width or not height:
            raise InvalidImageError("Unable to determine image dimensions", stage="validate")

        tile_count = count_tiles(width, height, tile_size, overlap)
        if tile_count > self.max_tiles:
            raise TileLimitExceededError(tile_count, self.max_tiles, stage="validate")

        logger.info(
            "upscale_started",
            image_width=width,
            image_height=height,
            tile_size=tile_size,
            overlap=overlap,
            upscale_factor=scale,
            enhancement_passes=options.enhancement_passes,
            tile_count=tile_count,
            capability=self.capability.name
        )

        log_context.set_stage("analyze")
        with track_stage_latency("analyze"):
            analysis = await self.analyzer.analyze(image)

        log_context.set_stage("decompose")
        with track_stage_latency("decompose"):
            tiles, width, height = decompose(image, tile_size, overlap)

        log_context.set_stage("enhance")
        with track_stage_latency("enhance"):
            enhanced = await enhance_all_async(
                tiles,
                self.capability,
                concurrency_limit=options.worker_count,
                prompt=options.prompt,
                upscale_factor=scale,
                analysis=analysis,
                image_size=(width, height)
            )

        if options.enhancement_passes > 1:
            log_context.set_stage("refine")
            with track_stage_latency("refine"):
                enhanced = await asyncio.to_thread(
                    refine,
                    enhanced,
                    options.enhancement_passes,
                    options.prompt,
                    self.capability,
                    options.worker_count
                )

        log_context.set_stage("merge")
        with track_stage_latency("merge"):
            merged = await asyncio.to_thread(
                merge_tiles, enhanced, width, height, tile_size, overlap, scale
            )

        if options.final_pass:
            log_context.set_stage("final_pass")
            with track_stage_latency("final_pass"):
                merged = await asyncio.to_thread(self._final_pass, merged, options.prompt)

        log_context.set_stage("post_process")
        with track_stage_latency("post_process"):
            post_options = options_from_quality(options.sharpness, options.denoise, options.contrast)
            output = await asyncio.to_thread(post_process, merged, post_options)

        return UpscaleResult(
            image=output,
            tiles_processed=len(tiles),
            ai_enhanced=self.capability.is_remote
        )

    def _final_pass(self, merged: np.ndarray, prompt: str) -> np.ndarray:
        try:
            result = self.capability.enhance(merged, final_pass_prompt(prompt), 1)
        except EnhancementFailedError:
            raise
        except Exception as e:
            raise EnhancementFailedError(
                f"Final pass failed: {e}",
                service=self.capability.name,
                stage="final_pass"
            )

        if not isinstance(result, np.ndarray) or result.shape[:2] != merged.shape[:2]:
            raise EnhancementFailedError(
                "Final pass changed the image dimensions",
                service=self.capability.name,
                stage="final_pass"
            )
        return result
