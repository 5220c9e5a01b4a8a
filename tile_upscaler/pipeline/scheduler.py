"""
Tile Enhancement Scheduler

Runs a fixed-size pool of worker threads that pull the next unclaimed tile
index from a shared counter and push that tile through the enhancement
capability. Each worker writes only the result slot matching the index it
claimed, so ``results[i]`` always belongs to ``tiles[i]`` whatever order the
calls finish in.

The pool size is the only backpressure against the capability, which is
typically a rate-limited remote service.
"""

import asyncio
import contextvars
import threading
import time
import concurrent.futures
from typing import Callable, List, Optional, Tuple

import numpy as np

from tile_upscaler.core.exceptions import EnhancementFailedError
from tile_upscaler.core.logging import get_logger
from tile_upscaler.core.metrics import record_tile_enhanced
from tile_upscaler.engines.enhancement.base import EnhancementCapability, target_size
from tile_upscaler.pipeline.models import EnhancedTile, ImageAnalysis, Tile, TileContext
from tile_upscaler.pipeline.tiler import tile_position

logger = get_logger(__name__)

DEFAULT_CONCURRENCY = 5

# Progress is logged every N completed tiles
PROGRESS_LOG_INTERVAL = 5

ProgressCallback = Callable[[int, int], None]


def build_tile_context(
    tile: Tile,
    analysis: Optional[ImageAnalysis],
    image_size: Optional[Tuple[int, int]]
) -> Optional[TileContext]:
    """Position-aware context for one tile, or None without analysis."""
    if analysis is None or not image_size:
        return None
    image_width, image_height = image_size
    if not image_width or not image_height:
        return None

    return TileContext(
        position=tile_position(
            tile.x, tile.y, tile.width, tile.height, image_width, image_height
        ),
        image_description=analysis.description,
        textures=list(analysis.textures),
        subjects=list(analysis.subjects),
    )


class _BatchState:
    """Claim counter, completion counter and first failure, under one lock."""

    def __init__(self, total: int):
        self.total = total
        self.lock = threading.Lock()
        self.next_index = 0
        self.completed = 0
        self.failure: Optional[BaseException] = None

    def claim(self) -> Optional[int]:
        with self.lock:
            if self.failure is not None or self.next_index >= self.total:
                return None
            current = self.next_index
            self.next_index += 1
            return current

    def complete(self) -> int:
        with self.lock:
            self.completed += 1
            return self.completed

    def fail(self, error: BaseException):
        with self.lock:
            if self.failure is None:
                self.failure = error


def enhance_all(
    tiles: List[Tile],
    capability: EnhancementCapability,
    concurrency_limit: int = DEFAULT_CONCURRENCY,
    prompt: str = "",
    upscale_factor: float = 1.0,
    analysis: Optional[ImageAnalysis] = None,
    image_size: Optional[Tuple[int, int]] = None,
    progress: Optional[ProgressCallback] = None,
    source: Callable[[Tile], np.ndarray] = None
) -> List[EnhancedTile]:
    """Enhance every tile with at most ``concurrency_limit`` calls in flight.

    Args:
        tiles: tiles to enhance
        capability: enhancement capability invoked once per tile
        concurrency_limit: worker pool size
        prompt: free-text prompt forwarded to the capability
        upscale_factor: scale the capability must apply
        analysis: optional whole-image analysis for per-tile context
        image_size: (width, height) of the source image, needed for context
        progress: optional ``progress(completed, total)`` callback
        source: picks the buffer to submit for a tile (default ``tile.pixels``)

    Returns:
        Enhanced tiles, ``results[i]`` matching ``tiles[i]``

    Raises:
        EnhancementFailedError: any tile failed; no partial result is returned
    """
    total = len(tiles)
    if total == 0:
        return []

    if concurrency_limit is None or concurrency_limit < 1:
        concurrency_limit = DEFAULT_CONCURRENCY

    pick_source = source or (lambda t: t.pixels)
    capability_name = getattr(capability, "name", type(capability).__name__)
    results: List[Optional[EnhancedTile]] = [None] * total
    state = _BatchState(total)

    logger.info(
        "tile_enhancement_started",
        tile_count=total,
        concurrency=min(concurrency_limit, total),
        upscale_factor=upscale_factor,
        capability=capability_name
    )
    if analysis is not None:
        logger.info(
            "tile_enhancement_context",
            description=analysis.description,
            textures=analysis.textures,
            subjects=analysis.subjects
        )

    def worker():
        while True:
            current = state.claim()
            if current is None:
                return

            tile = tiles[current]
            context = build_tile_context(tile, analysis, image_size)
            started = time.time()

            try:
                enhanced = capability.enhance(pick_source(tile), prompt, upscale_factor, context)
            except EnhancementFailedError as e:
                e.details.setdefault("tile_index", current)
                record_tile_enhanced(capability_name, time.time() - started, status="error")
                state.fail(e)
                return
            except Exception as e:
                record_tile_enhanced(capability_name, time.time() - started, status="error")
                state.fail(EnhancementFailedError(
                    f"Enhancement failed for tile {current} at ({tile.x}, {tile.y}): {e}",
                    tile_index=current,
                    service=capability_name,
                    stage="enhance"
                ))
                return

            if not isinstance(enhanced, np.ndarray) or enhanced.ndim != 3:
                state.fail(EnhancementFailedError(
                    f"Enhancement returned an invalid buffer for tile {current}",
                    tile_index=current,
                    service=capability_name,
                    stage="enhance"
                ))
                return

            submitted = pick_source(tile)
            expected = target_size(submitted.shape[1], submitted.shape[0], upscale_factor)
            if (enhanced.shape[1], enhanced.shape[0]) != expected:
                record_tile_enhanced(capability_name, time.time() - started, status="error")
                state.fail(EnhancementFailedError(
                    f"Enhancement returned {enhanced.shape[1]}x{enhanced.shape[0]} for tile {current}, "
                    f"expected {expected[0]}x{expected[1]}",
                    tile_index=current,
                    service=capability_name,
                    stage="enhance"
                ))
                return

            record_tile_enhanced(capability_name, time.time() - started)
            results[current] = EnhancedTile.from_tile(tile, enhanced)

            completed = state.complete()
            if completed % PROGRESS_LOG_INTERVAL == 0 or completed == total:
                logger.info("tile_enhancement_progress", completed=completed, total=total)
            if progress is not None:
                progress(completed, total)

    worker_count = min(concurrency_limit, total)
    with concurrent.futures.ThreadPoolExecutor(
        max_workers=worker_count,
        thread_name_prefix="tile-worker"
    ) as executor:
        # Each worker runs in its own copy of the caller context so request_id reaches its logs
        futures = [
            executor.submit(contextvars.copy_context().run, worker)
            for _ in range(worker_count)
        ]
        concurrent.futures.wait(futures)

    # Surface errors raised outside the per-tile try block (e.g. a progress callback)
    for future in futures:
        error = future.exception()
        if error is not None:
            state.fail(error)

    if state.failure is not None:
        logger.error(
            "tile_enhancement_failed",
            error=str(state.failure),
            error_type=type(state.failure).__name__,
            completed=state.completed,
            total=total
        )
        raise state.failure

    return results


async def enhance_all_async(*args, **kwargs) -> List[EnhancedTile]:
    """Run ``enhance_all`` off the event loop."""
    return await asyncio.to_thread(enhance_all, *args, **kwargs)
