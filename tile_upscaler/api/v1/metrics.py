"""
Metrics Endpoint

GET /api/v1/metrics - Prometheus metrics endpoint
"""

from fastapi import APIRouter, Response

from tile_upscaler.core.metrics import get_metrics, get_metrics_content_type

router = APIRouter()


@router.get("/metrics")
async def metrics():
    """
    Prometheus metrics endpoint.

    Exposes:
    - upscaler_stage_latency_seconds (per stage)
    - upscaler_tiles_processed_total
    - upscaler_tile_enhancement_seconds
    - upscaler_enhancement_api_calls_total
    - upscaler_requests_total
    - http_requests_total
    """
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )
