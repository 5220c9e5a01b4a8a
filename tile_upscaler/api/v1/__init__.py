"""
API v1 Router Module - Tile Upscaler

All v1 endpoints are prefixed with /api/v1/

Primary endpoint: POST /api/v1/enhance
- Multipart upload or base64 JSON body
- Capability status at /api/v1/enhance/status
"""

from fastapi import APIRouter

from tile_upscaler.api.v1.enhance import router as enhance_router
from tile_upscaler.api.v1.metrics import router as metrics_router

# Main v1 router
api_v1_router = APIRouter(prefix="/api/v1")

api_v1_router.include_router(enhance_router, prefix="/enhance", tags=["enhance"])
api_v1_router.include_router(metrics_router, tags=["metrics"])
