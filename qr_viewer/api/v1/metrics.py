"""
Metrics Endpoint

GET /api/v1/metrics - Prometheus exposition format
"""

from fastapi import APIRouter, Response

from qr_viewer.core.metrics import render_metrics

router = APIRouter()


@router.get("/metrics", include_in_schema=False)
async def metrics():
    """Upload, detection and HTTP series; see qr_viewer.core.metrics."""
    payload, content_type = render_metrics()
    return Response(content=payload, media_type=content_type)
