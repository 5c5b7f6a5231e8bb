"""
API v1 Router Module - QR Upload Viewer

All v1 endpoints are prefixed with /api/v1/

Primary flow:
- POST /api/v1/upload                 - Submit an image (202, processing)
- GET  /api/v1/results/{id}           - Poll until completed or failed

Supporting endpoints:
- /api/v1/uploads/*                   - List, inspect, delete uploads
- /api/v1/generate-qr, /api/v1/qr     - Shareable QR for an upload
- /api/v1/generate-custom-qr          - QR for arbitrary text
- /api/v1/metrics                     - Prometheus
"""

from fastapi import APIRouter

from qr_viewer.api.v1.upload import router as upload_router
from qr_viewer.api.v1.results import router as results_router
from qr_viewer.api.v1.uploads import router as uploads_router
from qr_viewer.api.v1.qr import router as qr_router
from qr_viewer.api.v1.metrics import router as metrics_router

# Main v1 router
api_v1_router = APIRouter(prefix="/api/v1")

api_v1_router.include_router(upload_router, tags=["upload"])
api_v1_router.include_router(results_router, prefix="/results", tags=["results"])
api_v1_router.include_router(uploads_router, prefix="/uploads", tags=["uploads"])
api_v1_router.include_router(qr_router, tags=["qr"])
api_v1_router.include_router(metrics_router, tags=["metrics"])
