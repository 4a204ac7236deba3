"""
API v1 Router Module - Relay Gateway

All v1 endpoints are prefixed with /api/v1/

- POST /api/v1/upload - Relay uploaded images through the worker
- GET  /api/v1/metrics - Prometheus metrics

POST /upload is also mounted at the root for the upload page.
"""

from fastapi import APIRouter

from src.api.v1.upload import router as upload_router
from src.api.v1.metrics import router as metrics_router

# Main v1 router
api_v1_router = APIRouter(prefix="/api/v1")

api_v1_router.include_router(upload_router, tags=["upload"])
api_v1_router.include_router(metrics_router, tags=["metrics"])
