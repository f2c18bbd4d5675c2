"""
Top-level API router.
Combines all sub-routers into a single router.
"""

from fastapi import APIRouter

from bank_ingest.api.duplicates import router as duplicates_router
from bank_ingest.api.health import router as health_router
from bank_ingest.api.imports import router as imports_router

api_router = APIRouter()

api_router.include_router(health_router)
api_router.include_router(imports_router)
api_router.include_router(duplicates_router)
