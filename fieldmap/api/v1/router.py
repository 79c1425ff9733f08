from fastapi import APIRouter

from fieldmap.api.v1.endpoints import extractions, fields

# Create API router
api_router = APIRouter()

api_router.include_router(fields.router, prefix="/fields", tags=["Fields"])
api_router.include_router(extractions.router, prefix="/extractions", tags=["Extractions"])

__all__ = ["api_router"]
