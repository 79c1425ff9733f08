"""Shared FastAPI dependencies."""

from functools import lru_cache
from typing import Annotated, Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from fieldmap.core.database import get_async_session
from fieldmap.services.extraction.orchestrator import PhotoExtractionOrchestrator
from fieldmap.services.field_definition_service import FieldDefinitionService
from fieldmap.services.schema_registry import SchemaRegistry, default_registry
from fieldmap.services.vision.base import VisionClient
from fieldmap.services.vision.factory import create_vision_client

ORGANIZATION_HEADER = "X-Organization-ID"


async def get_organization_id(
    x_organization_id: Annotated[Optional[str], Header(alias=ORGANIZATION_HEADER)] = None,
) -> int:
    """Tenant id from the ``X-Organization-ID`` header."""
    if x_organization_id is None or not x_organization_id.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Missing {ORGANIZATION_HEADER} header",
        )
    try:
        return int(x_organization_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"{ORGANIZATION_HEADER} must be numeric",
        )


def get_registry() -> SchemaRegistry:
    return default_registry()


@lru_cache
def get_vision_client() -> VisionClient:
    return create_vision_client()


async def get_field_definition_service(
    db_session: Annotated[AsyncSession, Depends(get_async_session)],
    registry: Annotated[SchemaRegistry, Depends(get_registry)],
) -> FieldDefinitionService:
    """Dependency for field definition service."""
    return FieldDefinitionService(db_session, registry=registry)


async def get_orchestrator(
    db_session: Annotated[AsyncSession, Depends(get_async_session)],
    registry: Annotated[SchemaRegistry, Depends(get_registry)],
    vision: Annotated[VisionClient, Depends(get_vision_client)],
) -> PhotoExtractionOrchestrator:
    """Dependency for the extraction orchestrator."""
    return PhotoExtractionOrchestrator(db_session, vision, registry=registry)


OrganizationId = Annotated[int, Depends(get_organization_id)]
