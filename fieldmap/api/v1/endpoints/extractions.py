"""Photo extraction API endpoints."""

from typing import Annotated

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from fieldmap.api.v1.dependencies import OrganizationId, get_orchestrator
from fieldmap.core.database import get_async_session
from fieldmap.repositories.extraction_audit_repository import ExtractionAuditRepository
from fieldmap.schemas.extraction import ExtractionAuditResponse, ExtractionTrigger
from fieldmap.services.extraction.orchestrator import PhotoExtractionOrchestrator
from fieldmap.utils.logging import get_logger
from fieldmap.utils.responses import create_api_response

LOGGER = get_logger(__name__)

router = APIRouter()


@router.post(
    "/photo",
    response_model=dict,
    summary="Extract fields from a step photo",
    operation_id="run_photo_extraction",
)
async def run_photo_extraction(
    request: Request,
    trigger: ExtractionTrigger,
    organization_id: OrganizationId,
    orchestrator: Annotated[PhotoExtractionOrchestrator, Depends(get_orchestrator)],
) -> dict:
    """Run one extraction batch for a photo attached to a workflow step.

    Per-field failures are reported inside the result. The request itself
    fails with 404 when the step or source record is missing and 409 when
    the record write loses to concurrent writers.
    """
    result = await orchestrator.run(organization_id, trigger)
    return create_api_response(
        data=result,
        message=f"Extraction {result.status.value}",
        request=request,
    )


@router.get(
    "/work-items/{work_item_id}/audits",
    response_model=dict,
    summary="List extraction audits for a work item",
    operation_id="list_extraction_audits",
)
async def list_audits(
    request: Request,
    work_item_id: int,
    organization_id: OrganizationId,
    db_session: Annotated[AsyncSession, Depends(get_async_session)],
) -> dict:
    audits = await ExtractionAuditRepository(db_session).list_for_work_item(
        organization_id, work_item_id
    )
    return create_api_response(
        data=[ExtractionAuditResponse.model_validate(a) for a in audits],
        message=f"Retrieved {len(audits)} extraction audits",
        request=request,
    )
