"""Repository for the append-only extraction audit trail."""

from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from fieldmap.database.models import ExtractionAudit
from fieldmap.repositories.base_repository import BaseRepository
from fieldmap.utils.logging import get_logger

LOGGER = get_logger(__name__)


class ExtractionAuditRepository(BaseRepository[ExtractionAudit]):
    """Insert and read audit rows. Rows are never updated or deleted."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, ExtractionAudit)

    async def record(
        self,
        organization_id: int,
        work_item_id: int,
        step_id: int,
        status: str,
        extracted_data: Optional[Dict[str, Any]] = None,
        average_confidence: int = 0,
        processing_time_ms: int = 0,
        model: Optional[str] = None,
        tokens_used: Optional[int] = None,
        source_table: Optional[str] = None,
        source_id: Optional[int] = None,
        error_message: Optional[str] = None,
    ) -> ExtractionAudit:
        """Append one audit row for an extraction batch."""
        audit = await self.create(
            organization_id=organization_id,
            work_item_id=work_item_id,
            step_id=step_id,
            source_table=source_table,
            source_id=source_id,
            extracted_data=extracted_data or {},
            average_confidence=average_confidence,
            status=status,
            model=model,
            tokens_used=tokens_used,
            processing_time_ms=processing_time_ms,
            error_message=error_message,
        )
        LOGGER.info(
            f"Recorded extraction audit {audit.id} ({status})",
            extra={
                "organization_id": organization_id,
                "work_item_id": work_item_id,
                "step_id": step_id,
            },
        )
        return audit

    async def list_for_work_item(
        self, organization_id: int, work_item_id: int
    ) -> List[ExtractionAudit]:
        query = (
            select(ExtractionAudit)
            .where(
                ExtractionAudit.organization_id == organization_id,
                ExtractionAudit.work_item_id == work_item_id,
            )
            .order_by(ExtractionAudit.created_at, ExtractionAudit.id)
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())
