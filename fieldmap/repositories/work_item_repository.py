"""Repository for the workflow collaborators the extraction pipeline touches."""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from fieldmap.database.models import WorkflowExecutionStep, WorkItem, WorkItemSource
from fieldmap.repositories.base_repository import BaseRepository
from fieldmap.utils.logging import get_logger

LOGGER = get_logger(__name__)


class WorkItemRepository(BaseRepository[WorkItem]):
    """Work items, their source links and their execution steps."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, WorkItem)

    async def get_source_link(
        self, organization_id: int, work_item_id: int
    ) -> Optional[WorkItemSource]:
        """Explicit source linkage for a work item, if one was recorded."""
        query = (
            select(WorkItemSource)
            .where(
                WorkItemSource.work_item_id == work_item_id,
                WorkItemSource.organization_id == organization_id,
            )
            .order_by(WorkItemSource.id)
            .limit(1)
        )
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def get_step(
        self, organization_id: int, step_id: int
    ) -> Optional[WorkflowExecutionStep]:
        query = select(WorkflowExecutionStep).where(
            WorkflowExecutionStep.id == step_id,
            WorkflowExecutionStep.organization_id == organization_id,
        )
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def merge_step_form_data(
        self,
        step: WorkflowExecutionStep,
        form_data: Dict[str, Any],
    ) -> WorkflowExecutionStep:
        """Merge keys into ``step.evidence["formData"]`` without dropping existing evidence.

        Args:
            step: Step loaded for the same organization
            form_data: Keys to add or overwrite inside formData

        Returns:
            The updated step
        """
        current_evidence = dict(step.evidence or {})
        current_form = dict(current_evidence.get("formData") or {})
        current_form.update(form_data)
        current_evidence["formData"] = current_form

        try:
            # New dict so the JSON column registers the change
            step.evidence = current_evidence
            step.updated_at = datetime.now(timezone.utc)
            await self.session.flush()
            await self.session.commit()
            return step
        except SQLAlchemyError as e:
            await self.session.rollback()
            LOGGER.error(
                f"Error updating evidence for step {step.id}: {e}",
                extra={"organization_id": step.organization_id},
                exc_info=True,
            )
            raise
