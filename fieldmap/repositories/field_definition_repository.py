"""Repository for administrator-declared field definitions."""

from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from fieldmap.database.models import FieldDefinition
from fieldmap.repositories.base_repository import BaseRepository
from fieldmap.utils.logging import get_logger

LOGGER = get_logger(__name__)


class FieldDefinitionRepository(BaseRepository[FieldDefinition]):
    """Data access for FieldDefinition rows.

    Performs no validation; callers go through FieldDefinitionService.
    """

    def __init__(self, session: AsyncSession):
        super().__init__(session, FieldDefinition)

    async def find(
        self, organization_id: int, table_name: str, field_name: str
    ) -> Optional[FieldDefinition]:
        """Look a definition up by its identity triple."""
        query = select(FieldDefinition).where(
            FieldDefinition.organization_id == organization_id,
            FieldDefinition.table_name == table_name,
            FieldDefinition.field_name == field_name,
        )
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def list_for_table(
        self, organization_id: int, table_name: str
    ) -> List[FieldDefinition]:
        """All definitions one organization declared on one table."""
        query = (
            select(FieldDefinition)
            .where(
                FieldDefinition.organization_id == organization_id,
                FieldDefinition.table_name == table_name,
            )
            .order_by(FieldDefinition.field_name)
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def upsert(
        self,
        organization_id: int,
        table_name: str,
        field_name: str,
        display_label: str,
        field_type: str = "text",
        description: Optional[str] = None,
        extraction_instruction: Optional[str] = None,
        created_by: Optional[int] = None,
    ) -> FieldDefinition:
        """Insert, or update the mutable attributes of, the definition keyed
        by ``(organization_id, table_name, field_name)``.

        Returns:
            The created or updated definition
        """
        try:
            existing = await self.find(organization_id, table_name, field_name)

            if existing:
                existing.display_label = display_label
                existing.field_type = field_type
                existing.description = description
                existing.extraction_instruction = extraction_instruction
                existing.updated_at = datetime.now(timezone.utc)
                await self.session.flush()
                await self.session.commit()
                LOGGER.info(
                    f"Updated field definition {table_name}.{field_name}",
                    extra={"organization_id": organization_id, "field_id": existing.id},
                )
                return existing

            created = await self.create(
                organization_id=organization_id,
                table_name=table_name,
                field_name=field_name,
                display_label=display_label,
                field_type=field_type,
                description=description,
                extraction_instruction=extraction_instruction,
                created_by=created_by,
            )
            LOGGER.info(
                f"Created field definition {table_name}.{field_name}",
                extra={"organization_id": organization_id, "field_id": created.id},
            )
            return created
        except SQLAlchemyError as e:
            await self.session.rollback()
            LOGGER.error(
                f"Error upserting field definition: {e}",
                extra={
                    "organization_id": organization_id,
                    "table_name": table_name,
                    "field_name": field_name,
                },
                exc_info=True,
            )
            raise

    async def delete_scoped(self, organization_id: int, field_id: int) -> bool:
        """Delete a definition owned by the organization.

        Returns:
            True if a row was deleted
        """
        result = await self.session.execute(
            delete(FieldDefinition).where(
                FieldDefinition.id == field_id,
                FieldDefinition.organization_id == organization_id,
            )
        )
        await self.session.commit()
        return result.rowcount > 0
