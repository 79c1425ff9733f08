"""Validation and lifecycle of administrator-declared extraction fields."""

import re
from dataclasses import dataclass, field
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from fieldmap.core.config import settings
from fieldmap.core.exceptions import ValidationError
from fieldmap.database.models import FieldDefinition
from fieldmap.repositories.field_definition_repository import FieldDefinitionRepository
from fieldmap.services.schema_registry import SchemaRegistry, SupportedTable, default_registry
from fieldmap.utils.logging import get_logger

LOGGER = get_logger(__name__)

FIELD_NAME_PATTERN = re.compile(r"^[a-z][a-z0-9_]*$")

# Tables on which administrators may declare extractable fields
EXTRACTION_TABLE_ALLOW_LIST = frozenset({SupportedTable.ADDRESS_RECORDS.value})


def is_valid_field_name(field_name: Optional[str]) -> bool:
    return bool(field_name) and FIELD_NAME_PATTERN.fullmatch(field_name) is not None


def generate_field_name(display_label: str) -> str:
    """Derive a safe field name from a display label.

    ``"Router Serial #"`` -> ``"router_serial"``. The result may still fail
    validation (e.g. a label starting with a digit) and is only a suggestion.
    """
    name = re.sub(r"[^a-z0-9]+", "_", display_label.lower())
    return name.strip("_")


@dataclass
class FieldVerification:
    """Whether a (table, field) pair is declared, plus the table's declarations."""

    exists: bool
    field: Optional[FieldDefinition]
    fields: List[FieldDefinition] = field(default_factory=list)


class FieldDefinitionService:
    """Field Definition Store.

    All validation runs before the repository is touched, so a rejected
    declaration never reaches the database.
    """

    def __init__(
        self,
        session: AsyncSession,
        registry: Optional[SchemaRegistry] = None,
        allowed_tables: Optional[frozenset] = None,
        instruction_max_length: Optional[int] = None,
    ):
        self.repository = FieldDefinitionRepository(session)
        self.registry = registry or default_registry()
        self.allowed_tables = allowed_tables if allowed_tables is not None else EXTRACTION_TABLE_ALLOW_LIST
        self.instruction_max_length = (
            instruction_max_length or settings.extraction.instruction_max_length
        )

    def validate(
        self,
        table_name: str,
        field_name: str,
        display_label: Optional[str] = "",
        extraction_instruction: Optional[str] = None,
    ) -> None:
        """Raise ValidationError describing the first problem found."""
        if table_name not in self.allowed_tables:
            raise ValidationError(
                f"Table '{table_name}' is not enabled for dynamic field extraction. "
                f"Allowed tables: {', '.join(sorted(self.allowed_tables))}"
            )
        if not is_valid_field_name(field_name):
            raise ValidationError(
                f"Invalid field name '{field_name}': must start with a lowercase letter "
                f"and contain only lowercase letters, digits and underscores"
            )
        if display_label is not None and not display_label.strip():
            raise ValidationError("Display label is required")
        if extraction_instruction and len(extraction_instruction) > self.instruction_max_length:
            raise ValidationError(
                f"Extraction instruction is {len(extraction_instruction)} characters; "
                f"the limit is {self.instruction_max_length}"
            )
        # A name that resolves to a typed column is fine; otherwise it becomes an
        # overflow key and must not shadow a system column.
        if self.registry.resolve_column(table_name, field_name) is None:
            if field_name in self.registry.reserved_columns(table_name):
                raise ValidationError(
                    f"Field name '{field_name}' is reserved on table '{table_name}'"
                )

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
        """Create or update a field definition (idempotent on org/table/field)."""
        self.validate(table_name, field_name, display_label, extraction_instruction)
        return await self.repository.upsert(
            organization_id=organization_id,
            table_name=table_name,
            field_name=field_name,
            display_label=display_label.strip(),
            field_type=field_type,
            description=description,
            extraction_instruction=extraction_instruction,
            created_by=created_by,
        )

    async def list_for_table(self, organization_id: int, table_name: str) -> List[FieldDefinition]:
        return await self.repository.list_for_table(organization_id, table_name)

    async def get(self, organization_id: int, field_id: int) -> Optional[FieldDefinition]:
        return await self.repository.get_scoped(organization_id, field_id)

    async def find(
        self, organization_id: int, table_name: str, field_name: str
    ) -> Optional[FieldDefinition]:
        return await self.repository.find(organization_id, table_name, field_name)

    async def delete(self, organization_id: int, field_id: int) -> bool:
        deleted = await self.repository.delete_scoped(organization_id, field_id)
        if deleted:
            LOGGER.info(
                f"Deleted field definition {field_id}",
                extra={"organization_id": organization_id},
            )
        return deleted

    async def verify(
        self, organization_id: int, table_name: str, field_name: str
    ) -> FieldVerification:
        fields = await self.repository.list_for_table(organization_id, table_name)
        match = next((f for f in fields if f.field_name == field_name), None)
        return FieldVerification(exists=match is not None, field=match, fields=fields)
