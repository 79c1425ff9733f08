"""Column Resolver & Writer.

Persists logical field values onto a target record: fields with a physical
column go to that column, everything else is merged into the record's
overflow map. A batch costs exactly one read and one write on the row.

The write is guarded by the record's ``version`` column. When another writer
got there first the whole read-merge-write cycle is retried, so overflow
keys written concurrently are not lost.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from fieldmap.core.config import settings
from fieldmap.core.exceptions import (
    ConcurrentUpdateError,
    PersistenceError,
    RecordNotFoundError,
)
from fieldmap.services.schema_registry import SchemaRegistry, TableDescriptor, default_registry
from fieldmap.utils.logging import get_logger

LOGGER = get_logger(__name__)


@dataclass
class WriteOutcome:
    """Result of a successful write."""

    record: Any
    columns: Dict[str, Any] = field(default_factory=dict)
    overflow: Dict[str, Any] = field(default_factory=dict)
    attempts: int = 1


class FieldWriter:
    """Writes logical fields onto rows of registry-supported tables."""

    def __init__(
        self,
        session: AsyncSession,
        registry: Optional[SchemaRegistry] = None,
        max_conflict_retries: Optional[int] = None,
    ):
        self.session = session
        self.registry = registry or default_registry()
        self.max_conflict_retries = (
            settings.extraction.max_conflict_retries
            if max_conflict_retries is None
            else max_conflict_retries
        )

    def partition(
        self, table: str, fields: Mapping[str, Any]
    ) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        """Split fields into ``{physical_column: value}`` and ``{field: value}`` overflow."""
        columns: Dict[str, Any] = {}
        overflow: Dict[str, Any] = {}
        for field_name, value in fields.items():
            column = self.registry.resolve_column(table, field_name)
            if column:
                columns[column] = value
            else:
                overflow[field_name] = value
        return columns, overflow

    async def write(
        self,
        organization_id: int,
        table: str,
        record_id: int,
        field_name: str,
        value: Any,
    ) -> Optional[WriteOutcome]:
        """Write a single field. See ``write_many``."""
        return await self.write_many(organization_id, table, record_id, {field_name: value})

    async def write_many(
        self,
        organization_id: int,
        table: str,
        record_id: int,
        fields: Mapping[str, Any],
    ) -> Optional[WriteOutcome]:
        """Write several fields to one record in a single read and a single write.

        Args:
            organization_id: Tenant that must own the record
            table: Registry table name
            record_id: Primary key of the target record
            fields: Logical field name -> value

        Returns:
            WriteOutcome, or None when the table is not supported (logged, not raised)

        Raises:
            RecordNotFoundError: The record does not exist for this organization
            ConcurrentUpdateError: Version conflicts persisted through every retry
            PersistenceError: Any other store failure
        """
        descriptor = self.registry.descriptor(table)
        if descriptor is None:
            LOGGER.warning(
                f"Cannot update {table}#{record_id}: table not supported for dynamic "
                f"field updates (supported: {', '.join(self.registry.supported_tables())}). "
                f"Skipping {len(fields)} field(s)",
                extra={"organization_id": organization_id, "fields": list(fields)},
            )
            return None

        columns, overflow = self.partition(table, fields)
        attempts = self.max_conflict_retries + 1

        for attempt in range(1, attempts + 1):
            try:
                record = await self._read_merge_write(
                    descriptor, organization_id, record_id, columns, overflow
                )
                LOGGER.info(
                    f"Updated {table}#{record_id}: columns={sorted(columns)} "
                    f"overflow={sorted(overflow)}",
                    extra={"organization_id": organization_id, "attempt": attempt},
                )
                return WriteOutcome(
                    record=record, columns=columns, overflow=overflow, attempts=attempt
                )
            except StaleDataError as e:
                await self.session.rollback()
                LOGGER.warning(
                    f"Version conflict writing {table}#{record_id} "
                    f"(attempt {attempt}/{attempts})",
                    extra={"organization_id": organization_id},
                )
                if attempt == attempts:
                    raise ConcurrentUpdateError(
                        f"{table}#{record_id} was modified concurrently; "
                        f"gave up after {attempts} attempts",
                        original_error=e,
                    ) from e
            except SQLAlchemyError as e:
                await self.session.rollback()
                LOGGER.error(
                    f"Failed to write fields to {table}#{record_id}: {e}",
                    extra={"organization_id": organization_id},
                    exc_info=True,
                )
                raise PersistenceError(
                    f"Failed to write fields to {table}#{record_id}", original_error=e
                ) from e

        # Unreachable: the loop returns or raises
        raise ConcurrentUpdateError(f"{table}#{record_id} could not be written")

    async def _read_merge_write(
        self,
        descriptor: TableDescriptor,
        organization_id: int,
        record_id: int,
        columns: Dict[str, Any],
        overflow: Dict[str, Any],
    ) -> Any:
        model = descriptor.model
        query = (
            select(model)
            .where(model.id == record_id, model.organization_id == organization_id)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(query)
        record = result.scalar_one_or_none()
        if record is None:
            raise RecordNotFoundError(descriptor.table.value, record_id, organization_id)

        for column, value in columns.items():
            setattr(record, column, value)

        if overflow:
            current = getattr(record, descriptor.overflow_attribute) or {}
            # Assign a new dict so the JSON column is flagged dirty
            setattr(record, descriptor.overflow_attribute, {**current, **overflow})

        record.updated_at = datetime.now(timezone.utc)
        await self.session.flush()
        await self.session.commit()
        return record
